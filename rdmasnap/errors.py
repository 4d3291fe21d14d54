"""Exceptions raised by rdmasnap queries"""


class RdmaResError(RuntimeError):
    """Base class for failures that abort a resource query"""


class DecodeError(RdmaResError):
    """Structurally invalid netlink message or attribute stream"""


class EnvelopeError(DecodeError):
    """Response message lacks device identity or the resource list"""


class FilterError(RdmaResError, ValueError):
    """Filter names a field the resource kind cannot filter on, or has a bad value"""


class TransportError(RdmaResError):
    """Netlink socket failure or kernel error reply"""

    def __init__(self, message: str, errno: int = 0):
        super().__init__(message)
        self.errno = errno
