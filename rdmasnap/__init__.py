"""
RdmaSnap - Linux RDMA resource tracking snapshots

A Python package for reading the kernel's RDMA resource tracking dumps
(protection domains, memory regions, completion queues, connection
manager IDs and queue pairs) over the NETLINK_RDMA nldev protocol.

Modules:
    res_info: Resource queries, text and JSON output
    schema: Per-kind field tables and entry extraction
    filters: Field filters
    attrs: Netlink attribute decoding
    nl_socket: NETLINK_RDMA transport

Example:
    >>> from rdmasnap import RdmaResourceQuery
    >>> RdmaResourceQuery().show('qp', dev_index=0, filters=[('state', 'RTS')])
"""

__version__ = "1.0.0"
__author__ = "Harry Coin"
__email__ = "hcoin@quietfountain.com"
__license__ = "MIT"

from .errors import DecodeError, EnvelopeError, FilterError, RdmaResError, TransportError
from .res_info import RdmaResourceQuery, ResourceDispatcher
from .schema import SCHEMAS, get_schema

__all__ = [
    "RdmaResourceQuery",
    "ResourceDispatcher",
    "SCHEMAS",
    "get_schema",
    "RdmaResError",
    "DecodeError",
    "EnvelopeError",
    "FilterError",
    "TransportError",
    "__version__",
]
