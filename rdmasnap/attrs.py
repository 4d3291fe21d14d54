"""
Netlink attribute (TLV) decoding via CFFI struct overlays

Walks netlink messages and the attribute trees they carry:
- struct nlmsghdr framing (NLMSG_ALIGN'ed messages in one receive buffer)
- struct nlattr headers (NLA_ALIGN'ed, nested flag masked off the type)
- Per-id payload validation against the NLDEV policy
- Kernel sockaddr_storage payloads (AF_INET / AF_INET6)

Only ffi.cdef() is used here (no compilation), so the decoder works on any
host with cffi installed, including ones without a C compiler.
"""

from cffi import FFI
import ipaddress
import logging
import socket
from typing import Dict, Iterator, List, Optional, Tuple

from .errors import DecodeError
from .nldev import (
    ATTR_NESTED,
    ATTR_STRING,
    ATTR_U8,
    ATTR_U16,
    ATTR_U32,
    ATTR_U64,
    NLA_F_NESTED,
    NLA_TYPE_MASK,
    NLDEV_ATTR_NAMES,
    NLDEV_POLICY,
    RDMA_NLDEV_ATTR_MAX,
)

log = logging.getLogger(__name__)

ffi = FFI()
ffi.cdef("""
struct nlmsghdr {
    uint32_t nlmsg_len;
    uint16_t nlmsg_type;
    uint16_t nlmsg_flags;
    uint32_t nlmsg_seq;
    uint32_t nlmsg_pid;
};

struct nlattr {
    uint16_t nla_len;
    uint16_t nla_type;
};

struct sockaddr_in {
    uint16_t sin_family;
    uint16_t sin_port;
    unsigned char sin_addr[4];
    unsigned char sin_zero[8];
};

struct sockaddr_in6 {
    uint16_t sin6_family;
    uint16_t sin6_port;
    uint32_t sin6_flowinfo;
    unsigned char sin6_addr[16];
    uint32_t sin6_scope_id;
};
""")

NLMSG_ALIGNTO = 4
NLA_ALIGNTO = 4
NLMSG_HDRLEN = ffi.sizeof("struct nlmsghdr")
NLA_HDRLEN = ffi.sizeof("struct nlattr")

_SCALAR_CTYPES = {
    ATTR_U8: "uint8_t",
    ATTR_U16: "uint16_t",
    ATTR_U32: "uint32_t",
    ATTR_U64: "uint64_t",
}


def nlmsg_align(length: int) -> int:
    return (length + NLMSG_ALIGNTO - 1) & ~(NLMSG_ALIGNTO - 1)


def nla_align(length: int) -> int:
    return (length + NLA_ALIGNTO - 1) & ~(NLA_ALIGNTO - 1)


def _overlay(ctype: str, data):
    """Copy the leading bytes of data into a fresh ctype and return a pointer to it"""
    box = ffi.new(ctype + " *")
    ffi.memmove(box, data, ffi.sizeof(ctype))
    return box


def attr_name(attr_type: int) -> str:
    return NLDEV_ATTR_NAMES.get(attr_type, f'NLDEV_ATTR_{attr_type}')


class Attribute:
    """
    One netlink attribute: type number plus raw payload.

    Typed accessors check the payload size so a short or oversized value is
    reported as a DecodeError instead of being read past its end.
    """

    __slots__ = ('type', 'raw_type', 'payload')

    def __init__(self, raw_type: int, payload: bytes):
        self.raw_type = raw_type
        self.type = raw_type & NLA_TYPE_MASK
        self.payload = payload

    def __repr__(self):
        return f"Attribute({attr_name(self.type)}, {len(self.payload)} bytes)"

    @property
    def is_nested(self) -> bool:
        return bool(self.raw_type & NLA_F_NESTED)

    def _scalar(self, kind: str) -> int:
        ctype = _SCALAR_CTYPES[kind]
        if len(self.payload) != ffi.sizeof(ctype):
            raise DecodeError(
                f"{attr_name(self.type)}: expected {ffi.sizeof(ctype)} byte {kind}, "
                f"got {len(self.payload)} bytes"
            )
        return _overlay(ctype, self.payload)[0]

    def get_u8(self) -> int:
        return self._scalar(ATTR_U8)

    def get_u16(self) -> int:
        return self._scalar(ATTR_U16)

    def get_u32(self) -> int:
        return self._scalar(ATTR_U32)

    def get_u64(self) -> int:
        return self._scalar(ATTR_U64)

    def get_str(self) -> str:
        return self.payload.split(b'\0', 1)[0].decode('utf-8', errors='replace')

    def get_sockaddr(self) -> Optional[Tuple[str, int]]:
        """Address text and host-order port, or None for an unsupported family"""
        return sockaddr_ntop(self.payload)

    def nested(self) -> List['Attribute']:
        """Child attributes in wire order, each checked against the NLDEV policy"""
        children = list(iter_attributes(self.payload))
        for child in children:
            kind = NLDEV_POLICY.get(child.type)
            if kind is not None:
                child.validate(kind)
        return children

    def validate(self, kind: str) -> None:
        """Check the payload against a policy type (libmnl semantics)"""
        length = len(self.payload)
        if kind in _SCALAR_CTYPES:
            self._scalar(kind)
        elif kind == ATTR_STRING:
            if length == 0 or self.payload[-1] != 0:
                raise DecodeError(f"{attr_name(self.type)}: string is not NUL-terminated")
        elif kind == ATTR_NESTED:
            if 0 < length < NLA_HDRLEN:
                raise DecodeError(f"{attr_name(self.type)}: nested payload shorter than a header")


class AttributeTable:
    """
    Attribute id -> Attribute, at most one entry per id (last occurrence wins).

    Ids at or above RDMA_NLDEV_ATTR_MAX are not stored; their raw type numbers
    are kept in ``unknown`` in the order they were seen.
    """

    def __init__(self):
        self._attrs: Dict[int, Attribute] = {}
        self.unknown: List[int] = []

    def __contains__(self, attr_id: int) -> bool:
        return attr_id in self._attrs

    def __getitem__(self, attr_id: int) -> Attribute:
        return self._attrs[attr_id]

    def __len__(self) -> int:
        return len(self._attrs)

    def __iter__(self):
        return iter(self._attrs)

    def get(self, attr_id: int) -> Optional[Attribute]:
        return self._attrs.get(attr_id)

    def add(self, attr: Attribute) -> None:
        if attr.type >= RDMA_NLDEV_ATTR_MAX:
            self.unknown.append(attr.raw_type)
            return
        kind = NLDEV_POLICY.get(attr.type)
        if kind is not None:
            attr.validate(kind)
        self._attrs[attr.type] = attr


def iter_attributes(buffer) -> Iterator[Attribute]:
    """Walk a flat run of netlink attributes"""
    view = memoryview(buffer)
    total = len(view)
    offset = 0

    while offset < total:
        remaining = total - offset
        if remaining < NLA_HDRLEN:
            raise DecodeError(f"Truncated attribute header at offset {offset} ({remaining} bytes left)")

        hdr = _overlay("struct nlattr", view[offset:offset + NLA_HDRLEN])
        nla_len = hdr.nla_len
        if nla_len < NLA_HDRLEN or nla_len > remaining:
            raise DecodeError(
                f"Bad attribute length {nla_len} at offset {offset} ({remaining} bytes left)"
            )

        yield Attribute(hdr.nla_type, bytes(view[offset + NLA_HDRLEN:offset + nla_len]))
        offset += nla_align(nla_len)


def decode(buffer) -> AttributeTable:
    """Parse a run of attributes into an AttributeTable"""
    table = AttributeTable()
    for attr in iter_attributes(buffer):
        table.add(attr)
    return table


def decode_nested(attr: Attribute) -> AttributeTable:
    """Parse the payload of a nested attribute into its own AttributeTable"""
    return decode(attr.payload)


def iter_messages(buffer) -> Iterator[bytes]:
    """Split a receive buffer into individual netlink messages (header included)"""
    view = memoryview(buffer)
    total = len(view)
    offset = 0

    while offset < total:
        remaining = total - offset
        if remaining < NLMSG_HDRLEN:
            raise DecodeError(f"Truncated netlink header at offset {offset}")

        hdr = _overlay("struct nlmsghdr", view[offset:offset + NLMSG_HDRLEN])
        length = hdr.nlmsg_len
        if length < NLMSG_HDRLEN or length > remaining:
            raise DecodeError(f"Bad netlink message length {length} at offset {offset}")

        yield bytes(view[offset:offset + length])
        offset += nlmsg_align(length)


def message_type(message: bytes) -> int:
    if len(message) < NLMSG_HDRLEN:
        raise DecodeError("Netlink message shorter than its header")
    return _overlay("struct nlmsghdr", message).nlmsg_type


def message_attributes(message: bytes) -> bytes:
    """Attribute area of one nldev message (no family header follows nlmsghdr)"""
    if len(message) < NLMSG_HDRLEN:
        raise DecodeError("Netlink message shorter than its header")
    length = _overlay("struct nlmsghdr", message).nlmsg_len
    if length < NLMSG_HDRLEN or length > len(message):
        raise DecodeError(f"Bad netlink message length {length}")
    return message[NLMSG_HDRLEN:length]


def decode_message(message: bytes) -> AttributeTable:
    return decode(message_attributes(message))


def sockaddr_ntop(payload: bytes) -> Optional[Tuple[str, int]]:
    """Decode a kernel sockaddr_storage into (address text, port)"""
    if len(payload) < 2:
        return None

    family = _overlay("uint16_t", payload)[0]

    if family == socket.AF_INET:
        if len(payload) < ffi.sizeof("struct sockaddr_in"):
            return None
        sin = _overlay("struct sockaddr_in", payload)
        addr = ipaddress.IPv4Address(bytes(sin.sin_addr[0:4]))
        return str(addr), socket.ntohs(sin.sin_port)

    if family == socket.AF_INET6:
        if len(payload) < ffi.sizeof("struct sockaddr_in6"):
            return None
        sin6 = _overlay("struct sockaddr_in6", payload)
        addr = ipaddress.IPv6Address(bytes(sin6.sin6_addr[0:16]))
        return str(addr), socket.ntohs(sin6.sin6_port)

    log.debug("Unsupported socket address family %d", family)
    return None
