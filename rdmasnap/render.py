"""
Output for decoded RDMA resource records

Two renderers share one canonical field walk:
- TextRenderer: one line per record, "key value" tokens
- JsonRenderer: one JSON array per query, one object per record

Owner handling: a process-owned record shows "pid N" and the task name from
/proc (omitted, or null in JSON, when the process is gone); a kernel-owned
record shows "comm [name]" with no lookup.
"""

import json
import logging
from typing import Any, Callable, List, NamedTuple, Optional, TextIO, Tuple

from .nldev import (
    RDMA_NLDEV_ATTR_DRIVER_PRINT_TYPE,
    RDMA_NLDEV_ATTR_DRIVER_S32,
    RDMA_NLDEV_ATTR_DRIVER_S64,
    RDMA_NLDEV_ATTR_DRIVER_STRING,
    RDMA_NLDEV_ATTR_DRIVER_U32,
    RDMA_NLDEV_ATTR_DRIVER_U64,
    RDMA_NLDEV_PRINT_TYPE_HEX,
    RDMA_NLDEV_PRINT_TYPE_UNSPEC,
    decode_unknown_attrs,
)
from .schema import ADDR, KEY, NAME, OWNER, KernelOwner, ProcessOwner, Record

log = logging.getLogger(__name__)


def get_task_name(pid: int) -> Optional[str]:
    """Short command name of a process, or None if it cannot be read"""
    try:
        with open(f'/proc/{pid}/comm', 'r', encoding='utf-8', errors='replace') as f:
            comm = f.read().split()
    except OSError as e:
        log.debug("No task name for pid %d: %s", pid, e)
        return None
    return comm[0] if comm else None


class DriverEntry(NamedTuple):
    """One {key, [print-type], value} tuple from RDMA_NLDEV_ATTR_DRIVER"""
    name: str
    value: Any
    bits: int      # 0 for strings
    hex: bool

    def text(self) -> str:
        if self.hex and self.bits:
            return f"0x{self.value & ((1 << self.bits) - 1):x}"
        return str(self.value)

    def json_value(self):
        if self.hex and self.bits:
            return self.text()
        return self.value


def _signed(value: int, bits: int) -> int:
    if value & (1 << (bits - 1)):
        return value - (1 << bits)
    return value


def driver_entries(attrs) -> List[DriverEntry]:
    """
    Pair up driver attributes. The table is a flat run of tuples:
    a string key, an optional print type, then a string/s32/u32/s64/u64
    value. A run that does not start with a key, or a value of another type,
    ends the table.
    """
    entries = []
    key = None
    print_type = RDMA_NLDEV_PRINT_TYPE_UNSPEC

    for attr in attrs:
        if key is None:
            if attr.type != RDMA_NLDEV_ATTR_DRIVER_STRING:
                break
            key = attr.get_str()
            continue

        if attr.type == RDMA_NLDEV_ATTR_DRIVER_PRINT_TYPE:
            print_type = attr.get_u8()
            continue

        as_hex = print_type == RDMA_NLDEV_PRINT_TYPE_HEX
        if attr.type == RDMA_NLDEV_ATTR_DRIVER_STRING:
            entry = DriverEntry(key, attr.get_str(), 0, False)
        elif attr.type == RDMA_NLDEV_ATTR_DRIVER_S32:
            entry = DriverEntry(key, _signed(attr.get_u32(), 32), 32, as_hex)
        elif attr.type == RDMA_NLDEV_ATTR_DRIVER_U32:
            entry = DriverEntry(key, attr.get_u32(), 32, as_hex)
        elif attr.type == RDMA_NLDEV_ATTR_DRIVER_S64:
            entry = DriverEntry(key, _signed(attr.get_u64(), 64), 64, as_hex)
        elif attr.type == RDMA_NLDEV_ATTR_DRIVER_U64:
            entry = DriverEntry(key, attr.get_u64(), 64, as_hex)
        else:
            log.debug("Unexpected driver attribute type %d, stopping driver dump", attr.type)
            break

        entries.append(entry)
        key = None
        print_type = RDMA_NLDEV_PRINT_TYPE_UNSPEC

    return entries


class Renderer:
    """
    Common field walk for both output modes.

    Args:
        stream: text stream written to
        comm_lookup: pid -> task name or None
        show_driver_details: include the driver attribute dump
    """

    def __init__(self, stream: TextIO, comm_lookup: Callable[[int], Optional[str]] = get_task_name,
                 show_driver_details: bool = True):
        self.stream = stream
        self.comm_lookup = comm_lookup
        self.show_driver_details = show_driver_details
        self.count = 0

    def _owner_items(self, record: Record) -> List[Tuple[str, Any]]:
        owner = record.owner
        if isinstance(owner, ProcessOwner):
            return [('pid', owner.pid), ('comm', self.comm_lookup(owner.pid))]
        if isinstance(owner, KernelOwner):
            return [('comm', owner)]
        return []

    def _items(self, record: Record) -> List[Tuple[str, str, Any]]:
        """(key, style, value) in canonical order, identity excluded"""
        items = []
        for field in record.schema.fields:
            if field.style == OWNER:
                items.extend((key, OWNER, value) for key, value in self._owner_items(record))
            elif field.name in record.values:
                items.append((field.name, field.style, record.values[field.name]))
        return items

    def _driver(self, record: Record) -> List[DriverEntry]:
        if not self.show_driver_details or not record.driver:
            return []
        return driver_entries(record.driver)

    def render(self, record: Record) -> None:
        raise NotImplementedError

    def finish(self) -> None:
        """End of query output"""


class TextRenderer(Renderer):
    """Line-oriented output: 'dev mlx5_0 cqn 4 cqe 1023 users 2 ...'"""

    @staticmethod
    def _format(style: str, value) -> Optional[str]:
        if style == KEY:
            return f"0x{value:x}"
        if style == ADDR:
            addr, port = value
            return f"{addr}:{port}"
        if style == OWNER:
            if isinstance(value, KernelOwner):
                return f"[{value.name}]"
            return None if value is None else str(value)
        return str(value)

    def render(self, record: Record) -> None:
        if record.schema.link_style:
            tokens = ['link', record.identity]
        else:
            tokens = ['dev', record.dev_name]

        for key, style, value in self._items(record):
            text = self._format(style, value)
            if text is None:
                continue
            tokens.extend((key, text))

        for entry in self._driver(record):
            tokens.extend((entry.name, entry.text()))

        self.stream.write(' '.join(tokens) + '\n')
        self.count += 1


class JsonRenderer(Renderer):
    """
    Collects one object per record and writes them as a single JSON array
    when the query finishes.
    """

    def __init__(self, stream: TextIO, comm_lookup: Callable[[int], Optional[str]] = get_task_name,
                 show_driver_details: bool = True, pretty: bool = True,
                 capture_unknown_attrs: bool = False):
        super().__init__(stream, comm_lookup, show_driver_details)
        self.pretty = pretty
        self.capture_unknown_attrs = capture_unknown_attrs
        self.records: List[dict] = []

    @staticmethod
    def _value(style: str, value):
        if style == KEY:
            return f"0x{value:x}"
        if style == ADDR:
            addr, port = value
            return f"{addr}:{port}"
        if isinstance(value, KernelOwner):
            return value.name
        return value

    def to_dict(self, record: Record) -> dict:
        obj = {'ifindex': record.dev_index}
        if record.schema.link_style and record.port is not None:
            obj['port'] = record.port
        obj['ifname'] = record.dev_name

        for key, style, value in self._items(record):
            obj[key] = self._value(style, value)

        for entry in self._driver(record):
            obj[entry.name] = entry.json_value()

        if self.capture_unknown_attrs and record.unknown_attrs:
            obj['unknown_attrs'] = list(record.unknown_attrs)
            obj['unknown_attrs_decoded'] = decode_unknown_attrs(record.unknown_attrs)

        return obj

    def render(self, record: Record) -> None:
        self.records.append(self.to_dict(record))
        self.count += 1

    def finish(self) -> None:
        if self.pretty:
            self.stream.write(json.dumps(self.records, indent=2) + '\n')
        else:
            self.stream.write(json.dumps(self.records, separators=(',', ':')) + '\n')


def make_renderer(stream: TextIO, json_output: bool = False, pretty: bool = True,
                  show_driver_details: bool = True, capture_unknown_attrs: bool = False,
                  comm_lookup: Callable[[int], Optional[str]] = get_task_name) -> Renderer:
    if json_output:
        return JsonRenderer(stream, comm_lookup, show_driver_details, pretty, capture_unknown_attrs)
    return TextRenderer(stream, comm_lookup, show_driver_details)
