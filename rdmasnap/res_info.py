#!/usr/bin/env python3
"""
RDMA resource tracking queries (rdma resource show pd|mr|cq|cm_id|qp)

Fetches the kernel's per-device resource dump over NETLINK_RDMA and turns it
into text lines or one JSON array:
- Envelope check: device index, device name and the resource list
- Per-entry decode, required-attribute check and port selection
- Field filters (numeric values and ranges, decoded state/type names)
- Owner reporting (pid + task name, or kernel consumer name)
- Driver-specific attribute dump

Captured messages can be fed through the same pipeline with
show_messages(), which needs no socket and no C compiler.
"""

import logging
import sys
from typing import Callable, Iterable, Optional, TextIO, Tuple

from .attrs import decode_message, decode_nested
from .errors import EnvelopeError
from .filters import FilterSet
from .nl_socket import RdmaNetlinkSocket
from .nldev import (
    RDMA_NLDEV_ATTR_DEV_INDEX,
    RDMA_NLDEV_ATTR_DEV_NAME,
    RDMA_NLDEV_ATTR_PORT_INDEX,
)
from .render import Renderer, get_task_name, make_renderer
from .schema import ResourceSchema, get_schema

log = logging.getLogger(__name__)


class ResourceDispatcher:
    """
    Runs the per-message pipeline for one resource kind.

    Args:
        schema: resource kind description
        filters: FilterSet built from the same schema
        renderer: output sink
        port: only show entries of this port (link kinds); None for all
    """

    def __init__(self, schema: ResourceSchema, filters: FilterSet, renderer: Renderer,
                 port: Optional[int] = None):
        self.schema = schema
        self.filters = filters
        self.renderer = renderer
        self.port = port

    def dispatch(self, message: bytes) -> int:
        """
        Decode one response message and render the entries it accepts.

        Returns:
            Number of records rendered from this message

        Raises:
            EnvelopeError: device identity or the resource list is missing
            DecodeError: malformed attribute data
        """
        table = decode_message(message)

        envelope = (
            (RDMA_NLDEV_ATTR_DEV_INDEX, 'device index'),
            (RDMA_NLDEV_ATTR_DEV_NAME, 'device name'),
            (self.schema.table_attr, 'resource list'),
        )
        for attr_id, label in envelope:
            if attr_id not in table:
                raise EnvelopeError(f"{self.schema.name} response without {label}")

        dev_index = table[RDMA_NLDEV_ATTR_DEV_INDEX].get_u32()
        dev_name = table[RDMA_NLDEV_ATTR_DEV_NAME].get_str()

        rendered = 0
        for entry in table[self.schema.table_attr].nested():
            entry_table = decode_nested(entry)

            port_attr = entry_table.get(RDMA_NLDEV_ATTR_PORT_INDEX)
            entry_port = port_attr.get_u32() if port_attr is not None else None
            if self.port and entry_port and entry_port != self.port:
                log.debug("%s entry on port %d, want port %d, skipping",
                          self.schema.name, entry_port, self.port)
                continue

            record = self.schema.extract(entry_table, self.filters, dev_index, dev_name, entry_port)
            if record is None:
                continue

            self.renderer.render(record)
            rendered += 1

        return rendered


class RdmaResourceQuery:
    """
    Query RDMA resource tracking via NETLINK_RDMA.

    Can be used with context manager or direct calls:
        # Option 1: Context manager (socket auto-closed)
        with RdmaResourceQuery() as rq:
            rq.show('qp', dev_index=0, filters=[('state', 'RTS')])

        # Option 2: Direct call (socket managed per-call)
        RdmaResourceQuery(json_output=True).show('cm_id', dev_index=0)

        # Option 3: Captured messages, no socket
        RdmaResourceQuery().show_messages('cq', messages)
    """

    def __init__(self, json_output: bool = False, pretty: bool = True,
                 show_driver_details: bool = True, capture_unknown_attrs: bool = False,
                 stream: Optional[TextIO] = None,
                 comm_lookup: Callable[[int], Optional[str]] = get_task_name):
        """
        Initialize resource query.

        Args:
            json_output: write one JSON array per query instead of text lines
            pretty: indent JSON output
            show_driver_details: include driver-specific attributes
            capture_unknown_attrs: add unknown attribute ids to JSON records
            stream: output stream (default: sys.stdout)
            comm_lookup: pid -> task name, None when unavailable
        """
        self.json_output = json_output
        self.pretty = pretty
        self.show_driver_details = show_driver_details
        self.capture_unknown_attrs = capture_unknown_attrs
        self.stream = stream
        self.comm_lookup = comm_lookup
        self.nl = RdmaNetlinkSocket()

    def open(self):
        """Explicitly open the netlink socket"""
        self.nl.open()

    def close(self):
        """Explicitly close the netlink socket"""
        self.nl.close()

    def __enter__(self):
        """Context manager entry"""
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        self.close()
        return False

    def _renderer(self) -> Renderer:
        return make_renderer(
            self.stream if self.stream is not None else sys.stdout,
            json_output=self.json_output,
            pretty=self.pretty,
            show_driver_details=self.show_driver_details,
            capture_unknown_attrs=self.capture_unknown_attrs,
            comm_lookup=self.comm_lookup,
        )

    def show_messages(self, kind: str, messages: Iterable[bytes],
                      filters: Iterable[Tuple[str, str]] = (), port: Optional[int] = None) -> int:
        """
        Render resource entries from already-received nldev messages.

        Args:
            kind: 'pd', 'mr', 'cq', 'cm_id' or 'qp'
            messages: raw netlink messages, header included
            filters: (field name, literal) pairs
            port: only entries of this port

        Returns:
            Number of records written
        """
        schema = get_schema(kind)
        filter_set = schema.build_filters(filters)
        return self._run(schema, filter_set, messages, port)

    def _run(self, schema: ResourceSchema, filter_set: FilterSet, messages: Iterable[bytes],
             port: Optional[int]) -> int:
        renderer = self._renderer()
        dispatcher = ResourceDispatcher(schema, filter_set, renderer, port)
        total = 0
        try:
            for message in messages:
                total += dispatcher.dispatch(message)
        finally:
            renderer.finish()
        return total

    def show(self, kind: str, dev_index: int, filters: Iterable[Tuple[str, str]] = (),
             port: Optional[int] = None) -> int:
        """
        Dump one resource kind of one device and render it.

        If socket is not already open (e.g., via 'with' or explicit open()),
        this method will open and close it automatically for this call.

        Args:
            kind: 'pd', 'mr', 'cq', 'cm_id' or 'qp'
            dev_index: RDMA device index
            filters: (field name, literal) pairs
            port: only entries of this port (also passed to the kernel)

        Returns:
            Number of records written
        """
        schema = get_schema(kind)
        filter_set = schema.build_filters(filters)

        # Check if we need to auto-open the socket
        need_auto_close = False
        if self.nl.sock < 0:
            self.open()
            need_auto_close = True

        try:
            messages = self.nl.request(schema.command, dev_index, port)
            log.debug("%s dump of device %d: %d messages", kind, dev_index, len(messages))
            return self._run(schema, filter_set, messages, port)
        finally:
            # Auto-close socket if we auto-opened it
            if need_auto_close:
                self.close()
