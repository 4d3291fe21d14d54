"""
Resource schemas for RDMA resource tracking dumps

One ResourceSchema per resource kind (pd, mr, cq, cm_id, qp) describes:
- the nldev command that dumps it and the attribute holding the entry list
- attributes an entry must carry to be shown
- the ordered fields pulled from each entry (also the output order)
- which field names can be filtered on, and how (numeric or string)

Fields whose raw value is a small code (QP type, CM state, port space, poll
context, ...) are "derived": filters and output both use the decoded name.
"""

import logging
from typing import Any, Callable, Dict, List, NamedTuple, Optional, Union

from .attrs import AttributeTable, attr_name
from .filters import DERIVED, NUMERIC, STRING, FilterSet
from .nldev import (
    ATTR_U8,
    ATTR_U32,
    ATTR_U64,
    RDMA_NLDEV_ATTR_DRIVER,
    RDMA_NLDEV_ATTR_RES_CM_ID,
    RDMA_NLDEV_ATTR_RES_CM_IDN,
    RDMA_NLDEV_ATTR_RES_CQ,
    RDMA_NLDEV_ATTR_RES_CQE,
    RDMA_NLDEV_ATTR_RES_CQN,
    RDMA_NLDEV_ATTR_RES_CTXN,
    RDMA_NLDEV_ATTR_RES_DST_ADDR,
    RDMA_NLDEV_ATTR_RES_IOVA,
    RDMA_NLDEV_ATTR_RES_KERN_NAME,
    RDMA_NLDEV_ATTR_RES_LKEY,
    RDMA_NLDEV_ATTR_RES_LOCAL_DMA_LKEY,
    RDMA_NLDEV_ATTR_RES_LQPN,
    RDMA_NLDEV_ATTR_RES_MR,
    RDMA_NLDEV_ATTR_RES_MRLEN,
    RDMA_NLDEV_ATTR_RES_MRN,
    RDMA_NLDEV_ATTR_RES_PATH_MIG_STATE,
    RDMA_NLDEV_ATTR_RES_PD,
    RDMA_NLDEV_ATTR_RES_PDN,
    RDMA_NLDEV_ATTR_RES_PID,
    RDMA_NLDEV_ATTR_RES_POLL_CTX,
    RDMA_NLDEV_ATTR_RES_PS,
    RDMA_NLDEV_ATTR_RES_QP,
    RDMA_NLDEV_ATTR_RES_RKEY,
    RDMA_NLDEV_ATTR_RES_RQ_PSN,
    RDMA_NLDEV_ATTR_RES_RQPN,
    RDMA_NLDEV_ATTR_RES_SQ_PSN,
    RDMA_NLDEV_ATTR_RES_SRC_ADDR,
    RDMA_NLDEV_ATTR_RES_STATE,
    RDMA_NLDEV_ATTR_RES_TYPE,
    RDMA_NLDEV_ATTR_RES_UNSAFE_GLOBAL_RKEY,
    RDMA_NLDEV_ATTR_RES_USECNT,
    RDMA_NLDEV_CMD_RES_CM_ID_GET,
    RDMA_NLDEV_CMD_RES_CQ_GET,
    RDMA_NLDEV_CMD_RES_MR_GET,
    RDMA_NLDEV_CMD_RES_PD_GET,
    RDMA_NLDEV_CMD_RES_QP_GET,
    cm_id_ps_to_str,
    cm_id_state_to_str,
    path_mig_to_str,
    poll_ctx_to_str,
    qp_state_to_str,
    qp_type_to_str,
)

log = logging.getLogger(__name__)

# Field output styles
UINT = 'uint'          # decimal number
KEY = 'key'            # hexadecimal number (keys, addresses)
NAME = 'name'          # derived string
ADDR = 'addr'          # socket address "addr:port"
OWNER = 'owner'        # pid and/or comm


class ProcessOwner(NamedTuple):
    """Resource owned by a user process; comm comes from a pid lookup"""
    pid: int


class KernelOwner(NamedTuple):
    """Resource owned by a kernel consumer, reported by name"""
    name: str


Owner = Union[ProcessOwner, KernelOwner]


class Field:
    """
    One value pulled from a resource entry.

    Args:
        name: output key and filter name
        attr: RDMA_NLDEV_ATTR_* id
        width: accessor width (ATTR_U8/ATTR_U32/ATTR_U64)
        style: UINT, KEY, NAME, ADDR or OWNER
        default: value filters see when the attribute is absent; None means
            filters on this field are ignored for entries without it
        decode: code -> display string, for NAME fields
        filterable: whether the field name is accepted as a filter
    """

    __slots__ = ('name', 'attr', 'width', 'style', 'default', 'decode', 'filterable')

    def __init__(self, name: str, attr: int, width: str = ATTR_U32, style: str = UINT,
                 default: Optional[int] = None, decode: Optional[Callable[[int], str]] = None,
                 filterable: bool = True):
        self.name = name
        self.attr = attr
        self.width = width
        self.style = style
        self.default = default
        self.decode = decode
        self.filterable = filterable

    def __repr__(self):
        return f"Field({self.name}, {attr_name(self.attr)}, {self.style})"

    @property
    def port_name(self) -> str:
        """Filter name of the port half of an ADDR field (src-addr -> src-port)"""
        return self.name[:-len('addr')] + 'port'

    def filter_kinds(self) -> Dict[str, str]:
        if not self.filterable:
            return {}
        if self.style == ADDR:
            return {self.name: STRING, self.port_name: NUMERIC}
        if self.style == NAME:
            return {self.name: DERIVED}
        return {self.name: NUMERIC}

    def extract(self, table: AttributeTable, record: 'Record', filters: FilterSet) -> bool:
        """Store this field's value in record; False when the entry must be skipped"""
        if self.style == OWNER:
            return self._extract_owner(table, record, filters)

        attr = table.get(self.attr)

        if self.style == ADDR:
            if attr is None:
                return True
            decoded = attr.get_sockaddr()
            if decoded is None:
                log.debug("%s: unsupported socket address, skipping entry", self.name)
                return False
            addr, port = decoded
            if not filters.matches(self.name, addr) or not filters.matches(self.port_name, port):
                return False
            record.values[self.name] = decoded
            return True

        if attr is None:
            if self.default is None:
                return True
            value = self.default
            if self.decode is not None:
                value = self.decode(value)
            return filters.matches(self.name, value)

        value = getattr(attr, 'get_' + self.width)()
        if self.decode is not None:
            value = self.decode(value)
        if not filters.matches(self.name, value):
            return False
        record.values[self.name] = value
        return True

    def _extract_owner(self, table: AttributeTable, record: 'Record', filters: FilterSet) -> bool:
        pid_attr = table.get(RDMA_NLDEV_ATTR_RES_PID)
        kern_attr = table.get(RDMA_NLDEV_ATTR_RES_KERN_NAME)

        if pid_attr is not None:
            owner = ProcessOwner(pid_attr.get_u32())
        elif kern_attr is not None:
            owner = KernelOwner(kern_attr.get_str())
        else:
            owner = None

        pid = owner.pid if isinstance(owner, ProcessOwner) else 0
        if not filters.matches(self.name, pid):
            return False

        record.owner = owner
        return True


def owner_field() -> Field:
    return Field('pid', RDMA_NLDEV_ATTR_RES_PID, style=OWNER, default=0)


class Record:
    """One decoded resource entry, ready to render"""

    def __init__(self, schema: 'ResourceSchema', dev_index: int, dev_name: str,
                 port: Optional[int] = None):
        self.schema = schema
        self.dev_index = dev_index
        self.dev_name = dev_name
        self.port = port
        self.values: Dict[str, Any] = {}
        self.owner: Optional[Owner] = None
        self.driver = None
        self.unknown_attrs: List[int] = []

    def __repr__(self):
        return f"Record({self.schema.name}, {self.dev_name}, {self.values!r}, {self.owner!r})"

    @property
    def identity(self) -> str:
        """Device identity as filtered and shown: 'mlx5_0' or 'mlx5_0/1' for link kinds"""
        if not self.schema.link_style:
            return self.dev_name
        port = '-' if self.port is None else str(self.port)
        return f"{self.dev_name}/{port}"


class ResourceSchema:
    """
    Static description of one resource kind.

    Args:
        name: kind name ('pd', 'mr', 'cq', 'cm_id', 'qp')
        command: RDMA_NLDEV_CMD_RES_*_GET dump command
        table_attr: attribute id of the nested entry list in the response
        fields: ordered Field list; extraction, filtering and output order
        required: attribute ids an entry must carry
        owner_required: entry must carry a pid or a kernel owner name
        link_style: identity shown as 'link dev/port' instead of 'dev dev'
        unbound_filters: filter names accepted for this kind that no entry
            attribute carries; they never reject an entry
    """

    def __init__(self, name: str, command: int, table_attr: int, fields: List[Field],
                 required=(), owner_required: bool = True, link_style: bool = False,
                 unbound_filters=None):
        self.name = name
        self.command = command
        self.table_attr = table_attr
        self.fields = tuple(fields)
        self.required = frozenset(required)
        self.owner_required = owner_required
        self.link_style = link_style

        self.identity_name = 'link' if link_style else 'dev'
        filterable = {self.identity_name: STRING}
        for field in self.fields:
            filterable.update(field.filter_kinds())
        self.unbound_filters = dict(unbound_filters or {})
        filterable.update(self.unbound_filters)
        self.filterable = filterable

    def __repr__(self):
        return f"ResourceSchema({self.name})"

    def validate_required(self, table: AttributeTable) -> bool:
        missing = [attr for attr in self.required if attr not in table]
        if missing:
            log.debug("%s entry without %s, skipping", self.name,
                      ', '.join(attr_name(attr) for attr in sorted(missing)))
            return False
        if self.owner_required and (RDMA_NLDEV_ATTR_RES_PID not in table
                                    and RDMA_NLDEV_ATTR_RES_KERN_NAME not in table):
            log.debug("%s entry without pid or kernel owner, skipping", self.name)
            return False
        return True

    def build_filters(self, pairs=()) -> FilterSet:
        filters = FilterSet(self.filterable, pairs)
        for entry in filters:
            if entry.name in self.unbound_filters:
                log.debug("%s: no attribute carries '%s', filter has no effect",
                          self.name, entry.name)
        return filters

    def extract(self, table: AttributeTable, filters: FilterSet, dev_index: int,
                dev_name: str, port: Optional[int] = None) -> Optional[Record]:
        """
        Build a Record from one entry table.

        Returns None when the entry lacks required attributes, carries an
        undecodable socket address, or is rejected by a filter. Structural
        errors in the driver attribute table raise DecodeError.
        """
        if not self.validate_required(table):
            return None

        record = Record(self, dev_index, dev_name, port)
        if not filters.matches(self.identity_name, record.identity):
            return None

        for field in self.fields:
            if not field.extract(table, record, filters):
                return None

        driver = table.get(RDMA_NLDEV_ATTR_DRIVER)
        if driver is not None:
            record.driver = driver.nested()

        record.unknown_attrs = list(table.unknown)
        return record


PD = ResourceSchema(
    'pd', RDMA_NLDEV_CMD_RES_PD_GET, RDMA_NLDEV_ATTR_RES_PD,
    required=(RDMA_NLDEV_ATTR_RES_USECNT,),
    fields=[
        Field('pdn', RDMA_NLDEV_ATTR_RES_PDN, default=0),
        Field('local_dma_lkey', RDMA_NLDEV_ATTR_RES_LOCAL_DMA_LKEY, style=KEY, filterable=False),
        Field('users', RDMA_NLDEV_ATTR_RES_USECNT, width=ATTR_U64),
        Field('unsafe_global_rkey', RDMA_NLDEV_ATTR_RES_UNSAFE_GLOBAL_RKEY, style=KEY,
              filterable=False),
        Field('ctxn', RDMA_NLDEV_ATTR_RES_CTXN, default=0),
        owner_field(),
    ],
)

MR = ResourceSchema(
    'mr', RDMA_NLDEV_CMD_RES_MR_GET, RDMA_NLDEV_ATTR_RES_MR,
    required=(RDMA_NLDEV_ATTR_RES_MRLEN,),
    fields=[
        Field('mrn', RDMA_NLDEV_ATTR_RES_MRN, default=0),
        Field('rkey', RDMA_NLDEV_ATTR_RES_RKEY, style=KEY),
        Field('lkey', RDMA_NLDEV_ATTR_RES_LKEY, style=KEY),
        Field('iova', RDMA_NLDEV_ATTR_RES_IOVA, width=ATTR_U64, style=KEY, filterable=False),
        Field('mrlen', RDMA_NLDEV_ATTR_RES_MRLEN, width=ATTR_U64),
        Field('pdn', RDMA_NLDEV_ATTR_RES_PDN, default=0),
        owner_field(),
    ],
)

CQ = ResourceSchema(
    'cq', RDMA_NLDEV_CMD_RES_CQ_GET, RDMA_NLDEV_ATTR_RES_CQ,
    required=(RDMA_NLDEV_ATTR_RES_CQE, RDMA_NLDEV_ATTR_RES_USECNT),
    fields=[
        Field('cqn', RDMA_NLDEV_ATTR_RES_CQN, default=0),
        Field('cqe', RDMA_NLDEV_ATTR_RES_CQE, filterable=False),
        Field('users', RDMA_NLDEV_ATTR_RES_USECNT, width=ATTR_U64),
        Field('poll-ctx', RDMA_NLDEV_ATTR_RES_POLL_CTX, width=ATTR_U8, style=NAME,
              decode=poll_ctx_to_str),
        Field('ctxn', RDMA_NLDEV_ATTR_RES_CTXN, default=0),
        owner_field(),
    ],
)

CM_ID = ResourceSchema(
    'cm_id', RDMA_NLDEV_CMD_RES_CM_ID_GET, RDMA_NLDEV_ATTR_RES_CM_ID,
    required=(RDMA_NLDEV_ATTR_RES_STATE, RDMA_NLDEV_ATTR_RES_PS),
    link_style=True,
    unbound_filters={'dev-type': STRING, 'transport-type': STRING},
    fields=[
        Field('cm-idn', RDMA_NLDEV_ATTR_RES_CM_IDN, default=0),
        Field('lqpn', RDMA_NLDEV_ATTR_RES_LQPN),
        Field('qp-type', RDMA_NLDEV_ATTR_RES_TYPE, width=ATTR_U8, style=NAME,
              decode=qp_type_to_str),
        Field('state', RDMA_NLDEV_ATTR_RES_STATE, width=ATTR_U8, style=NAME,
              decode=cm_id_state_to_str),
        Field('ps', RDMA_NLDEV_ATTR_RES_PS, style=NAME, decode=cm_id_ps_to_str),
        owner_field(),
        Field('src-addr', RDMA_NLDEV_ATTR_RES_SRC_ADDR, style=ADDR),
        Field('dst-addr', RDMA_NLDEV_ATTR_RES_DST_ADDR, style=ADDR),
    ],
)

QP = ResourceSchema(
    'qp', RDMA_NLDEV_CMD_RES_QP_GET, RDMA_NLDEV_ATTR_RES_QP,
    required=(RDMA_NLDEV_ATTR_RES_LQPN, RDMA_NLDEV_ATTR_RES_SQ_PSN,
              RDMA_NLDEV_ATTR_RES_TYPE, RDMA_NLDEV_ATTR_RES_STATE),
    link_style=True,
    fields=[
        Field('lqpn', RDMA_NLDEV_ATTR_RES_LQPN),
        Field('pdn', RDMA_NLDEV_ATTR_RES_PDN, default=0),
        Field('rqpn', RDMA_NLDEV_ATTR_RES_RQPN),
        Field('type', RDMA_NLDEV_ATTR_RES_TYPE, width=ATTR_U8, style=NAME,
              decode=qp_type_to_str),
        Field('state', RDMA_NLDEV_ATTR_RES_STATE, width=ATTR_U8, style=NAME,
              decode=qp_state_to_str),
        Field('rq-psn', RDMA_NLDEV_ATTR_RES_RQ_PSN),
        Field('sq-psn', RDMA_NLDEV_ATTR_RES_SQ_PSN),
        Field('path-mig-state', RDMA_NLDEV_ATTR_RES_PATH_MIG_STATE, width=ATTR_U8,
              style=NAME, decode=path_mig_to_str),
        owner_field(),
    ],
)

SCHEMAS = {schema.name: schema for schema in (PD, MR, CQ, CM_ID, QP)}


def get_schema(kind: str) -> ResourceSchema:
    """Look up a resource kind by name"""
    try:
        return SCHEMAS[kind]
    except KeyError:
        raise ValueError(
            f"Invalid resource kind: {kind}. Use one of: {', '.join(SCHEMAS)}"
        ) from None
