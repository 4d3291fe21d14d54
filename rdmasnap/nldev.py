"""
RDMA netlink (NLDEV) protocol constants

Numbers in this module mirror <rdma/rdma_netlink.h> and <rdma/ib_user_verbs.h>.
They are plain Python values so the decoder, filters and renderer can be used
without compiling anything; only the transport (nl_socket) needs a C compiler.

Resource commands used here:
- RDMA_NLDEV_CMD_RES_QP_GET: Queue pairs
- RDMA_NLDEV_CMD_RES_CM_ID_GET: Connection manager IDs
- RDMA_NLDEV_CMD_RES_CQ_GET: Completion queues
- RDMA_NLDEV_CMD_RES_MR_GET: Memory regions
- RDMA_NLDEV_CMD_RES_PD_GET: Protection domains
"""

from typing import Dict, List, Any

# Netlink client id of the nldev interface and message type helper
RDMA_NL_NLDEV = 5


def rdma_nl_get_type(client: int, op: int) -> int:
    """RDMA_NL_GET_TYPE(client, op)"""
    return (client << 10) + op


# Commands (enum rdma_nldev_command)
RDMA_NLDEV_CMD_UNSPEC = 0
RDMA_NLDEV_CMD_GET = 1
RDMA_NLDEV_CMD_SET = 2
RDMA_NLDEV_CMD_PORT_GET = 5
RDMA_NLDEV_CMD_RES_GET = 9
RDMA_NLDEV_CMD_RES_QP_GET = 10
RDMA_NLDEV_CMD_RES_CM_ID_GET = 11
RDMA_NLDEV_CMD_RES_CQ_GET = 12
RDMA_NLDEV_CMD_RES_MR_GET = 13
RDMA_NLDEV_CMD_RES_PD_GET = 14

# Attributes (enum rdma_nldev_attr)
RDMA_NLDEV_ATTR_UNSPEC = 0
RDMA_NLDEV_ATTR_DEV_INDEX = 1
RDMA_NLDEV_ATTR_DEV_NAME = 2
RDMA_NLDEV_ATTR_PORT_INDEX = 3
RDMA_NLDEV_ATTR_CAP_FLAGS = 4
RDMA_NLDEV_ATTR_FW_VERSION = 5
RDMA_NLDEV_ATTR_NODE_GUID = 6
RDMA_NLDEV_ATTR_SYS_IMAGE_GUID = 7
RDMA_NLDEV_ATTR_SUBNET_PREFIX = 8
RDMA_NLDEV_ATTR_LID = 9
RDMA_NLDEV_ATTR_SM_LID = 10
RDMA_NLDEV_ATTR_LMC = 11
RDMA_NLDEV_ATTR_PORT_STATE = 12
RDMA_NLDEV_ATTR_PORT_PHYS_STATE = 13
RDMA_NLDEV_ATTR_DEV_NODE_TYPE = 14
RDMA_NLDEV_ATTR_RES_SUMMARY = 15
RDMA_NLDEV_ATTR_RES_SUMMARY_ENTRY = 16
RDMA_NLDEV_ATTR_RES_SUMMARY_ENTRY_NAME = 17
RDMA_NLDEV_ATTR_RES_SUMMARY_ENTRY_CURR = 18
RDMA_NLDEV_ATTR_RES_QP = 19
RDMA_NLDEV_ATTR_RES_QP_ENTRY = 20
RDMA_NLDEV_ATTR_RES_LQPN = 21
RDMA_NLDEV_ATTR_RES_RQPN = 22
RDMA_NLDEV_ATTR_RES_RQ_PSN = 23
RDMA_NLDEV_ATTR_RES_SQ_PSN = 24
RDMA_NLDEV_ATTR_RES_PATH_MIG_STATE = 25
RDMA_NLDEV_ATTR_RES_TYPE = 26
RDMA_NLDEV_ATTR_RES_STATE = 27
RDMA_NLDEV_ATTR_RES_PID = 28
RDMA_NLDEV_ATTR_RES_KERN_NAME = 29
RDMA_NLDEV_ATTR_RES_CM_ID = 30
RDMA_NLDEV_ATTR_RES_CM_ID_ENTRY = 31
RDMA_NLDEV_ATTR_RES_PS = 32
RDMA_NLDEV_ATTR_RES_SRC_ADDR = 33
RDMA_NLDEV_ATTR_RES_DST_ADDR = 34
RDMA_NLDEV_ATTR_RES_CQ = 35
RDMA_NLDEV_ATTR_RES_CQ_ENTRY = 36
RDMA_NLDEV_ATTR_RES_CQE = 37
RDMA_NLDEV_ATTR_RES_USECNT = 38
RDMA_NLDEV_ATTR_RES_POLL_CTX = 39
RDMA_NLDEV_ATTR_RES_MR = 40
RDMA_NLDEV_ATTR_RES_MR_ENTRY = 41
RDMA_NLDEV_ATTR_RES_RKEY = 42
RDMA_NLDEV_ATTR_RES_LKEY = 43
RDMA_NLDEV_ATTR_RES_IOVA = 44
RDMA_NLDEV_ATTR_RES_MRLEN = 45
RDMA_NLDEV_ATTR_RES_PD = 46
RDMA_NLDEV_ATTR_RES_PD_ENTRY = 47
RDMA_NLDEV_ATTR_RES_LOCAL_DMA_LKEY = 48
RDMA_NLDEV_ATTR_RES_UNSAFE_GLOBAL_RKEY = 49
RDMA_NLDEV_ATTR_NDEV_INDEX = 50
RDMA_NLDEV_ATTR_NDEV_NAME = 51
RDMA_NLDEV_ATTR_DRIVER = 52
RDMA_NLDEV_ATTR_DRIVER_ENTRY = 53
RDMA_NLDEV_ATTR_DRIVER_STRING = 54
RDMA_NLDEV_ATTR_DRIVER_PRINT_TYPE = 55
RDMA_NLDEV_ATTR_DRIVER_S32 = 56
RDMA_NLDEV_ATTR_DRIVER_U32 = 57
RDMA_NLDEV_ATTR_DRIVER_S64 = 58
RDMA_NLDEV_ATTR_DRIVER_U64 = 59
RDMA_NLDEV_ATTR_RES_PDN = 60
RDMA_NLDEV_ATTR_RES_CQN = 61
RDMA_NLDEV_ATTR_RES_MRN = 62
RDMA_NLDEV_ATTR_RES_CM_IDN = 63
RDMA_NLDEV_ATTR_RES_CTXN = 64
RDMA_NLDEV_ATTR_LINK_TYPE = 65
RDMA_NLDEV_ATTR_DEV_PROTOCOL = 66

# Attribute ids at or above this value are not stored in attribute tables
RDMA_NLDEV_ATTR_MAX = 67

# Driver attribute print types
RDMA_NLDEV_PRINT_TYPE_UNSPEC = 0
RDMA_NLDEV_PRINT_TYPE_HEX = 1

# Attribute header flags
NLA_F_NESTED = 0x8000
NLA_F_NET_BYTEORDER = 0x4000
NLA_TYPE_MASK = ~(NLA_F_NESTED | NLA_F_NET_BYTEORDER) & 0xFFFF

# Validation policy per attribute id (missing ids are not validated)
ATTR_U8 = 'u8'
ATTR_U16 = 'u16'
ATTR_U32 = 'u32'
ATTR_U64 = 'u64'
ATTR_STRING = 'string'
ATTR_NESTED = 'nested'

NLDEV_POLICY = {
    RDMA_NLDEV_ATTR_DEV_INDEX: ATTR_U32,
    RDMA_NLDEV_ATTR_DEV_NAME: ATTR_STRING,
    RDMA_NLDEV_ATTR_PORT_INDEX: ATTR_U32,
    RDMA_NLDEV_ATTR_CAP_FLAGS: ATTR_U64,
    RDMA_NLDEV_ATTR_FW_VERSION: ATTR_STRING,
    RDMA_NLDEV_ATTR_NODE_GUID: ATTR_U64,
    RDMA_NLDEV_ATTR_SYS_IMAGE_GUID: ATTR_U64,
    RDMA_NLDEV_ATTR_SUBNET_PREFIX: ATTR_U64,
    RDMA_NLDEV_ATTR_LID: ATTR_U32,
    RDMA_NLDEV_ATTR_SM_LID: ATTR_U32,
    RDMA_NLDEV_ATTR_LMC: ATTR_U8,
    RDMA_NLDEV_ATTR_PORT_STATE: ATTR_U8,
    RDMA_NLDEV_ATTR_PORT_PHYS_STATE: ATTR_U8,
    RDMA_NLDEV_ATTR_DEV_NODE_TYPE: ATTR_U8,
    RDMA_NLDEV_ATTR_RES_SUMMARY: ATTR_NESTED,
    RDMA_NLDEV_ATTR_RES_SUMMARY_ENTRY: ATTR_NESTED,
    RDMA_NLDEV_ATTR_RES_SUMMARY_ENTRY_NAME: ATTR_STRING,
    RDMA_NLDEV_ATTR_RES_SUMMARY_ENTRY_CURR: ATTR_U64,
    RDMA_NLDEV_ATTR_RES_QP: ATTR_NESTED,
    RDMA_NLDEV_ATTR_RES_QP_ENTRY: ATTR_NESTED,
    RDMA_NLDEV_ATTR_RES_LQPN: ATTR_U32,
    RDMA_NLDEV_ATTR_RES_RQPN: ATTR_U32,
    RDMA_NLDEV_ATTR_RES_RQ_PSN: ATTR_U32,
    RDMA_NLDEV_ATTR_RES_SQ_PSN: ATTR_U32,
    RDMA_NLDEV_ATTR_RES_PATH_MIG_STATE: ATTR_U8,
    RDMA_NLDEV_ATTR_RES_TYPE: ATTR_U8,
    RDMA_NLDEV_ATTR_RES_STATE: ATTR_U8,
    RDMA_NLDEV_ATTR_RES_PID: ATTR_U32,
    RDMA_NLDEV_ATTR_RES_KERN_NAME: ATTR_STRING,
    RDMA_NLDEV_ATTR_RES_CM_ID: ATTR_NESTED,
    RDMA_NLDEV_ATTR_RES_CM_ID_ENTRY: ATTR_NESTED,
    RDMA_NLDEV_ATTR_RES_PS: ATTR_U32,
    RDMA_NLDEV_ATTR_RES_CQ: ATTR_NESTED,
    RDMA_NLDEV_ATTR_RES_CQ_ENTRY: ATTR_NESTED,
    RDMA_NLDEV_ATTR_RES_CQE: ATTR_U32,
    RDMA_NLDEV_ATTR_RES_USECNT: ATTR_U64,
    RDMA_NLDEV_ATTR_RES_POLL_CTX: ATTR_U8,
    RDMA_NLDEV_ATTR_RES_MR: ATTR_NESTED,
    RDMA_NLDEV_ATTR_RES_MR_ENTRY: ATTR_NESTED,
    RDMA_NLDEV_ATTR_RES_RKEY: ATTR_U32,
    RDMA_NLDEV_ATTR_RES_LKEY: ATTR_U32,
    RDMA_NLDEV_ATTR_RES_IOVA: ATTR_U64,
    RDMA_NLDEV_ATTR_RES_MRLEN: ATTR_U64,
    RDMA_NLDEV_ATTR_RES_PD: ATTR_NESTED,
    RDMA_NLDEV_ATTR_RES_PD_ENTRY: ATTR_NESTED,
    RDMA_NLDEV_ATTR_RES_LOCAL_DMA_LKEY: ATTR_U32,
    RDMA_NLDEV_ATTR_RES_UNSAFE_GLOBAL_RKEY: ATTR_U32,
    RDMA_NLDEV_ATTR_NDEV_INDEX: ATTR_U32,
    RDMA_NLDEV_ATTR_NDEV_NAME: ATTR_STRING,
    RDMA_NLDEV_ATTR_DRIVER: ATTR_NESTED,
    RDMA_NLDEV_ATTR_DRIVER_ENTRY: ATTR_NESTED,
    RDMA_NLDEV_ATTR_DRIVER_STRING: ATTR_STRING,
    RDMA_NLDEV_ATTR_DRIVER_PRINT_TYPE: ATTR_U8,
    RDMA_NLDEV_ATTR_DRIVER_S32: ATTR_U32,
    RDMA_NLDEV_ATTR_DRIVER_U32: ATTR_U32,
    RDMA_NLDEV_ATTR_DRIVER_S64: ATTR_U64,
    RDMA_NLDEV_ATTR_DRIVER_U64: ATTR_U64,
    RDMA_NLDEV_ATTR_RES_PDN: ATTR_U32,
    RDMA_NLDEV_ATTR_RES_CQN: ATTR_U32,
    RDMA_NLDEV_ATTR_RES_MRN: ATTR_U32,
    RDMA_NLDEV_ATTR_RES_CM_IDN: ATTR_U32,
    RDMA_NLDEV_ATTR_RES_CTXN: ATTR_U32,
    RDMA_NLDEV_ATTR_LINK_TYPE: ATTR_STRING,
    RDMA_NLDEV_ATTR_DEV_PROTOCOL: ATTR_STRING,
}

# RDMA_NLDEV_ATTR_* name mapping, for unknown/diagnostic reporting
NLDEV_ATTR_NAMES = {
    value: name[len('RDMA_NLDEV_ATTR_'):]
    for name, value in list(globals().items())
    if name.startswith('RDMA_NLDEV_ATTR_') and name != 'RDMA_NLDEV_ATTR_MAX'
}

# enum ib_qp_type
QP_TYPE_NAMES = {
    0: 'SMI',
    1: 'GSI',
    2: 'RC',
    3: 'UC',
    4: 'UD',
    5: 'RAW_IPV6',
    6: 'RAW_ETHERTYPE',
    8: 'RAW_PACKET',
    9: 'XRC_INI',
    10: 'XRC_TGT',
    0xFF: 'DRIVER',
}

# enum ib_qp_state
QP_STATE_NAMES = ('RESET', 'INIT', 'RTR', 'RTS', 'SQD', 'SQE', 'ERR')

# enum ib_mig_state
PATH_MIG_STATE_NAMES = ('MIGRATED', 'REARM', 'ARMED')

# enum rdma_cm_state
CM_ID_STATE_NAMES = (
    'IDLE', 'ADDR_QUERY', 'ADDR_RESOLVED',
    'ROUTE_QUERY', 'ROUTE_RESOLVED', 'CONNECT',
    'DISCONNECT', 'ADDR_BOUND', 'LISTEN',
    'DEVICE_REMOVAL', 'DESTROYING',
)

# enum rdma_ucm_port_space
RDMA_PS_IPOIB = 0x0002
RDMA_PS_IB = 0x013F
RDMA_PS_TCP = 0x0106
RDMA_PS_UDP = 0x0111

PORT_SPACE_NAMES = {
    RDMA_PS_IPOIB: 'IPoIB',
    RDMA_PS_IB: 'IPoIB',
    RDMA_PS_TCP: 'TCP',
    RDMA_PS_UDP: 'UDP',
}

# enum ib_poll_context
POLL_CTX_NAMES = ('DIRECT', 'SOFTIRQ', 'WORKQUEUE', 'UNBOUND_WORKQUEUE')


def _indexed_name(names, idx: int) -> str:
    if 0 <= idx < len(names):
        return names[idx]
    return 'UNKNOWN'


def qp_type_to_str(idx: int) -> str:
    return QP_TYPE_NAMES.get(idx, 'UNKNOWN')


def qp_state_to_str(idx: int) -> str:
    return _indexed_name(QP_STATE_NAMES, idx)


def path_mig_to_str(idx: int) -> str:
    return _indexed_name(PATH_MIG_STATE_NAMES, idx)


def cm_id_state_to_str(idx: int) -> str:
    return _indexed_name(CM_ID_STATE_NAMES, idx)


def cm_id_ps_to_str(ps: int) -> str:
    return PORT_SPACE_NAMES.get(ps, '---')


def poll_ctx_to_str(idx: int) -> str:
    return _indexed_name(POLL_CTX_NAMES, idx)


def decode_unknown_attrs(attr_list: List[int]) -> List[Dict[str, Any]]:
    """Decode unknown attribute numbers into human-readable information"""
    decoded = []
    for attr_num in attr_list:
        is_nested = bool(attr_num & NLA_F_NESTED)
        base_num = attr_num & NLA_TYPE_MASK

        info = {
            'number': attr_num,
            'base_number': base_num,
            'nested': is_nested,
        }

        if base_num in NLDEV_ATTR_NAMES:
            info['name'] = NLDEV_ATTR_NAMES[base_num]
            if is_nested:
                info['name'] += ' (nested)'
        else:
            info['name'] = f'NLDEV_ATTR_{base_num}'

        decoded.append(info)

    return decoded
