#!/usr/bin/env python3
"""
RDMA Netlink (NETLINK_RDMA) transport with C Library via CFFI

Sends nldev resource requests and collects the kernel's reply messages:
- RDMA_NLDEV_CMD_RES_*_GET dumps for one device (and optionally one port)
- Multi-part dump receive until NLMSG_DONE
- Kernel error replies (NLMSG_ERROR) reported with their errno

The C helper is compiled the first time a socket is opened, so importing
this module (and decoding captured messages) does not need a compiler.

Requirements:
    - Python 3.8+
    - cffi>=1.0.0
    - setuptools (required for Python 3.12+)
    - Linux with the ib_core module loaded for live queries
"""

from cffi import FFI
import logging
import os
import sys
from typing import List, Optional

from .attrs import iter_messages
from .errors import TransportError

# Check Python version
if sys.version_info < (3, 8):
    raise RuntimeError("Python 3.8 or higher is required")

log = logging.getLogger(__name__)

# C library source code - NETLINK_RDMA nldev request/response support
C_SOURCE = r"""
#include <stdio.h>
#include <stdlib.h>
#include <string.h>
#include <unistd.h>
#include <errno.h>
#include <sys/socket.h>
#include <linux/netlink.h>

#ifndef NETLINK_RDMA
#define NETLINK_RDMA 20
#endif

#define RDMA_NL_NLDEV 5
#define RDMA_NL_GET_TYPE(client, op) (((client) << 10) + (op))

#define RDMA_NLDEV_ATTR_DEV_INDEX 1
#define RDMA_NLDEV_ATTR_PORT_INDEX 3

// Response buffer structure
typedef struct {
    unsigned char* data;
    size_t length;
    size_t capacity;
    unsigned int seq;
    int error;
} response_buffer_t;

// Create netlink socket for nldev queries
int nl_create_socket(void) {
    int sock = socket(AF_NETLINK, SOCK_RAW | SOCK_CLOEXEC, NETLINK_RDMA);
    if (sock < 0) {
        return -1;
    }

    struct sockaddr_nl addr = {0};
    addr.nl_family = AF_NETLINK;
    addr.nl_pid = 0;  // let the kernel pick the port id

    if (bind(sock, (struct sockaddr*)&addr, sizeof(addr)) < 0) {
        int saved = errno;
        close(sock);
        errno = saved;
        return -1;
    }

    return sock;
}

// Close netlink socket
void nl_close_socket(int sock) {
    if (sock >= 0) {
        close(sock);
    }
}

static void nl_put_u32(struct nlmsghdr* nlh, unsigned short type, unsigned int value) {
    struct nlattr* attr = (struct nlattr*)((char*)nlh + NLMSG_ALIGN(nlh->nlmsg_len));
    attr->nla_type = type;
    attr->nla_len = NLA_HDRLEN + sizeof(value);
    memcpy((char*)attr + NLA_HDRLEN, &value, sizeof(value));
    nlh->nlmsg_len = NLMSG_ALIGN(nlh->nlmsg_len) + NLA_ALIGN(attr->nla_len);
}

// Send an nldev request; port_index 0 means "all ports"
int nl_send_request(int sock, unsigned int command, int dump,
                    unsigned int dev_index, unsigned int port_index,
                    unsigned int* seq_out) {
    struct {
        struct nlmsghdr nlh;
        unsigned char attrs[64];
    } req;
    memset(&req, 0, sizeof(req));

    static unsigned int seq = 0;
    if (seq == 0) {
        seq = (unsigned int)getpid() << 8;
    }
    seq++;
    *seq_out = seq;

    req.nlh.nlmsg_len = NLMSG_LENGTH(0);
    req.nlh.nlmsg_type = RDMA_NL_GET_TYPE(RDMA_NL_NLDEV, command);
    req.nlh.nlmsg_flags = NLM_F_REQUEST | NLM_F_ACK;
    if (dump) {
        req.nlh.nlmsg_flags |= NLM_F_DUMP;
    }
    req.nlh.nlmsg_seq = seq;

    nl_put_u32(&req.nlh, RDMA_NLDEV_ATTR_DEV_INDEX, dev_index);
    if (port_index) {
        nl_put_u32(&req.nlh, RDMA_NLDEV_ATTR_PORT_INDEX, port_index);
    }

    ssize_t sent = send(sock, &req, req.nlh.nlmsg_len, 0);
    if (sent < 0) {
        return -1;
    }

    return 0;
}

static int nl_append(response_buffer_t* buf, struct nlmsghdr* nh) {
    size_t msg_len = NLMSG_ALIGN(nh->nlmsg_len);

    while (buf->length + msg_len > buf->capacity) {
        size_t new_capacity = buf->capacity * 2;
        unsigned char* new_data = realloc(buf->data, new_capacity);
        if (!new_data) {
            return -1;
        }
        buf->data = new_data;
        buf->capacity = new_capacity;
    }

    memset(buf->data + buf->length, 0, msg_len);
    memcpy(buf->data + buf->length, nh, nh->nlmsg_len);
    buf->length += msg_len;
    return 0;
}

// Receive and buffer every reply message for expected_seq
response_buffer_t* nl_receive_response(int sock, unsigned int expected_seq, int dump) {
    response_buffer_t* buf = malloc(sizeof(response_buffer_t));
    if (!buf) {
        return NULL;
    }

    buf->capacity = 65536;
    buf->data = malloc(buf->capacity);
    buf->length = 0;
    buf->seq = expected_seq;
    buf->error = 0;

    if (!buf->data) {
        free(buf);
        return NULL;
    }

    static unsigned char recv_buf[65536];
    int done = 0;

    while (!done) {
        ssize_t len = recv(sock, recv_buf, sizeof(recv_buf), 0);
        if (len < 0) {
            if (errno == EINTR) {
                continue;
            }
            free(buf->data);
            free(buf);
            return NULL;
        }

        if (len == 0) {
            break;
        }

        struct nlmsghdr* nh = (struct nlmsghdr*)recv_buf;
        int remaining = (int)len;

        while (NLMSG_OK(nh, remaining)) {
            if (nh->nlmsg_seq != expected_seq) {
                nh = NLMSG_NEXT(nh, remaining);
                continue;
            }

            if (nh->nlmsg_type == NLMSG_DONE) {
                done = 1;
                break;
            }

            if (nh->nlmsg_type == NLMSG_ERROR) {
                struct nlmsgerr* err = (struct nlmsgerr*)NLMSG_DATA(nh);
                if (err->error != 0) {
                    buf->error = -err->error;
                    done = 1;
                    break;
                }
                // Plain ACK ends a non-dump request
                if (!dump) {
                    done = 1;
                    break;
                }
                nh = NLMSG_NEXT(nh, remaining);
                continue;
            }

            if (nl_append(buf, nh) < 0) {
                free(buf->data);
                free(buf);
                errno = ENOMEM;
                return NULL;
            }

            nh = NLMSG_NEXT(nh, remaining);
        }
    }

    return buf;
}

// Free response buffer
void nl_free_response(response_buffer_t* buf) {
    if (buf) {
        if (buf->data) {
            free(buf->data);
        }
        free(buf);
    }
}
"""

# Define FFI interface
ffi = FFI()
ffi.cdef("""
typedef struct {
    unsigned char* data;
    size_t length;
    size_t capacity;
    unsigned int seq;
    int error;
} response_buffer_t;

int nl_create_socket(void);
void nl_close_socket(int sock);
int nl_send_request(int sock, unsigned int command, int dump,
                    unsigned int dev_index, unsigned int port_index,
                    unsigned int* seq_out);
response_buffer_t* nl_receive_response(int sock, unsigned int expected_seq, int dump);
void nl_free_response(response_buffer_t* buf);
""")

_lib = None


def load_lib():
    """Compile (or load the cached build of) the C helper"""
    global _lib
    if _lib is not None:
        return _lib

    # For Python 3.12+, verify setuptools is available
    if sys.version_info >= (3, 12):
        try:
            import setuptools  # noqa
        except ImportError:
            raise RuntimeError(
                "Python 3.12+ requires setuptools for CFFI.\n"
                "Install it with: pip install setuptools"
            )

    try:
        _lib = ffi.verify(C_SOURCE, modulename="rdmasnap_nl_lib_v1")
    except Exception as e:
        print(f"Error compiling C library: {e}", file=sys.stderr)
        print("This might be a CFFI caching issue. Try removing the __pycache__ directory.", file=sys.stderr)
        raise
    return _lib


class RdmaNetlinkSocket:
    """
    NETLINK_RDMA socket for nldev requests.

    Can be used with context manager or explicit open()/close():
        with RdmaNetlinkSocket() as nl:
            messages = nl.request(RDMA_NLDEV_CMD_RES_QP_GET, dev_index=1)
    """

    def __init__(self):
        self.sock = -1
        self.lib = None

    def open(self):
        """Explicitly open the netlink socket"""
        if self.sock >= 0:
            return  # Already open

        self.lib = load_lib()
        self.sock = self.lib.nl_create_socket()
        if self.sock < 0:
            err = ffi.errno
            raise TransportError(f"Failed to create RDMA netlink socket: {os.strerror(err)}", err)

    def close(self):
        """Explicitly close the netlink socket"""
        if self.sock >= 0:
            self.lib.nl_close_socket(self.sock)
            self.sock = -1

    def __enter__(self):
        """Context manager entry"""
        self.open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Context manager exit"""
        self.close()
        return False

    def request(self, command: int, dev_index: int, port: Optional[int] = None,
                dump: bool = True) -> List[bytes]:
        """
        Send one nldev request and return the reply messages.

        Args:
            command: RDMA_NLDEV_CMD_* code
            dev_index: RDMA device index
            port: optional port index (restricts the kernel's dump)
            dump: request a multi-part dump (NLM_F_DUMP)

        Returns:
            List of raw netlink messages (header included), in arrival order
        """
        if self.sock < 0:
            raise TransportError("RDMA netlink socket is not open")

        seq = ffi.new("unsigned int*")
        if self.lib.nl_send_request(self.sock, command, 1 if dump else 0,
                                    dev_index, port or 0, seq) < 0:
            err = ffi.errno
            raise TransportError(f"Failed to send nldev command {command}: {os.strerror(err)}", err)

        response = self.lib.nl_receive_response(self.sock, seq[0], 1 if dump else 0)
        if response == ffi.NULL:
            err = ffi.errno
            raise TransportError(f"Failed to receive response: {os.strerror(err)}", err)

        try:
            if response.error:
                raise TransportError(
                    f"Kernel rejected nldev command {command}: {os.strerror(response.error)}",
                    response.error,
                )
            data = ffi.buffer(response.data, response.length)[:]
        finally:
            self.lib.nl_free_response(response)

        log.debug("nldev command %d on device %d: %d bytes", command, dev_index, len(data))
        return list(iter_messages(data))
