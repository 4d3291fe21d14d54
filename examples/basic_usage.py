#!/usr/bin/env python3
"""
Example: Basic usage of RdmaSnap package

This example demonstrates the socket management patterns of
RdmaResourceQuery:
  - Pattern 1: Direct call (socket opened and closed per query)
  - Pattern 2: Context manager (one socket for several queries)
  - Pattern 3: Filters, port selection and JSON output

Set RDMASNAP_DEBUG=1 to see why entries are skipped.
"""

import logging
import os
import sys


def pattern1_single_query(dev_index):
    """Pattern 1: Direct Call - Recommended for single queries"""
    print("\nPattern 1: Direct Call (Single Query)")
    print("-" * 70)

    from rdmasnap import RdmaResourceQuery

    # Socket automatically opened and closed
    count = RdmaResourceQuery().show('pd', dev_index)
    print(f"{count} protection domains")


def pattern2_multiple_queries(dev_index):
    """Pattern 2: Context Manager - Recommended for multiple queries in one function"""
    print("\nPattern 2: Context Manager (Multiple Queries)")
    print("-" * 70)

    from rdmasnap import RdmaResourceQuery

    # Socket opened on entry, closed on exit
    with RdmaResourceQuery() as rq:
        counts = {kind: rq.show(kind, dev_index) for kind in ('cq', 'mr', 'qp')}

    print(f"Gathered {counts['cq']} CQs, {counts['mr']} MRs, {counts['qp']} QPs")


def pattern3_filters(dev_index):
    """Pattern 3: Filtered JSON output"""
    print("\nPattern 3: Filters and JSON")
    print("-" * 70)

    from rdmasnap import RdmaResourceQuery
    from rdmasnap.filters import parse_filter_args

    rq = RdmaResourceQuery(json_output=True, show_driver_details=False)
    rq.show('qp', dev_index, filters=parse_filter_args(['state=RTS', 'type=RC,UD']), port=1)
    rq.show('cm_id', dev_index, filters=[('state', 'LISTEN')])


def main():
    if os.environ.get('RDMASNAP_DEBUG'):
        logging.basicConfig(level=logging.DEBUG)

    dev_index = int(sys.argv[1]) if len(sys.argv) > 1 else 0

    print("RdmaSnap Package Usage Examples")
    print("=" * 70)

    from rdmasnap.errors import RdmaResError, TransportError

    try:
        pattern1_single_query(dev_index)
        pattern2_multiple_queries(dev_index)
        pattern3_filters(dev_index)

    except TransportError as e:
        print(f"\n✗ Netlink error: {e}")
        print("  Check that an RDMA device exists and ib_core is loaded")
        sys.exit(1)
    except RdmaResError as e:
        print(f"\n✗ Error: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
