#!/usr/bin/env python3
"""
Microsoft 365 - Unified Group Report

One row per Microsoft 365 group with its owners, read through Microsoft
Graph. With --include-members the report switches to one row per
(group, member); a group with no members still gets one row.

Owner and member lookups that fail for one group are written as an error
in that group's Owners (or Member) cell; the group listing itself failing
aborts the run.

Required Graph permission (Application): Group.Read.All

Usage:
    python unified_group_report.py
    python unified_group_report.py --include-members
"""
import argparse
import asyncio
import logging
import os
import sys
from typing import Any, Dict, List

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
from exoreport.cli import (
    CREDENTIALS_HELP,
    abort_on_auth_error,
    add_common_arguments,
    build_columns,
    create_credential,
    prepare_run,
    write_report,
)
from exoreport.exchange import print_permission_check_results
from exoreport.graph import (
    check_graph_connection,
    get_graph_client,
    list_group_members,
    list_group_owners,
    list_unified_groups,
)
from exoreport.utils import (
    AuthError,
    ProgressTracker,
    check_and_raise_auth_error,
    failure_sentinel,
    print_report_summary,
)

logger = logging.getLogger(__name__)

REPORT_NAME = "unified_groups"

BASE_COLUMNS = ['Group', 'GroupEmail', 'GroupId', 'Visibility', 'CreatedDateTime', 'Owners', 'OwnerCount']
MEMBER_COLUMNS = ['Member', 'MemberEmail', 'MemberType']


def report_columns(args) -> List[str]:
    return build_columns(BASE_COLUMNS, (args.include_members, MEMBER_COLUMNS))


def object_address(obj: Any) -> str:
    """Mail address of a directory object, falling back to its UPN or name."""
    return (
        getattr(obj, 'mail', None)
        or getattr(obj, 'user_principal_name', None)
        or getattr(obj, 'display_name', None)
        or ''
    )


def object_type(obj: Any) -> str:
    # '#microsoft.graph.user' -> 'user'
    odata_type = getattr(obj, 'odata_type', None) or ''
    return odata_type.rsplit('.', 1)[-1]


def build_group_row(group: Any, owners: List[Any]) -> Dict[str, Any]:
    created = getattr(group, 'created_date_time', None)
    return {
        'Group': group.display_name,
        'GroupEmail': group.mail,
        'GroupId': group.id,
        'Visibility': getattr(group, 'visibility', None),
        'CreatedDateTime': created.isoformat() if created else None,
        'Owners': [object_address(o) for o in owners],
        'OwnerCount': len(owners),
    }


def build_member_rows(group_row: Dict[str, Any], members: List[Any]) -> List[Dict[str, Any]]:
    if not members:
        return [dict(group_row)]
    rows = []
    for member in members:
        row = dict(group_row)
        row.update({
            'Member': getattr(member, 'display_name', None),
            'MemberEmail': object_address(member),
            'MemberType': object_type(member),
        })
        rows.append(row)
    return rows


async def collect_unified_groups(graph_client, include_members: bool = False) -> List[Dict[str, Any]]:
    """List groups, then owners (and members) one group at a time."""
    logger.info("Listing Microsoft 365 groups...")
    groups = await list_unified_groups(graph_client)
    rows: List[Dict[str, Any]] = []

    with ProgressTracker("Microsoft 365 groups", total_items=len(groups)) as tracker:
        for group in groups:
            tracker.start_item(group.mail or group.display_name or group.id)
            try:
                owners = await list_group_owners(graph_client, group.id)
                group_row = build_group_row(group, owners)
            except Exception as e:
                check_and_raise_auth_error(e, f"get owners of group {group.id}", "graph")
                logger.warning(f"Failed to get owners of group {group.id}: {e}")
                tracker.fail_item()
                group_row = build_group_row(group, [])
                group_row['Owners'] = failure_sentinel(e)
                group_row['OwnerCount'] = None

            if include_members:
                try:
                    members = await list_group_members(graph_client, group.id)
                    group_rows = build_member_rows(group_row, members)
                except Exception as e:
                    check_and_raise_auth_error(e, f"get members of group {group.id}", "graph")
                    logger.warning(f"Failed to get members of group {group.id}: {e}")
                    tracker.fail_item()
                    group_row['Member'] = failure_sentinel(e)
                    group_rows = [group_row]
            else:
                group_rows = [group_row]

            rows.extend(group_rows)
            tracker.add_rows(len(group_rows))
            tracker.complete_item()

    return rows


async def run_report(graph_client, args) -> List[Dict[str, Any]]:
    if not getattr(args, 'skip_check', False):
        results = await check_graph_connection(graph_client)
        if not print_permission_check_results(results, 'graph'):
            sys.exit(1)
    return await collect_unified_groups(graph_client, include_members=args.include_members)


def main():
    parser = argparse.ArgumentParser(
        description='Microsoft 365 - Unified Group Report',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=CREDENTIALS_HELP,
    )
    parser.add_argument('--include-members', action='store_true',
                        help='One row per member (one extra call per group)')
    add_common_arguments(parser)

    args = parser.parse_args()
    prepare_run(args)

    try:
        logger.info("Initializing Microsoft Graph client...")
        graph_client = get_graph_client(create_credential(args))
    except Exception as e:
        print(f"ERROR: Failed to initialize Graph client: {e}")
        sys.exit(1)

    try:
        rows = asyncio.run(run_report(graph_client, args))
    except AuthError as e:
        abort_on_auth_error(e)
        return
    except Exception as e:
        logger.error(f"Failed to build unified group report: {e}")
        print(f"ERROR: {e}")
        sys.exit(1)

    print_report_summary("Rows by visibility", rows, 'Visibility')
    write_report(rows, report_columns(args), REPORT_NAME, args)


if __name__ == '__main__':
    main()
