#!/usr/bin/env python3
"""
Exchange Online - Dynamic Distribution Group Report

One row per dynamic distribution group with its recipient filter and owners
(ManagedBy resolved to primary addresses through the recipient directory).

With --include-members the filter is evaluated by
Get-DynamicDistributionGroupMember and the report switches to one row per
(group, member); a group with no members still gets one row.

Usage:
    python dynamic_group_report.py
    python dynamic_group_report.py --include-members --filter "Name -like 'All*'"
"""
import argparse
import logging
import os
import sys
from typing import Any, Dict, List, Optional

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))
from exoreport.cli import (
    CREDENTIALS_HELP,
    abort_on_auth_error,
    add_common_arguments,
    build_columns,
    connect_exchange,
    prepare_run,
    write_report,
)
from exoreport.constants import RESULT_SIZE_UNLIMITED
from exoreport.directory import RecipientDirectory, load_directory
from exoreport.exchange import ExchangeAdminClient
from exoreport.utils import (
    AuthError,
    ProgressTracker,
    as_list,
    check_and_raise_auth_error,
    failure_sentinel,
    print_report_summary,
)

logger = logging.getLogger(__name__)

REPORT_NAME = "dynamic_groups"

BASE_COLUMNS = [
    'Group', 'GroupEmail', 'RecipientFilter', 'IncludedRecipients',
    'RecipientContainer', 'ManagedBy', 'ManagedByEmail', 'WhenCreated',
]
MEMBER_COLUMNS = ['Member', 'MemberEmail', 'MemberType']


def report_columns(args) -> List[str]:
    return build_columns(BASE_COLUMNS, (args.include_members, MEMBER_COLUMNS))


def build_group_row(group: Dict[str, Any], directory: RecipientDirectory) -> Dict[str, Any]:
    owners = [str(o) for o in as_list(group.get('ManagedBy'))]
    return {
        'Group': group.get('DisplayName'),
        'GroupEmail': group.get('PrimarySmtpAddress'),
        'RecipientFilter': group.get('RecipientFilter'),
        'IncludedRecipients': group.get('IncludedRecipients'),
        'RecipientContainer': group.get('RecipientContainer'),
        'ManagedBy': owners,
        'ManagedByEmail': [directory.address_or_sentinel(o) for o in owners],
        'WhenCreated': group.get('WhenCreated'),
    }


def build_member_rows(group_row: Dict[str, Any], members: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    if not members:
        return [dict(group_row)]
    rows = []
    for member in members:
        row = dict(group_row)
        row.update({
            'Member': member.get('DisplayName') or member.get('Name'),
            'MemberEmail': member.get('PrimarySmtpAddress'),
            'MemberType': member.get('RecipientTypeDetails'),
        })
        rows.append(row)
    return rows


def list_dynamic_groups(client: ExchangeAdminClient, group_filter: Optional[str] = None) -> List[Dict[str, Any]]:
    parameters: Dict[str, Any] = {'ResultSize': RESULT_SIZE_UNLIMITED}
    if group_filter:
        parameters['Filter'] = group_filter
    logger.info("Listing dynamic distribution groups...")
    groups = client.invoke('Get-DynamicDistributionGroup', parameters)
    logger.info(f"Found {len(groups):,} dynamic distribution groups")
    return groups


def collect_dynamic_groups(
    client: ExchangeAdminClient,
    groups: List[Dict[str, Any]],
    directory: RecipientDirectory,
    include_members: bool = False,
) -> List[Dict[str, Any]]:
    if not include_members:
        return [build_group_row(g, directory) for g in groups]

    rows: List[Dict[str, Any]] = []
    with ProgressTracker("Dynamic group members", total_items=len(groups)) as tracker:
        for group in groups:
            identity = str(group.get('Guid') or group.get('PrimarySmtpAddress') or group.get('Identity') or '')
            tracker.start_item(group.get('PrimarySmtpAddress') or identity)
            group_row = build_group_row(group, directory)
            try:
                members = client.invoke(
                    'Get-DynamicDistributionGroupMember',
                    {'Identity': identity, 'ResultSize': RESULT_SIZE_UNLIMITED},
                )
                group_rows = build_member_rows(group_row, members)
            except Exception as e:
                check_and_raise_auth_error(e, f"get members of dynamic group {identity}", "exchange")
                logger.warning(f"Failed to get members of dynamic group {identity}: {e}")
                tracker.fail_item()
                group_row['Member'] = failure_sentinel(e)
                group_rows = [group_row]

            rows.extend(group_rows)
            tracker.add_rows(len(group_rows))
            tracker.complete_item()

    return rows


def main():
    parser = argparse.ArgumentParser(
        description='Exchange Online - Dynamic Distribution Group Report',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=CREDENTIALS_HELP,
    )
    parser.add_argument('--filter',
                        help='OPATH filter passed to Get-DynamicDistributionGroup')
    parser.add_argument('--include-members', action='store_true',
                        help='One row per evaluated member (one extra call per group)')
    add_common_arguments(parser)

    args = parser.parse_args()
    prepare_run(args)
    client = connect_exchange(args)

    try:
        groups = list_dynamic_groups(client, args.filter)
        directory = load_directory(client)
        rows = collect_dynamic_groups(client, groups, directory, include_members=args.include_members)
    except AuthError as e:
        abort_on_auth_error(e)
        return
    except Exception as e:
        logger.error(f"Failed to build dynamic group report: {e}")
        print(f"ERROR: {e}")
        sys.exit(1)

    print_report_summary("Rows by group", rows, 'Group')
    write_report(rows, report_columns(args), REPORT_NAME, args)


if __name__ == '__main__':
    main()
