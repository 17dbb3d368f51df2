#!/usr/bin/env python3
"""
Exchange Online - Distribution Group Members Report

One row per (group, member). With --expand-nested, members that are
themselves distribution or security groups are expanded recursively; the
MemberOf column then names the nested group a row came through and Depth
counts levels below the reported group (1 = direct member). A group that
contains itself, directly or through a chain, is expanded only once.

Usage:
    python distribution_group_members_report.py
    python distribution_group_members_report.py --expand-nested --include-owners
    python distribution_group_members_report.py --filter "Name -like 'Sales*'"
"""
import argparse
import logging
import os
import sys
from typing import Any, Callable, Dict, List, Optional, Tuple

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

REPORT_NAME = "distribution_group_members"

# Member types Get-DistributionGroupMember can itself be run against
EXPANDABLE_GROUP_TYPES = {
    'MailUniversalDistributionGroup',
    'MailUniversalSecurityGroup',
    'MailNonUniversalGroup',
    'RoomList',
}

BASE_COLUMNS = ['Group', 'GroupEmail', 'GroupType', 'Member', 'MemberEmail', 'MemberType']
OWNER_COLUMNS = ['ManagedBy']
NESTED_COLUMNS = ['MemberOf', 'Depth']

MemberFetcher = Callable[[str], List[Dict[str, Any]]]


def report_columns(args) -> List[str]:
    return build_columns(
        BASE_COLUMNS,
        (args.include_owners, OWNER_COLUMNS),
        (args.expand_nested, NESTED_COLUMNS),
    )


def _group_key(record: Dict[str, Any]) -> str:
    return str(record.get('Guid') or record.get('PrimarySmtpAddress') or record.get('Identity') or '').lower()


def expand_members(
    fetch: MemberFetcher,
    group: Dict[str, Any],
    expand_nested: bool = False,
) -> List[Tuple[Dict[str, Any], str, int]]:
    """
    Walk a group's membership depth-first.

    Returns (member, member_of, depth) tuples. member_of is empty for direct
    members. Each nested group is entered at most once per walk.
    """
    results: List[Tuple[Dict[str, Any], str, int]] = []
    visited = {_group_key(group)}

    def walk(identity: str, member_of: str, depth: int) -> None:
        for member in fetch(identity):
            results.append((member, member_of, depth))
            if not expand_nested or member.get('RecipientTypeDetails') not in EXPANDABLE_GROUP_TYPES:
                continue
            key = _group_key(member)
            if key in visited:
                logger.debug(f"Group {member.get('DisplayName')} already expanded; skipping")
                continue
            visited.add(key)
            walk(key, str(member.get('DisplayName') or key), depth + 1)

    walk(_group_key(group), '', 1)
    return results


def _group_columns(group: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'Group': group.get('DisplayName'),
        'GroupEmail': group.get('PrimarySmtpAddress'),
        'GroupType': group.get('RecipientTypeDetails'),
        'ManagedBy': as_list(group.get('ManagedBy')),
    }


def build_member_rows(
    group: Dict[str, Any],
    members: List[Tuple[Dict[str, Any], str, int]],
) -> List[Dict[str, Any]]:
    rows = []
    for member, member_of, depth in members:
        row = _group_columns(group)
        row.update({
            'Member': member.get('DisplayName') or member.get('Name'),
            'MemberEmail': member.get('PrimarySmtpAddress'),
            'MemberType': member.get('RecipientTypeDetails'),
            'MemberOf': member_of,
            'Depth': depth,
        })
        rows.append(row)
    return rows


def list_groups(client: ExchangeAdminClient, group_filter: Optional[str] = None) -> List[Dict[str, Any]]:
    parameters: Dict[str, Any] = {'ResultSize': RESULT_SIZE_UNLIMITED}
    if group_filter:
        parameters['Filter'] = group_filter
    logger.info("Listing distribution groups...")
    groups = client.invoke('Get-DistributionGroup', parameters)
    logger.info(f"Found {len(groups):,} distribution groups")
    return groups


def member_fetcher(client: ExchangeAdminClient) -> MemberFetcher:
    """Get-DistributionGroupMember with a per-run cache; nested groups are shared often."""
    cache: Dict[str, List[Dict[str, Any]]] = {}

    def fetch(identity: str) -> List[Dict[str, Any]]:
        if identity not in cache:
            cache[identity] = client.invoke(
                'Get-DistributionGroupMember',
                {'Identity': identity, 'ResultSize': RESULT_SIZE_UNLIMITED},
            )
        return cache[identity]

    return fetch


def collect_group_members(
    client: ExchangeAdminClient,
    groups: List[Dict[str, Any]],
    expand_nested: bool = False,
) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    fetch = member_fetcher(client)

    with ProgressTracker("Group members", total_items=len(groups)) as tracker:
        for group in groups:
            identity = _group_key(group)
            tracker.start_item(group.get('PrimarySmtpAddress') or identity)
            try:
                members = expand_members(fetch, group, expand_nested=expand_nested)
                group_rows = build_member_rows(group, members)
            except Exception as e:
                check_and_raise_auth_error(e, f"get members of group {identity}", "exchange")
                logger.warning(f"Failed to get members of group {identity}: {e}")
                tracker.fail_item()
                row = _group_columns(group)
                row['Member'] = failure_sentinel(e)
                group_rows = [row]

            rows.extend(group_rows)
            tracker.add_rows(len(group_rows))
            tracker.complete_item()

    return rows


def main():
    parser = argparse.ArgumentParser(
        description='Exchange Online - Distribution Group Members Report',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=CREDENTIALS_HELP,
    )
    parser.add_argument('--filter',
                        help='OPATH filter passed to Get-DistributionGroup')
    parser.add_argument('--include-owners', action='store_true',
                        help='Add the ManagedBy column')
    parser.add_argument('--expand-nested', action='store_true',
                        help='Expand nested groups (adds MemberOf, Depth columns)')
    add_common_arguments(parser)

    args = parser.parse_args()
    prepare_run(args)
    client = connect_exchange(args)

    try:
        groups = list_groups(client, args.filter)
        rows = collect_group_members(client, groups, expand_nested=args.expand_nested)
    except AuthError as e:
        abort_on_auth_error(e)
        return
    except Exception as e:
        logger.error(f"Failed to build distribution group members report: {e}")
        print(f"ERROR: {e}")
        sys.exit(1)

    print_report_summary("Member rows by group type", rows, 'GroupType')
    write_report(rows, report_columns(args), REPORT_NAME, args)


if __name__ == '__main__':
    main()
