#!/usr/bin/env python3
"""
Exchange Online - User Group Membership Report

For every user-type recipient, lists the distribution and mail-enabled
security groups it is a direct member of (and Microsoft 365 groups with
--include-unified).

Group membership is only exposed group-side, so every group's member list
is fetched once and inverted into a member -> groups index keyed by GUID and
primary address. Recipients are then joined against that index, GUID first.
Users in no group still get one row with empty group columns.

Usage:
    python user_group_membership_report.py
    python user_group_membership_report.py --filter "Department -eq 'IT'" --include-unified
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
    connect_exchange,
    prepare_run,
    write_report,
)
from exoreport.constants import RESULT_SIZE_UNLIMITED
from exoreport.exchange import ExchangeAdminClient
from exoreport.utils import (
    AuthError,
    ProgressTracker,
    check_and_raise_auth_error,
    failure_sentinel,
    print_report_summary,
)

logger = logging.getLogger(__name__)

REPORT_NAME = "user_group_membership"

USER_RECIPIENT_TYPES = ['UserMailbox', 'SharedMailbox', 'MailUser', 'GuestMailUser']

COLUMNS = ['User', 'UserEmail', 'UserType', 'Group', 'GroupEmail', 'GroupType']


def report_columns(args) -> List[str]:
    return list(COLUMNS)


def _member_keys(record: Dict[str, Any]) -> List[str]:
    keys = []
    if record.get('Guid'):
        keys.append(f"guid:{str(record['Guid']).lower()}")
    if record.get('PrimarySmtpAddress'):
        keys.append(f"smtp:{str(record['PrimarySmtpAddress']).lower()}")
    return keys


class MembershipIndex:
    """Reverse index from member GUID/address to the groups containing it."""

    def __init__(self):
        self._groups: Dict[str, List[Dict[str, Any]]] = {}

    def add(self, group: Dict[str, Any], members: List[Dict[str, Any]]) -> None:
        for member in members:
            for key in _member_keys(member):
                self._groups.setdefault(key, []).append(group)

    def groups_for(self, recipient: Dict[str, Any]) -> List[Dict[str, Any]]:
        # GUID matches first, then address; a group reached through both appears once
        found: List[Dict[str, Any]] = []
        seen = set()
        for key in _member_keys(recipient):
            for group in self._groups.get(key, []):
                if id(group) not in seen:
                    seen.add(id(group))
                    found.append(group)
        return found


def build_membership_rows(recipients: List[Dict[str, Any]], index: MembershipIndex) -> List[Dict[str, Any]]:
    rows = []
    for recipient in recipients:
        user = {
            'User': recipient.get('DisplayName'),
            'UserEmail': recipient.get('PrimarySmtpAddress'),
            'UserType': recipient.get('RecipientTypeDetails'),
        }
        groups = index.groups_for(recipient)
        if not groups:
            rows.append(user)
            continue
        for group in groups:
            row = dict(user)
            row.update({
                'Group': group.get('DisplayName'),
                'GroupEmail': group.get('PrimarySmtpAddress'),
                'GroupType': group.get('RecipientTypeDetails'),
            })
            rows.append(row)
    return rows


def _group_identity(group: Dict[str, Any]) -> str:
    return str(group.get('Guid') or group.get('PrimarySmtpAddress') or group.get('Identity') or '')


def index_group_members(
    client: ExchangeAdminClient,
    groups: List[Dict[str, Any]],
    index: MembershipIndex,
    unified: bool = False,
) -> List[Dict[str, Any]]:
    """
    Fetch each group's members into the index.

    Returns sentinel rows for groups whose member listing failed.
    """
    failures: List[Dict[str, Any]] = []
    label = "Microsoft 365 group members" if unified else "Distribution group members"

    with ProgressTracker(label, total_items=len(groups)) as tracker:
        for group in groups:
            identity = _group_identity(group)
            tracker.start_item(group.get('PrimarySmtpAddress') or identity)
            try:
                if unified:
                    members = client.invoke(
                        'Get-UnifiedGroupLinks',
                        {'Identity': identity, 'LinkType': 'Members', 'ResultSize': RESULT_SIZE_UNLIMITED},
                    )
                else:
                    members = client.invoke(
                        'Get-DistributionGroupMember',
                        {'Identity': identity, 'ResultSize': RESULT_SIZE_UNLIMITED},
                    )
                index.add(group, members)
                tracker.add_rows(len(members))
            except Exception as e:
                check_and_raise_auth_error(e, f"get members of group {identity}", "exchange")
                logger.warning(f"Failed to get members of group {identity}: {e}")
                tracker.fail_item()
                failures.append({
                    'User': failure_sentinel(e),
                    'Group': group.get('DisplayName'),
                    'GroupEmail': group.get('PrimarySmtpAddress'),
                    'GroupType': group.get('RecipientTypeDetails'),
                })
            tracker.complete_item()

    return failures


def list_recipients(client: ExchangeAdminClient, recipient_filter: Optional[str] = None) -> List[Dict[str, Any]]:
    parameters: Dict[str, Any] = {
        'ResultSize': RESULT_SIZE_UNLIMITED,
        'RecipientTypeDetails': USER_RECIPIENT_TYPES,
    }
    if recipient_filter:
        parameters['Filter'] = recipient_filter
    logger.info("Listing recipients...")
    recipients = client.invoke('Get-Recipient', parameters)
    logger.info(f"Found {len(recipients):,} recipients")
    return recipients


def collect_memberships(
    client: ExchangeAdminClient,
    recipients: List[Dict[str, Any]],
    include_unified: bool = False,
) -> List[Dict[str, Any]]:
    index = MembershipIndex()

    logger.info("Listing distribution groups...")
    groups = client.invoke('Get-DistributionGroup', {'ResultSize': RESULT_SIZE_UNLIMITED})
    logger.info(f"Found {len(groups):,} distribution groups")
    failures = index_group_members(client, groups, index)

    if include_unified:
        logger.info("Listing Microsoft 365 groups...")
        unified = client.invoke('Get-UnifiedGroup', {'ResultSize': RESULT_SIZE_UNLIMITED})
        logger.info(f"Found {len(unified):,} Microsoft 365 groups")
        failures.extend(index_group_members(client, unified, index, unified=True))

    return build_membership_rows(recipients, index) + failures


def main():
    parser = argparse.ArgumentParser(
        description='Exchange Online - User Group Membership Report',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=CREDENTIALS_HELP,
    )
    parser.add_argument('--filter',
                        help='OPATH filter passed to Get-Recipient')
    parser.add_argument('--include-unified', action='store_true',
                        help='Also report Microsoft 365 group memberships')
    add_common_arguments(parser)

    args = parser.parse_args()
    prepare_run(args)
    client = connect_exchange(args)

    try:
        recipients = list_recipients(client, args.filter)
        rows = collect_memberships(client, recipients, include_unified=args.include_unified)
    except AuthError as e:
        abort_on_auth_error(e)
        return
    except Exception as e:
        logger.error(f"Failed to build group membership report: {e}")
        print(f"ERROR: {e}")
        sys.exit(1)

    print_report_summary("Membership rows by group type", rows, 'GroupType')
    write_report(rows, report_columns(args), REPORT_NAME, args)


if __name__ == '__main__':
    main()
