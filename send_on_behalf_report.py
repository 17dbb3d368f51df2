#!/usr/bin/env python3
"""
Exchange Online - Send On Behalf Report

One row per (object, delegate) pair from the GrantSendOnBehalfTo property of
mailboxes and, with --include-groups, distribution groups. Delegates are
stored as names, so each one is resolved against the recipient directory;
delegates that no longer resolve are written with the Not Found sentinel.

Usage:
    python send_on_behalf_report.py
    python send_on_behalf_report.py --include-groups
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
from exoreport.directory import RecipientDirectory, load_directory
from exoreport.exchange import ExchangeAdminClient, list_mailboxes
from exoreport.utils import AuthError, as_list, print_report_summary

logger = logging.getLogger(__name__)

REPORT_NAME = "send_on_behalf"

COLUMNS = [
    'Object', 'ObjectEmail', 'ObjectType', 'Delegate',
    'DelegateDisplayName', 'DelegateEmail', 'DelegateType',
]


def report_columns(args) -> List[str]:
    return list(COLUMNS)


def build_delegate_rows(
    objects: List[Dict[str, Any]],
    directory: RecipientDirectory,
) -> List[Dict[str, Any]]:
    """Expand GrantSendOnBehalfTo into one row per delegate."""
    rows = []
    for obj in objects:
        for delegate in as_list(obj.get('GrantSendOnBehalfTo')):
            delegate = str(delegate)
            row = {
                'Object': obj.get('DisplayName'),
                'ObjectEmail': obj.get('PrimarySmtpAddress'),
                'ObjectType': obj.get('RecipientTypeDetails'),
                'Delegate': delegate,
            }
            row.update(directory.resolve_trustee(delegate).to_columns('Delegate'))
            rows.append(row)
    return rows


def list_distribution_groups(client: ExchangeAdminClient, group_filter=None) -> List[Dict[str, Any]]:
    parameters: Dict[str, Any] = {'ResultSize': RESULT_SIZE_UNLIMITED}
    if group_filter:
        parameters['Filter'] = group_filter
    logger.info("Listing distribution groups...")
    groups = client.invoke('Get-DistributionGroup', parameters)
    logger.info(f"Found {len(groups):,} distribution groups")
    return groups


def collect_send_on_behalf(
    client: ExchangeAdminClient,
    object_filter: Optional[str] = None,
    include_groups: bool = False,
) -> List[Dict[str, Any]]:
    """List mailboxes (and groups), load the directory and expand delegates."""
    objects = list_mailboxes(client, mailbox_filter=object_filter)
    if include_groups:
        objects.extend(list_distribution_groups(client, object_filter))
    directory = load_directory(client)
    return build_delegate_rows(objects, directory)


def main():
    parser = argparse.ArgumentParser(
        description='Exchange Online - Send On Behalf Report',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=CREDENTIALS_HELP,
    )
    parser.add_argument('--filter',
                        help='OPATH filter passed to Get-Mailbox (and Get-DistributionGroup)')
    parser.add_argument('--include-groups', action='store_true',
                        help='Also report delegates on distribution groups')
    add_common_arguments(parser)

    args = parser.parse_args()
    prepare_run(args)
    client = connect_exchange(args)

    try:
        rows = collect_send_on_behalf(client, args.filter, args.include_groups)
    except AuthError as e:
        abort_on_auth_error(e)
        return
    except Exception as e:
        logger.error(f"Failed to build send-on-behalf report: {e}")
        print(f"ERROR: {e}")
        sys.exit(1)

    print_report_summary("Delegates by object type", rows, 'ObjectType')
    write_report(rows, report_columns(args), REPORT_NAME, args)


if __name__ == '__main__':
    main()
