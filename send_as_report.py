#!/usr/bin/env python3
"""
Exchange Online - Send As Permissions Report

Pulls every recipient permission entry in one Get-RecipientPermission
listing, keeps the SendAs grants on mailboxes and resolves the trustee
against the recipient directory.

The listing's Identity column is the mailbox's name, so each entry is joined
back to the mailbox listing through a name/alias/address index. Entries for
objects outside the mailbox listing (e.g. when --filter narrows it) are
dropped.

Usage:
    python send_as_report.py
    python send_as_report.py --filter "CustomAttribute1 -eq 'Shared'"
    python send_as_report.py --include-system --no-resolve
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
from exoreport.constants import RESULT_SIZE_UNLIMITED, SEND_AS
from exoreport.directory import RecipientDirectory, is_system_principal, load_directory
from exoreport.exchange import ExchangeAdminClient, list_mailboxes
from exoreport.utils import AuthError, normalize_rights, print_report_summary

logger = logging.getLogger(__name__)

REPORT_NAME = "send_as_permissions"

BASE_COLUMNS = ['Mailbox', 'MailboxEmail', 'MailboxType', 'Trustee', 'AccessRights']
RESOLVED_COLUMNS = ['TrusteeDisplayName', 'TrusteeEmail', 'TrusteeType']


def report_columns(args) -> List[str]:
    return build_columns(BASE_COLUMNS, (not args.no_resolve, RESOLVED_COLUMNS))


def build_send_as_rows(
    permissions: List[Dict[str, Any]],
    mailbox_index: RecipientDirectory,
    directory: Optional[RecipientDirectory] = None,
    include_system: bool = False,
) -> List[Dict[str, Any]]:
    """Join SendAs entries to their mailbox and resolve the trustee."""
    rows = []
    skipped = 0
    for perm in permissions:
        if SEND_AS not in normalize_rights(perm.get('AccessRights')):
            continue
        if perm.get('AccessControlType') == 'Deny':
            continue
        trustee = str(perm.get('Trustee') or '')
        if not include_system and is_system_principal(trustee):
            continue

        mailbox = mailbox_index.resolve(str(perm.get('Identity') or ''))
        if mailbox is None:
            skipped += 1
            continue

        row: Dict[str, Any] = {
            'Mailbox': mailbox.display_name,
            'MailboxEmail': mailbox.primary_smtp_address,
            'MailboxType': mailbox.recipient_type_details,
            'Trustee': trustee,
            'AccessRights': SEND_AS,
        }
        if directory is not None:
            row.update(directory.resolve_trustee(trustee).to_columns('Trustee'))
        rows.append(row)

    if skipped:
        logger.info(f"Skipped {skipped:,} SendAs entries on recipients outside the mailbox listing")
    return rows


def collect_send_as(
    client: ExchangeAdminClient,
    mailboxes: List[Dict[str, Any]],
    directory: Optional[RecipientDirectory] = None,
    include_system: bool = False,
) -> List[Dict[str, Any]]:
    logger.info("Listing recipient permissions...")
    permissions = client.invoke('Get-RecipientPermission', {'ResultSize': RESULT_SIZE_UNLIMITED})
    logger.info(f"Found {len(permissions):,} recipient permission entries")
    mailbox_index = RecipientDirectory.from_records(mailboxes)
    return build_send_as_rows(permissions, mailbox_index, directory, include_system)


def main():
    parser = argparse.ArgumentParser(
        description='Exchange Online - Send As Permissions Report',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=CREDENTIALS_HELP,
    )
    parser.add_argument('--filter',
                        help='OPATH filter passed to Get-Mailbox')
    parser.add_argument('--include-system', action='store_true',
                        help='Include NT AUTHORITY and SID trustees')
    parser.add_argument('--no-resolve', action='store_true',
                        help='Skip trustee resolution (drops Trustee* detail columns)')
    add_common_arguments(parser)

    args = parser.parse_args()
    prepare_run(args)
    client = connect_exchange(args)

    try:
        mailboxes = list_mailboxes(client, mailbox_filter=args.filter)
        directory = None if args.no_resolve else load_directory(client)
        rows = collect_send_as(client, mailboxes, directory, include_system=args.include_system)
    except AuthError as e:
        abort_on_auth_error(e)
        return
    except Exception as e:
        logger.error(f"Failed to build send-as report: {e}")
        print(f"ERROR: {e}")
        sys.exit(1)

    print_report_summary("SendAs grants by mailbox type", rows, 'MailboxType')
    write_report(rows, report_columns(args), REPORT_NAME, args)


if __name__ == '__main__':
    main()
