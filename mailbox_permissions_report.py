#!/usr/bin/env python3
"""
Exchange Online - Mailbox Permissions Report

Lists explicit mailbox permissions (FullAccess, ReadPermission, ...) for every
mailbox and resolves each trustee against the recipient directory.

One row per (mailbox, trustee) permission entry. NT AUTHORITY\\SELF and other
system principals are skipped unless --include-system is given; inherited
entries are skipped unless --include-inherited is given.

Usage:
    export MS365_TENANT_ID="your-tenant-id"
    export MS365_CLIENT_ID="your-client-id"
    export MS365_CLIENT_SECRET="your-client-secret"

    python mailbox_permissions_report.py
    python mailbox_permissions_report.py --recipient-type SharedMailbox --full-access-only
    python mailbox_permissions_report.py --filter "Department -eq 'Finance'" -o ./reports
    python mailbox_permissions_report.py --include-inherited --no-resolve
"""
import argparse
import logging
import os
import sys
from typing import Any, Dict, List, Optional

# Add repo root to path for imports
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
from exoreport.constants import FULL_ACCESS, MAILBOX_TYPES
from exoreport.directory import RecipientDirectory, is_system_principal, load_directory
from exoreport.exchange import ExchangeAdminClient, list_mailboxes, mailbox_identity
from exoreport.utils import (
    AuthError,
    ProgressTracker,
    check_and_raise_auth_error,
    failure_sentinel,
    normalize_rights,
    print_report_summary,
)

logger = logging.getLogger(__name__)

REPORT_NAME = "mailbox_permissions"

BASE_COLUMNS = ['Mailbox', 'MailboxEmail', 'MailboxType', 'Trustee', 'AccessRights']
RESOLVED_COLUMNS = ['TrusteeDisplayName', 'TrusteeEmail', 'TrusteeType']
INHERITANCE_COLUMNS = ['IsInherited', 'Deny']


def report_columns(args) -> List[str]:
    return build_columns(
        BASE_COLUMNS,
        (not args.no_resolve, RESOLVED_COLUMNS),
        (args.include_inherited, INHERITANCE_COLUMNS),
    )


def filter_permissions(
    permissions: List[Dict[str, Any]],
    include_inherited: bool = False,
    include_system: bool = False,
    full_access_only: bool = False,
) -> List[Dict[str, Any]]:
    """Drop inherited, system and (optionally) non-FullAccess entries."""
    kept = []
    for perm in permissions:
        if perm.get('IsInherited') and not include_inherited:
            continue
        if not include_system and is_system_principal(str(perm.get('User') or '')):
            continue
        if full_access_only and FULL_ACCESS not in normalize_rights(perm.get('AccessRights')):
            continue
        kept.append(perm)
    return kept


def _mailbox_columns(mailbox: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'Mailbox': mailbox.get('DisplayName'),
        'MailboxEmail': mailbox.get('PrimarySmtpAddress'),
        'MailboxType': mailbox.get('RecipientTypeDetails'),
    }


def build_permission_rows(
    mailbox: Dict[str, Any],
    permissions: List[Dict[str, Any]],
    directory: Optional[RecipientDirectory] = None,
) -> List[Dict[str, Any]]:
    """Flatten one mailbox's permission entries into report rows."""
    rows = []
    for perm in permissions:
        trustee = str(perm.get('User') or '')
        row = _mailbox_columns(mailbox)
        row.update({
            'Trustee': trustee,
            'AccessRights': normalize_rights(perm.get('AccessRights')),
            'IsInherited': bool(perm.get('IsInherited')),
            'Deny': bool(perm.get('Deny')),
        })
        if directory is not None:
            row.update(directory.resolve_trustee(trustee).to_columns('Trustee'))
        rows.append(row)
    return rows


def collect_mailbox_permissions(
    client: ExchangeAdminClient,
    mailboxes: List[Dict[str, Any]],
    directory: Optional[RecipientDirectory] = None,
    include_inherited: bool = False,
    include_system: bool = False,
    full_access_only: bool = False,
) -> List[Dict[str, Any]]:
    """Query Get-MailboxPermission per mailbox and build rows."""
    rows: List[Dict[str, Any]] = []

    with ProgressTracker("Mailbox permissions", total_items=len(mailboxes)) as tracker:
        for mailbox in mailboxes:
            identity = mailbox_identity(mailbox)
            tracker.start_item(mailbox.get('PrimarySmtpAddress') or identity)
            try:
                permissions = client.invoke('Get-MailboxPermission', {'Identity': identity})
                permissions = filter_permissions(
                    permissions,
                    include_inherited=include_inherited,
                    include_system=include_system,
                    full_access_only=full_access_only,
                )
                mailbox_rows = build_permission_rows(mailbox, permissions, directory)
            except Exception as e:
                check_and_raise_auth_error(e, f"get permissions for mailbox {identity}", "exchange")
                logger.warning(f"Failed to get permissions for mailbox {identity}: {e}")
                tracker.fail_item()
                row = _mailbox_columns(mailbox)
                row['AccessRights'] = failure_sentinel(e)
                mailbox_rows = [row]

            rows.extend(mailbox_rows)
            tracker.add_rows(len(mailbox_rows))
            tracker.complete_item()

    return rows


def main():
    parser = argparse.ArgumentParser(
        description='Exchange Online - Mailbox Permissions Report',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=CREDENTIALS_HELP,
    )
    parser.add_argument('--filter',
                        help='OPATH filter passed to Get-Mailbox, e.g. "Department -eq \'Sales\'"')
    parser.add_argument('--recipient-type', action='append', choices=MAILBOX_TYPES,
                        help='Limit to a mailbox type (repeatable; default: all)')
    parser.add_argument('--include-inherited', action='store_true',
                        help='Include inherited permission entries (adds IsInherited, Deny columns)')
    parser.add_argument('--include-system', action='store_true',
                        help='Include NT AUTHORITY and SID principals')
    parser.add_argument('--full-access-only', action='store_true',
                        help='Only report entries granting FullAccess')
    parser.add_argument('--no-resolve', action='store_true',
                        help='Skip trustee resolution (drops Trustee* detail columns)')
    add_common_arguments(parser)

    args = parser.parse_args()
    prepare_run(args)
    client = connect_exchange(args)

    try:
        mailboxes = list_mailboxes(client, args.recipient_type, args.filter)
        directory = None if args.no_resolve else load_directory(client)
        rows = collect_mailbox_permissions(
            client,
            mailboxes,
            directory,
            include_inherited=args.include_inherited,
            include_system=args.include_system,
            full_access_only=args.full_access_only,
        )
    except AuthError as e:
        abort_on_auth_error(e)
        return
    except Exception as e:
        logger.error(f"Failed to build mailbox permissions report: {e}")
        print(f"ERROR: {e}")
        sys.exit(1)

    print_report_summary("Permission entries by mailbox type", rows, 'MailboxType')
    write_report(rows, report_columns(args), REPORT_NAME, args)


if __name__ == '__main__':
    main()
