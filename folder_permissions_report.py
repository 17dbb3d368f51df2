#!/usr/bin/env python3
"""
Exchange Online - Mailbox Folder Permissions Report

Lists the permissions on one folder (default: Calendar) of every mailbox.

Well-known folders are localized ("Kalender", "Agenda", ...), so the folder
path is looked up per mailbox with Get-MailboxFolderStatistics -FolderScope
before Get-MailboxFolderPermission is called. Any other --folder value is
used as a path below the mailbox root, e.g. --folder "Inbox\\Invoices".

The Default and Anonymous entries are skipped unless --include-default is
given. Each user is resolved against the recipient directory.

Usage:
    python folder_permissions_report.py
    python folder_permissions_report.py --folder Contacts --recipient-type SharedMailbox
    python folder_permissions_report.py --include-default
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
from exoreport.constants import DEFAULT_FOLDER, DEFAULT_FOLDER_PRINCIPALS, MAILBOX_TYPES
from exoreport.directory import RecipientDirectory, load_directory
from exoreport.exchange import ExchangeAdminClient, list_mailboxes, mailbox_identity
from exoreport.utils import (
    AuthError,
    ProgressTracker,
    check_and_raise_auth_error,
    failure_sentinel,
    normalize_rights,
    principal_name,
    print_report_summary,
)

logger = logging.getLogger(__name__)

REPORT_NAME = "folder_permissions"

# Folder names Get-MailboxFolderStatistics accepts as -FolderScope
WELL_KNOWN_FOLDERS = {
    'calendar', 'contacts', 'inbox', 'sentitems', 'deleteditems',
    'drafts', 'junkemail', 'notes', 'outbox', 'tasks',
}

BASE_COLUMNS = [
    'Mailbox', 'MailboxEmail', 'MailboxType', 'FolderPath',
    'User', 'UserDisplayName', 'UserEmail', 'UserType', 'AccessRights',
]
SHARING_COLUMNS = ['SharingPermissionFlags']


def report_columns(args) -> List[str]:
    # Sharing flags only ever appear on calendar folders
    is_calendar = (args.folder or DEFAULT_FOLDER).lower() == 'calendar'
    return build_columns(BASE_COLUMNS, (is_calendar, SHARING_COLUMNS))


def _folder_path(record: Dict[str, Any]) -> str:
    # FolderPath uses '/', folder identities use '\'
    return '\\' + str(record.get('FolderPath') or '').strip('/').replace('/', '\\')


def find_folder_path(client: ExchangeAdminClient, identity: str, folder: str) -> Optional[str]:
    """
    Path of `folder` in one mailbox, e.g. "\\Kalender".

    Returns None when a well-known folder does not exist in the mailbox.
    """
    if folder.lower() not in WELL_KNOWN_FOLDERS:
        return '\\' + folder.strip('\\/')

    folders = client.invoke('Get-MailboxFolderStatistics', {'Identity': identity, 'FolderScope': folder})
    for record in folders:
        if str(record.get('FolderType') or '').lower() == folder.lower():
            return _folder_path(record)
    return None


def _mailbox_columns(mailbox: Dict[str, Any], folder_path: Optional[str]) -> Dict[str, Any]:
    return {
        'Mailbox': mailbox.get('DisplayName'),
        'MailboxEmail': mailbox.get('PrimarySmtpAddress'),
        'MailboxType': mailbox.get('RecipientTypeDetails'),
        'FolderPath': folder_path,
    }


def build_folder_permission_rows(
    mailbox: Dict[str, Any],
    folder_path: str,
    permissions: List[Dict[str, Any]],
    directory: RecipientDirectory,
    include_default: bool = False,
) -> List[Dict[str, Any]]:
    rows = []
    for perm in permissions:
        user = principal_name(perm.get('User'))
        if not include_default and user.strip().lower() in DEFAULT_FOLDER_PRINCIPALS:
            continue
        row = _mailbox_columns(mailbox, folder_path)
        row['User'] = user
        row['AccessRights'] = normalize_rights(perm.get('AccessRights'))
        row['SharingPermissionFlags'] = perm.get('SharingPermissionFlags')
        row.update(directory.resolve_trustee(user).to_columns('User'))
        rows.append(row)
    return rows


def collect_folder_permissions(
    client: ExchangeAdminClient,
    mailboxes: List[Dict[str, Any]],
    directory: RecipientDirectory,
    folder: str = DEFAULT_FOLDER,
    include_default: bool = False,
) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []

    with ProgressTracker(f"{folder} permissions", total_items=len(mailboxes)) as tracker:
        for mailbox in mailboxes:
            identity = mailbox_identity(mailbox)
            tracker.start_item(mailbox.get('PrimarySmtpAddress') or identity)
            folder_path = None
            try:
                folder_path = find_folder_path(client, identity, folder)
                if folder_path is None:
                    logger.debug(f"Mailbox {identity} has no {folder} folder")
                    mailbox_rows = []
                else:
                    permissions = client.invoke(
                        'Get-MailboxFolderPermission',
                        {'Identity': f"{identity}:{folder_path}"},
                    )
                    mailbox_rows = build_folder_permission_rows(
                        mailbox, folder_path, permissions, directory, include_default
                    )
            except Exception as e:
                check_and_raise_auth_error(e, f"get {folder} permissions for mailbox {identity}", "exchange")
                logger.warning(f"Failed to get {folder} permissions for mailbox {identity}: {e}")
                tracker.fail_item()
                row = _mailbox_columns(mailbox, folder_path)
                row['AccessRights'] = failure_sentinel(e)
                mailbox_rows = [row]

            rows.extend(mailbox_rows)
            tracker.add_rows(len(mailbox_rows))
            tracker.complete_item()

    return rows


def main():
    parser = argparse.ArgumentParser(
        description='Exchange Online - Mailbox Folder Permissions Report',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=CREDENTIALS_HELP,
    )
    parser.add_argument('--folder', default=DEFAULT_FOLDER,
                        help=f'Folder to report (default: {DEFAULT_FOLDER})')
    parser.add_argument('--filter',
                        help='OPATH filter passed to Get-Mailbox')
    parser.add_argument('--recipient-type', action='append', choices=MAILBOX_TYPES,
                        help='Limit to a mailbox type (repeatable; default: all)')
    parser.add_argument('--include-default', action='store_true',
                        help='Include the Default and Anonymous entries')
    add_common_arguments(parser)

    args = parser.parse_args()
    prepare_run(args)
    client = connect_exchange(args)

    try:
        mailboxes = list_mailboxes(client, args.recipient_type, args.filter)
        directory = load_directory(client)
        rows = collect_folder_permissions(
            client, mailboxes, directory,
            folder=args.folder,
            include_default=args.include_default,
        )
    except AuthError as e:
        abort_on_auth_error(e)
        return
    except Exception as e:
        logger.error(f"Failed to build folder permissions report: {e}")
        print(f"ERROR: {e}")
        sys.exit(1)

    print_report_summary(f"{args.folder} permission entries by mailbox type", rows, 'MailboxType')
    write_report(rows, report_columns(args), REPORT_NAME, args)


if __name__ == '__main__':
    main()
