#!/usr/bin/env python3
"""
Exchange Online - Public Folder Statistics Report

One row per public folder below --root (default: the whole hierarchy) with
item count, size and last modification time.

The hierarchy (Get-PublicFolder -Recurse) and the statistics
(Get-PublicFolderStatistics) are two independent listings; they are joined
by EntryId. A folder with no statistics entry is written with Not Found in
ItemCount. With --include-mail-enabled, Get-MailPublicFolder is joined the
same way to add the folders' addresses.

Usage:
    python public_folder_statistics_report.py
    python public_folder_statistics_report.py --root "\\Departments\\Finance" --include-mail-enabled
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
from exoreport.constants import NOT_FOUND, PUBLIC_FOLDER_ROOT, RESULT_SIZE_UNLIMITED
from exoreport.exchange import ExchangeAdminClient, list_public_folders, public_folder_path
from exoreport.utils import AuthError, as_list, parse_byte_quantity, print_report_summary

logger = logging.getLogger(__name__)

REPORT_NAME = "public_folder_statistics"

BASE_COLUMNS = [
    'FolderPath', 'Name', 'FolderClass', 'MailEnabled', 'ContentMailbox',
    'ItemCount', 'TotalItemSize', 'LastModificationTime',
]
MAIL_COLUMNS = ['PrimarySmtpAddress', 'EmailAddresses', 'HiddenFromAddressListsEnabled']


def report_columns(args) -> List[str]:
    return build_columns(BASE_COLUMNS, (args.include_mail_enabled, MAIL_COLUMNS))


def _entry_id(record: Dict[str, Any]) -> str:
    return str(record.get('EntryId') or '').strip().lower()


def index_by_entry_id(records: List[Dict[str, Any]]) -> Dict[str, Dict[str, Any]]:
    """Map lowercased EntryId to record; the first record per EntryId wins."""
    index: Dict[str, Dict[str, Any]] = {}
    for record in records:
        key = _entry_id(record)
        if key and key not in index:
            index[key] = record
    return index


def build_folder_rows(
    folders: List[Dict[str, Any]],
    statistics: List[Dict[str, Any]],
    mail_folders: Optional[List[Dict[str, Any]]] = None,
) -> List[Dict[str, Any]]:
    stats_by_id = index_by_entry_id(statistics)
    mail_by_id = index_by_entry_id(mail_folders or [])
    missing = 0

    rows = []
    for folder in folders:
        key = _entry_id(folder)
        row: Dict[str, Any] = {
            'FolderPath': public_folder_path(folder),
            'Name': folder.get('Name'),
            'FolderClass': folder.get('FolderClass'),
            'MailEnabled': folder.get('MailEnabled'),
            'ContentMailbox': folder.get('ContentMailboxName'),
        }

        stats = stats_by_id.get(key)
        if stats is None:
            missing += 1
            row['ItemCount'] = NOT_FOUND
        else:
            row.update({
                'ItemCount': stats.get('ItemCount'),
                'TotalItemSize': parse_byte_quantity(stats.get('TotalItemSize')),
                'LastModificationTime': stats.get('LastModificationTime'),
            })

        mail = mail_by_id.get(key)
        if mail is not None:
            row.update({
                'PrimarySmtpAddress': mail.get('PrimarySmtpAddress'),
                'EmailAddresses': as_list(mail.get('EmailAddresses')),
                'HiddenFromAddressListsEnabled': mail.get('HiddenFromAddressListsEnabled'),
            })

        rows.append(row)

    if missing:
        logger.warning(f"{missing:,} folders had no statistics entry")
    return rows


def collect_public_folder_statistics(
    client: ExchangeAdminClient,
    root: str = PUBLIC_FOLDER_ROOT,
    include_mail_enabled: bool = False,
) -> List[Dict[str, Any]]:
    folders = list_public_folders(client, root)

    logger.info("Listing public folder statistics...")
    statistics = client.invoke('Get-PublicFolderStatistics', {'ResultSize': RESULT_SIZE_UNLIMITED})
    logger.info(f"Found {len(statistics):,} statistics entries")

    mail_folders = None
    if include_mail_enabled:
        logger.info("Listing mail-enabled public folders...")
        mail_folders = client.invoke('Get-MailPublicFolder', {'ResultSize': RESULT_SIZE_UNLIMITED})
        logger.info(f"Found {len(mail_folders):,} mail-enabled public folders")

    return build_folder_rows(folders, statistics, mail_folders)


def main():
    parser = argparse.ArgumentParser(
        description='Exchange Online - Public Folder Statistics Report',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=CREDENTIALS_HELP,
    )
    parser.add_argument('--root', default=PUBLIC_FOLDER_ROOT,
                        help='Folder to start from (default: the hierarchy root)')
    parser.add_argument('--include-mail-enabled', action='store_true',
                        help='Add address columns for mail-enabled folders')
    add_common_arguments(parser)

    args = parser.parse_args()
    prepare_run(args)
    client = connect_exchange(args)

    try:
        rows = collect_public_folder_statistics(
            client, root=args.root, include_mail_enabled=args.include_mail_enabled
        )
    except AuthError as e:
        abort_on_auth_error(e)
        return
    except Exception as e:
        logger.error(f"Failed to build public folder statistics report: {e}")
        print(f"ERROR: {e}")
        sys.exit(1)

    print_report_summary("Folders by class", rows, 'FolderClass')
    write_report(rows, report_columns(args), REPORT_NAME, args)


if __name__ == '__main__':
    main()
