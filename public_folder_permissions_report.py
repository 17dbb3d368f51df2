#!/usr/bin/env python3
"""
Exchange Online - Public Folder Permissions Report

Lists the client permissions of every public folder below --root. The
Default and Anonymous entries are skipped unless --include-default is
given; users are resolved against the recipient directory unless
--no-resolve is given.

Usage:
    python public_folder_permissions_report.py
    python public_folder_permissions_report.py --root "\\Projects" --include-default
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
from exoreport.constants import DEFAULT_FOLDER_PRINCIPALS, PUBLIC_FOLDER_ROOT
from exoreport.directory import RecipientDirectory, load_directory
from exoreport.exchange import ExchangeAdminClient, list_public_folders, public_folder_path
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

REPORT_NAME = "public_folder_permissions"

BASE_COLUMNS = ['FolderPath', 'FolderClass', 'User', 'AccessRights']
RESOLVED_COLUMNS = ['UserDisplayName', 'UserEmail', 'UserType']


def report_columns(args) -> List[str]:
    return build_columns(BASE_COLUMNS, (not args.no_resolve, RESOLVED_COLUMNS))


def _folder_identity(folder: Dict[str, Any]) -> str:
    return str(folder.get('EntryId') or public_folder_path(folder))


def build_permission_rows(
    folder: Dict[str, Any],
    permissions: List[Dict[str, Any]],
    directory: Optional[RecipientDirectory] = None,
    include_default: bool = False,
) -> List[Dict[str, Any]]:
    rows = []
    for perm in permissions:
        user = principal_name(perm.get('User'))
        if not include_default and user.strip().lower() in DEFAULT_FOLDER_PRINCIPALS:
            continue
        row: Dict[str, Any] = {
            'FolderPath': public_folder_path(folder),
            'FolderClass': folder.get('FolderClass'),
            'User': user,
            'AccessRights': normalize_rights(perm.get('AccessRights')),
        }
        if directory is not None:
            row.update(directory.resolve_trustee(user).to_columns('User'))
        rows.append(row)
    return rows


def collect_public_folder_permissions(
    client: ExchangeAdminClient,
    folders: List[Dict[str, Any]],
    directory: Optional[RecipientDirectory] = None,
    include_default: bool = False,
) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []

    with ProgressTracker("Public folder permissions", total_items=len(folders)) as tracker:
        for folder in folders:
            identity = _folder_identity(folder)
            tracker.start_item(public_folder_path(folder))
            try:
                permissions = client.invoke('Get-PublicFolderClientPermission', {'Identity': identity})
                folder_rows = build_permission_rows(folder, permissions, directory, include_default)
            except Exception as e:
                check_and_raise_auth_error(e, f"get permissions for public folder {identity}", "exchange")
                logger.warning(f"Failed to get permissions for public folder {public_folder_path(folder)}: {e}")
                tracker.fail_item()
                folder_rows = [{
                    'FolderPath': public_folder_path(folder),
                    'FolderClass': folder.get('FolderClass'),
                    'AccessRights': failure_sentinel(e),
                }]

            rows.extend(folder_rows)
            tracker.add_rows(len(folder_rows))
            tracker.complete_item()

    return rows


def main():
    parser = argparse.ArgumentParser(
        description='Exchange Online - Public Folder Permissions Report',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=CREDENTIALS_HELP,
    )
    parser.add_argument('--root', default=PUBLIC_FOLDER_ROOT,
                        help='Folder to start from (default: the hierarchy root)')
    parser.add_argument('--include-default', action='store_true',
                        help='Include the Default and Anonymous entries')
    parser.add_argument('--no-resolve', action='store_true',
                        help='Skip user resolution (drops User* detail columns)')
    add_common_arguments(parser)

    args = parser.parse_args()
    prepare_run(args)
    client = connect_exchange(args)

    try:
        folders = list_public_folders(client, args.root)
        directory = None if args.no_resolve else load_directory(client)
        rows = collect_public_folder_permissions(
            client, folders, directory, include_default=args.include_default
        )
    except AuthError as e:
        abort_on_auth_error(e)
        return
    except Exception as e:
        logger.error(f"Failed to build public folder permissions report: {e}")
        print(f"ERROR: {e}")
        sys.exit(1)

    print_report_summary("Permission entries by folder class", rows, 'FolderClass')
    write_report(rows, report_columns(args), REPORT_NAME, args)


if __name__ == '__main__':
    main()
