#!/usr/bin/env python3
"""
Exchange Online - Calendar Processing Report

One row per room/equipment mailbox (plus shared mailboxes with
--include-shared) with its Get-CalendarProcessing booking settings.

ResourceDelegates and the In/OutOfPolicy lists hold names or legacy DNs;
each entry is resolved to a primary SMTP address through the recipient
directory and written as a ;-joined list, with Not Found in place of
entries that no longer resolve.

Usage:
    python calendar_processing_report.py
    python calendar_processing_report.py --include-policies
    python calendar_processing_report.py --filter "Office -eq 'London'" --include-shared
"""
import argparse
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
    connect_exchange,
    prepare_run,
    write_report,
)
from exoreport.constants import RESOURCE_MAILBOX_TYPES, SHARED_MAILBOX
from exoreport.directory import RecipientDirectory, load_directory
from exoreport.exchange import ExchangeAdminClient, list_mailboxes, mailbox_identity
from exoreport.utils import (
    AuthError,
    ProgressTracker,
    as_list,
    check_and_raise_auth_error,
    failure_sentinel,
    print_report_summary,
)

logger = logging.getLogger(__name__)

REPORT_NAME = "calendar_processing"

MAILBOX_COLUMNS = ['Mailbox', 'MailboxEmail', 'MailboxType']
SETTING_COLUMNS = [
    'AutomateProcessing', 'AllowConflicts', 'AllowRecurringMeetings',
    'BookingWindowInDays', 'MaximumDurationInMinutes', 'ProcessExternalMeetingMessages',
    'AddOrganizerToSubject', 'DeleteSubject', 'DeleteComments', 'ResourceDelegates',
]
POLICY_FLAG_COLUMNS = ['AllBookInPolicy', 'AllRequestInPolicy', 'AllRequestOutOfPolicy']
POLICY_LIST_COLUMNS = ['BookInPolicy', 'RequestInPolicy', 'RequestOutOfPolicy']

# Multi-valued settings holding principals
PRINCIPAL_LIST_SETTINGS = ['ResourceDelegates'] + POLICY_LIST_COLUMNS


def report_columns(args) -> List[str]:
    return build_columns(
        MAILBOX_COLUMNS + SETTING_COLUMNS,
        (args.include_policies, POLICY_FLAG_COLUMNS + POLICY_LIST_COLUMNS),
    )


def resolve_addresses(values: Any, directory: RecipientDirectory) -> List[str]:
    return [directory.address_or_sentinel(str(v)) for v in as_list(values)]


def build_processing_row(
    mailbox: Dict[str, Any],
    processing: Dict[str, Any],
    directory: RecipientDirectory,
) -> Dict[str, Any]:
    row: Dict[str, Any] = {
        'Mailbox': mailbox.get('DisplayName'),
        'MailboxEmail': mailbox.get('PrimarySmtpAddress'),
        'MailboxType': mailbox.get('RecipientTypeDetails'),
    }
    for column in SETTING_COLUMNS + POLICY_FLAG_COLUMNS:
        row[column] = processing.get(column)
    for column in PRINCIPAL_LIST_SETTINGS:
        row[column] = resolve_addresses(processing.get(column), directory)
    return row


def collect_calendar_processing(
    client: ExchangeAdminClient,
    mailboxes: List[Dict[str, Any]],
    directory: RecipientDirectory,
) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []

    with ProgressTracker("Calendar processing", total_items=len(mailboxes)) as tracker:
        for mailbox in mailboxes:
            identity = mailbox_identity(mailbox)
            tracker.start_item(mailbox.get('PrimarySmtpAddress') or identity)
            try:
                processing = client.invoke_one('Get-CalendarProcessing', {'Identity': identity}) or {}
                row = build_processing_row(mailbox, processing, directory)
            except Exception as e:
                check_and_raise_auth_error(e, f"get calendar processing for {identity}", "exchange")
                logger.warning(f"Failed to get calendar processing for {identity}: {e}")
                tracker.fail_item()
                row = build_processing_row(mailbox, {}, directory)
                row['AutomateProcessing'] = failure_sentinel(e)

            rows.append(row)
            tracker.add_rows(1)
            tracker.complete_item()

    return rows


def main():
    parser = argparse.ArgumentParser(
        description='Exchange Online - Calendar Processing Report',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=CREDENTIALS_HELP,
    )
    parser.add_argument('--filter',
                        help='OPATH filter passed to Get-Mailbox')
    parser.add_argument('--include-policies', action='store_true',
                        help='Add the BookIn/RequestIn/RequestOutOfPolicy columns')
    parser.add_argument('--include-shared', action='store_true',
                        help='Also report shared mailboxes')
    add_common_arguments(parser)

    args = parser.parse_args()
    prepare_run(args)
    client = connect_exchange(args)

    recipient_types = list(RESOURCE_MAILBOX_TYPES)
    if args.include_shared:
        recipient_types.append(SHARED_MAILBOX)

    try:
        mailboxes = list_mailboxes(client, recipient_types, args.filter)
        directory = load_directory(client)
        rows = collect_calendar_processing(client, mailboxes, directory)
    except AuthError as e:
        abort_on_auth_error(e)
        return
    except Exception as e:
        logger.error(f"Failed to build calendar processing report: {e}")
        print(f"ERROR: {e}")
        sys.exit(1)

    print_report_summary("Mailboxes by type", rows, 'MailboxType')
    write_report(rows, report_columns(args), REPORT_NAME, args)


if __name__ == '__main__':
    main()
