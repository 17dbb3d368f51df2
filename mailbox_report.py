#!/usr/bin/env python3
"""
Exchange Online - Mailbox Report

One row per mailbox with its core properties. Optional column sets:

    --include-addresses   all proxy addresses (EmailAddresses, ;-joined)
    --include-quota       warning/send/send-receive quotas in bytes
    --include-archive     archive status, name and quota
    --include-statistics  item count, sizes and last logon from
                          Get-MailboxStatistics, joined by mailbox GUID

Quotas set to "Unlimited" are written as Unlimited; every other size is
written as an integer byte count. A mailbox whose statistics lookup fails
carries the error in its TotalItemSize cell.

Usage:
    python mailbox_report.py
    python mailbox_report.py --recipient-type SharedMailbox --include-quota
    python mailbox_report.py --include-statistics --include-archive -o ./reports
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
from exoreport.constants import MAILBOX_TYPES, RESULT_SIZE_UNLIMITED
from exoreport.exchange import ExchangeAdminClient, list_mailboxes, mailbox_identity
from exoreport.utils import (
    AuthError,
    ProgressTracker,
    as_list,
    check_and_raise_auth_error,
    failure_sentinel,
    parse_byte_quantity,
    print_report_summary,
)

logger = logging.getLogger(__name__)

REPORT_NAME = "mailboxes"

BASE_COLUMNS = [
    'DisplayName', 'PrimarySmtpAddress', 'Alias', 'UserPrincipalName',
    'RecipientTypeDetails', 'ExchangeGuid', 'WhenCreated', 'HiddenFromAddressListsEnabled',
]
ADDRESS_COLUMNS = ['EmailAddresses']
QUOTA_COLUMNS = ['IssueWarningQuota', 'ProhibitSendQuota', 'ProhibitSendReceiveQuota', 'UseDatabaseQuotaDefaults']
ARCHIVE_COLUMNS = ['ArchiveStatus', 'ArchiveName', 'ArchiveQuota', 'AutoExpandingArchiveEnabled']
STATISTICS_COLUMNS = ['ItemCount', 'TotalItemSize', 'TotalDeletedItemSize', 'LastLogonTime']

QUOTA_PROPERTIES = ['IssueWarningQuota', 'ProhibitSendQuota', 'ProhibitSendReceiveQuota']


def report_columns(args) -> List[str]:
    return build_columns(
        BASE_COLUMNS,
        (args.include_addresses, ADDRESS_COLUMNS),
        (args.include_quota, QUOTA_COLUMNS),
        (args.include_archive, ARCHIVE_COLUMNS),
        (args.include_statistics, STATISTICS_COLUMNS),
    )


def quota_value(value: Any) -> Any:
    """Byte count for a quota, or the literal Unlimited."""
    if isinstance(value, str) and value.strip().lower() == RESULT_SIZE_UNLIMITED.lower():
        return RESULT_SIZE_UNLIMITED
    return parse_byte_quantity(value)


def _statistics_key(record: Dict[str, Any]) -> str:
    # GUID when present, else the primary address; empty when neither is known
    return str(record.get('ExchangeGuid') or record.get('PrimarySmtpAddress') or '').strip().lower()


def build_mailbox_row(mailbox: Dict[str, Any]) -> Dict[str, Any]:
    """Flatten a Get-Mailbox record into every optional column set."""
    row = {column: mailbox.get(column) for column in BASE_COLUMNS}
    row['EmailAddresses'] = as_list(mailbox.get('EmailAddresses'))
    for prop in QUOTA_PROPERTIES:
        row[prop] = quota_value(mailbox.get(prop))
    row['UseDatabaseQuotaDefaults'] = mailbox.get('UseDatabaseQuotaDefaults')
    row['ArchiveStatus'] = mailbox.get('ArchiveStatus')
    row['ArchiveName'] = as_list(mailbox.get('ArchiveName'))
    row['ArchiveQuota'] = quota_value(mailbox.get('ArchiveQuota'))
    row['AutoExpandingArchiveEnabled'] = mailbox.get('AutoExpandingArchiveEnabled')
    return row


def statistics_columns(stats: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'ItemCount': stats.get('ItemCount'),
        'TotalItemSize': parse_byte_quantity(stats.get('TotalItemSize')),
        'TotalDeletedItemSize': parse_byte_quantity(stats.get('TotalDeletedItemSize')),
        'LastLogonTime': stats.get('LastLogonTime'),
    }


def join_statistics(
    rows: List[Dict[str, Any]],
    statistics: Dict[str, Dict[str, Any]],
) -> List[Dict[str, Any]]:
    """
    Merge statistics columns into mailbox rows by mailbox GUID.

    `statistics` maps the lowercased mailbox GUID (primary address for a
    mailbox without one) to either a Get-MailboxStatistics
    record or a failure sentinel string. Rows without a match are left with
    empty statistics columns.
    """
    for row in rows:
        key = _statistics_key(row)
        stats = statistics.get(key) if key else None
        if stats is None:
            continue
        if isinstance(stats, str):
            row['TotalItemSize'] = stats
        else:
            row.update(statistics_columns(stats))
    return rows


def collect_statistics(client: ExchangeAdminClient, mailboxes: List[Dict[str, Any]]) -> Dict[str, Any]:
    """Get-MailboxStatistics per mailbox, keyed like join_statistics expects."""
    statistics: Dict[str, Any] = {}

    with ProgressTracker("Mailbox statistics", total_items=len(mailboxes)) as tracker:
        for mailbox in mailboxes:
            identity = mailbox_identity(mailbox)
            key = _statistics_key(mailbox)
            tracker.start_item(mailbox.get('PrimarySmtpAddress') or identity)
            if not key:
                logger.warning(f"Mailbox {identity} has no GUID or primary address; skipping statistics")
                tracker.complete_item()
                continue
            try:
                stats = client.invoke_one('Get-MailboxStatistics', {'Identity': identity})
                if stats:
                    statistics[key] = stats
                    tracker.add_rows(1)
            except Exception as e:
                check_and_raise_auth_error(e, f"get statistics for mailbox {identity}", "exchange")
                logger.warning(f"Failed to get statistics for mailbox {identity}: {e}")
                tracker.fail_item()
                statistics[key] = failure_sentinel(e)
            tracker.complete_item()

    return statistics


def collect_mailbox_rows(
    client: ExchangeAdminClient,
    mailboxes: List[Dict[str, Any]],
    include_statistics: bool = False,
) -> List[Dict[str, Any]]:
    rows = [build_mailbox_row(m) for m in mailboxes]
    if include_statistics:
        rows = join_statistics(rows, collect_statistics(client, mailboxes))
    return rows


def main():
    parser = argparse.ArgumentParser(
        description='Exchange Online - Mailbox Report',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=CREDENTIALS_HELP,
    )
    parser.add_argument('--filter',
                        help='OPATH filter passed to Get-Mailbox')
    parser.add_argument('--recipient-type', action='append', choices=MAILBOX_TYPES,
                        help='Limit to a mailbox type (repeatable; default: all)')
    parser.add_argument('--include-addresses', action='store_true',
                        help='Add the EmailAddresses column')
    parser.add_argument('--include-quota', action='store_true',
                        help='Add quota columns')
    parser.add_argument('--include-archive', action='store_true',
                        help='Add archive columns')
    parser.add_argument('--include-statistics', action='store_true',
                        help='Add Get-MailboxStatistics columns (one extra call per mailbox)')
    add_common_arguments(parser)

    args = parser.parse_args()
    prepare_run(args)
    client = connect_exchange(args)

    try:
        mailboxes = list_mailboxes(client, args.recipient_type, args.filter)
        rows = collect_mailbox_rows(client, mailboxes, include_statistics=args.include_statistics)
    except AuthError as e:
        abort_on_auth_error(e)
        return
    except Exception as e:
        logger.error(f"Failed to build mailbox report: {e}")
        print(f"ERROR: {e}")
        sys.exit(1)

    print_report_summary("Mailboxes by type", rows, 'RecipientTypeDetails')
    write_report(rows, report_columns(args), REPORT_NAME, args)


if __name__ == '__main__':
    main()
