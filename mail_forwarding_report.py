#!/usr/bin/env python3
"""
Exchange Online - Mail Forwarding Report

One row per forwarding target found on a mailbox:

    Mailbox    ForwardingAddress (a recipient, resolved through the directory)
    SMTP       ForwardingSmtpAddress (any address, set by users or admins)
    InboxRule  ForwardTo / ForwardAsAttachmentTo / RedirectTo of an inbox rule
               (--include-inbox-rules, one extra call per mailbox)

IsExternal is True when the target's domain is not one of the tenant's
accepted domains. Mailboxes without forwarding do not appear.

Usage:
    python mail_forwarding_report.py
    python mail_forwarding_report.py --include-inbox-rules --filter "RecipientTypeDetails -eq 'UserMailbox'"
"""
import argparse
import logging
import os
import re
import sys
from typing import Any, Dict, List, Optional, Set

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
from exoreport.constants import NOT_FOUND
from exoreport.directory import RecipientDirectory, load_directory
from exoreport.exchange import ExchangeAdminClient, list_mailboxes, mailbox_identity
from exoreport.utils import (
    AuthError,
    ProgressTracker,
    as_list,
    check_and_raise_auth_error,
    failure_sentinel,
    print_report_summary,
    strip_address_prefix,
)

logger = logging.getLogger(__name__)

REPORT_NAME = "mail_forwarding"

FORWARD_MAILBOX = "Mailbox"
FORWARD_SMTP = "SMTP"
FORWARD_INBOX_RULE = "InboxRule"

RULE_TARGET_PROPERTIES = ['ForwardTo', 'ForwardAsAttachmentTo', 'RedirectTo']

BASE_COLUMNS = [
    'Mailbox', 'MailboxEmail', 'MailboxType', 'ForwardingType',
    'ForwardingTarget', 'ForwardingTargetEmail', 'IsExternal', 'DeliverToMailboxAndForward',
]
RULE_COLUMNS = ['RuleName', 'RuleEnabled', 'RuleAction']

# Inbox rule targets look like '"Jane Doe" [SMTP:jane@fabrikam.com]'
_RULE_ADDRESS = re.compile(r'\[(?:SMTP|EX):([^\]]+)\]', re.IGNORECASE)


def report_columns(args) -> List[str]:
    return build_columns(BASE_COLUMNS, (args.include_inbox_rules, RULE_COLUMNS))


def load_accepted_domains(client: ExchangeAdminClient) -> Set[str]:
    domains = client.invoke('Get-AcceptedDomain')
    names = {str(d.get('DomainName') or d.get('Name') or '').lower() for d in domains}
    names.discard('')
    logger.info(f"Loaded {len(names)} accepted domains")
    return names


def is_external(address: Optional[str], accepted_domains: Set[str]) -> Optional[bool]:
    """None when the address is unknown, so the cell stays empty."""
    if not address or '@' not in address or address == NOT_FOUND:
        return None
    return address.rsplit('@', 1)[1].lower() not in accepted_domains


def rule_target_address(target: str, directory: RecipientDirectory) -> str:
    match = _RULE_ADDRESS.search(target)
    if match:
        address = match.group(1)
        # EX: targets carry a legacy DN rather than an address
        if '@' in address:
            return address
        return directory.address_or_sentinel(address)
    return directory.address_or_sentinel(target.strip().strip('"'))


def _mailbox_columns(mailbox: Dict[str, Any]) -> Dict[str, Any]:
    return {
        'Mailbox': mailbox.get('DisplayName'),
        'MailboxEmail': mailbox.get('PrimarySmtpAddress'),
        'MailboxType': mailbox.get('RecipientTypeDetails'),
    }


def build_forwarding_rows(
    mailbox: Dict[str, Any],
    directory: RecipientDirectory,
    accepted_domains: Set[str],
) -> List[Dict[str, Any]]:
    """Rows for mailbox-level forwarding (ForwardingAddress / ForwardingSmtpAddress)."""
    rows = []
    deliver = mailbox.get('DeliverToMailboxAndForward')

    target = mailbox.get('ForwardingAddress')
    if target:
        email = directory.address_or_sentinel(str(target))
        row = _mailbox_columns(mailbox)
        row.update({
            'ForwardingType': FORWARD_MAILBOX,
            'ForwardingTarget': target,
            'ForwardingTargetEmail': email,
            'IsExternal': is_external(email, accepted_domains),
            'DeliverToMailboxAndForward': deliver,
        })
        rows.append(row)

    smtp = mailbox.get('ForwardingSmtpAddress')
    if smtp:
        email = strip_address_prefix(str(smtp))
        row = _mailbox_columns(mailbox)
        row.update({
            'ForwardingType': FORWARD_SMTP,
            'ForwardingTarget': smtp,
            'ForwardingTargetEmail': email,
            'IsExternal': is_external(email, accepted_domains),
            'DeliverToMailboxAndForward': deliver,
        })
        rows.append(row)

    return rows


def build_rule_rows(
    mailbox: Dict[str, Any],
    rules: List[Dict[str, Any]],
    directory: RecipientDirectory,
    accepted_domains: Set[str],
) -> List[Dict[str, Any]]:
    rows = []
    for rule in rules:
        for action in RULE_TARGET_PROPERTIES:
            for target in as_list(rule.get(action)):
                email = rule_target_address(str(target), directory)
                row = _mailbox_columns(mailbox)
                row.update({
                    'ForwardingType': FORWARD_INBOX_RULE,
                    'ForwardingTarget': target,
                    'ForwardingTargetEmail': email,
                    'IsExternal': is_external(email, accepted_domains),
                    'RuleName': rule.get('Name'),
                    'RuleEnabled': rule.get('Enabled'),
                    'RuleAction': action,
                })
                rows.append(row)
    return rows


def collect_inbox_rule_forwarding(
    client: ExchangeAdminClient,
    mailboxes: List[Dict[str, Any]],
    directory: RecipientDirectory,
    accepted_domains: Set[str],
) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []

    with ProgressTracker("Inbox rules", total_items=len(mailboxes)) as tracker:
        for mailbox in mailboxes:
            identity = mailbox_identity(mailbox)
            tracker.start_item(mailbox.get('PrimarySmtpAddress') or identity)
            try:
                rules = client.invoke('Get-InboxRule', {'Mailbox': identity})
                mailbox_rows = build_rule_rows(mailbox, rules, directory, accepted_domains)
            except Exception as e:
                check_and_raise_auth_error(e, f"get inbox rules for mailbox {identity}", "exchange")
                logger.warning(f"Failed to get inbox rules for mailbox {identity}: {e}")
                tracker.fail_item()
                row = _mailbox_columns(mailbox)
                row['ForwardingType'] = FORWARD_INBOX_RULE
                row['ForwardingTarget'] = failure_sentinel(e)
                mailbox_rows = [row]

            rows.extend(mailbox_rows)
            tracker.add_rows(len(mailbox_rows))
            tracker.complete_item()

    return rows


def collect_forwarding(
    client: ExchangeAdminClient,
    mailboxes: List[Dict[str, Any]],
    directory: RecipientDirectory,
    accepted_domains: Set[str],
    include_inbox_rules: bool = False,
) -> List[Dict[str, Any]]:
    rows: List[Dict[str, Any]] = []
    for mailbox in mailboxes:
        rows.extend(build_forwarding_rows(mailbox, directory, accepted_domains))
    logger.info(f"Found {len(rows):,} mailbox-level forwarding entries")

    if include_inbox_rules:
        rows.extend(collect_inbox_rule_forwarding(client, mailboxes, directory, accepted_domains))
    return rows


def main():
    parser = argparse.ArgumentParser(
        description='Exchange Online - Mail Forwarding Report',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=CREDENTIALS_HELP,
    )
    parser.add_argument('--filter',
                        help='OPATH filter passed to Get-Mailbox')
    parser.add_argument('--include-inbox-rules', action='store_true',
                        help='Also report forwarding inbox rules (one extra call per mailbox)')
    add_common_arguments(parser)

    args = parser.parse_args()
    prepare_run(args)
    client = connect_exchange(args)

    try:
        mailboxes = list_mailboxes(client, mailbox_filter=args.filter)
        accepted_domains = load_accepted_domains(client)
        directory = load_directory(client)
        rows = collect_forwarding(
            client, mailboxes, directory, accepted_domains,
            include_inbox_rules=args.include_inbox_rules,
        )
    except AuthError as e:
        abort_on_auth_error(e)
        return
    except Exception as e:
        logger.error(f"Failed to build mail forwarding report: {e}")
        print(f"ERROR: {e}")
        sys.exit(1)

    print_report_summary("Forwarding entries by type", rows, 'ForwardingType')
    write_report(rows, report_columns(args), REPORT_NAME, args)


if __name__ == '__main__':
    main()
