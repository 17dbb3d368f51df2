"""
Tests for calendar_processing_report.py.

Covers:
- --include-policies columns
- Delegates and policy lists resolved to addresses (legacy DN included)
- Failed Get-CalendarProcessing calls written as sentinel rows
"""
import argparse
import os
import sys
from unittest.mock import Mock

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from exoreport.constants import NOT_FOUND
from exoreport.directory import RecipientDirectory
from exoreport.exchange import ExchangeCommandError
from calendar_processing_report import (
    POLICY_LIST_COLUMNS,
    build_processing_row,
    collect_calendar_processing,
    report_columns,
)

LEGACY_DN = "/o=ExchangeLabs/ou=Exchange Administrative Group (FYDIBOHF23SPDLT)/cn=Recipients/cn=abc123-jdoe"


def create_room(alias: str, recipient_type: str = "RoomMailbox"):
    return {
        'DisplayName': f"Room {alias}",
        'PrimarySmtpAddress': f"{alias}@contoso.com",
        'RecipientTypeDetails': recipient_type,
        'ExchangeGuid': f"guid-{alias}",
    }


def create_processing(**overrides):
    processing = {
        'AutomateProcessing': 'AutoAccept',
        'AllowConflicts': False,
        'BookingWindowInDays': 180,
        'MaximumDurationInMinutes': 1440,
        'ResourceDelegates': [],
        'AllBookInPolicy': True,
        'BookInPolicy': [],
    }
    processing.update(overrides)
    return processing


@pytest.fixture
def directory():
    return RecipientDirectory.from_records([
        {'Alias': 'jdoe', 'Name': 'jdoe', 'DisplayName': 'Jane Doe',
         'PrimarySmtpAddress': 'jane.doe@contoso.com', 'LegacyExchangeDN': LEGACY_DN},
        {'Alias': 'facilities', 'DisplayName': 'Facilities', 'PrimarySmtpAddress': 'facilities@contoso.com'},
    ])


class TestReportColumns:
    """Tests for report_columns."""

    def test_without_policies(self):
        columns = report_columns(argparse.Namespace(include_policies=False))
        assert 'ResourceDelegates' in columns
        assert 'BookInPolicy' not in columns

    def test_with_policies(self):
        columns = report_columns(argparse.Namespace(include_policies=True))
        for column in POLICY_LIST_COLUMNS + ['AllBookInPolicy']:
            assert column in columns


class TestBuildProcessingRow:
    """Tests for build_processing_row."""

    def test_settings_copied(self, directory):
        row = build_processing_row(create_room("r1"), create_processing(), directory)
        assert row['Mailbox'] == "Room r1"
        assert row['AutomateProcessing'] == "AutoAccept"
        assert row['AllowConflicts'] is False
        assert row['BookingWindowInDays'] == 180

    def test_delegates_resolved(self, directory):
        processing = create_processing(ResourceDelegates=["jdoe", "Facilities", "Gone User"])
        row = build_processing_row(create_room("r1"), processing, directory)
        assert row['ResourceDelegates'] == ["jane.doe@contoso.com", "facilities@contoso.com", NOT_FOUND]

    def test_policy_legacy_dn_resolved(self, directory):
        processing = create_processing(BookInPolicy=[LEGACY_DN])
        row = build_processing_row(create_room("r1"), processing, directory)
        assert row['BookInPolicy'] == ["jane.doe@contoso.com"]


class TestCollectCalendarProcessing:
    """Tests for collect_calendar_processing."""

    def test_one_row_per_mailbox(self, directory):
        client = Mock()
        client.invoke_one.side_effect = [
            create_processing(),
            ExchangeCommandError('Get-CalendarProcessing', 400, "Object not found"),
        ]
        rows = collect_calendar_processing(client, [create_room("r1"), create_room("e1", "EquipmentMailbox")], directory)

        assert len(rows) == 2
        assert rows[0]['AutomateProcessing'] == "AutoAccept"
        assert rows[1]['MailboxType'] == "EquipmentMailbox"
        assert rows[1]['AutomateProcessing'].startswith("Error: ")
        client.invoke_one.assert_any_call('Get-CalendarProcessing', {'Identity': 'guid-r1'})
