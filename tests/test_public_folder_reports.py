"""
Tests for the public folder reports.

Covers:
- Folder path composition
- Statistics and mail-enabled listings joined by EntryId
- Client permissions with Default/Anonymous filtering and failures
"""
import argparse
import os
import sys
from unittest.mock import Mock

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from exoreport.constants import NOT_FOUND
from exoreport.directory import RecipientDirectory
from exoreport.exchange import ExchangeCommandError, list_public_folders, public_folder_path
import public_folder_permissions_report as pfp
import public_folder_statistics_report as pfs


# =============================================================================
# Helper Functions
# =============================================================================

def create_folder(name: str, parent: str = "\\", entry_id: str = None, **extra):
    folder = {
        'Name': name,
        'ParentPath': parent,
        'EntryId': entry_id or f"ENTRY-{name.upper()}",
        'FolderClass': 'IPF.Note',
        'MailEnabled': False,
        'ContentMailboxName': 'PFMailbox1',
    }
    folder.update(extra)
    return folder


def create_stats(entry_id: str, items: int = 10):
    return {
        'EntryId': entry_id,
        'ItemCount': items,
        'TotalItemSize': "1.5 MB (1,572,864 bytes)",
        'LastModificationTime': "2024-05-01T10:00:00Z",
    }


# =============================================================================
# Path Tests
# =============================================================================

class TestPublicFolderPath:
    """Tests for exoreport.exchange.public_folder_path."""

    def test_top_level(self):
        assert public_folder_path(create_folder("Departments")) == "\\Departments"

    def test_nested(self):
        assert public_folder_path(create_folder("Finance", parent="\\Departments")) == "\\Departments\\Finance"

    def test_hierarchy_root(self):
        assert public_folder_path({'Name': 'IPM_SUBTREE', 'ParentPath': ''}) == "\\"

    def test_list_public_folders(self):
        client = Mock()
        client.invoke.return_value = [create_folder("A")]
        assert len(list_public_folders(client, "\\Projects")) == 1
        client.invoke.assert_called_once_with(
            'Get-PublicFolder', {'Identity': '\\Projects', 'Recurse': True, 'ResultSize': 'Unlimited'}
        )


# =============================================================================
# Statistics Tests
# =============================================================================

class TestPublicFolderStatistics:
    """Tests for public_folder_statistics_report."""

    def test_columns(self):
        assert pfs.report_columns(argparse.Namespace(include_mail_enabled=False)) == pfs.BASE_COLUMNS
        assert 'PrimarySmtpAddress' in pfs.report_columns(argparse.Namespace(include_mail_enabled=True))

    def test_first_entry_wins(self):
        index = pfs.index_by_entry_id([create_stats("E1", 1), create_stats("e1", 2)])
        assert index['e1']['ItemCount'] == 1

    def test_join_by_entry_id(self):
        folders = [create_folder("Finance", entry_id="E1"), create_folder("Legal", entry_id="E2")]
        rows = pfs.build_folder_rows(folders, [create_stats("e1", 42)])

        assert rows[0]['ItemCount'] == 42
        assert rows[0]['TotalItemSize'] == 1572864
        assert rows[1]['FolderPath'] == "\\Legal"
        assert rows[1]['ItemCount'] == NOT_FOUND

    def test_mail_enabled_columns(self):
        folders = [create_folder("Support", entry_id="E1", MailEnabled=True)]
        mail = [{'EntryId': 'E1', 'PrimarySmtpAddress': 'support@contoso.com',
                 'EmailAddresses': ['SMTP:support@contoso.com'], 'HiddenFromAddressListsEnabled': False}]
        rows = pfs.build_folder_rows(folders, [create_stats("E1")], mail)
        assert rows[0]['PrimarySmtpAddress'] == "support@contoso.com"
        assert rows[0]['EmailAddresses'] == ['SMTP:support@contoso.com']

    def test_collect_calls(self):
        client = Mock()

        def invoke(cmdlet, parameters=None):
            return {
                'Get-PublicFolder': [create_folder("A", entry_id="E1")],
                'Get-PublicFolderStatistics': [create_stats("E1")],
                'Get-MailPublicFolder': [],
            }[cmdlet]

        client.invoke.side_effect = invoke

        rows = pfs.collect_public_folder_statistics(client, include_mail_enabled=True)

        assert len(rows) == 1
        called = [c.args[0] for c in client.invoke.call_args_list]
        assert called == ['Get-PublicFolder', 'Get-PublicFolderStatistics', 'Get-MailPublicFolder']


# =============================================================================
# Permission Tests
# =============================================================================

class TestPublicFolderPermissions:
    """Tests for public_folder_permissions_report."""

    def setup_method(self):
        self.directory = RecipientDirectory.from_records([
            {'Alias': 'jdoe', 'DisplayName': 'Jane Doe', 'PrimarySmtpAddress': 'jane.doe@contoso.com',
             'RecipientTypeDetails': 'UserMailbox'},
        ])
        self.permissions = [
            {'User': {'DisplayName': 'Default'}, 'AccessRights': ['Author']},
            {'User': {'DisplayName': 'Anonymous'}, 'AccessRights': ['None']},
            {'User': {'DisplayName': 'Jane Doe'}, 'AccessRights': ['Owner']},
        ]

    def test_columns(self):
        assert pfp.report_columns(argparse.Namespace(no_resolve=True)) == pfp.BASE_COLUMNS

    def test_default_entries_skipped(self):
        rows = pfp.build_permission_rows(create_folder("Finance"), self.permissions, self.directory)
        assert len(rows) == 1
        assert rows[0]['User'] == "Jane Doe"
        assert rows[0]['UserEmail'] == "jane.doe@contoso.com"
        assert rows[0]['AccessRights'] == ["Owner"]

    def test_include_default(self):
        rows = pfp.build_permission_rows(create_folder("Finance"), self.permissions, include_default=True)
        assert [r['User'] for r in rows] == ["Default", "Anonymous", "Jane Doe"]
        assert 'UserEmail' not in rows[0]

    def test_collect_by_entry_id_with_failure(self):
        client = Mock()
        client.invoke.side_effect = [
            self.permissions,
            ExchangeCommandError('Get-PublicFolderClientPermission', 400, "Folder is being moved"),
        ]
        folders = [create_folder("Finance", entry_id="E1"), create_folder("Legal", entry_id="E2")]

        rows = pfp.collect_public_folder_permissions(client, folders, self.directory)

        client.invoke.assert_any_call('Get-PublicFolderClientPermission', {'Identity': 'E1'})
        assert rows[0]['User'] == "Jane Doe"
        assert rows[1]['FolderPath'] == "\\Legal"
        assert rows[1]['AccessRights'].startswith("Error: ")
