"""
Tests for trustee resolution (exoreport/directory.py, exoreport/models.py).

Covers:
- Recipient.from_record field mapping and proxy address stripping
- Resolution by alias, SAM name, display name, primary and proxy address
- Case-insensitive matching and DOMAIN\\user principals
- Key-order precedence and first-entry-wins on duplicates
- Not Found sentinel and system principals
- load_directory query
"""
import os
import sys
from unittest.mock import Mock

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from exoreport.constants import NOT_FOUND, SYSTEM_PRINCIPAL
from exoreport.directory import RecipientDirectory, is_system_principal, load_directory
from exoreport.models import Recipient, ResolvedTrustee


# =============================================================================
# Helper Functions
# =============================================================================

def create_recipient_record(
    alias: str,
    display_name: str = None,
    primary: str = None,
    recipient_type: str = "UserMailbox",
    sam: str = None,
    extra_addresses=None,
    guid: str = None,
):
    """Create a Get-Recipient record as returned by the admin API."""
    primary = primary or f"{alias}@contoso.com"
    addresses = [f"SMTP:{primary}"] + list(extra_addresses or [])
    return {
        'Identity': alias,
        'Name': alias,
        'Alias': alias,
        'SamAccountName': sam or f"{alias}_sam",
        'DisplayName': display_name or alias.title(),
        'PrimarySmtpAddress': primary,
        'RecipientTypeDetails': recipient_type,
        'Guid': guid or f"guid-{alias}",
        'ExternalDirectoryObjectId': f"oid-{alias}",
        'LegacyExchangeDN': f"/o=ExchangeLabs/ou=Exchange Administrative Group/cn=Recipients/cn={alias}",
        'EmailAddresses': addresses,
    }


@pytest.fixture
def directory():
    return RecipientDirectory.from_records([
        create_recipient_record("jdoe", "Jane Doe", extra_addresses=["smtp:jane.doe@fabrikam.com"]),
        create_recipient_record("jsmith", "John Smith", sam="CONTOSO_JS"),
        create_recipient_record("finance", "Finance Team", recipient_type="SharedMailbox"),
    ])


# =============================================================================
# Model Tests
# =============================================================================

class TestRecipient:
    """Tests for Recipient.from_record."""

    def test_field_mapping(self):
        recipient = Recipient.from_record(create_recipient_record("jdoe", "Jane Doe"))
        assert recipient.alias == "jdoe"
        assert recipient.display_name == "Jane Doe"
        assert recipient.primary_smtp_address == "jdoe@contoso.com"
        assert recipient.recipient_type_details == "UserMailbox"

    def test_proxy_addresses_stripped(self):
        recipient = Recipient.from_record(
            create_recipient_record("jdoe", extra_addresses=["X500:/o=Old/cn=jdoe"])
        )
        assert recipient.proxy_addresses == ["jdoe@contoso.com", "/o=Old/cn=jdoe"]

    def test_missing_fields(self):
        recipient = Recipient.from_record({'Name': 'orphan'})
        assert recipient.alias == ""
        assert recipient.email_addresses == []


class TestResolvedTrustee:
    """Tests for ResolvedTrustee."""

    def test_defaults_to_sentinel(self):
        columns = ResolvedTrustee(trustee="ghost").to_columns("Trustee")
        assert columns == {
            'TrusteeDisplayName': NOT_FOUND,
            'TrusteeEmail': NOT_FOUND,
            'TrusteeType': NOT_FOUND,
        }

    def test_prefix(self):
        recipient = Recipient.from_record(create_recipient_record("jdoe", "Jane Doe"))
        columns = ResolvedTrustee.from_recipient("jdoe", recipient).to_columns("User")
        assert columns['UserDisplayName'] == "Jane Doe"
        assert columns['UserEmail'] == "jdoe@contoso.com"


# =============================================================================
# Resolution Tests
# =============================================================================

class TestResolve:
    """Tests for RecipientDirectory.resolve."""

    @pytest.mark.parametrize("principal", [
        "jdoe",                               # alias
        "jdoe_sam",                           # SAM account name
        "Jane Doe",                           # display name
        "jdoe@contoso.com",                   # primary address
        "jane.doe@fabrikam.com",              # proxy address
        "guid-jdoe",                          # GUID
        "oid-jdoe",                           # ExternalDirectoryObjectId
        "/o=ExchangeLabs/ou=Exchange Administrative Group/cn=Recipients/cn=jdoe",
    ])
    def test_each_key_field(self, directory, principal):
        assert directory.resolve(principal).alias == "jdoe"

    def test_case_insensitive(self, directory):
        assert directory.resolve("JANE DOE").alias == "jdoe"
        assert directory.resolve("JDOE@CONTOSO.COM").alias == "jdoe"

    def test_surrounding_whitespace(self, directory):
        assert directory.resolve("  jsmith ").alias == "jsmith"

    def test_domain_qualified_sam(self, directory):
        assert directory.resolve("CONTOSO\\CONTOSO_JS").alias == "jsmith"

    def test_not_found(self, directory):
        assert directory.resolve("nobody") is None
        assert directory.resolve("") is None
        assert directory.resolve(None) is None

    def test_alias_beats_display_name(self):
        # "sales" is one recipient's alias and another's display name
        directory = RecipientDirectory.from_records([
            create_recipient_record("team1", "sales"),
            create_recipient_record("sales", "Sales Department"),
        ])
        assert directory.resolve("sales").alias == "sales"

    def test_first_duplicate_wins(self):
        directory = RecipientDirectory.from_records([
            create_recipient_record("a1", "Duplicate Name"),
            create_recipient_record("a2", "Duplicate Name"),
        ])
        assert directory.resolve("Duplicate Name").alias == "a1"
        assert len(directory) == 2


class TestResolveTrustee:
    """Tests for RecipientDirectory.resolve_trustee."""

    def test_resolved(self, directory):
        trustee = directory.resolve_trustee("finance")
        assert trustee.resolved is True
        assert trustee.display_name == "Finance Team"
        assert trustee.recipient_type == "SharedMailbox"

    def test_not_found_sentinel(self, directory):
        trustee = directory.resolve_trustee("S1-deleted-user")
        assert trustee.resolved is False
        assert trustee.trustee == "S1-deleted-user"
        assert trustee.primary_smtp_address == NOT_FOUND

    @pytest.mark.parametrize("principal", [
        "NT AUTHORITY\\SELF",
        "S-1-5-21-1234567890-1234567890-1234567890-1001",
        "Default",
        "Anonymous",
    ])
    def test_system_principals(self, directory, principal):
        trustee = directory.resolve_trustee(principal)
        assert trustee.recipient_type == SYSTEM_PRINCIPAL
        assert trustee.display_name == principal
        assert trustee.primary_smtp_address == ""

    def test_address_or_sentinel(self, directory):
        assert directory.address_or_sentinel("John Smith") == "jsmith@contoso.com"
        assert directory.address_or_sentinel("ghost") == NOT_FOUND

    def test_address_or_sentinel_match_without_address(self):
        directory = RecipientDirectory.from_records([{'Alias': 'room-legacy', 'DisplayName': 'Old Room'}])
        assert directory.address_or_sentinel("room-legacy") == NOT_FOUND


class TestIsSystemPrincipal:
    """Tests for is_system_principal."""

    def test_system(self):
        assert is_system_principal("NT AUTHORITY\\SYSTEM")
        assert is_system_principal("nt authority\\self")
        assert is_system_principal("S-1-5-18")

    def test_not_system(self):
        assert not is_system_principal("jdoe")
        assert not is_system_principal("")


# =============================================================================
# load_directory Tests
# =============================================================================

class TestLoadDirectory:
    """Tests for load_directory."""

    def test_queries_get_recipient(self):
        client = Mock()
        client.invoke.return_value = [create_recipient_record("jdoe")]

        directory = load_directory(client)

        client.invoke.assert_called_once_with('Get-Recipient', {'ResultSize': 'Unlimited'})
        assert len(directory) == 1

    def test_filter_passed(self):
        client = Mock()
        client.invoke.return_value = []
        load_directory(client, "RecipientType -eq 'UserMailbox'")
        client.invoke.assert_called_once_with(
            'Get-Recipient',
            {'ResultSize': 'Unlimited', 'Filter': "RecipientType -eq 'UserMailbox'"},
        )
