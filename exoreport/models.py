"""
Data models for the Exchange Online report scripts.
"""
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .constants import NOT_FOUND
from .utils import as_list, strip_address_prefix


@dataclass
class Recipient:
    """
    Normalized directory entry, built from a Get-Recipient record.
    """
    identity: str = ""
    name: str = ""
    alias: str = ""
    sam_account_name: str = ""
    display_name: str = ""
    primary_smtp_address: str = ""
    recipient_type_details: str = ""
    guid: str = ""
    external_directory_object_id: str = ""
    legacy_exchange_dn: str = ""
    email_addresses: List[str] = field(default_factory=list)

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Recipient":
        """Build a Recipient from an admin API record."""
        return cls(
            identity=str(record.get('Identity') or ''),
            name=str(record.get('Name') or ''),
            alias=str(record.get('Alias') or ''),
            sam_account_name=str(record.get('SamAccountName') or ''),
            display_name=str(record.get('DisplayName') or ''),
            primary_smtp_address=str(record.get('PrimarySmtpAddress') or ''),
            recipient_type_details=str(record.get('RecipientTypeDetails') or ''),
            guid=str(record.get('Guid') or ''),
            external_directory_object_id=str(record.get('ExternalDirectoryObjectId') or ''),
            legacy_exchange_dn=str(record.get('LegacyExchangeDN') or ''),
            email_addresses=[str(a) for a in as_list(record.get('EmailAddresses'))],
        )

    @property
    def proxy_addresses(self) -> List[str]:
        """Proxy addresses with their type prefix removed."""
        return [strip_address_prefix(a) for a in self.email_addresses]


@dataclass
class ResolvedTrustee:
    """A permission principal and what it resolved to in the directory."""
    trustee: str
    display_name: str = NOT_FOUND
    primary_smtp_address: str = NOT_FOUND
    recipient_type: str = NOT_FOUND
    resolved: bool = False
    recipient: Optional[Recipient] = None

    @classmethod
    def from_recipient(cls, trustee: str, recipient: Recipient) -> "ResolvedTrustee":
        return cls(
            trustee=trustee,
            display_name=recipient.display_name,
            primary_smtp_address=recipient.primary_smtp_address,
            recipient_type=recipient.recipient_type_details,
            resolved=True,
            recipient=recipient,
        )

    def to_columns(self, prefix: str = "Trustee") -> Dict[str, str]:
        """Flatten into report columns, e.g. TrusteeDisplayName, TrusteeEmail."""
        return {
            f"{prefix}DisplayName": self.display_name,
            f"{prefix}Email": self.primary_smtp_address,
            f"{prefix}Type": self.recipient_type,
        }
