"""
Trustee resolution against a directory listing.

Permission cmdlets return their principal as free text: sometimes an alias,
sometimes a UPN, a display name, a DOMAIN\\sam pair or a legacy X500 DN.
RecipientDirectory indexes a Get-Recipient listing under every candidate key
so a principal can be matched without a per-trustee round trip.
"""
import logging
from typing import Any, Dict, Iterable, List, Optional

from .constants import (
    DEFAULT_FOLDER_PRINCIPALS,
    NOT_FOUND,
    RESULT_SIZE_UNLIMITED,
    SYSTEM_PRINCIPAL,
    SYSTEM_PRINCIPAL_PREFIXES,
)
from .models import Recipient, ResolvedTrustee

logger = logging.getLogger(__name__)

# Lookup order; earlier fields win when a principal matches several
KEY_FIELDS = (
    'alias',
    'sam_account_name',
    'display_name',
    'primary_smtp_address',
    'proxy_addresses',
    'identity',
    'name',
    'guid',
    'external_directory_object_id',
    'legacy_exchange_dn',
)


def is_system_principal(principal: str) -> bool:
    """True for NT AUTHORITY accounts, raw SIDs and the Default/Anonymous folder users."""
    if not principal:
        return False
    upper = principal.upper()
    if any(upper.startswith(prefix) for prefix in SYSTEM_PRINCIPAL_PREFIXES):
        return True
    return principal.strip().lower() in DEFAULT_FOLDER_PRINCIPALS


class RecipientDirectory:
    """Multi-key, case-insensitive index over a recipient listing."""

    def __init__(self, recipients: Iterable[Recipient]):
        self.recipients: List[Recipient] = list(recipients)
        self._indexes: Dict[str, Dict[str, Recipient]] = {f: {} for f in KEY_FIELDS}

        for recipient in self.recipients:
            for key_field in KEY_FIELDS:
                value = getattr(recipient, key_field)
                values = value if isinstance(value, list) else [value]
                index = self._indexes[key_field]
                for v in values:
                    if not v:
                        continue
                    key = v.strip().lower()
                    if key in index:
                        if index[key] is not recipient:
                            logger.debug(f"Duplicate {key_field} '{v}' in directory; keeping first entry")
                        continue
                    index[key] = recipient

    def __len__(self) -> int:
        return len(self.recipients)

    @classmethod
    def from_records(cls, records: Iterable[Dict[str, Any]]) -> "RecipientDirectory":
        return cls(Recipient.from_record(r) for r in records)

    def resolve(self, principal: Optional[str]) -> Optional[Recipient]:
        """Find the recipient a principal refers to, or None."""
        if not principal:
            return None

        candidates = [principal.strip().lower()]
        # DOMAIN\user -> also try user
        if '\\' in principal:
            candidates.append(principal.rsplit('\\', 1)[1].strip().lower())

        for key_field in KEY_FIELDS:
            index = self._indexes[key_field]
            for candidate in candidates:
                match = index.get(candidate)
                if match is not None:
                    return match
        return None

    def resolve_trustee(self, principal: Optional[str]) -> ResolvedTrustee:
        """Resolve a principal, falling back to the not-found sentinel."""
        trustee = principal or ""
        if is_system_principal(trustee):
            return ResolvedTrustee(
                trustee=trustee,
                display_name=trustee,
                primary_smtp_address="",
                recipient_type=SYSTEM_PRINCIPAL,
            )

        recipient = self.resolve(trustee)
        if recipient is None:
            logger.debug(f"Trustee '{trustee}' not found in directory")
            return ResolvedTrustee(trustee=trustee)
        return ResolvedTrustee.from_recipient(trustee, recipient)

    def address_or_sentinel(self, principal: Optional[str]) -> str:
        """Primary address of a principal, or NOT_FOUND."""
        recipient = self.resolve(principal)
        if recipient is None:
            return NOT_FOUND
        return recipient.primary_smtp_address or NOT_FOUND


def load_directory(client, recipient_filter: Optional[str] = None) -> RecipientDirectory:
    """Fetch all recipients through the admin client and index them."""
    parameters: Dict[str, Any] = {'ResultSize': RESULT_SIZE_UNLIMITED}
    if recipient_filter:
        parameters['Filter'] = recipient_filter

    logger.info("Loading recipient directory...")
    records = client.invoke('Get-Recipient', parameters)
    directory = RecipientDirectory.from_records(records)
    logger.info(f"Loaded {len(directory):,} recipients")
    return directory
