"""
Exchange Online admin API client.

Runs Exchange cmdlets through the REST endpoint used by the
ExchangeOnlineManagement v3 module:

    POST https://outlook.office365.com/adminapi/beta/{tenant}/InvokeCommand
    {"CmdletInput": {"CmdletName": "Get-Mailbox", "Parameters": {...}}}

Results come back as OData pages; `@odata.nextLink` is followed with the same
request body until the listing is exhausted.

Requirements:
- Azure AD App Registration with the Office 365 Exchange Online
  Exchange.ManageAsApp application permission
- The app's service principal assigned an Exchange role
  (e.g. "View-Only Organization Management" or "Global Reader")
"""
import logging
from typing import Any, Dict, Iterator, List, Optional

import requests
from azure.core.exceptions import ClientAuthenticationError
from azure.identity import CertificateCredential, ClientSecretCredential

from .constants import (
    AUTH_STATUS_CODES,
    DEFAULT_PAGE_SIZE,
    DEFAULT_RETRY_ATTEMPTS,
    DEFAULT_TIMEOUT_SECONDS,
    EXCHANGE_ADMIN_API_BASE,
    EXCHANGE_SCOPE,
    PUBLIC_FOLDER_ROOT,
    RESULT_SIZE_UNLIMITED,
    SYSTEM_ANCHOR_MAILBOX,
    TRANSIENT_STATUS_CODES,
)
from .utils import AuthError, retry_with_backoff

logger = logging.getLogger(__name__)


class ExchangeCommandError(Exception):
    """A cmdlet call the service rejected (bad identity, bad filter, ...)."""
    def __init__(self, cmdlet: str, status_code: int, message: str):
        self.cmdlet = cmdlet
        self.status_code = status_code
        self.message = message
        super().__init__(f"{cmdlet} failed ({status_code}): {message}")


class TransientServiceError(Exception):
    """Throttling or server-side failure worth retrying."""
    def __init__(self, status_code: int, message: str):
        self.status_code = status_code
        super().__init__(f"Transient service error ({status_code}): {message}")


def get_credential(
    tenant_id: str,
    client_id: str,
    client_secret: Optional[str] = None,
    certificate_path: Optional[str] = None,
):
    """Create an azure-identity credential; a certificate wins over a secret."""
    if certificate_path:
        return CertificateCredential(
            tenant_id=tenant_id,
            client_id=client_id,
            certificate_path=certificate_path,
        )
    if client_secret:
        return ClientSecretCredential(
            tenant_id=tenant_id,
            client_id=client_id,
            client_secret=client_secret,
        )
    raise ValueError("Either a client secret or a certificate path is required")


def _error_message(response: requests.Response) -> str:
    """Pull the service's error message out of a failed response."""
    try:
        body = response.json()
    except ValueError:
        return response.text[:500]
    error = body.get('error') if isinstance(body, dict) else None
    if isinstance(error, dict):
        return error.get('message') or error.get('code') or response.text[:500]
    return response.text[:500]


def _clean_record(record: Dict[str, Any]) -> Dict[str, Any]:
    """Drop OData annotations such as 'Guid@data.type'."""
    return {k: v for k, v in record.items() if '@' not in k}


class ExchangeAdminClient:
    """Synchronous client for the Exchange Online admin API."""

    def __init__(
        self,
        tenant_id: str,
        credential,
        organization: Optional[str] = None,
        page_size: int = DEFAULT_PAGE_SIZE,
        timeout: int = DEFAULT_TIMEOUT_SECONDS,
        max_retries: int = DEFAULT_RETRY_ATTEMPTS,
        min_retry_wait: float = 2,
        max_retry_wait: float = 60,
        session: Optional[requests.Session] = None,
    ):
        self.tenant_id = tenant_id
        self.credential = credential
        self.organization = organization
        self.page_size = page_size
        self.timeout = timeout
        self.session = session or requests.Session()
        self.url = f"{EXCHANGE_ADMIN_API_BASE}/{tenant_id}/InvokeCommand"

        self._post = retry_with_backoff(
            max_attempts=max_retries,
            min_wait=min_retry_wait,
            max_wait=max_retry_wait,
            exceptions=(TransientServiceError, requests.ConnectionError, requests.Timeout),
        )(self._post_once)

    def _headers(self) -> Dict[str, str]:
        # azure-identity caches the token and refreshes it near expiry
        try:
            token = self.credential.get_token(EXCHANGE_SCOPE).token
        except ClientAuthenticationError as e:
            raise AuthError(
                f"Token request failed (check client secret or certificate): {e}",
                provider="exchange",
                original_error=e,
            ) from e
        if self.organization:
            anchor = f"UPN:{SYSTEM_ANCHOR_MAILBOX}@{self.organization}"
        else:
            anchor = f"APP:{SYSTEM_ANCHOR_MAILBOX}@{self.tenant_id}"
        return {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
            "Prefer": f"odata.maxpagesize={self.page_size}",
            "X-AnchorMailbox": anchor,
            "X-ResponseFormat": "json",
        }

    def _post_once(self, url: str, body: Dict[str, Any], cmdlet: str) -> Dict[str, Any]:
        response = self.session.post(url, json=body, headers=self._headers(), timeout=self.timeout)

        if response.status_code in AUTH_STATUS_CODES:
            raise AuthError(
                f"{cmdlet} was denied ({response.status_code}): {_error_message(response)}",
                provider="exchange",
            )
        if response.status_code in TRANSIENT_STATUS_CODES:
            raise TransientServiceError(response.status_code, _error_message(response))
        if not 200 <= response.status_code < 300:
            raise ExchangeCommandError(cmdlet, response.status_code, _error_message(response))

        if not response.content:
            return {}
        return response.json()

    def iter_invoke(self, cmdlet: str, parameters: Optional[Dict[str, Any]] = None) -> Iterator[Dict[str, Any]]:
        """Run a cmdlet and yield result records across all pages."""
        body = {
            "CmdletInput": {
                "CmdletName": cmdlet,
                "Parameters": parameters or {},
            }
        }
        url: Optional[str] = self.url
        page = 0

        while url:
            page += 1
            data = self._post(url, body, cmdlet)
            values = data.get('value', [])
            if isinstance(values, dict):
                values = [values]
            logger.debug(f"{cmdlet}: page {page} returned {len(values)} records")
            for record in values:
                yield _clean_record(record) if isinstance(record, dict) else record
            url = data.get('@odata.nextLink')

    def invoke(self, cmdlet: str, parameters: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        """Run a cmdlet and return every result record."""
        return list(self.iter_invoke(cmdlet, parameters))

    def invoke_one(self, cmdlet: str, parameters: Optional[Dict[str, Any]] = None) -> Optional[Dict[str, Any]]:
        """Run a cmdlet expected to return a single object."""
        for record in self.iter_invoke(cmdlet, parameters):
            return record
        return None

    def check_connection(self) -> Dict[str, Any]:
        """
        Session check: confirm the app can reach the tenant's admin API.

        Returns dict with 'success' bool, 'organization' name and
        'errors'/'warnings' lists in the shape print_permission_check_results
        expects.
        """
        results: Dict[str, Any] = {'success': True, 'organization': None, 'errors': [], 'warnings': []}

        try:
            config = self.invoke_one('Get-OrganizationConfig')
            if config:
                results['organization'] = config.get('DisplayName') or config.get('Name')
            else:
                results['warnings'].append("Get-OrganizationConfig returned an empty response")
        except AuthError as e:
            results['errors'].append(f"Exchange.ManageAsApp permission or Exchange role missing: {e}")
            results['success'] = False
        except (ExchangeCommandError, TransientServiceError, requests.RequestException) as e:
            results['errors'].append(f"Exchange admin API unreachable: {e}")
            results['success'] = False

        return results


def print_permission_check_results(results: Dict[str, Any], service: str) -> bool:
    """Print session check results and return True if the report should proceed."""
    if results['errors']:
        print(f"\n{'='*60}")
        print(f"{service.upper()} SESSION CHECK FAILED")
        print('='*60)
        for error in results['errors']:
            print(f"  ERROR: {error}")
        print()
        return False

    if results['warnings']:
        print(f"\n{'='*60}")
        print(f"{service.upper()} SESSION WARNINGS")
        print('='*60)
        for warning in results['warnings']:
            print(f"  WARNING: {warning}")
        print("  The report will continue but some records may be missed.")
        print()

    return True


def list_mailboxes(
    client: ExchangeAdminClient,
    recipient_types: Optional[List[str]] = None,
    mailbox_filter: Optional[str] = None,
) -> List[Dict[str, Any]]:
    """Get-Mailbox -ResultSize Unlimited with optional type and OPATH filters."""
    parameters: Dict[str, Any] = {'ResultSize': RESULT_SIZE_UNLIMITED}
    if recipient_types:
        parameters['RecipientTypeDetails'] = list(recipient_types)
    if mailbox_filter:
        parameters['Filter'] = mailbox_filter

    logger.info("Listing mailboxes...")
    mailboxes = client.invoke('Get-Mailbox', parameters)
    logger.info(f"Found {len(mailboxes):,} mailboxes")
    return mailboxes


def mailbox_identity(mailbox: Dict[str, Any]) -> str:
    """Most stable identity to pass back to per-mailbox cmdlets."""
    return str(
        mailbox.get('ExchangeGuid')
        or mailbox.get('PrimarySmtpAddress')
        or mailbox.get('Identity')
        or ''
    )


def public_folder_path(folder: Dict[str, Any]) -> str:
    """Full path of a Get-PublicFolder record, e.g. '\\Departments\\Finance'."""
    parent = str(folder.get('ParentPath') or '').rstrip('\\')
    name = str(folder.get('Name') or '')
    if name == 'IPM_SUBTREE' and not parent:
        return PUBLIC_FOLDER_ROOT
    return f"{parent}\\{name}"


def list_public_folders(client: ExchangeAdminClient, root: str = PUBLIC_FOLDER_ROOT) -> List[Dict[str, Any]]:
    """Get-PublicFolder -Recurse below root."""
    logger.info(f"Listing public folders below {root}...")
    folders = client.invoke(
        'Get-PublicFolder',
        {'Identity': root, 'Recurse': True, 'ResultSize': RESULT_SIZE_UNLIMITED},
    )
    logger.info(f"Found {len(folders):,} public folders")
    return folders
