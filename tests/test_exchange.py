"""
Tests for the Exchange admin API client using unittest.mock.

Covers:
- Request body, URL and headers (anchor mailbox, page size)
- @odata.nextLink pagination
- Retry on 429/5xx and connection errors
- 401/403 -> AuthError, other failures -> ExchangeCommandError
- Session check results
- get_credential selection
- list_mailboxes parameters and mailbox_identity
"""
import os
import sys
from unittest.mock import Mock, patch

import pytest
import requests
from azure.core.exceptions import ClientAuthenticationError

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from exoreport.exchange import (
    ExchangeAdminClient,
    ExchangeCommandError,
    TransientServiceError,
    get_credential,
    list_mailboxes,
    list_public_folders,
    mailbox_identity,
    print_permission_check_results,
    public_folder_path,
)
from exoreport.utils import AuthError


# =============================================================================
# Fixtures
# =============================================================================

TENANT_ID = "12345678-1234-1234-1234-123456789012"


@pytest.fixture
def credential():
    cred = Mock()
    cred.get_token.return_value = Mock(token="test-token")
    return cred


@pytest.fixture
def session():
    return Mock()


@pytest.fixture
def client(credential, session):
    return ExchangeAdminClient(
        TENANT_ID,
        credential,
        organization="contoso.onmicrosoft.com",
        page_size=100,
        max_retries=3,
        min_retry_wait=0,
        max_retry_wait=0,
        session=session,
    )


# =============================================================================
# Helper Functions
# =============================================================================

def create_mock_response(status_code=200, body=None, text=""):
    """Create a mock requests.Response."""
    response = Mock()
    response.status_code = status_code
    if body is None:
        response.content = b""
        response.json.side_effect = ValueError("No JSON")
    else:
        response.content = b"{...}"
        response.json.return_value = body
    response.text = text
    return response


def create_page(records, next_link=None):
    body = {'value': records}
    if next_link:
        body['@odata.nextLink'] = next_link
    return create_mock_response(200, body)


# =============================================================================
# Request Tests
# =============================================================================

class TestRequest:
    """Tests for request shape."""

    def test_posts_cmdlet_body(self, client, session):
        session.post.return_value = create_page([])

        client.invoke('Get-Mailbox', {'ResultSize': 'Unlimited'})

        url = session.post.call_args[0][0]
        kwargs = session.post.call_args[1]
        assert url == f"https://outlook.office365.com/adminapi/beta/{TENANT_ID}/InvokeCommand"
        assert kwargs['json'] == {
            'CmdletInput': {'CmdletName': 'Get-Mailbox', 'Parameters': {'ResultSize': 'Unlimited'}}
        }

    def test_headers(self, client, session, credential):
        session.post.return_value = create_page([])

        client.invoke('Get-Mailbox')

        headers = session.post.call_args[1]['headers']
        assert headers['Authorization'] == "Bearer test-token"
        assert headers['Prefer'] == "odata.maxpagesize=100"
        assert headers['X-AnchorMailbox'].startswith("UPN:SystemMailbox{")
        assert headers['X-AnchorMailbox'].endswith("@contoso.onmicrosoft.com")
        credential.get_token.assert_called_with("https://outlook.office365.com/.default")

    def test_app_anchor_without_organization(self, credential, session):
        client = ExchangeAdminClient(TENANT_ID, credential, session=session)
        session.post.return_value = create_page([])

        client.invoke('Get-Mailbox')

        anchor = session.post.call_args[1]['headers']['X-AnchorMailbox']
        assert anchor.startswith("APP:SystemMailbox{")
        assert anchor.endswith(f"@{TENANT_ID}")

    def test_empty_parameters(self, client, session):
        session.post.return_value = create_page([])
        client.invoke('Get-OrganizationConfig')
        assert session.post.call_args[1]['json']['CmdletInput']['Parameters'] == {}


# =============================================================================
# Pagination Tests
# =============================================================================

class TestPagination:
    """Tests for @odata.nextLink handling."""

    def test_single_page(self, client, session):
        session.post.return_value = create_page([{'Name': 'a'}, {'Name': 'b'}])
        assert client.invoke('Get-Mailbox') == [{'Name': 'a'}, {'Name': 'b'}]

    def test_follows_next_link(self, client, session):
        next_url = "https://outlook.office365.com/adminapi/beta/t/InvokeCommand?$skiptoken=abc"
        session.post.side_effect = [
            create_page([{'Name': 'a'}], next_link=next_url),
            create_page([{'Name': 'b'}]),
        ]

        result = client.invoke('Get-Mailbox')

        assert [r['Name'] for r in result] == ['a', 'b']
        assert session.post.call_count == 2
        second = session.post.call_args_list[1]
        assert second[0][0] == next_url
        # The request body is re-sent with the next link
        assert second[1]['json']['CmdletInput']['CmdletName'] == 'Get-Mailbox'

    def test_strips_odata_annotations(self, client, session):
        session.post.return_value = create_page([{'Guid': 'x', 'Guid@data.type': 'System.Guid'}])
        assert client.invoke('Get-Mailbox') == [{'Guid': 'x'}]

    def test_single_object_value(self, client, session):
        session.post.return_value = create_mock_response(200, {'value': {'Name': 'org'}})
        assert client.invoke_one('Get-OrganizationConfig') == {'Name': 'org'}

    def test_empty_response(self, client, session):
        session.post.return_value = create_mock_response(200)
        assert client.invoke('Set-Nothing') == []
        assert client.invoke_one('Set-Nothing') is None


# =============================================================================
# Error Handling Tests
# =============================================================================

class TestErrors:
    """Tests for status code mapping and retry."""

    def test_retries_on_throttle(self, client, session):
        session.post.side_effect = [
            create_mock_response(429, {'error': {'message': 'Too many requests'}}),
            create_page([{'Name': 'a'}]),
        ]
        assert client.invoke('Get-Mailbox') == [{'Name': 'a'}]
        assert session.post.call_count == 2

    def test_retries_on_connection_error(self, client, session):
        session.post.side_effect = [
            requests.ConnectionError("reset"),
            create_page([{'Name': 'a'}]),
        ]
        assert client.invoke('Get-Mailbox') == [{'Name': 'a'}]

    def test_gives_up_after_max_retries(self, client, session):
        session.post.return_value = create_mock_response(503, {'error': {'message': 'Unavailable'}})

        with pytest.raises(TransientServiceError) as exc_info:
            client.invoke('Get-Mailbox')

        assert exc_info.value.status_code == 503
        assert session.post.call_count == 3

    @pytest.mark.parametrize("status_code", [401, 403])
    def test_auth_failure_raises_auth_error(self, client, session, status_code):
        session.post.return_value = create_mock_response(status_code, {'error': {'message': 'Denied'}})

        with pytest.raises(AuthError) as exc_info:
            client.invoke('Get-Mailbox')

        assert exc_info.value.provider == "exchange"
        # Auth failures are not retried
        assert session.post.call_count == 1

    def test_command_error_message(self, client, session):
        session.post.return_value = create_mock_response(
            400, {'error': {'code': 'BadRequest', 'message': "Couldn't find object 'nobody'"}}
        )

        with pytest.raises(ExchangeCommandError) as exc_info:
            client.invoke('Get-MailboxPermission', {'Identity': 'nobody'})

        assert exc_info.value.cmdlet == 'Get-MailboxPermission'
        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "Couldn't find object 'nobody'"
        assert session.post.call_count == 1

    def test_command_error_non_json_body(self, client, session):
        session.post.return_value = create_mock_response(404, text="Not Found")

        with pytest.raises(ExchangeCommandError) as exc_info:
            client.invoke('Get-Mailbox')

        assert exc_info.value.message == "Not Found"


# =============================================================================
# Session Check Tests
# =============================================================================

class TestCheckConnection:
    """Tests for check_connection and print_permission_check_results."""

    def test_success(self, client, session):
        session.post.return_value = create_page([{'DisplayName': 'Contoso'}])
        results = client.check_connection()
        assert results['success'] is True
        assert results['organization'] == 'Contoso'
        assert results['errors'] == []

    def test_auth_failure(self, client, session):
        session.post.return_value = create_mock_response(403, {'error': {'message': 'Denied'}})
        results = client.check_connection()
        assert results['success'] is False
        assert 'Exchange.ManageAsApp' in results['errors'][0]

    def test_rejected_credential(self, client, credential, session):
        credential.get_token.side_effect = ClientAuthenticationError("AADSTS7000215: Invalid client secret provided")
        results = client.check_connection()
        assert results['success'] is False
        assert "AADSTS7000215" in results['errors'][0]
        session.post.assert_not_called()

    def test_rejected_credential_raises_auth_error(self, client, credential):
        credential.get_token.side_effect = ClientAuthenticationError("certificate expired")
        with pytest.raises(AuthError) as exc_info:
            client.invoke('Get-Mailbox')
        assert exc_info.value.provider == "exchange"
        assert isinstance(exc_info.value.original_error, ClientAuthenticationError)

    def test_empty_response_warns(self, client, session):
        session.post.return_value = create_page([])
        results = client.check_connection()
        assert results['success'] is True
        assert results['warnings']

    def test_print_results(self, capsys):
        assert print_permission_check_results({'errors': ['x'], 'warnings': []}, 'exchange') is False
        assert "EXCHANGE SESSION CHECK FAILED" in capsys.readouterr().out
        assert print_permission_check_results({'errors': [], 'warnings': ['w']}, 'exchange') is True


# =============================================================================
# Credential Tests
# =============================================================================

class TestGetCredential:
    """Tests for get_credential."""

    def test_secret(self):
        with patch('exoreport.exchange.ClientSecretCredential') as mock_cred:
            get_credential("t", "c", client_secret="s")
        mock_cred.assert_called_once_with(tenant_id="t", client_id="c", client_secret="s")

    def test_certificate_wins(self):
        with patch('exoreport.exchange.CertificateCredential') as mock_cert, \
             patch('exoreport.exchange.ClientSecretCredential') as mock_secret:
            get_credential("t", "c", client_secret="s", certificate_path="/tmp/cert.pem")
        mock_cert.assert_called_once_with(tenant_id="t", client_id="c", certificate_path="/tmp/cert.pem")
        mock_secret.assert_not_called()

    def test_missing_both(self):
        with pytest.raises(ValueError):
            get_credential("t", "c")


# =============================================================================
# Listing helper Tests
# =============================================================================

class TestListingHelpers:
    """Tests for list_mailboxes, mailbox_identity and public folder helpers."""

    def test_list_mailboxes_parameters(self):
        client = Mock()
        client.invoke.return_value = [{'Name': 'a'}]

        result = list_mailboxes(client, ['SharedMailbox'], "Department -eq 'IT'")

        assert result == [{'Name': 'a'}]
        client.invoke.assert_called_once_with('Get-Mailbox', {
            'ResultSize': 'Unlimited',
            'RecipientTypeDetails': ['SharedMailbox'],
            'Filter': "Department -eq 'IT'",
        })

    def test_list_mailboxes_defaults(self):
        client = Mock()
        client.invoke.return_value = []
        list_mailboxes(client)
        client.invoke.assert_called_once_with('Get-Mailbox', {'ResultSize': 'Unlimited'})

    def test_mailbox_identity_prefers_guid(self):
        assert mailbox_identity({'ExchangeGuid': 'g', 'PrimarySmtpAddress': 'a@b'}) == 'g'
        assert mailbox_identity({'PrimarySmtpAddress': 'a@b', 'Identity': 'x'}) == 'a@b'
        assert mailbox_identity({'Identity': 'x'}) == 'x'

    def test_public_folder_path(self):
        assert public_folder_path({'ParentPath': '\\', 'Name': 'Finance'}) == '\\Finance'
        assert public_folder_path({'ParentPath': '\\Departments', 'Name': 'HR'}) == '\\Departments\\HR'
        assert public_folder_path({'ParentPath': '', 'Name': 'IPM_SUBTREE'}) == '\\'

    def test_list_public_folders(self):
        client = Mock()
        client.invoke.return_value = []
        list_public_folders(client, '\\Projects')
        client.invoke.assert_called_once_with(
            'Get-PublicFolder',
            {'Identity': '\\Projects', 'Recurse': True, 'ResultSize': 'Unlimited'},
        )
