"""
Exchange Online report scripts shared library.
"""
from . import constants
from .constants import (
    LOOKUP_FAILED,
    NOT_FOUND,
    SYSTEM_PRINCIPAL,
)
from .directory import RecipientDirectory, is_system_principal, load_directory
from .exchange import (
    ExchangeAdminClient,
    ExchangeCommandError,
    TransientServiceError,
    get_credential,
)
from .models import Recipient, ResolvedTrustee
from .utils import (
    AuthError,
    ProgressTracker,
    format_value,
    get_timestamp,
    parse_byte_quantity,
    setup_logging,
    strip_address_prefix,
    write_csv,
)

__version__ = "1.0.0"

__all__ = [
    # Constants
    'constants',
    'LOOKUP_FAILED',
    'NOT_FOUND',
    'SYSTEM_PRINCIPAL',
    # Models
    'Recipient',
    'ResolvedTrustee',
    # Directory
    'RecipientDirectory',
    'is_system_principal',
    'load_directory',
    # Exchange
    'ExchangeAdminClient',
    'ExchangeCommandError',
    'TransientServiceError',
    'get_credential',
    # Utils
    'AuthError',
    'ProgressTracker',
    'format_value',
    'get_timestamp',
    'parse_byte_quantity',
    'setup_logging',
    'strip_address_prefix',
    'write_csv',
]
