"""
Constants for the Exchange Online report scripts.

This module defines all magic strings and numbers used across the codebase
to prevent typos, ensure consistency, and make maintenance easier.
"""

# =============================================================================
# Service Endpoints
# =============================================================================

EXCHANGE_ADMIN_API_BASE = "https://outlook.office365.com/adminapi/beta"
EXCHANGE_SCOPE = "https://outlook.office365.com/.default"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"

# Arbitration mailbox every tenant has; used to route admin API requests
SYSTEM_ANCHOR_MAILBOX = "SystemMailbox{bb558c35-97f1-4cb9-8ff7-d53741dc928c}"

# =============================================================================
# Default Configuration Values
# =============================================================================

DEFAULT_PAGE_SIZE = 1000
DEFAULT_TIMEOUT_SECONDS = 120
DEFAULT_RETRY_ATTEMPTS = 3
DEFAULT_OUTPUT_DIR = "./exo_reports"
DEFAULT_DELIMITER = ","
DEFAULT_FOLDER = "Calendar"
PUBLIC_FOLDER_ROOT = "\\"
RESULT_SIZE_UNLIMITED = "Unlimited"

# Separator used when writing multi-valued properties into a single cell
MULTI_VALUE_SEPARATOR = ";"

# HTTP status codes
AUTH_STATUS_CODES = {401, 403}
TRANSIENT_STATUS_CODES = {429, 500, 502, 503, 504}

# =============================================================================
# Sentinel Values
# =============================================================================

NOT_FOUND = "Not Found"
LOOKUP_FAILED = "Error"
SYSTEM_PRINCIPAL = "SystemPrincipal"

# =============================================================================
# Recipient Types
# =============================================================================

USER_MAILBOX = "UserMailbox"
SHARED_MAILBOX = "SharedMailbox"
ROOM_MAILBOX = "RoomMailbox"
EQUIPMENT_MAILBOX = "EquipmentMailbox"

MAILBOX_TYPES = [USER_MAILBOX, SHARED_MAILBOX, ROOM_MAILBOX, EQUIPMENT_MAILBOX]
RESOURCE_MAILBOX_TYPES = [ROOM_MAILBOX, EQUIPMENT_MAILBOX]

GROUP_RECIPIENT_TYPES = {
    "MailUniversalDistributionGroup",
    "MailUniversalSecurityGroup",
    "MailNonUniversalGroup",
    "RoomList",
    "GroupMailbox",
    "DynamicDistributionGroup",
}

# =============================================================================
# Well-known Principals
# =============================================================================

SELF_PRINCIPAL = "NT AUTHORITY\\SELF"
SYSTEM_PRINCIPAL_PREFIXES = ("NT AUTHORITY\\", "S-1-5-")
DEFAULT_FOLDER_PRINCIPALS = {"default", "anonymous"}

# =============================================================================
# Permission Rights
# =============================================================================

FULL_ACCESS = "FullAccess"
SEND_AS = "SendAs"
NO_FOLDER_RIGHTS = "None"

# =============================================================================
# Address Prefixes
# =============================================================================

# Proxy addresses look like "smtp:alias@contoso.com" or "X500:/o=..."
ADDRESS_PREFIXES = ("smtp:", "x500:", "x400:", "sip:", "spo:", "eum:")
