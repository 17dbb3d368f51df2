"""
Utility functions for the Exchange Online report scripts.

Logging Level Standards:
------------------------
- ERROR: Failures that stop an entire report
         "Failed to list mailboxes: {e}"
- WARNING: Per-record failures written as sentinel rows, retries
           "Failed to get permissions for mailbox {id}: {e}"
- INFO: Progress messages, record counts
        "Found 42 mailboxes"
        "Resolving trustees against 1,250 recipients..."
- DEBUG: Per-item detail that does not affect the report
         "Trustee {name} not found in directory"
"""
import csv
import hashlib
import logging
import os
import re
import sys
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Callable, Dict, Iterable, List, Optional, TypeVar

from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    MofNCompleteColumn,
    Progress,
    SpinnerColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table
from tenacity import (
    before_sleep_log,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .constants import ADDRESS_PREFIXES, AUTH_STATUS_CODES, LOOKUP_FAILED, MULTI_VALUE_SEPARATOR

if TYPE_CHECKING:
    from rich.progress import TaskID

logger = logging.getLogger(__name__)

# Type variable for generic function decorator
F = TypeVar('F', bound=Callable[..., Any])


def retry_with_backoff(
    max_attempts: int = 3,
    min_wait: float = 1,
    max_wait: float = 60,
    exceptions: tuple = (Exception,)
) -> Callable[[F], F]:
    """
    Decorator for retrying functions with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts (default: 3)
        min_wait: Minimum wait time between retries in seconds (default: 1)
        max_wait: Maximum wait time between retries in seconds (default: 60)
        exceptions: Tuple of exception types to retry on (default: all Exceptions)

    Returns:
        Decorated function with retry logic

    Example:
        @retry_with_backoff(max_attempts=5, exceptions=(TransientServiceError,))
        def call_api():
            ...
    """
    def decorator(func: F) -> F:
        return retry(
            stop=stop_after_attempt(max_attempts),
            wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
            retry=retry_if_exception_type(exceptions),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True
        )(func)  # type: ignore[return-value]
    return decorator


# =============================================================================
# Progress Tracking
# =============================================================================

class ProgressTracker:
    """
    Progress tracker for per-record report loops with rich display.

    Falls back to simple print statements if stdout is not a TTY
    (e.g., when piping output or running under a scheduler).

    Usage:
        with ProgressTracker("Mailbox permissions", total_items=len(mailboxes)) as tracker:
            for mailbox in mailboxes:
                tracker.start_item(mailbox['PrimarySmtpAddress'])
                rows = collect_rows(...)
                tracker.add_rows(len(rows))
                tracker.complete_item()
    """

    def __init__(self, report_name: str, total_items: int = 0, show_progress: bool = True):
        self.report_name = report_name
        self.total_items = total_items
        self.show_progress = show_progress and sys.stdout.isatty()

        # Counters
        self.completed_items = 0
        self.failed_items = 0
        self.total_rows = 0
        self.current_item = ""

        self._console: Optional[Console] = None
        self._progress: Optional[Progress] = None
        self._main_task: Optional["TaskID"] = None

    def __enter__(self):
        if self.show_progress:
            self._console = Console()
            self._progress = Progress(
                SpinnerColumn(),
                TextColumn("[bold blue]{task.description}"),
                BarColumn(),
                MofNCompleteColumn(),
                TimeElapsedColumn(),
                console=self._console,
                transient=False,
            )
            self._main_task = self._progress.add_task(self.report_name, total=self.total_items or 1)
            self._progress.start()
        else:
            print(f"\n{'='*60}")
            print(f"{self.report_name} Starting")
            print(f"{'='*60}")
            if self.total_items:
                print(f"Records to process: {self.total_items:,}")
            print()

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        if self.show_progress:
            assert self._progress is not None
            assert self._console is not None
            self._progress.stop()
            self._console.print()
            self._print_summary_rich()
        else:
            self._print_summary_plain()
        return False

    def start_item(self, name: str):
        """Mark the start of processing one record."""
        self.current_item = name
        if self.show_progress:
            assert self._progress is not None
            assert self._main_task is not None
            self._progress.update(self._main_task, description=f"{self.report_name} [{name}]")

    def add_rows(self, count: int):
        """Add written rows to the running total."""
        self.total_rows += count

    def fail_item(self):
        """Count a record whose lookup failed."""
        self.failed_items += 1

    def complete_item(self):
        """Mark a record as complete."""
        self.completed_items += 1
        if self.show_progress:
            assert self._progress is not None
            assert self._main_task is not None
            self._progress.update(self._main_task, advance=1)
        elif self.total_items and self.completed_items % 100 == 0:
            print(f"  Processed {self.completed_items:,}/{self.total_items:,} records")

    def _print_summary_rich(self):
        table = Table(title=f"{self.report_name} Summary", show_header=False)
        table.add_column("Metric", style="cyan")
        table.add_column("Value", style="green")
        table.add_row("Records processed", f"{self.completed_items:,}")
        table.add_row("Lookup failures", f"{self.failed_items:,}")
        table.add_row("Rows written", f"{self.total_rows:,}")

        assert self._console is not None
        self._console.print(Panel(table))

    def _print_summary_plain(self):
        print(f"\n{'='*60}")
        print(f"{self.report_name} Complete")
        print(f"{'='*60}")
        print(f"  Records processed: {self.completed_items:,}")
        print(f"  Lookup failures:   {self.failed_items:,}")
        print(f"  Rows written:      {self.total_rows:,}")
        print()


def get_timestamp() -> str:
    """Get current UTC timestamp in ISO format."""
    return datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')


def report_filename(report_name: str, extension: str = "csv") -> str:
    """Build a timestamped report filename, e.g. mailbox_permissions_20260101_120000.csv."""
    timestamp = datetime.now().strftime('%Y%m%d_%H%M%S')
    return f"{report_name}_{timestamp}.{extension}"


# =============================================================================
# Value Formatting
# =============================================================================

def strip_address_prefix(address: Optional[str]) -> str:
    """Remove a proxy address prefix: 'smtp:a@contoso.com' -> 'a@contoso.com'."""
    if not address:
        return ""
    lowered = address.lower()
    for prefix in ADDRESS_PREFIXES:
        if lowered.startswith(prefix):
            return address[len(prefix):]
    return address


def principal_name(value: Any) -> str:
    """
    Flatten a principal as returned by the admin API to a string.

    Folder permission users come back as objects
    ({"DisplayName": ..., "UserType": ...}); most other cmdlets return plain
    strings.
    """
    if value is None:
        return ""
    if isinstance(value, dict):
        for key in ('DisplayName', 'Name', 'Identity', 'PrimarySmtpAddress'):
            if value.get(key):
                return str(value[key])
        return ""
    return str(value)


def as_list(value: Any) -> List[Any]:
    """Normalize a single-or-multi valued property to a list."""
    if value is None or value == "":
        return []
    if isinstance(value, (list, tuple, set)):
        return [v for v in value if v is not None and v != ""]
    return [value]


def format_value(value: Any) -> str:
    """Format a property value for a delimited cell."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "True" if value else "False"
    if isinstance(value, (list, tuple, set)):
        return MULTI_VALUE_SEPARATOR.join(format_value(v) for v in value if v is not None)
    if isinstance(value, dict):
        return principal_name(value)
    return str(value)


_BYTES_PATTERN = re.compile(r'\(([\d,\.\s]+)\s*bytes\)', re.IGNORECASE)
_UNIT_PATTERN = re.compile(r'^\s*([\d\.,]+)\s*(B|KB|MB|GB|TB)\b', re.IGNORECASE)
_UNIT_MULTIPLIERS = {'B': 1, 'KB': 1024, 'MB': 1024 ** 2, 'GB': 1024 ** 3, 'TB': 1024 ** 4}


def parse_byte_quantity(value: Any) -> Optional[int]:
    """
    Parse an Exchange size value into a byte count.

    Accepts ints, strings such as "1.5 GB (1,610,612,736 bytes)" or "512 MB",
    and objects of the form {"Value": ...}. Returns None for "Unlimited" or
    anything unparseable.
    """
    if value is None:
        return None
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, dict):
        return parse_byte_quantity(value.get('Value'))

    text = str(value).strip()
    if not text or text.lower() == 'unlimited':
        return None

    match = _BYTES_PATTERN.search(text)
    if match:
        digits = re.sub(r'[^\d]', '', match.group(1))
        return int(digits) if digits else None

    if text.isdigit():
        return int(text)

    match = _UNIT_PATTERN.match(text)
    if match:
        number = float(match.group(1).replace(',', ''))
        return int(number * _UNIT_MULTIPLIERS[match.group(2).upper()])

    return None


# =============================================================================
# Errors
# =============================================================================

class AuthError(Exception):
    """Custom exception for authentication/authorization failures.

    Raised when the service returns an auth error that should stop the report
    rather than being caught and written as a sentinel row.
    """
    def __init__(self, message: str, provider: str, original_error: Optional[Exception] = None):
        self.provider = provider
        self.original_error = original_error
        super().__init__(message)


# Graph error codes that indicate auth/permission issues
GRAPH_AUTH_ERROR_CODES = {'Authorization_RequestDenied', 'InvalidAuthenticationToken'}


def is_auth_error(exc: Exception) -> bool:
    """
    Check if an exception represents an authentication/authorization error.

    Detects:
    - AuthError raised by our own clients
    - azure-identity ClientAuthenticationError (bad secret, expired cert)
    - requests HTTPError with a 401/403 response
    - Graph ODataError with auth-related codes

    Args:
        exc: The exception to check

    Returns:
        True if the exception is an authentication/authorization error
    """
    if isinstance(exc, AuthError):
        return True

    exc_type_name = type(exc).__name__

    if exc_type_name == 'ClientAuthenticationError':
        return True

    if exc_type_name == 'HTTPError':
        response = getattr(exc, 'response', None)
        return getattr(response, 'status_code', None) in AUTH_STATUS_CODES

    if exc_type_name == 'ODataError':
        if getattr(exc, 'response_status_code', None) in AUTH_STATUS_CODES:
            return True
        error = getattr(exc, 'error', None)
        if error:
            return getattr(error, 'code', '') in GRAPH_AUTH_ERROR_CODES

    return False


def check_and_raise_auth_error(exc: Exception, context: str, provider: str) -> None:
    """
    Check if exception is an auth error and raise AuthError if so.

    Call this in exception handlers before logging and continuing.
    If the exception is an auth error, raises AuthError to fail early.
    Otherwise, returns normally so the caller can log and continue.

    Args:
        exc: The caught exception
        context: Description of what was being attempted (e.g., "list mailboxes")
        provider: Service name (exchange, graph)

    Raises:
        AuthError: If exc is an authentication/authorization error
    """
    if isinstance(exc, AuthError):
        raise exc
    if is_auth_error(exc):
        raise AuthError(
            f"Authentication/authorization error while trying to {context}: {exc}",
            provider=provider,
            original_error=exc
        ) from exc


# =============================================================================
# Redaction
# =============================================================================

def hash_sensitive_id(value: str, prefix: str = "") -> str:
    """
    Hash a sensitive value using consistent hashing.

    Uses first 8 chars of SHA256 for uniqueness with minimal collision risk.

    Example: jane.doe@contoso.com -> usr-a3f8b2c1
    """
    if not value:
        return value
    hash_val = hashlib.sha256(value.encode()).hexdigest()[:8]
    return f"{prefix}{hash_val}" if prefix else hash_val


_LOG_REDACT_PATTERNS = [
    # Bearer tokens and raw JWTs
    (re.compile(r'(Bearer\s+)[A-Za-z0-9\-_\.=]+'), lambda m: f"{m.group(1)}***"),
    (re.compile(r'\beyJ[A-Za-z0-9_-]{5,}\.[A-Za-z0-9_-]{5,}\.[A-Za-z0-9_-]*'), lambda m: "***TOKEN***"),
    # E-mail addresses - keep the domain so logs remain useful
    (re.compile(r'\b([A-Za-z0-9._%+\-]+)@([A-Za-z0-9.\-]+\.[A-Za-z]{2,})\b'),
     lambda m: f"usr-{hash_sensitive_id(m.group(1).lower())}@{m.group(2)}"),
]


def redact_log_message(message: str) -> str:
    """
    Redact sensitive data from a log message using consistent hashing.

    The same address always hashes to the same value so persisted logs can
    still be correlated with report rows by whoever holds the report.
    """
    if not message:
        return message

    for pattern, replacer in _LOG_REDACT_PATTERNS:
        message = pattern.sub(replacer, message)

    return message


class RedactingFilter(logging.Filter):
    """
    Logging filter that redacts sensitive data from log messages.

    Uses consistent hashing so the same address produces the same hash.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact sensitive data from the log record message."""
        if record.msg:
            record.msg = redact_log_message(str(record.msg))
        if record.args:
            record.args = tuple(
                redact_log_message(arg) if isinstance(arg, str) else arg
                for arg in record.args
            )
        return True


def setup_logging(level: str = "INFO", output_dir: Optional[str] = None) -> logging.Logger:
    """
    Setup logging configuration with console and optional file output.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        output_dir: If provided, also write logs to a file in this directory

    Returns:
        Logger instance
    """
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    formatter = logging.Formatter(
        '%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(numeric_level)

    # Clear existing handlers to avoid duplicates
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stderr)
    console_handler.setLevel(numeric_level)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if output_dir:
        os.makedirs(output_dir, exist_ok=True)
        timestamp = datetime.now(timezone.utc).strftime('%Y%m%d_%H%M%S')
        log_file = os.path.join(output_dir, f"exoreport_log_{timestamp}.log")

        file_handler = logging.FileHandler(log_file, mode='w', encoding='utf-8')
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(formatter)
        # Persisted logs outlive the run; keep addresses and tokens out of them
        file_handler.addFilter(RedactingFilter())
        root_logger.addHandler(file_handler)

        root_logger.info(f"Logging to: {log_file}")

    # Azure SDK HTTP logging is very chatty at INFO
    logging.getLogger('azure').setLevel(max(numeric_level, logging.WARNING))

    return logging.getLogger(__name__)


# =============================================================================
# Output
# =============================================================================

def write_csv(
    data: Iterable[Dict[str, Any]],
    filepath: str,
    fieldnames: List[str],
    delimiter: str = ",",
) -> int:
    """
    Write rows to a UTF-8 delimited file.

    The header is always written so an empty report still documents its
    columns. Keys missing from a row are written empty; extra keys are
    ignored. Returns the number of data rows written.
    """
    count = 0
    with open(filepath, 'w', newline='', encoding='utf-8') as f:
        writer = csv.DictWriter(
            f,
            fieldnames=fieldnames,
            delimiter=delimiter,
            extrasaction='ignore',
            restval='',
        )
        writer.writeheader()
        for row in data:
            writer.writerow({key: format_value(row.get(key)) for key in fieldnames})
            count += 1
    print(f"Wrote {filepath}")
    return count


def print_report_summary(title: str, rows: List[Dict[str, Any]], group_by: str) -> None:
    """Print a per-group row count table to console."""
    if not rows:
        print("No rows found.")
        return

    counts: Dict[str, int] = {}
    for row in rows:
        key = format_value(row.get(group_by)) or "(none)"
        counts[key] = counts.get(key, 0) + 1

    headers = [group_by, "Rows"]
    table_rows = [[key, f"{count:,}"] for key, count in sorted(counts.items())]

    widths = [len(h) for h in headers]
    for row in table_rows:
        for i, cell in enumerate(row):
            widths[i] = max(widths[i], len(cell))

    header_line = " | ".join(h.ljust(widths[i]) for i, h in enumerate(headers))
    separator = "-+-".join("-" * w for w in widths)

    print(f"\n{title}")
    print(header_line)
    print(separator)
    for row in table_rows:
        print(" | ".join(cell.ljust(widths[i]) for i, cell in enumerate(row)))
    print(separator)
    print(f"{'TOTAL'.ljust(widths[0])} | {f'{len(rows):,}'.ljust(widths[1])}")
    print()


def failure_sentinel(exc: Exception) -> str:
    """Cell value written in place of data when a per-record lookup failed."""
    message = str(exc).splitlines()[0] if str(exc) else type(exc).__name__
    return f"{LOOKUP_FAILED}: {message}"


def normalize_rights(value: Any) -> List[str]:
    """AccessRights arrive as a list or a comma-separated string; return a list."""
    rights: List[str] = []
    for item in as_list(value):
        rights.extend(part.strip() for part in str(item).split(',') if part.strip())
    return rights
