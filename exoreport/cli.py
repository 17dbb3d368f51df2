"""
Command-line plumbing shared by every report script.

Each script builds its own argparse parser, calls add_common_arguments() for
the tenant/output flags, then:

    prepare_run(args)            # config, logging, credential validation
    client = connect_exchange(args)
    rows = collect_...(client, ...)
    write_report(rows, report_columns(args), "report_name", args)
"""
import logging
import os
import sys
from typing import Any, Dict, Iterable, List, Sequence, Tuple

import yaml

from .config import generate_sample_config, load_config
from .constants import DEFAULT_DELIMITER, DEFAULT_OUTPUT_DIR, DEFAULT_PAGE_SIZE
from .exchange import ExchangeAdminClient, get_credential, print_permission_check_results
from .utils import AuthError, get_timestamp, report_filename, setup_logging, write_csv

logger = logging.getLogger(__name__)

CREDENTIALS_HELP = """
Credentials:
    export MS365_TENANT_ID="your-tenant-id"
    export MS365_CLIENT_ID="your-client-id"
    export MS365_CLIENT_SECRET="your-client-secret"   # or --certificate-path

Required permissions (Application type):
    - Office 365 Exchange Online: Exchange.ManageAsApp
    - An Exchange role such as "View-Only Organization Management"

Security Note:
    Client secrets must be provided via MS365_CLIENT_SECRET environment
    variable to avoid exposing secrets in shell history or process listings.
"""


def add_common_arguments(parser) -> None:
    """Add the tenant, output and logging flags every report shares."""
    auth = parser.add_argument_group('tenant')
    auth.add_argument('--tenant-id',
                      help='Azure AD tenant ID (or set MS365_TENANT_ID env var)')
    auth.add_argument('--client-id',
                      help='Azure AD application (client) ID (or set MS365_CLIENT_ID env var)')
    auth.add_argument('--organization',
                      help="Tenant's initial domain, e.g. contoso.onmicrosoft.com (or MS365_ORGANIZATION)")
    auth.add_argument('--certificate-path',
                      help='Certificate file for app-only auth (or MS365_CERTIFICATE_PATH)')
    # Client secret is env-var only (no CLI arg to avoid shell history exposure)

    output = parser.add_argument_group('output')
    output.add_argument('--output-dir', '-o',
                        help=f'Output directory (default: {DEFAULT_OUTPUT_DIR})')
    output.add_argument('--delimiter',
                        help=f'Field delimiter (default: "{DEFAULT_DELIMITER}")')
    output.add_argument('--config',
                        help='Path to YAML config file')
    output.add_argument('--generate-config', action='store_true',
                        help='Print a sample config file and exit')
    output.add_argument('--log-level', choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level (default: INFO)')
    output.add_argument('--page-size', type=int,
                        help=f'Records per admin API page (default: {DEFAULT_PAGE_SIZE})')
    output.add_argument('--skip-check', action='store_true',
                        help='Skip the session check before querying')
    output.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging (same as --log-level DEBUG)')


def build_columns(base: Sequence[str], *optional: Tuple[bool, Sequence[str]]) -> List[str]:
    """
    Build a report header from a base column set plus switch-gated extras.

    Example:
        build_columns(BASE, (args.include_quota, QUOTA_COLUMNS))
    """
    columns = list(base)
    for enabled, extra in optional:
        if enabled:
            columns.extend(c for c in extra if c not in columns)
    return columns


def prepare_run(args) -> Dict[str, Any]:
    """
    Resolve configuration, start logging and validate credentials.

    Exits with status 1 when credentials are incomplete, or a named config
    file is missing or does not parse.
    """
    if getattr(args, 'generate_config', False):
        print(generate_sample_config())
        sys.exit(0)

    try:
        config = load_config(args)
    except FileNotFoundError as e:
        print(f"ERROR: {e}")
        sys.exit(1)
    except (ValueError, yaml.YAMLError) as e:
        print(f"ERROR: Invalid configuration: {e}")
        sys.exit(1)

    if not getattr(args, 'output_dir', None):
        args.output_dir = DEFAULT_OUTPUT_DIR
    if not getattr(args, 'delimiter', None):
        args.delimiter = DEFAULT_DELIMITER
    elif args.delimiter.lower() in ('\\t', 'tab'):
        args.delimiter = '\t'
    if not getattr(args, 'page_size', None):
        args.page_size = DEFAULT_PAGE_SIZE
    if getattr(args, 'verbose', False):
        args.log_level = 'DEBUG'
    if not getattr(args, 'log_level', None):
        args.log_level = 'INFO'

    setup_logging(args.log_level, output_dir=args.output_dir)
    logger.info(f"Run started {get_timestamp()}")
    if config:
        logger.debug(f"Loaded configuration: {list(config.keys())}")

    args.client_secret = os.environ.get('MS365_CLIENT_SECRET')

    if not args.tenant_id or not args.client_id or not (args.client_secret or args.certificate_path):
        print("ERROR: Missing credentials. Please provide:")
        print("  --tenant-id or MS365_TENANT_ID environment variable")
        print("  --client-id or MS365_CLIENT_ID environment variable")
        print("  MS365_CLIENT_SECRET environment variable, or --certificate-path")
        print("\nNote: Client secret must be set via environment variable,")
        print("      not CLI argument, to avoid exposing secrets in shell history.")
        print("\nRun with --help for more information.")
        sys.exit(1)

    os.makedirs(args.output_dir, exist_ok=True)

    print(f"Tenant: {args.tenant_id[:8]}...{args.tenant_id[-4:]}")
    print(f"Output: {args.output_dir}\n")

    return config


def create_credential(args):
    """Build the azure-identity credential from resolved args."""
    return get_credential(
        args.tenant_id,
        args.client_id,
        client_secret=getattr(args, 'client_secret', None),
        certificate_path=getattr(args, 'certificate_path', None),
    )


def connect_exchange(args) -> ExchangeAdminClient:
    """Create the admin client and run the session check unless skipped."""
    try:
        logger.info("Initializing Exchange admin client...")
        client = ExchangeAdminClient(
            args.tenant_id,
            create_credential(args),
            organization=getattr(args, 'organization', None),
            page_size=args.page_size,
        )
    except Exception as e:
        print(f"ERROR: Failed to initialize Exchange admin client: {e}")
        sys.exit(1)

    if getattr(args, 'skip_check', False):
        return client

    results = client.check_connection()
    if not print_permission_check_results(results, 'exchange'):
        sys.exit(1)
    if results.get('organization'):
        logger.info(f"Connected to organization: {results['organization']}")
    return client


def write_report(rows: Iterable[Dict[str, Any]], columns: List[str], report_name: str, args) -> str:
    """Write rows under the output directory; returns the file path."""
    filepath = os.path.join(args.output_dir, report_filename(report_name))
    count = write_csv(rows, filepath, columns, delimiter=args.delimiter)
    logger.info(f"Wrote {count:,} rows to {filepath}")
    return filepath


def abort_on_auth_error(e: AuthError) -> None:
    """Report an auth failure and exit."""
    logger.error(str(e))
    print(f"ERROR: {e}")
    if getattr(e, 'provider', None) == 'graph':
        print("Check the app registration's Microsoft Graph Group.Read.All permission and admin consent.")
    else:
        print("Check the app registration's Exchange.ManageAsApp permission and Exchange role assignment.")
    sys.exit(1)
