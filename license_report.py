#!/usr/bin/env python3
"""
M365 Reports - License Cost Report

Resolves every licensed user's Microsoft 365 licenses, flags duplicate
assignments (the same product granted directly and through a group, or
through several groups), prices each user's active subscribed products and
rolls the annual cost up by department, country, company and cost center.

Requirements:
- Azure AD App Registration with the following API permissions (Application type):
  - User.Read.All (users, license assignment states)
  - Organization.Read.All (subscribed SKUs)
  - Group.Read.All (licensing group names)
  - AuditLog.Read.All (sign-in activity; tenant needs Entra ID P1)
  - Mail.Send (only with --email-to)
- SKU reference CSV (SkuId, SkuPartNumber, DisplayName, Price, Currency)
- Service plan reference CSV (ServicePlanId, ServicePlanDisplayName)

Usage:
    # Set environment variables (client secret MUST be env var for security)
    export MS365_TENANT_ID="your-tenant-id"
    export MS365_CLIENT_ID="your-client-id"
    export MS365_CLIENT_SECRET="your-client-secret"

    python license_report.py --sku-csv skus.csv --service-plan-csv plans.csv

    # Only CSV + Excel, 90-day inactivity window, emailed to finance
    python license_report.py --formats csv,xlsx --inactive-days 90 \\
        --email-from reports@contoso.com --email-to it-finance@contoso.com
"""

import os
import sys
import asyncio
import logging
import argparse
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence, Tuple

# Add repo root to path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from tenantlib.aggregation import LicenseReport, build_license_report
from tenantlib.config import generate_sample_config, load_config
from tenantlib.constants import (
    AGGREGATE_DIMENSIONS,
    DEFAULT_INACTIVE_DAYS,
    DEFAULT_OUTPUT_DIR,
    SUPPORTED_FORMATS,
)
from tenantlib.graph import (
    fetch_group_names,
    fetch_subscriptions,
    fetch_users,
    get_graph_client,
    is_premium_required,
    send_mail,
    split_licensed,
)
from tenantlib.models import RunContext, Subscription, User
from tenantlib.pipeline import PipelineSettings, group_ids_for, process_users
from tenantlib.reference import LookupTable, ReferenceData, ReferenceDataError, load_reference_data
from tenantlib.utils import (
    AuthError,
    ProgressTracker,
    generate_run_id,
    get_timestamp,
    mask_tenant_id,
    print_summary_table,
    setup_logging,
    write_csv,
    write_json,
    write_text,
)
from scripts.generate_license_report import generate_excel_report, render_html_report, summary_rows

logger = logging.getLogger(__name__)


class LicenseReportError(Exception):
    """Raised when the report cannot be produced (e.g. no licensed users)."""


# =============================================================================
# Acquisition
# =============================================================================

async def fetch_tenant_data(
    graph_client,
    include_sign_in: bool = True,
) -> Tuple[List[User], List[Subscription], Dict[str, str]]:
    """
    Fetch users, subscriptions and licensing group names.

    Falls back to a fetch without sign-in activity when the tenant has no
    Entra ID P1; every account is then reported with no sign-in recorded.
    """
    try:
        users = await fetch_users(graph_client, include_sign_in=include_sign_in)
    except AuthError as e:
        if not (include_sign_in and is_premium_required(e)):
            raise
        logger.warning("Sign-in activity requires Entra ID P1 - continuing without it")
        users = await fetch_users(graph_client, include_sign_in=False)

    subscriptions = await fetch_subscriptions(graph_client)
    group_names = await fetch_group_names(graph_client, group_ids_for(users))
    return users, subscriptions, group_names


# =============================================================================
# Processing
# =============================================================================

def build_settings(
    reference: ReferenceData,
    subscriptions: Sequence[Subscription],
    group_names: Dict[str, str],
    context: RunContext,
    currency: Optional[str] = None,
    inactive_days: int = DEFAULT_INACTIVE_DAYS,
) -> PipelineSettings:
    return PipelineSettings(
        product_names=reference.product_names.with_misses(context.unresolved_ids),
        plan_names=reference.plan_names.with_misses(context.unresolved_ids),
        group_names=LookupTable(group_names, kind="group", misses=context.unresolved_ids),
        price_table=reference.price_table,
        subscribed_ids={s.sku_id for s in subscriptions if s.is_current},
        currency=reference.currency(currency),
        inactive_days=inactive_days,
    )


def run_report(
    users: Sequence[User],
    subscriptions: Sequence[Subscription],
    group_names: Dict[str, str],
    reference: ReferenceData,
    currency: Optional[str] = None,
    inactive_days: int = DEFAULT_INACTIVE_DAYS,
    metadata: Optional[Dict[str, Any]] = None,
    tracker: Optional[ProgressTracker] = None,
) -> LicenseReport:
    """
    Turn fetched tenant data into a finished report.

    Raises:
        LicenseReportError: If the tenant has no licensed users
    """
    licensed, unlicensed = split_licensed(users)
    if not licensed:
        raise LicenseReportError("No licensed users found - nothing to report")
    logger.info(f"{len(licensed):,} licensed users ({unlicensed:,} unlicensed skipped)")

    context = RunContext()
    settings = build_settings(reference, subscriptions, group_names, context, currency, inactive_days)

    if tracker is not None:
        tracker.start_items("Resolving licenses", total=len(licensed))
    records = process_users(licensed, settings, context, tracker)

    meta = dict(metadata or {})
    meta['inactive_days'] = inactive_days
    meta['unlicensed_users'] = unlicensed

    return build_license_report(
        records,
        subscriptions,
        settings.product_names,
        settings.price_table,
        context,
        currency=settings.currency,
        dimensions=AGGREGATE_DIMENSIONS,
        metadata=meta,
    )


# =============================================================================
# Output
# =============================================================================

def write_outputs(report: LicenseReport, output_dir: str, formats: Sequence[str], file_ts: str) -> List[str]:
    """Write the requested formats; returns the paths written."""
    os.makedirs(output_dir, exist_ok=True)
    written: List[str] = []
    report_dict = report.to_dict()

    if 'json' in formats:
        path = os.path.join(output_dir, f'license_report_{file_ts}.json')
        write_json(report_dict, path)
        written.append(path)

    if 'csv' in formats:
        if report_dict['users']:
            path = os.path.join(output_dir, f'license_users_{file_ts}.csv')
            write_csv(report_dict['users'], path)
            written.append(path)
        for dimension, rows in report_dict['aggregates'].items():
            if rows:
                path = os.path.join(output_dir, f'license_by_{dimension}_{file_ts}.csv')
                write_csv(rows, path)
                written.append(path)
        if report_dict['products']:
            path = os.path.join(output_dir, f'license_products_{file_ts}.csv')
            write_csv(report_dict['products'], path)
            written.append(path)

    if 'html' in formats:
        path = os.path.join(output_dir, f'license_report_{file_ts}.html')
        write_text(render_html_report(report_dict), path)
        written.append(path)

    if 'xlsx' in formats:
        path = os.path.join(output_dir, f'license_report_{file_ts}.xlsx')
        generate_excel_report(report_dict, path)
        written.append(path)

    return written


def email_attachments(paths: Sequence[str]) -> List[str]:
    """Files worth attaching: the Excel workbook, else the user CSV."""
    xlsx = [p for p in paths if p.endswith('.xlsx')]
    if xlsx:
        return xlsx
    return [p for p in paths if os.path.basename(p).startswith('license_users_')]


async def email_report(graph_client, report: LicenseReport, sender: str,
                       recipients: Sequence[str], attachments: Sequence[str]) -> None:
    report_dict = report.to_dict()
    org = report.metadata.get('org_name')
    subject = "Microsoft 365 License Report"
    if org:
        subject += f" - {org}"
    subject += f" ({datetime.now().strftime('%Y-%m-%d')})"

    await send_mail(
        graph_client,
        sender,
        recipients,
        subject,
        render_html_report(report_dict, include_users=False),
        attachments,
    )


def print_license_summary(report: LicenseReport) -> None:
    print_summary_table("License Report Summary", summary_rows(report.summary.to_dict()))

    top = report.buckets.get('department')
    if top and top[0]:
        rows = [(b.key, b.account_count, b.to_row(report.currency)['cost']) for b in top[0][:10]]
        print_summary_table("Top Departments by Cost", rows, headers=("Department", "Accounts", "Annual Cost"))


# =============================================================================
# Main Entry Point
# =============================================================================

def parse_formats(value: Any) -> List[str]:
    if isinstance(value, str):
        value = [v for v in value.split(',')]
    formats = [str(v).strip().lower() for v in value if str(v).strip()]
    unknown = [f for f in formats if f not in SUPPORTED_FORMATS]
    if unknown:
        raise argparse.ArgumentTypeError(
            f"Unsupported format(s): {', '.join(unknown)} (choose from {', '.join(SUPPORTED_FORMATS)})"
        )
    return formats


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='M365 Reports - License Cost Report',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Using environment variables (client secret MUST be env var)
    export MS365_TENANT_ID="your-tenant-id"
    export MS365_CLIENT_ID="your-client-id"
    export MS365_CLIENT_SECRET="your-client-secret"
    python license_report.py --sku-csv skus.csv --service-plan-csv plans.csv

    # Settings from a config file
    python license_report.py --config m365-reports.yaml

    # Print a sample config file
    python license_report.py --generate-config > m365-reports.yaml

Security Note:
    Client secrets must be provided via MS365_CLIENT_SECRET environment
    variable to avoid exposing secrets in shell history or process listings.
        """
    )

    parser.add_argument('--config', '-c', default=None,
                        help='YAML config file (default: ./m365-reports.yaml if present)')
    parser.add_argument('--generate-config', action='store_true',
                        help='Print a sample config file and exit')
    parser.add_argument('--tenant-id', default=None,
                        help='Azure AD tenant ID (or set MS365_TENANT_ID env var)')
    parser.add_argument('--client-id', default=None,
                        help='Azure AD application (client) ID (or set MS365_CLIENT_ID env var)')
    # Client secret is env-var only for security (no CLI arg to avoid shell history exposure)
    parser.add_argument('--org-name', default=None,
                        help='Organization name shown in report titles')
    parser.add_argument('--output', '-o', default=None,
                        help=f'Output directory (default: {DEFAULT_OUTPUT_DIR})')
    parser.add_argument('--sku-csv', default=None,
                        help='SKU reference CSV (SkuId, SkuPartNumber, DisplayName, Price, Currency)')
    parser.add_argument('--service-plan-csv', default=None,
                        help='Service plan reference CSV (ServicePlanId, ServicePlanDisplayName)')
    parser.add_argument('--inactive-days', type=int, default=None,
                        help=f'Days without sign-in before an account is inactive (default: {DEFAULT_INACTIVE_DAYS})')
    parser.add_argument('--currency', default=None,
                        help='Report currency (default: taken from the SKU file)')
    parser.add_argument('--formats', default=None,
                        help=f'Comma-separated output formats (default: {",".join(SUPPORTED_FORMATS)})')
    parser.add_argument('--no-sign-in', action='store_true',
                        help='Skip sign-in activity (tenants without Entra ID P1)')
    parser.add_argument('--email-to', default=None,
                        help='Comma-separated recipients for the report email')
    parser.add_argument('--email-from', default=None,
                        help='Mailbox the report email is sent from (needs Mail.Send)')
    parser.add_argument('--log-level', default=None,
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
                        help='Logging level (default: INFO)')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Enable verbose logging')
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.generate_config:
        print(generate_sample_config())
        return 0

    try:
        load_config(args)
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: {e}")
        return 1

    output_dir = args.output or DEFAULT_OUTPUT_DIR
    log_level = 'DEBUG' if args.verbose else (args.log_level or 'INFO')
    setup_logging(log_level, output_dir)

    try:
        formats = parse_formats(args.formats or list(SUPPORTED_FORMATS))
    except argparse.ArgumentTypeError as e:
        print(f"ERROR: {e}")
        return 1
    inactive_days = args.inactive_days if args.inactive_days is not None else DEFAULT_INACTIVE_DAYS
    recipients = args.email_to or []

    # Get client secret from environment only (security: not from CLI args)
    client_secret = os.environ.get('MS365_CLIENT_SECRET')

    if not args.tenant_id or not args.client_id or not client_secret:
        print("ERROR: Missing credentials. Please provide:")
        print("  --tenant-id or MS365_TENANT_ID environment variable")
        print("  --client-id or MS365_CLIENT_ID environment variable")
        print("  MS365_CLIENT_SECRET environment variable (required for security)")
        print("\nRun with --help for more information.")
        return 1

    if recipients and not args.email_from:
        print("ERROR: --email-to requires --email-from (the sending mailbox)")
        return 1

    # Reference data problems are fatal before any Graph traffic
    try:
        reference = load_reference_data(args.sku_csv, args.service_plan_csv)
    except ReferenceDataError as e:
        logger.error(str(e))
        print(f"ERROR: {e}")
        return 1

    print(f"Tenant: {mask_tenant_id(args.tenant_id)}")
    print(f"Output: {output_dir}\n")

    metadata = {
        'run_id': generate_run_id(),
        'generated_at': get_timestamp(),
        'org_name': args.org_name,
    }

    try:
        with ProgressTracker("License Report", total_stages=3) as tracker:
            tracker.start_stage("Fetching tenant data...")
            graph_client = get_graph_client(args.tenant_id, args.client_id, client_secret)
            users, subscriptions, group_names = asyncio.run(
                fetch_tenant_data(graph_client, include_sign_in=not args.no_sign_in)
            )
            tracker.complete_stage(f"{len(users):,} users, {len(subscriptions)} subscriptions")

            tracker.start_stage("Processing users...")
            report = run_report(
                users, subscriptions, group_names, reference,
                currency=args.currency,
                inactive_days=inactive_days,
                metadata=metadata,
                tracker=tracker,
            )
            tracker.complete_stage(f"{len(report.records):,} users costed")

            tracker.start_stage("Writing reports...")
            file_ts = datetime.now().strftime('%Y%m%d_%H%M%S')
            written = write_outputs(report, output_dir, formats, file_ts)
            tracker.complete_stage(f"{len(written)} files")
    except AuthError as e:
        logger.error(str(e))
        print(f"ERROR: {e}")
        print("Check the app registration's API permissions and admin consent.")
        return 1
    except LicenseReportError as e:
        logger.error(str(e))
        print(f"ERROR: {e}")
        return 1

    print_license_summary(report)

    if recipients:
        try:
            mail_client = get_graph_client(args.tenant_id, args.client_id, client_secret)
            asyncio.run(email_report(mail_client, report, args.email_from, recipients,
                                     email_attachments(written)))
        except Exception as e:
            logger.error(f"Failed to email report: {e}")
            print(f"ERROR: Report written but email failed: {e}")
            return 1

    print(f"\nOutput files in: {output_dir}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
