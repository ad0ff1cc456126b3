#!/usr/bin/env python3
"""
M365 Reports - MFA Registration

Classifies each user's registered authentication methods into the
strongest category they hold:

    Passwordless > Authenticator app > Software OATH > Phone > Email > None

Requirements:
- User.Read.All and UserAuthenticationMethod.Read.All (Application type)

Usage:
    python mfa_report.py
    python mfa_report.py --licensed-only --enabled-only
"""

import os
import sys
import asyncio
import logging
import argparse
from collections import Counter
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

# Add repo root to path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from tenantlib.activity import account_status
from tenantlib.config import load_config
from tenantlib.constants import AUTH_METHOD_CATEGORIES, DEFAULT_OUTPUT_DIR, MFA_NONE, PASSWORD_METHOD
from tenantlib.graph import fetch_auth_methods, fetch_users, get_graph_client
from tenantlib.models import User
from tenantlib.utils import AuthError, ProgressTracker, print_summary_table, setup_logging, write_csv

logger = logging.getLogger(__name__)


def classify_auth_methods(method_types: Iterable[str]) -> str:
    """Strongest MFA category among the registered method types."""
    registered = set(method_types)
    for category, odata_types in AUTH_METHOD_CATEGORIES:
        if registered.intersection(odata_types):
            return category
    return MFA_NONE


def short_method_name(odata_type: str) -> str:
    """'#microsoft.graph.fido2AuthenticationMethod' -> 'fido2'"""
    name = odata_type.rsplit('.', 1)[-1]
    if name.endswith('AuthenticationMethod'):
        name = name[:-len('AuthenticationMethod')]
    return name


def mfa_row(user: User, method_types: Sequence[str]) -> Dict[str, Any]:
    second_factors = sorted(short_method_name(m) for m in set(method_types) if m != PASSWORD_METHOD)
    return {
        'display_name': user.display_name,
        'user_principal_name': user.user_principal_name,
        'department': user.department or "",
        'account_status': account_status(user.account_enabled),
        'strongest_method': classify_auth_methods(method_types),
        'registered_methods': ", ".join(second_factors),
    }


def category_counts(rows: Iterable[Dict[str, Any]]) -> List[Tuple[str, int]]:
    """Per-category user counts in strongest-first order, including zeros."""
    counts = Counter(r['strongest_method'] for r in rows)
    order = [category for category, _ in AUTH_METHOD_CATEGORIES] + [MFA_NONE]
    return [(category, counts.get(category, 0)) for category in order]


async def collect_mfa_rows(graph_client, users: Sequence[User], tracker=None) -> Tuple[List[Dict[str, Any]], List[str]]:
    """
    Look up methods for every user.

    Users whose methods cannot be read are skipped and returned separately;
    permission errors stop the run.
    """
    rows: List[Dict[str, Any]] = []
    skipped: List[str] = []
    for user in users:
        try:
            methods = await fetch_auth_methods(graph_client, user.id)
            rows.append(mfa_row(user, methods))
        except AuthError:
            raise
        except Exception as e:
            logger.warning(f"Skipping user {user.user_principal_name}: {e}")
            skipped.append(user.user_principal_name)
        if tracker is not None:
            tracker.advance()
    return rows, skipped


def select_users(users: Sequence[User], licensed_only: bool = False, enabled_only: bool = False) -> List[User]:
    selected = []
    for user in users:
        if licensed_only and not user.is_licensed:
            continue
        if enabled_only and user.account_enabled is False:
            continue
        selected.append(user)
    return selected


async def run_mfa_report(graph_client, licensed_only: bool, enabled_only: bool, tracker=None):
    users = select_users(await fetch_users(graph_client, include_sign_in=False), licensed_only, enabled_only)
    if tracker is not None:
        tracker.start_items("Reading authentication methods", total=len(users))
    return await collect_mfa_rows(graph_client, users, tracker)


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description='M365 Reports - MFA Registration')
    parser.add_argument('--config', '-c', default=None, help='YAML config file')
    parser.add_argument('--tenant-id', default=None,
                        help='Azure AD tenant ID (or set MS365_TENANT_ID env var)')
    parser.add_argument('--client-id', default=None,
                        help='Azure AD application (client) ID (or set MS365_CLIENT_ID env var)')
    parser.add_argument('--output', '-o', default=None,
                        help=f'Output directory (default: {DEFAULT_OUTPUT_DIR})')
    parser.add_argument('--licensed-only', action='store_true', help='Only licensed users')
    parser.add_argument('--enabled-only', action='store_true', help='Only enabled accounts')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')
    args = parser.parse_args(argv)

    try:
        load_config(args)
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: {e}")
        return 1

    output_dir = args.output or DEFAULT_OUTPUT_DIR
    setup_logging('DEBUG' if args.verbose else getattr(args, 'log_level', None) or 'INFO', output_dir)

    client_secret = os.environ.get('MS365_CLIENT_SECRET')
    if not args.tenant_id or not args.client_id or not client_secret:
        print("ERROR: Missing credentials (MS365_TENANT_ID, MS365_CLIENT_ID, MS365_CLIENT_SECRET)")
        return 1

    try:
        with ProgressTracker("MFA Report", total_stages=1) as tracker:
            tracker.start_stage("Collecting authentication methods...")
            graph_client = get_graph_client(args.tenant_id, args.client_id, client_secret)
            rows, skipped = asyncio.run(
                run_mfa_report(graph_client, args.licensed_only, args.enabled_only, tracker)
            )
            tracker.complete_stage(f"{len(rows):,} users")
    except AuthError as e:
        print(f"ERROR: {e}")
        print("The app needs UserAuthenticationMethod.Read.All.")
        return 1

    summary = category_counts(rows)
    if skipped:
        summary.append(("Skipped (errors)", len(skipped)))
    print_summary_table("MFA Registration", summary, headers=("Strongest method", "Users"))

    if rows:
        os.makedirs(output_dir, exist_ok=True)
        file_ts = datetime.now().strftime('%Y%m%d_%H%M%S')
        write_csv(rows, os.path.join(output_dir, f'mfa_registration_{file_ts}.csv'))
    return 0


if __name__ == '__main__':
    sys.exit(main())
