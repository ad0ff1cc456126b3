#!/usr/bin/env python3
"""
M365 Reports - Inactive Users

Lists accounts whose most recent sign-in (interactive or non-interactive)
is older than N days, or that have never signed in.

Requirements:
- User.Read.All and AuditLog.Read.All (Application type)
- Entra ID P1 or higher (sign-in activity)

Usage:
    python inactive_users_report.py --days 90
    python inactive_users_report.py --days 30 --licensed-only
"""

import os
import sys
import asyncio
import logging
import argparse
from collections import Counter
from datetime import datetime
from typing import Any, Dict, List, Optional, Sequence

# Add repo root to path for imports
sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from tenantlib.activity import (
    account_status,
    classify_activity,
    days_since,
    format_datetime,
    last_access,
    now_utc,
)
from tenantlib.config import load_config
from tenantlib.constants import DEFAULT_INACTIVE_DAYS, DEFAULT_OUTPUT_DIR, UNKNOWN
from tenantlib.graph import fetch_users, get_graph_client
from tenantlib.models import User
from tenantlib.utils import AuthError, print_summary_table, setup_logging, write_csv

logger = logging.getLogger(__name__)


def inactive_user_rows(
    users: Sequence[User],
    threshold_days: int = DEFAULT_INACTIVE_DAYS,
    now: Optional[datetime] = None,
    licensed_only: bool = False,
) -> List[Dict[str, Any]]:
    """Rows for every inactive user, longest-inactive first (never signed in at the top)."""
    now = now or now_utc()
    rows = []
    for user in users:
        if licensed_only and not user.is_licensed:
            continue
        accessed = last_access(user.last_sign_in, user.last_non_interactive_sign_in)
        days = days_since(accessed, now)
        inactive, status = classify_activity(days, threshold_days)
        if not inactive:
            continue
        rows.append({
            'display_name': user.display_name,
            'user_principal_name': user.user_principal_name,
            'department': user.department or "",
            'account_status': account_status(user.account_enabled),
            'licensed': 'Yes' if user.is_licensed else 'No',
            'last_interactive_sign_in': format_datetime(user.last_sign_in, "Never"),
            'last_non_interactive_sign_in': format_datetime(user.last_non_interactive_sign_in, "Never"),
            'days_since_access': UNKNOWN if days is None else days,
            'status': status,
            'account_created': format_datetime(user.created),
        })

    rows.sort(key=_inactivity_order)
    return rows


def _inactivity_order(row: Dict[str, Any]):
    days = row['days_since_access']
    if days == UNKNOWN:
        return (0, 0)
    return (1, -days)


def summarize_inactive(rows: Sequence[Dict[str, Any]], total_users: int) -> List[tuple]:
    statuses = Counter(r['account_status'] for r in rows)
    never = sum(1 for r in rows if r['days_since_access'] == UNKNOWN)
    licensed = sum(1 for r in rows if r['licensed'] == 'Yes')
    return [
        ("Users checked", total_users),
        ("Inactive users", len(rows)),
        ("Never signed in", never),
        ("Inactive and licensed", licensed),
        ("Inactive but still enabled", statuses.get('Enabled', 0)),
    ]


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description='M365 Reports - Inactive Users')
    parser.add_argument('--config', '-c', default=None, help='YAML config file')
    parser.add_argument('--tenant-id', default=None,
                        help='Azure AD tenant ID (or set MS365_TENANT_ID env var)')
    parser.add_argument('--client-id', default=None,
                        help='Azure AD application (client) ID (or set MS365_CLIENT_ID env var)')
    parser.add_argument('--output', '-o', default=None,
                        help=f'Output directory (default: {DEFAULT_OUTPUT_DIR})')
    parser.add_argument('--days', dest='inactive_days', type=int, default=None,
                        help=f'Inactivity threshold in days (default: {DEFAULT_INACTIVE_DAYS})')
    parser.add_argument('--licensed-only', action='store_true',
                        help='Only report users holding at least one license')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable verbose logging')
    args = parser.parse_args(argv)

    try:
        load_config(args)
    except (FileNotFoundError, ValueError) as e:
        print(f"ERROR: {e}")
        return 1

    output_dir = args.output or DEFAULT_OUTPUT_DIR
    setup_logging('DEBUG' if args.verbose else getattr(args, 'log_level', None) or 'INFO', output_dir)
    threshold = args.inactive_days if args.inactive_days is not None else DEFAULT_INACTIVE_DAYS

    client_secret = os.environ.get('MS365_CLIENT_SECRET')
    if not args.tenant_id or not args.client_id or not client_secret:
        print("ERROR: Missing credentials (MS365_TENANT_ID, MS365_CLIENT_ID, MS365_CLIENT_SECRET)")
        return 1

    try:
        graph_client = get_graph_client(args.tenant_id, args.client_id, client_secret)
        users = asyncio.run(fetch_users(graph_client, include_sign_in=True))
    except AuthError as e:
        print(f"ERROR: {e}")
        print("Sign-in activity needs AuditLog.Read.All and an Entra ID P1 tenant.")
        return 1

    rows = inactive_user_rows(users, threshold, licensed_only=args.licensed_only)
    print_summary_table(f"Inactive Users (> {threshold} days)", summarize_inactive(rows, len(users)))

    if rows:
        os.makedirs(output_dir, exist_ok=True)
        file_ts = datetime.now().strftime('%Y%m%d_%H%M%S')
        write_csv(rows, os.path.join(output_dir, f'inactive_users_{file_ts}.csv'))
    else:
        print("No inactive users found.")
    return 0


if __name__ == '__main__':
    sys.exit(main())
