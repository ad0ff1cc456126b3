#!/usr/bin/env python3
"""
M365 Reports - Profile Completeness Audit

Finds accounts with missing directory attributes. Blank department, country,
company or cost center values land in the "Unassigned" bucket of the
license report; this audit lists who to fix.

Requirements:
- User.Read.All (Application type)

Usage:
    python profile_audit.py
    python profile_audit.py --fields department,country --enabled-only
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

from tenantlib.activity import account_status
from tenantlib.config import load_config
from tenantlib.constants import DEFAULT_OUTPUT_DIR, PROFILE_FIELDS
from tenantlib.graph import fetch_users, get_graph_client
from tenantlib.models import User
from tenantlib.utils import AuthError, print_summary_table, setup_logging, write_csv

logger = logging.getLogger(__name__)


def missing_fields(user: User, fields: Sequence[str] = tuple(PROFILE_FIELDS)) -> List[str]:
    """Labels of the profile fields that are blank for this user."""
    missing = []
    for attr in fields:
        value = getattr(user, attr, None)
        if value is None or not str(value).strip():
            missing.append(PROFILE_FIELDS[attr])
    return missing


def audit_profiles(
    users: Sequence[User],
    fields: Sequence[str] = tuple(PROFILE_FIELDS),
    enabled_only: bool = False,
) -> Tuple[List[Dict[str, Any]], Dict[str, int]]:
    """
    Audit every user.

    Returns:
        (one row per user with at least one gap, most gaps first;
         missing count per field label in field order)
    """
    unknown = [f for f in fields if f not in PROFILE_FIELDS]
    if unknown:
        raise ValueError(f"Unknown profile field(s): {', '.join(unknown)}")

    counts = {PROFILE_FIELDS[f]: 0 for f in fields}
    rows: List[Dict[str, Any]] = []

    for user in users:
        if enabled_only and user.account_enabled is False:
            continue
        gaps = missing_fields(user, fields)
        if not gaps:
            continue
        for label in gaps:
            counts[label] += 1
        rows.append({
            'display_name': user.display_name,
            'user_principal_name': user.user_principal_name,
            'account_status': account_status(user.account_enabled),
            'missing_count': len(gaps),
            'missing_fields': ", ".join(gaps),
        })

    rows.sort(key=lambda r: (-r['missing_count'], r['user_principal_name'].lower()))
    return rows, counts


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(description='M365 Reports - Profile Completeness Audit')
    parser.add_argument('--config', '-c', default=None, help='YAML config file')
    parser.add_argument('--tenant-id', default=None,
                        help='Azure AD tenant ID (or set MS365_TENANT_ID env var)')
    parser.add_argument('--client-id', default=None,
                        help='Azure AD application (client) ID (or set MS365_CLIENT_ID env var)')
    parser.add_argument('--output', '-o', default=None,
                        help=f'Output directory (default: {DEFAULT_OUTPUT_DIR})')
    parser.add_argument('--fields', default=None,
                        help=f'Comma-separated fields to check (default: {",".join(PROFILE_FIELDS)})')
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
    fields = [f.strip() for f in args.fields.split(',') if f.strip()] if args.fields else list(PROFILE_FIELDS)
    unknown = [f for f in fields if f not in PROFILE_FIELDS]
    if unknown:
        print(f"ERROR: Unknown field(s) {', '.join(unknown)} (choose from {', '.join(PROFILE_FIELDS)})")
        return 1

    client_secret = os.environ.get('MS365_CLIENT_SECRET')
    if not args.tenant_id or not args.client_id or not client_secret:
        print("ERROR: Missing credentials (MS365_TENANT_ID, MS365_CLIENT_ID, MS365_CLIENT_SECRET)")
        return 1

    try:
        graph_client = get_graph_client(args.tenant_id, args.client_id, client_secret)
        users = asyncio.run(fetch_users(graph_client, include_sign_in=False,
                                        include_manager='manager_id' in fields))
        rows, counts = audit_profiles(users, fields, args.enabled_only)
    except AuthError as e:
        print(f"ERROR: {e}")
        return 1

    print_summary_table(
        f"Missing Profile Fields ({len(rows):,} of {len(users):,} users incomplete)",
        list(counts.items()),
        headers=("Field", "Users missing"),
    )

    if rows:
        os.makedirs(output_dir, exist_ok=True)
        file_ts = datetime.now().strftime('%Y%m%d_%H%M%S')
        write_csv(rows, os.path.join(output_dir, f'profile_audit_{file_ts}.csv'))
    return 0


if __name__ == '__main__':
    sys.exit(main())
