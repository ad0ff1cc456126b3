"""
Large-scale test for the license cost pipeline.

Simulates a tenant of several thousand users with:
- Direct and group-based assignments, including duplicates
- Failed group assignments
- Products that are no longer subscribed or have no price
- Missing department / country / company / cost center values
- Accounts that never signed in and disabled accounts

Run with: python -m pytest tests/test_large_scale_licensing.py -v -s
"""
import os
import random
import sys
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from license_report import write_outputs
from tenantlib.aggregation import build_license_report
from tenantlib.constants import AGGREGATE_DIMENSIONS, STATE_ACTIVE, STATE_ERROR
from tenantlib.models import LicenseAssignment, RunContext, Subscription, User
from tenantlib.pipeline import PipelineSettings, process_users
from tenantlib.reference import LookupTable

# =============================================================================
# Constants
# =============================================================================

USER_COUNT = 5000
NOW = datetime(2026, 3, 1, tzinfo=timezone.utc)

DEPARTMENTS = ["Engineering", "Sales", "Marketing", "Finance", "HR", "Legal", "Operations", "IT", "", None]
COUNTRIES = ["US", "GB", "DE", "SE", "JP", "AU", None]
COMPANIES = ["Contoso", "Fabrikam", "Northwind", None]
COST_CENTERS = ["1000", "2000", "3000", "4000", "", None]

PRODUCTS = {
    "e3": ("Office 365 E3", "23.00"),
    "e5": ("Microsoft 365 E5", "57.00"),
    "bp": ("Microsoft 365 Business Premium", "22.00"),
    "visio": ("Visio Plan 2", "15.00"),
    "pbi": ("Power BI Pro", "10.00"),
    "unpriced": ("Teams Exploratory", None),
}
# Assigned in the tenant but no longer subscribed
RETIRED = "legacy"

GROUPS = [str(uuid.UUID(int=i)) for i in range(1, 9)]


def annual_cents(price):
    return int(Decimal(price) * 100) * 12


def random_assignments(rng):
    assignments = []
    for _ in range(rng.randint(1, 4)):
        sku = rng.choice(list(PRODUCTS) + [RETIRED])
        group = rng.choice([None, None] + GROUPS)
        state = STATE_ERROR if group and rng.random() < 0.05 else STATE_ACTIVE
        assignments.append(LicenseAssignment(
            sku_id=sku,
            assigned_by_group=group,
            state=state,
            error="CountViolation" if state == STATE_ERROR else None,
            last_updated=NOW - timedelta(days=rng.randint(0, 700)),
        ))
    return assignments


def generate_tenant(seed=1234):
    rng = random.Random(seed)
    users = []
    for i in range(USER_COUNT):
        signed_in = rng.random() > 0.1
        users.append(User(
            id=str(uuid.UUID(int=10_000 + i)),
            display_name=f"User {i}",
            user_principal_name=f"user{i}@contoso.com",
            account_enabled=rng.random() > 0.05,
            department=rng.choice(DEPARTMENTS),
            country=rng.choice(COUNTRIES),
            company=rng.choice(COMPANIES),
            cost_center=rng.choice(COST_CENTERS),
            last_sign_in=NOW - timedelta(days=rng.randint(0, 400)) if signed_in else None,
            license_assignments=random_assignments(rng),
        ))
    subscriptions = [
        Subscription(sku_id=sku, part_number=sku.upper(), consumed_units=rng.randint(100, 4000),
                     purchased_units=4000)
        for sku in PRODUCTS
    ]
    return users, subscriptions


def expected_cost_cents(user):
    """Independent rendering of the costing rule for cross-checking."""
    charged = {
        a.sku_id for a in user.license_assignments
        if a.sku_id in PRODUCTS and a.state == STATE_ACTIVE
    }
    return sum(annual_cents(PRODUCTS[sku][1]) for sku in charged if PRODUCTS[sku][1])


def expected_duplicates(user):
    methods = {}
    for a in user.license_assignments:
        if a.sku_id in PRODUCTS:
            methods.setdefault(a.sku_id, set()).add("Group" if a.assigned_by_group else "Direct")
    return {sku for sku, seen in methods.items() if len(seen) > 1}


@pytest.fixture(scope="module")
def tenant():
    return generate_tenant()


@pytest.fixture(scope="module")
def run(tenant):
    users, subscriptions = tenant
    context = RunContext()
    settings = PipelineSettings(
        product_names=LookupTable({k: v[0] for k, v in PRODUCTS.items()}, kind="product",
                                  misses=context.unresolved_ids),
        plan_names=LookupTable({}, kind="service plan", misses=context.unresolved_ids),
        group_names=LookupTable({g: f"Licensing {n}" for n, g in enumerate(GROUPS)}, kind="group",
                                misses=context.unresolved_ids),
        price_table={k: v[1] for k, v in PRODUCTS.items() if v[1]},
        subscribed_ids={s.sku_id for s in subscriptions},
        now=NOW,
    )
    records = process_users(users, settings, context)
    report = build_license_report(records, subscriptions, settings.product_names, settings.price_table, context)
    return users, records, context, report


# =============================================================================
# Tests
# =============================================================================

class TestLargeScaleLicensing:
    """End-to-end checks on a synthetic 5,000 user tenant."""

    def test_every_user_processed(self, run):
        users, records, context, _ = run
        assert len(records) == USER_COUNT
        assert context.skipped_users == []
        assert [r.user_id for r in records] == [u.id for u in users]

    def test_costs_match_independent_calculation(self, run):
        users, records, _, _ = run
        for user, record in zip(users, records):
            assert record.annual_cost_cents == expected_cost_cents(user), user.user_principal_name

    def test_duplicate_counters(self, run):
        users, records, context, _ = run
        expected = [expected_duplicates(u) for u in users]
        assert context.duplicate_accounts == sum(1 for e in expected if e)
        assert context.duplicate_licenses == sum(len(e) for e in expected)
        assert context.duplicate_accounts == sum(1 for r in records if r.has_duplicates)

    def test_group_errors_counted(self, run):
        users, _, context, _ = run
        expected = sum(
            1 for u in users for a in u.license_assignments
            if a.assigned_by_group and a.state == STATE_ERROR
        )
        assert context.group_errors == expected

    def test_total_assigned_is_record_sum(self, run):
        _, records, _, report = run
        assert report.summary.total_assigned_cents == sum(r.annual_cost_cents for r in records)

    @pytest.mark.parametrize("dimension", AGGREGATE_DIMENSIONS)
    def test_buckets_reconcile(self, run, dimension):
        _, records, _, report = run
        buckets, unassigned = report.buckets[dimension]

        assert sum(b.cost_cents for b in buckets) + unassigned.cost_cents == \
            report.summary.total_assigned_cents
        assert sum(b.account_count for b in buckets) + unassigned.account_count == len(records)
        # Blank and missing values never form their own bucket
        assert all(b.key.strip() for b in buckets)

    def test_never_signed_in_are_inactive(self, run):
        users, records, _, _ = run
        for user, record in zip(users, records):
            if user.last_sign_in is None:
                assert record.inactive
                assert record.days_since_access is None

    def test_retired_product_listed_but_free(self, run):
        users, records, context, _ = run
        for user, record in zip(users, records):
            if {a.sku_id for a in user.license_assignments} == {RETIRED}:
                assert record.annual_cost_cents == 0
                break
        # No name in the lookup: logged once and reported raw
        assert RETIRED in context.unresolved_ids

    def test_write_outputs(self, run, tmp_path):
        _, _, _, report = run
        written = write_outputs(report, str(tmp_path), ["csv", "json", "xlsx"], "large")

        users_csv = tmp_path / "license_users_large.csv"
        assert str(users_csv) in written
        with open(users_csv, encoding="utf-8-sig") as f:
            assert sum(1 for _ in f) == USER_COUNT + 1
        assert (tmp_path / "license_report_large.xlsx").stat().st_size > 0
