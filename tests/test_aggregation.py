"""
Tests for tenantlib/aggregation.py.

Covers:
- aggregate_by buckets, Unassigned handling and ordering
- Bucket totals reconciling with per-user costs for every dimension
- Inactive / disabled summaries
- Product usage table from subscriptions
- Tenant summary and the LicenseReport JSON shape
"""
import os
import random
import sys

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tenantlib.aggregation import (
    aggregate_by,
    build_license_report,
    disabled_summary,
    inactive_summary,
    product_usage_summary,
)
from tenantlib.constants import (
    ACCOUNT_DISABLED,
    ACCOUNT_ENABLED,
    AGGREGATE_DIMENSIONS,
    UNASSIGNED,
)
from tenantlib.models import RunContext, Subscription, UserCostRecord

# =============================================================================
# Fixtures
# =============================================================================

def make_record(user_id, cost_cents, department=None, country=None, company=None, cost_center=None,
                inactive=False, disabled=False):
    return UserCostRecord(
        user_id=user_id,
        display_name=user_id,
        user_principal_name=f"{user_id}@contoso.com",
        department=department,
        country=country,
        company=company,
        cost_center=cost_center,
        annual_cost_cents=cost_cents,
        inactive=inactive,
        account_status=ACCOUNT_DISABLED if disabled else ACCOUNT_ENABLED,
    )


@pytest.fixture
def records():
    return [
        make_record("a", 12000, department="Sales", country="US", company="Contoso", cost_center="100"),
        make_record("b", 19680, department="Sales", country="GB", company="Contoso"),
        make_record("c", 68400, department="Engineering", country="US", inactive=True),
        make_record("d", 3600, department="  ", country=None, disabled=True),
        make_record("e", 0, department=None, country="US", inactive=True, disabled=True),
    ]


# =============================================================================
# aggregate_by Tests
# =============================================================================

class TestAggregateBy:
    """Tests for aggregate_by function."""

    def test_department_buckets(self, records):
        buckets, unassigned = aggregate_by(records, "department")

        assert [(b.key, b.account_count, b.cost_cents) for b in buckets] == [
            ("Engineering", 1, 68400),
            ("Sales", 2, 31680),
        ]
        # Blank and missing both land in Unassigned
        assert unassigned.key == UNASSIGNED
        assert unassigned.account_count == 2
        assert unassigned.cost_cents == 3600

    def test_average(self, records):
        buckets, _ = aggregate_by(records, "department")
        sales = next(b for b in buckets if b.key == "Sales")
        assert sales.average_cents == 15840
        assert sales.to_row("USD")['average_cost'] == "$158.40"

    def test_country_ordered_by_cost(self, records):
        buckets, unassigned = aggregate_by(records, "country")
        assert [b.key for b in buckets] == ["US", "GB"]
        assert unassigned.account_count == 1

    def test_cost_center(self, records):
        buckets, unassigned = aggregate_by(records, "cost_center")
        assert [b.key for b in buckets] == ["100"]
        assert unassigned.account_count == 4

    def test_unknown_dimension(self, records):
        with pytest.raises(ValueError):
            aggregate_by(records, "favourite_colour")

    def test_empty(self):
        buckets, unassigned = aggregate_by([], "department")
        assert buckets == []
        assert unassigned.account_count == 0

    @pytest.mark.parametrize("dimension", AGGREGATE_DIMENSIONS)
    def test_totals_reconcile(self, records, dimension):
        buckets, unassigned = aggregate_by(records, dimension)
        total = sum(b.cost_cents for b in buckets) + unassigned.cost_cents
        assert total == sum(r.annual_cost_cents for r in records)
        assert sum(b.account_count for b in buckets) + unassigned.account_count == len(records)

    @pytest.mark.parametrize("dimension", AGGREGATE_DIMENSIONS)
    def test_totals_reconcile_random(self, dimension):
        rng = random.Random(42)
        values = ["A", "B", "C", "", None]
        records = [
            make_record(
                f"u{i}", rng.randint(0, 100000),
                department=rng.choice(values), country=rng.choice(values),
                company=rng.choice(values), cost_center=rng.choice(values),
            )
            for i in range(500)
        ]
        buckets, unassigned = aggregate_by(records, dimension)
        assert sum(b.cost_cents for b in buckets) + unassigned.cost_cents == \
            sum(r.annual_cost_cents for r in records)


# =============================================================================
# Flagged Summary Tests
# =============================================================================

class TestFlaggedSummaries:
    """Tests for inactive_summary and disabled_summary."""

    def test_inactive(self, records):
        summary = inactive_summary(records)
        assert summary.count == 2
        assert summary.cost_cents == 68400

    def test_disabled(self, records):
        summary = disabled_summary(records)
        assert summary.count == 2
        assert summary.cost_cents == 3600
        assert summary.to_dict("USD") == {'count': 2, 'cost': "$36.00", 'cost_value': 36.0}


# =============================================================================
# Product Usage Tests
# =============================================================================

class TestProductUsage:
    """Tests for product_usage_summary function."""

    def test_current_subscriptions_only(self):
        subs = [
            Subscription(sku_id="e3", part_number="ENTERPRISEPACK", consumed_units=90, purchased_units=100),
            Subscription(sku_id="e5", part_number="SPE_E5", consumed_units=5, purchased_units=10,
                         capability_status="Warning"),
            Subscription(sku_id="old", part_number="OLD", consumed_units=3, purchased_units=3,
                         capability_status="Suspended"),
        ]
        usage = product_usage_summary(subs, {"e3": "Office 365 E3"}, {"e3": "23.00", "e5": "57.00"})

        assert [u.sku_id for u in usage] == ["e3", "e5"]
        e3 = usage[0]
        assert e3.display_name == "Office 365 E3"
        assert e3.annual_unit_cents == 27600
        assert e3.purchased_cost_cents == 2760000
        assert e3.consumed_cost_cents == 2484000
        assert e3.available_units == 10
        # No name in the table: falls back to the id
        assert usage[1].display_name == "e5"

    def test_unpriced_product_costs_zero(self):
        missing = set()
        usage = product_usage_summary([Subscription(sku_id="x", purchased_units=5)], {}, {}, missing)
        assert usage[0].purchased_cost_cents == 0
        assert missing == {"x"}


# =============================================================================
# LicenseReport Tests
# =============================================================================

class TestBuildLicenseReport:
    """Tests for build_license_report and the report dict."""

    def test_summary(self, records):
        context = RunContext(group_errors=2, duplicate_accounts=1, duplicate_licenses=3)
        context.record_skipped("broken@contoso.com", "boom")
        subs = [Subscription(sku_id="e3", consumed_units=5, purchased_units=10)]

        report = build_license_report(records, subs, {}, {"e3": "10.00"}, context, currency="USD")
        summary = report.summary

        assert summary.licensed_users == 5
        assert summary.total_assigned_cents == sum(r.annual_cost_cents for r in records)
        assert summary.total_purchased_cents == 120000
        assert summary.average_cost_cents == 20736
        assert summary.group_errors == 2
        assert summary.duplicate_accounts == 1
        assert summary.duplicate_licenses == 3
        assert summary.skipped_users == 1
        assert summary.inactive.count == 2
        assert summary.disabled.count == 2

    def test_percent_assigned(self):
        records = [make_record("a", 60000)]
        subs = [Subscription(sku_id="p", consumed_units=1, purchased_units=10)]
        report = build_license_report(records, subs, {}, {"p": "10.00"}, RunContext())

        assert report.summary.to_dict()['percent_assigned'] == "50.00%"

    def test_to_dict_shape(self, records):
        report = build_license_report(records, [], {}, {}, RunContext(), metadata={'org_name': 'Contoso'})
        data = report.to_dict()

        assert set(data) == {'metadata', 'summary', 'users', 'aggregates', 'products'}
        assert data['metadata'] == {'org_name': 'Contoso'}
        assert len(data['users']) == 5
        assert set(data['aggregates']) == set(AGGREGATE_DIMENSIONS)
        # Unassigned row comes last
        assert data['aggregates']['department'][-1]['key'] == UNASSIGNED

    def test_unassigned_row_omitted_when_empty(self):
        records = [make_record("a", 100, department="Sales")]
        report = build_license_report(records, [], {}, {}, RunContext(), dimensions=["department"])
        assert [r['key'] for r in report.bucket_rows("department")] == ["Sales"]
