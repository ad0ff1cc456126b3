"""
Tests for tenantlib/licensing.py license resolution and duplicate detection.

Covers:
- resolve_licenses direct/group split, disabled plans, error annotation
- Unknown identifiers falling back to the raw identifier
- cost_product_ids (distinct, active, subscribed)
- duplicated_product_ids / detect_duplicates by assignment method
- Order independence of duplicate detection
"""
import itertools
import os
import sys

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from tenantlib.constants import NOT_APPLICABLE, STATE_ERROR
from tenantlib.licensing import (
    cost_product_ids,
    detect_duplicates,
    duplicated_product_ids,
    filter_subscribed,
    format_duplicate_warning,
    resolve_licenses,
)
from tenantlib.models import LicenseAssignment, RunContext
from tenantlib.reference import LookupTable

# =============================================================================
# Fixtures
# =============================================================================

E3 = "05e9a617-0261-4cee-bb44-138d3ef5d965"
E5 = "06ebc4ee-1bb5-47dd-8120-11324bc54e06"
VISIO = "c5928f49-12ba-48f7-ada3-0d743a3601d5"
EXPIRED = "f30db892-07e9-47e9-837c-80727f46fd3d"

EXCHANGE_PLAN = "efb87545-963c-4e0d-99df-69c6916d9eb0"
YAMMER_PLAN = "7547a3fe-08ee-4ccb-b430-5077c5041653"

SALES_GROUP = "11111111-2222-3333-4444-555555555555"
ALL_STAFF_GROUP = "66666666-7777-8888-9999-000000000000"


@pytest.fixture
def product_names():
    return LookupTable({
        E3: "Office 365 E3",
        E5: "Microsoft 365 E5",
        VISIO: "Visio Plan 2",
        EXPIRED: "Power BI Pro",
    }, kind="product")


@pytest.fixture
def plan_names():
    return LookupTable({
        EXCHANGE_PLAN: "Exchange Online (Plan 2)",
        YAMMER_PLAN: "Yammer Enterprise",
    }, kind="service plan")


@pytest.fixture
def group_names():
    return LookupTable({
        SALES_GROUP: "Sales Licensing",
        ALL_STAFF_GROUP: "All Staff",
    }, kind="group")


@pytest.fixture
def subscribed():
    return {E3, E5, VISIO}


def direct(sku_id, **kwargs):
    return LicenseAssignment(sku_id=sku_id, **kwargs)


def via_group(sku_id, group_id, **kwargs):
    return LicenseAssignment(sku_id=sku_id, assigned_by_group=group_id, **kwargs)


# =============================================================================
# resolve_licenses Tests
# =============================================================================

class TestResolveLicenses:
    """Tests for resolve_licenses function."""

    def test_direct_only(self, product_names, plan_names, group_names):
        resolved = resolve_licenses([direct(E3), direct(VISIO)], product_names, plan_names, group_names)

        assert resolved.direct == ["Office 365 E3", "Visio Plan 2"]
        assert resolved.group == []
        assert resolved.disabled_plans == []

    def test_group_only(self, product_names, plan_names, group_names):
        resolved = resolve_licenses([via_group(E5, SALES_GROUP)], product_names, plan_names, group_names)

        assert resolved.direct == []
        assert resolved.group == ["Microsoft 365 E5 (via Sales Licensing)"]

    def test_disabled_plans_from_direct_assignments(self, product_names, plan_names, group_names):
        assignments = [
            direct(E3, disabled_plans=[EXCHANGE_PLAN, YAMMER_PLAN]),
            # Group disabled plans are not part of the direct column
            via_group(E5, SALES_GROUP, disabled_plans=[EXCHANGE_PLAN]),
        ]
        resolved = resolve_licenses(assignments, product_names, plan_names, group_names)

        assert resolved.disabled_plans == ["Exchange Online (Plan 2)", "Yammer Enterprise"]

    def test_group_error_annotated_and_counted(self, product_names, plan_names, group_names):
        context = RunContext()
        assignments = [
            via_group(E5, SALES_GROUP, state=STATE_ERROR, error="CountViolation"),
            via_group(E3, ALL_STAFF_GROUP),
        ]
        resolved = resolve_licenses(assignments, product_names, plan_names, group_names, context)

        assert resolved.group == [
            "Microsoft 365 E5 (via Sales Licensing) [Error: CountViolation]",
            "Office 365 E3 (via All Staff)",
        ]
        assert context.group_errors == 1

    def test_direct_error_not_counted(self, product_names, plan_names, group_names):
        context = RunContext()
        resolve_licenses([direct(E3, state=STATE_ERROR, error="x")], product_names, plan_names,
                         group_names, context)
        assert context.group_errors == 0

    def test_unknown_identifiers_fall_back(self, product_names, plan_names, group_names):
        unknown_sku = "99999999-0000-0000-0000-000000000001"
        unknown_plan = "99999999-0000-0000-0000-000000000002"
        unknown_group = "99999999-0000-0000-0000-000000000003"
        assignments = [
            direct(unknown_sku, disabled_plans=[unknown_plan]),
            via_group(E3, unknown_group),
        ]
        resolved = resolve_licenses(assignments, product_names, plan_names, group_names)

        assert resolved.direct == [unknown_sku]
        assert resolved.disabled_plans == [unknown_plan]
        assert resolved.group == [f"Office 365 E3 (via {unknown_group})"]

    def test_plain_dict_tables(self):
        """Plain dicts work as lookup tables too."""
        resolved = resolve_licenses([direct("a"), direct("b")], {"a": "Product A"}, {}, {})
        assert resolved.direct == ["Product A", "b"]

    def test_no_assignments(self, product_names, plan_names, group_names):
        resolved = resolve_licenses([], product_names, plan_names, group_names)
        assert (resolved.direct, resolved.group, resolved.disabled_plans) == ([], [], [])


# =============================================================================
# Cost Product Selection Tests
# =============================================================================

class TestCostProductIds:
    """Tests for cost_product_ids and filter_subscribed."""

    def test_distinct_products(self, subscribed):
        assignments = [direct(E3), via_group(E3, SALES_GROUP), via_group(E3, ALL_STAFF_GROUP)]
        assert cost_product_ids(assignments, subscribed) == [E3]

    def test_excludes_unsubscribed(self, subscribed):
        assert cost_product_ids([direct(EXPIRED)], subscribed) == []

    def test_excludes_inactive(self, subscribed):
        assignments = [via_group(E5, SALES_GROUP, state=STATE_ERROR, error="CountViolation")]
        assert cost_product_ids(assignments, subscribed) == []

    def test_active_path_counts_even_if_other_path_errors(self, subscribed):
        assignments = [via_group(E5, SALES_GROUP, state=STATE_ERROR), direct(E5)]
        assert cost_product_ids(assignments, subscribed) == [E5]

    def test_filter_subscribed(self, subscribed):
        assignments = [direct(E3), direct(EXPIRED)]
        assert [a.sku_id for a in filter_subscribed(assignments, subscribed)] == [E3]


# =============================================================================
# Duplicate Detection Tests
# =============================================================================

class TestDuplicateDetection:
    """Tests for duplicate license detection."""

    def test_direct_and_group(self, product_names):
        context = RunContext()
        names, warning = detect_duplicates([direct(E3), via_group(E3, SALES_GROUP)], product_names, context)

        assert names == {"Office 365 E3"}
        assert warning == "Warning: Duplicate licenses detected for: Office 365 E3"
        assert context.duplicate_accounts == 1
        assert context.duplicate_licenses == 1

    def test_two_groups(self, product_names):
        """The same product from two groups, with no direct assignment, is not a duplicate."""
        context = RunContext()
        names, warning = detect_duplicates(
            [via_group(E5, SALES_GROUP), via_group(E5, ALL_STAFF_GROUP)], product_names, context
        )

        assert names == set()
        assert warning == NOT_APPLICABLE
        assert context.duplicate_accounts == 0
        assert context.duplicate_licenses == 0

    def test_two_groups_and_direct(self, product_names):
        context = RunContext()
        names, _ = detect_duplicates(
            [via_group(E5, SALES_GROUP), via_group(E5, ALL_STAFF_GROUP), direct(E5)], product_names, context
        )

        assert names == {"Microsoft 365 E5"}
        assert context.duplicate_licenses == 1

    def test_same_method_twice_is_not_duplicate(self):
        assert duplicated_product_ids([direct(E3), direct(E3)]) == set()
        assert duplicated_product_ids([via_group(E3, SALES_GROUP), via_group(E3, SALES_GROUP)]) == set()

    def test_no_duplicates(self, product_names):
        context = RunContext()
        names, warning = detect_duplicates([direct(E3), via_group(E5, SALES_GROUP)], product_names, context)

        assert names == set()
        assert warning == NOT_APPLICABLE
        assert context.duplicate_accounts == 0
        assert context.duplicate_licenses == 0

    def test_multiple_duplicated_products_sorted(self, product_names):
        context = RunContext()
        assignments = [
            direct(VISIO), via_group(VISIO, SALES_GROUP),
            direct(E3), via_group(E3, ALL_STAFF_GROUP),
        ]
        _, warning = detect_duplicates(assignments, product_names, context)

        assert warning == ("Warning: Duplicate licenses detected for: "
                           "Office 365 E3, Visio Plan 2")
        assert context.duplicate_accounts == 1
        assert context.duplicate_licenses == 2

    def test_order_independent(self, product_names):
        """Every permutation of the same assignments yields the same result."""
        assignments = [
            direct(E3), via_group(E3, SALES_GROUP),
            via_group(E5, SALES_GROUP), via_group(E5, ALL_STAFF_GROUP),
            direct(VISIO),
        ]
        results = {
            (frozenset(names), warning)
            for names, warning in (
                detect_duplicates(list(p), product_names) for p in itertools.permutations(assignments)
            )
        }
        assert len(results) == 1

    def test_unknown_product_named_by_id(self):
        unknown = "99999999-0000-0000-0000-000000000001"
        names, warning = detect_duplicates([direct(unknown), via_group(unknown, SALES_GROUP)], {})
        assert names == {unknown}
        assert warning.endswith(unknown)

    def test_format_warning_empty(self):
        assert format_duplicate_warning([]) == NOT_APPLICABLE
