"""
Cost aggregation for the licensing report.

Every figure here is summed from ``UserCostRecord.annual_cost_cents`` (or,
for the product usage table, from subscription unit counts) so bucket totals
always reconcile with the per-user table.
"""
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from .constants import (
    AGGREGATE_DIMENSIONS,
    DEFAULT_CURRENCY,
    DIMENSION_COMPANY,
    DIMENSION_COST_CENTER,
    DIMENSION_COUNTRY,
    DIMENSION_DEPARTMENT,
    UNASSIGNED,
)
from .costs import annual_cost_cents, average_cents, cents_to_major, format_currency, percentage
from .licensing import lookup
from .models import AggregateBucket, RunContext, Subscription, UserCostRecord

logger = logging.getLogger(__name__)

_DIMENSION_ATTRIBUTES = {
    DIMENSION_DEPARTMENT: 'department',
    DIMENSION_COUNTRY: 'country',
    DIMENSION_COMPANY: 'company',
    DIMENSION_COST_CENTER: 'cost_center',
}


def _bucket_key(record: UserCostRecord, dimension: str) -> Optional[str]:
    try:
        attribute = _DIMENSION_ATTRIBUTES[dimension]
    except KeyError:
        raise ValueError(f"Unknown aggregation dimension: {dimension}") from None
    value = getattr(record, attribute, None)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def aggregate_by(
    records: Iterable[UserCostRecord],
    dimension: str,
) -> Tuple[List[AggregateBucket], AggregateBucket]:
    """
    Group records by one organizational attribute.

    Returns:
        (one bucket per distinct non-blank value ordered by cost descending,
         the Unassigned bucket for records without a value)
    """
    buckets: Dict[str, AggregateBucket] = {}
    unassigned = AggregateBucket(dimension=dimension, key=UNASSIGNED)

    for record in records:
        key = _bucket_key(record, dimension)
        if key is None:
            unassigned.add(record)
            continue
        if key not in buckets:
            buckets[key] = AggregateBucket(dimension=dimension, key=key)
        buckets[key].add(record)

    ordered = sorted(buckets.values(), key=lambda b: (-b.cost_cents, b.key.lower()))
    return ordered, unassigned


@dataclass
class FlaggedSummary:
    """Count and cost of the records matching a condition."""
    count: int = 0
    cost_cents: int = 0

    def to_dict(self, currency: str = DEFAULT_CURRENCY) -> Dict[str, Any]:
        return {
            'count': self.count,
            'cost': format_currency(self.cost_cents, currency),
            'cost_value': float(cents_to_major(self.cost_cents)),
        }


def flagged_summary(
    records: Iterable[UserCostRecord],
    predicate: Callable[[UserCostRecord], bool],
) -> FlaggedSummary:
    summary = FlaggedSummary()
    for record in records:
        if predicate(record):
            summary.count += 1
            summary.cost_cents += record.annual_cost_cents
    return summary


def inactive_summary(records: Iterable[UserCostRecord]) -> FlaggedSummary:
    return flagged_summary(records, lambda r: r.inactive)


def disabled_summary(records: Iterable[UserCostRecord]) -> FlaggedSummary:
    return flagged_summary(records, lambda r: r.disabled)


@dataclass
class ProductUsage:
    """Usage and cost of one subscribed product."""
    sku_id: str
    display_name: str
    part_number: str
    purchased_units: int
    consumed_units: int
    available_units: int
    annual_unit_cents: int
    purchased_cost_cents: int
    consumed_cost_cents: int

    def to_row(self, currency: str = DEFAULT_CURRENCY) -> Dict[str, Any]:
        return {
            'product': self.display_name,
            'sku_part_number': self.part_number,
            'purchased_units': self.purchased_units,
            'consumed_units': self.consumed_units,
            'available_units': self.available_units,
            'annual_unit_cost': format_currency(self.annual_unit_cents, currency),
            'purchased_cost': format_currency(self.purchased_cost_cents, currency),
            'consumed_cost': format_currency(self.consumed_cost_cents, currency),
            'consumed_cost_value': float(cents_to_major(self.consumed_cost_cents)),
        }


def product_usage_summary(
    subscriptions: Iterable[Subscription],
    product_names: Mapping[str, str],
    price_table: Mapping[str, Any],
    missing_prices=None,
) -> List[ProductUsage]:
    """Per-product usage table for current subscriptions, costliest first."""
    usage: List[ProductUsage] = []
    for sub in subscriptions:
        if not sub.is_current:
            continue
        unit = annual_cost_cents([sub.sku_id], price_table, missing_prices)
        usage.append(ProductUsage(
            sku_id=sub.sku_id,
            display_name=lookup(product_names, sub.sku_id),
            part_number=sub.part_number,
            purchased_units=sub.purchased_units,
            consumed_units=sub.consumed_units,
            available_units=sub.available_units,
            annual_unit_cents=unit,
            purchased_cost_cents=unit * sub.purchased_units,
            consumed_cost_cents=unit * sub.consumed_units,
        ))
    usage.sort(key=lambda u: (-u.consumed_cost_cents, u.display_name.lower()))
    return usage


@dataclass
class TenantSummary:
    """Tenant-wide totals for the report header."""
    licensed_users: int = 0
    total_purchased_cents: int = 0
    total_assigned_cents: int = 0
    average_cost_cents: int = 0
    duplicate_accounts: int = 0
    duplicate_licenses: int = 0
    group_errors: int = 0
    skipped_users: int = 0
    inactive: FlaggedSummary = field(default_factory=FlaggedSummary)
    disabled: FlaggedSummary = field(default_factory=FlaggedSummary)
    currency: str = DEFAULT_CURRENCY

    @property
    def percent_assigned(self):
        return percentage(self.total_assigned_cents, self.total_purchased_cents)

    def to_dict(self) -> Dict[str, Any]:
        c = self.currency
        return {
            'currency': c,
            'licensed_users': self.licensed_users,
            'total_purchased_cost': format_currency(self.total_purchased_cents, c),
            'total_assigned_cost': format_currency(self.total_assigned_cents, c),
            'percent_assigned': f"{self.percent_assigned}%",
            'average_cost_per_user': format_currency(self.average_cost_cents, c),
            'total_purchased_value': float(cents_to_major(self.total_purchased_cents)),
            'total_assigned_value': float(cents_to_major(self.total_assigned_cents)),
            'duplicate_accounts': self.duplicate_accounts,
            'duplicate_licenses': self.duplicate_licenses,
            'group_errors': self.group_errors,
            'skipped_users': self.skipped_users,
            'inactive_accounts': self.inactive.to_dict(c),
            'disabled_accounts': self.disabled.to_dict(c),
        }


def build_tenant_summary(
    records: List[UserCostRecord],
    usage: Iterable[ProductUsage],
    context: RunContext,
    currency: str = DEFAULT_CURRENCY,
) -> TenantSummary:
    assigned = sum(r.annual_cost_cents for r in records)
    return TenantSummary(
        licensed_users=len(records),
        total_purchased_cents=sum(u.purchased_cost_cents for u in usage),
        total_assigned_cents=assigned,
        average_cost_cents=average_cents(assigned, len(records)),
        duplicate_accounts=context.duplicate_accounts,
        duplicate_licenses=context.duplicate_licenses,
        group_errors=context.group_errors,
        skipped_users=len(context.skipped_users),
        inactive=inactive_summary(records),
        disabled=disabled_summary(records),
        currency=currency,
    )


@dataclass
class LicenseReport:
    """Everything the presentation layer renders."""
    records: List[UserCostRecord]
    buckets: Dict[str, Tuple[List[AggregateBucket], AggregateBucket]]
    products: List[ProductUsage]
    summary: TenantSummary
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def currency(self) -> str:
        return self.summary.currency

    def user_rows(self) -> List[Dict[str, Any]]:
        return [r.to_row() for r in self.records]

    def bucket_rows(self, dimension: str) -> List[Dict[str, Any]]:
        buckets, unassigned = self.buckets[dimension]
        rows = [b.to_row(self.currency) for b in buckets]
        if unassigned.account_count:
            rows.append(unassigned.to_row(self.currency))
        return rows

    def product_rows(self) -> List[Dict[str, Any]]:
        return [p.to_row(self.currency) for p in self.products]

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready form consumed by scripts/generate_license_report.py."""
        return {
            'metadata': self.metadata,
            'summary': self.summary.to_dict(),
            'users': self.user_rows(),
            'aggregates': {d: self.bucket_rows(d) for d in self.buckets},
            'products': self.product_rows(),
        }


def build_license_report(
    records: List[UserCostRecord],
    subscriptions: Iterable[Subscription],
    product_names: Mapping[str, str],
    price_table: Mapping[str, Any],
    context: RunContext,
    currency: str = DEFAULT_CURRENCY,
    dimensions: Iterable[str] = AGGREGATE_DIMENSIONS,
    metadata: Optional[Dict[str, Any]] = None,
) -> LicenseReport:
    """Run every aggregation over the finished user records."""
    buckets = {d: aggregate_by(records, d) for d in dimensions}
    usage = product_usage_summary(subscriptions, product_names, price_table, context.missing_prices)
    summary = build_tenant_summary(records, usage, context, currency)

    logger.info(f"Aggregated {len(records)} users across {len(buckets)} dimensions "
                f"and {len(usage)} subscribed products")

    return LicenseReport(
        records=records,
        buckets=buckets,
        products=usage,
        summary=summary,
        metadata=metadata or {},
    )
