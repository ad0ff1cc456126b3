"""
Per-user license resolution pipeline.

Each licensed user is resolved exactly once into a ``UserCostRecord``.
Aggregation only starts after every user has been processed.
"""
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Collection, Dict, Iterable, List, Mapping, Optional

from .activity import account_status, classify_activity, days_since, last_access, now_utc
from .constants import DEFAULT_CURRENCY, DEFAULT_INACTIVE_DAYS
from .costs import annual_cost_cents
from .licensing import cost_product_ids, detect_duplicates, filter_subscribed, resolve_licenses
from .models import RunContext, User, UserCostRecord

logger = logging.getLogger(__name__)


@dataclass
class PipelineSettings:
    """Lookups and thresholds shared by every user in a run."""
    product_names: Mapping[str, str]
    plan_names: Mapping[str, str]
    group_names: Mapping[str, str]
    price_table: Mapping[str, Any]
    subscribed_ids: Collection[str]
    currency: str = DEFAULT_CURRENCY
    inactive_days: int = DEFAULT_INACTIVE_DAYS
    now: datetime = field(default_factory=now_utc)


def build_user_record(user: User, settings: PipelineSettings, context: RunContext) -> UserCostRecord:
    """
    Resolve, de-duplicate, cost and classify one user.

    Counters are collected on a scratch context and merged into ``context``
    only once the record is complete, so a failing user leaves no trace in
    the run totals.
    """
    assignments = user.license_assignments
    scratch = context.scratch()

    resolved = resolve_licenses(
        assignments,
        settings.product_names,
        settings.plan_names,
        settings.group_names,
        scratch,
    )

    subscribed = filter_subscribed(assignments, settings.subscribed_ids)
    duplicate_names, warning = detect_duplicates(subscribed, settings.product_names, scratch)

    cost = annual_cost_cents(
        cost_product_ids(assignments, settings.subscribed_ids),
        settings.price_table,
        context.missing_prices,
    )

    changes = [a.last_updated for a in assignments if a.last_updated is not None]
    accessed = last_access(user.last_sign_in, user.last_non_interactive_sign_in)
    days = days_since(accessed, settings.now)
    inactive, inactivity = classify_activity(days, settings.inactive_days)

    record = UserCostRecord(
        user_id=user.id,
        display_name=user.display_name,
        user_principal_name=user.user_principal_name,
        country=user.country,
        department=user.department,
        job_title=user.job_title,
        company=user.company,
        cost_center=user.cost_center,
        direct_licenses=resolved.direct,
        disabled_plans=resolved.disabled_plans,
        group_licenses=resolved.group,
        annual_cost_cents=cost,
        duplicate_products=sorted(duplicate_names),
        duplicate_warning=warning,
        last_license_change=max(changes) if changes else None,
        created=user.created,
        last_access=accessed,
        days_since_access=days,
        inactive=inactive,
        inactivity_status=inactivity,
        account_status=account_status(user.account_enabled),
        currency=settings.currency,
    )
    context.merge(scratch)
    return record


def process_users(
    users: Iterable[User],
    settings: PipelineSettings,
    context: RunContext,
    tracker=None,
) -> List[UserCostRecord]:
    """
    Build a record for every user.

    A user whose data cannot be processed is skipped (no partial record),
    logged, and listed on the context; the run carries on with the rest.
    """
    records: List[UserCostRecord] = []

    for user in users:
        try:
            records.append(build_user_record(user, settings, context))
        except Exception as e:
            name = user.user_principal_name or user.id
            logger.warning(f"Skipping user {name}: {e}")
            logger.debug("User processing failure", exc_info=True)
            context.record_skipped(name, str(e))
        if tracker is not None:
            tracker.advance()

    logger.info(f"Processed {len(records)} users ({len(context.skipped_users)} skipped)")
    return records


def group_ids_for(users: Iterable[User]) -> List[str]:
    """Distinct licensing group ids referenced by any user, in first-seen order."""
    seen: Dict[str, None] = {}
    for user in users:
        for assignment in user.license_assignments:
            if assignment.assigned_by_group:
                seen.setdefault(assignment.assigned_by_group, None)
    return list(seen)
