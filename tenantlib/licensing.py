"""
License resolution and duplicate-license detection.

Resolution turns a user's raw license assignment states into display text
(direct products, group-sourced products, disabled service plans).
Duplicate detection finds products a user receives both directly and
through a licensing group.

Only products in the tenant's current subscriptions take part in duplicate
detection and costing; expired products are still shown in the resolved
names so the raw assignment remains visible.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from typing import Collection, Dict, Iterable, List, Mapping, Optional, Set, Tuple

from .constants import DUPLICATE_WARNING_PREFIX, LIST_SEPARATOR, NOT_APPLICABLE
from .models import LicenseAssignment, RunContext

logger = logging.getLogger(__name__)


@dataclass
class ResolvedLicenses:
    """Display names for one user's license assignments."""
    direct: List[str] = field(default_factory=list)
    group: List[str] = field(default_factory=list)
    disabled_plans: List[str] = field(default_factory=list)


def lookup(table: Mapping[str, str], key: str) -> str:
    """Resolve ``key`` through ``table``, falling back to the key itself."""
    get_or_default = getattr(table, 'get_or_default', None)
    if get_or_default is not None:
        return get_or_default(key, key)
    return table.get(key) or key


def _append_unique(items: List[str], value: str) -> None:
    if value not in items:
        items.append(value)


def describe_group_assignment(product_name: str, group_name: str,
                              assignment: LicenseAssignment) -> str:
    text = f"{product_name} (via {group_name})"
    if assignment.is_error:
        text += f" [Error: {assignment.error or 'Unknown'}]"
    return text


def resolve_licenses(
    assignments: Iterable[LicenseAssignment],
    product_names: Mapping[str, str],
    plan_names: Mapping[str, str],
    group_names: Mapping[str, str],
    context: Optional[RunContext] = None,
) -> ResolvedLicenses:
    """
    Resolve a user's assignments to display names.

    Direct products and their disabled service plans are listed in
    assignment order. Group-sourced products are annotated with the group's
    display name, plus an error suffix when Graph reports the group
    assignment failed; each such failure is counted on the context.
    """
    resolved = ResolvedLicenses()

    for assignment in assignments:
        product_name = lookup(product_names, assignment.sku_id)

        if assignment.is_direct:
            _append_unique(resolved.direct, product_name)
            for plan_id in assignment.disabled_plans:
                _append_unique(resolved.disabled_plans, lookup(plan_names, plan_id))
            continue

        group_name = lookup(group_names, assignment.assigned_by_group)
        resolved.group.append(describe_group_assignment(product_name, group_name, assignment))
        if assignment.is_error:
            logger.debug(f"Group license error for {product_name} via {group_name}: {assignment.error}")
            if context is not None:
                context.record_group_error()

    return resolved


def filter_subscribed(
    assignments: Iterable[LicenseAssignment],
    subscribed_ids: Collection[str],
) -> List[LicenseAssignment]:
    """Drop assignments whose product is not in the current subscriptions."""
    return [a for a in assignments if a.sku_id in subscribed_ids]


def cost_product_ids(
    assignments: Iterable[LicenseAssignment],
    subscribed_ids: Collection[str],
) -> List[str]:
    """
    Distinct products a user should be charged for.

    A product counts once no matter how many assignments carry it, and only when
    at least one of those assignments is active and currently subscribed.
    """
    product_ids: List[str] = []
    for assignment in filter_subscribed(assignments, subscribed_ids):
        if assignment.is_active and assignment.sku_id not in product_ids:
            product_ids.append(assignment.sku_id)
    return product_ids


def format_duplicate_warning(names: Iterable[str]) -> str:
    names = sorted(names)
    if not names:
        return NOT_APPLICABLE
    return DUPLICATE_WARNING_PREFIX + LIST_SEPARATOR.join(names)


def duplicated_product_ids(assignments: Iterable[LicenseAssignment]) -> Set[str]:
    """
    Products assigned both directly and through group-based licensing.

    Each product counts once per assignment method (Direct, Group), so the
    same product from two groups, or repeated raw records for one method,
    is not a duplicate.
    """
    methods: Dict[str, Set[str]] = defaultdict(set)
    for assignment in assignments:
        methods[assignment.sku_id].add(assignment.method)
    return {sku_id for sku_id, seen in methods.items() if len(seen) > 1}


def detect_duplicates(
    assignments: Iterable[LicenseAssignment],
    product_names: Mapping[str, str],
    context: Optional[RunContext] = None,
) -> Tuple[Set[str], str]:
    """
    Detect duplicate licenses for one user.

    ``assignments`` must already be filtered to current subscriptions
    (see ``filter_subscribed``).

    Returns:
        (duplicated product display names, warning text or 'N/A')
    """
    duplicated = duplicated_product_ids(assignments)
    names = {lookup(product_names, sku_id) for sku_id in duplicated}

    if context is not None:
        context.record_duplicates(len(duplicated))

    return names, format_duplicate_warning(names)
