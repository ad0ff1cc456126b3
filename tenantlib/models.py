"""
Data models for the M365 reporting scripts.
"""
from dataclasses import asdict, dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional, Set, Tuple

from .activity import format_datetime
from .constants import (
    ACCOUNT_DISABLED,
    ASSIGNMENT_DIRECT,
    ASSIGNMENT_GROUP,
    CURRENT_CAPABILITY_STATES,
    DEFAULT_CURRENCY,
    LIST_SEPARATOR,
    NOT_APPLICABLE,
    STATE_ACTIVE,
    STATE_ERROR,
    UNKNOWN,
)
from .costs import average_cents, cents_to_major, format_currency


@dataclass(frozen=True)
class Product:
    """A licensable product (SKU) from the reference table."""
    sku_id: str
    display_name: str
    part_number: str = ""
    monthly_price: Optional[str] = None  # major units, kept as text
    currency: Optional[str] = None


@dataclass(frozen=True)
class ServicePlan:
    """A capability inside a product; only used to label disabled plans."""
    plan_id: str
    display_name: str


@dataclass
class Subscription:
    """A product the tenant currently owns (a subscribed SKU)."""
    sku_id: str
    part_number: str = ""
    consumed_units: int = 0
    purchased_units: int = 0
    capability_status: str = "Enabled"

    @property
    def is_current(self) -> bool:
        return self.capability_status in CURRENT_CAPABILITY_STATES

    @property
    def available_units(self) -> int:
        return max(self.purchased_units - self.consumed_units, 0)

    def to_dict(self) -> Dict:
        return asdict(self)


@dataclass
class LicenseAssignment:
    """
    One (user, product) license assignment.

    ``assigned_by_group`` is the originating group id for group-based
    licensing and None for direct assignments.
    """
    sku_id: str
    assigned_by_group: Optional[str] = None
    state: str = STATE_ACTIVE
    error: Optional[str] = None
    disabled_plans: List[str] = field(default_factory=list)
    last_updated: Optional[datetime] = None

    @property
    def method(self) -> str:
        return ASSIGNMENT_GROUP if self.assigned_by_group else ASSIGNMENT_DIRECT

    @property
    def is_direct(self) -> bool:
        return not self.assigned_by_group

    @property
    def is_active(self) -> bool:
        return self.state == STATE_ACTIVE

    @property
    def is_error(self) -> bool:
        return self.state == STATE_ERROR


@dataclass
class User:
    """Directory account with the attributes the reports need."""
    id: str
    display_name: str = ""
    user_principal_name: str = ""
    account_enabled: Optional[bool] = True
    department: Optional[str] = None
    country: Optional[str] = None
    company: Optional[str] = None
    job_title: Optional[str] = None
    cost_center: Optional[str] = None
    office_location: Optional[str] = None
    mobile_phone: Optional[str] = None
    manager_id: Optional[str] = None
    created: Optional[datetime] = None
    last_sign_in: Optional[datetime] = None
    last_non_interactive_sign_in: Optional[datetime] = None
    license_assignments: List[LicenseAssignment] = field(default_factory=list)

    @property
    def is_licensed(self) -> bool:
        return bool(self.license_assignments)


@dataclass
class UserCostRecord:
    """Per-user result of license resolution and costing."""
    user_id: str
    display_name: str
    user_principal_name: str
    country: Optional[str] = None
    department: Optional[str] = None
    job_title: Optional[str] = None
    company: Optional[str] = None
    cost_center: Optional[str] = None
    direct_licenses: List[str] = field(default_factory=list)
    disabled_plans: List[str] = field(default_factory=list)
    group_licenses: List[str] = field(default_factory=list)
    annual_cost_cents: int = 0
    duplicate_products: List[str] = field(default_factory=list)
    duplicate_warning: str = NOT_APPLICABLE
    last_license_change: Optional[datetime] = None
    created: Optional[datetime] = None
    last_access: Optional[datetime] = None
    days_since_access: Optional[int] = None
    inactive: bool = False
    inactivity_status: str = ""
    account_status: str = ""
    currency: str = DEFAULT_CURRENCY

    @property
    def disabled(self) -> bool:
        return self.account_status == ACCOUNT_DISABLED

    @property
    def has_duplicates(self) -> bool:
        return bool(self.duplicate_products)

    @property
    def annual_cost(self):
        return cents_to_major(self.annual_cost_cents)

    def to_row(self) -> Dict[str, Any]:
        """Flatten into the per-user report row."""
        return {
            'display_name': self.display_name,
            'user_principal_name': self.user_principal_name,
            'country': self.country or "",
            'department': self.department or "",
            'job_title': self.job_title or "",
            'company': self.company or "",
            'direct_licenses': LIST_SEPARATOR.join(self.direct_licenses),
            'disabled_plans': LIST_SEPARATOR.join(self.disabled_plans),
            'group_licenses': LIST_SEPARATOR.join(self.group_licenses),
            'annual_cost': format_currency(self.annual_cost_cents, self.currency),
            'last_license_change': format_datetime(self.last_license_change),
            'account_created': format_datetime(self.created),
            'last_access': format_datetime(self.last_access),
            'days_since_access': UNKNOWN if self.days_since_access is None else self.days_since_access,
            'duplicate_warning': self.duplicate_warning,
            'inactivity_status': self.inactivity_status,
            'account_status': self.account_status,
            'cost': float(self.annual_cost),
            'cost_center': self.cost_center or "",
        }


@dataclass
class AggregateBucket:
    """Cost roll-up for one value of a grouping dimension."""
    dimension: str
    key: str
    account_count: int = 0
    cost_cents: int = 0

    @property
    def average_cents(self) -> int:
        return average_cents(self.cost_cents, self.account_count)

    def add(self, record: UserCostRecord) -> None:
        self.account_count += 1
        self.cost_cents += record.annual_cost_cents

    def to_row(self, currency: str = DEFAULT_CURRENCY) -> Dict[str, Any]:
        return {
            'key': self.key,
            'accounts': self.account_count,
            'cost': format_currency(self.cost_cents, currency),
            'average_cost': format_currency(self.average_cents, currency),
            'cost_value': float(cents_to_major(self.cost_cents)),
        }


@dataclass
class RunContext:
    """
    Mutable counters for one report run.

    Threaded explicitly through resolution and costing; the pipeline is
    single-threaded so no locking is needed.
    """
    group_errors: int = 0
    duplicate_accounts: int = 0
    duplicate_licenses: int = 0
    skipped_users: List[Tuple[str, str]] = field(default_factory=list)
    unresolved_ids: Set[str] = field(default_factory=set)
    missing_prices: Set[str] = field(default_factory=set)

    def record_group_error(self) -> None:
        self.group_errors += 1

    def record_duplicates(self, count: int) -> None:
        if count > 0:
            self.duplicate_accounts += 1
            self.duplicate_licenses += count

    def record_skipped(self, user_principal_name: str, reason: str) -> None:
        self.skipped_users.append((user_principal_name, reason))

    def scratch(self) -> "RunContext":
        """Empty counters that share this run's log-once sets."""
        return RunContext(unresolved_ids=self.unresolved_ids, missing_prices=self.missing_prices)

    def merge(self, other: "RunContext") -> None:
        self.group_errors += other.group_errors
        self.duplicate_accounts += other.duplicate_accounts
        self.duplicate_licenses += other.duplicate_licenses
        self.skipped_users.extend(other.skipped_users)
