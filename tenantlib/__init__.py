"""
M365 Reports shared library.
"""
# Import constants module for easy access
from . import constants
from .activity import (
    account_status,
    classify_activity,
    days_since,
    last_access,
    parse_datetime,
)
from .aggregation import (
    LicenseReport,
    ProductUsage,
    TenantSummary,
    aggregate_by,
    build_license_report,
    product_usage_summary,
)
from .constants import (
    AGGREGATE_DIMENSIONS,
    DEFAULT_CURRENCY,
    DEFAULT_INACTIVE_DAYS,
    DEFAULT_OUTPUT_DIR,
    NOT_APPLICABLE,
    UNASSIGNED,
    UNKNOWN,
)
from .costs import annual_cost_cents, annual_price_cents, format_currency, price_to_cents
from .licensing import detect_duplicates, resolve_licenses
from .models import (
    AggregateBucket,
    LicenseAssignment,
    Product,
    RunContext,
    ServicePlan,
    Subscription,
    User,
    UserCostRecord,
)
from .pipeline import PipelineSettings, build_user_record, process_users
from .reference import LookupTable, ReferenceData, ReferenceDataError, load_reference_data
from .utils import (
    AuthError,
    ProgressTracker,
    generate_run_id,
    get_timestamp,
    setup_logging,
    write_csv,
    write_json,
    write_text,
)

__all__ = [
    # Constants
    'constants',
    'AGGREGATE_DIMENSIONS',
    'DEFAULT_CURRENCY',
    'DEFAULT_INACTIVE_DAYS',
    'DEFAULT_OUTPUT_DIR',
    'NOT_APPLICABLE',
    'UNASSIGNED',
    'UNKNOWN',
    # Models
    'AggregateBucket',
    'LicenseAssignment',
    'Product',
    'RunContext',
    'ServicePlan',
    'Subscription',
    'User',
    'UserCostRecord',
    # Reference data
    'LookupTable',
    'ReferenceData',
    'ReferenceDataError',
    'load_reference_data',
    # Licensing
    'resolve_licenses',
    'detect_duplicates',
    'price_to_cents',
    'annual_price_cents',
    'annual_cost_cents',
    'format_currency',
    'account_status',
    'classify_activity',
    'days_since',
    'last_access',
    'parse_datetime',
    # Pipeline
    'PipelineSettings',
    'build_user_record',
    'process_users',
    'aggregate_by',
    'product_usage_summary',
    'build_license_report',
    'LicenseReport',
    'ProductUsage',
    'TenantSummary',
    # Utils
    'AuthError',
    'ProgressTracker',
    'generate_run_id',
    'get_timestamp',
    'setup_logging',
    'write_csv',
    'write_json',
    'write_text',
]
