"""
Constants for the M365 reporting scripts.

This module defines all magic strings and numbers used across the codebase
to prevent typos, ensure consistency, and make maintenance easier.
"""

# =============================================================================
# Time / Money Constants
# =============================================================================

SECONDS_PER_DAY = 86400
MONTHS_PER_YEAR = 12
CENTS_PER_UNIT = 100

# =============================================================================
# Default Configuration Values
# =============================================================================

DEFAULT_INACTIVE_DAYS = 60
DEFAULT_CURRENCY = "USD"
DEFAULT_OUTPUT_DIR = "./m365_reports_output"
DEFAULT_FORMATS = ["csv", "json", "html", "xlsx"]
SUPPORTED_FORMATS = ("csv", "json", "html", "xlsx")

# Graph caps $top at 999 for /users
GRAPH_PAGE_SIZE = 999

# =============================================================================
# Report Field Values
# =============================================================================

NOT_APPLICABLE = "N/A"
UNKNOWN = "Unknown"
UNASSIGNED = "Unassigned"
LIST_SEPARATOR = ", "
DUPLICATE_WARNING_PREFIX = "Warning: Duplicate licenses detected for: "

ACCOUNT_ENABLED = "Enabled"
ACCOUNT_DISABLED = "Disabled"

ACTIVITY_ACTIVE = "Active"
ACTIVITY_INACTIVE = "Inactive"
ACTIVITY_NEVER = "No sign-in recorded"

# =============================================================================
# License Assignment
# =============================================================================

ASSIGNMENT_DIRECT = "Direct"
ASSIGNMENT_GROUP = "Group"

STATE_ACTIVE = "Active"
STATE_ERROR = "Error"

# Subscribed SKU capability states that still grant licenses
# ("Warning" is the grace period after expiry)
CURRENT_CAPABILITY_STATES = ("Enabled", "Warning")

# =============================================================================
# Aggregation Dimensions
# =============================================================================

DIMENSION_DEPARTMENT = "department"
DIMENSION_COUNTRY = "country"
DIMENSION_COMPANY = "company"
DIMENSION_COST_CENTER = "cost_center"

AGGREGATE_DIMENSIONS = (
    DIMENSION_DEPARTMENT,
    DIMENSION_COUNTRY,
    DIMENSION_COMPANY,
    DIMENSION_COST_CENTER,
)

DIMENSION_LABELS = {
    DIMENSION_DEPARTMENT: "Department",
    DIMENSION_COUNTRY: "Country",
    DIMENSION_COMPANY: "Company",
    DIMENSION_COST_CENTER: "Cost Center",
}

# =============================================================================
# Reference CSV Columns
# =============================================================================

SKU_CSV_ID = "SkuId"
SKU_CSV_PART_NUMBER = "SkuPartNumber"
SKU_CSV_DISPLAY_NAME = "DisplayName"
SKU_CSV_PRICE = "Price"
SKU_CSV_CURRENCY = "Currency"

PLAN_CSV_ID = "ServicePlanId"
PLAN_CSV_DISPLAY_NAME = "ServicePlanDisplayName"

# =============================================================================
# Authentication Methods (MFA report)
# =============================================================================

MFA_PASSWORDLESS = "Passwordless"
MFA_AUTHENTICATOR = "Authenticator app"
MFA_SOFTWARE_OATH = "Software OATH"
MFA_PHONE = "Phone"
MFA_EMAIL = "Email"
MFA_NONE = "None"

# Ordered strongest first; the first matching category wins
AUTH_METHOD_CATEGORIES = [
    (MFA_PASSWORDLESS, (
        "#microsoft.graph.fido2AuthenticationMethod",
        "#microsoft.graph.windowsHelloForBusinessAuthenticationMethod",
        "#microsoft.graph.passwordlessMicrosoftAuthenticatorAuthenticationMethod",
        "#microsoft.graph.platformCredentialAuthenticationMethod",
        "#microsoft.graph.x509CertificateAuthenticationMethod",
    )),
    (MFA_AUTHENTICATOR, ("#microsoft.graph.microsoftAuthenticatorAuthenticationMethod",)),
    (MFA_SOFTWARE_OATH, ("#microsoft.graph.softwareOathAuthenticationMethod",)),
    (MFA_PHONE, ("#microsoft.graph.phoneAuthenticationMethod",)),
    (MFA_EMAIL, ("#microsoft.graph.emailAuthenticationMethod",)),
]

# Registered but not a second factor
PASSWORD_METHOD = "#microsoft.graph.passwordAuthenticationMethod"

# =============================================================================
# Profile Audit
# =============================================================================

PROFILE_FIELDS = {
    "department": "Department",
    "job_title": "Job Title",
    "country": "Country",
    "company": "Company",
    "office_location": "Office Location",
    "mobile_phone": "Mobile Phone",
    "manager_id": "Manager",
}
