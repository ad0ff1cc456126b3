"""
Microsoft Graph access for the M365 reports.

Requirements:
- Azure AD App Registration with the following API permissions (Application type):
  - User.Read.All (users, license assignment states)
  - Organization.Read.All (subscribed SKUs)
  - Group.Read.All (licensing group names)
  - AuditLog.Read.All (sign-in activity; tenant needs Entra ID P1)
  - UserAuthenticationMethod.Read.All (mfa_report.py)
  - Mail.Send (only for --email-to)

All calls go through the async msgraph-sdk client; the report scripts drive
them with ``asyncio.run`` and hand plain ``tenantlib.models`` objects to the
processing pipeline.
"""
import logging
import os
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from azure.identity import ClientSecretCredential
from kiota_abstractions.base_request_configuration import RequestConfiguration
from msgraph import GraphServiceClient
from msgraph.generated.models.body_type import BodyType
from msgraph.generated.models.email_address import EmailAddress
from msgraph.generated.models.file_attachment import FileAttachment
from msgraph.generated.models.item_body import ItemBody
from msgraph.generated.models.message import Message
from msgraph.generated.models.recipient import Recipient
from msgraph.generated.users.item.send_mail.send_mail_post_request_body import SendMailPostRequestBody
from msgraph.generated.users.users_request_builder import UsersRequestBuilder

from .activity import parse_datetime
from .constants import GRAPH_PAGE_SIZE, STATE_ACTIVE
from .models import LicenseAssignment, Subscription, User
from .reference import normalize_id
from .utils import check_and_raise_auth_error

logger = logging.getLogger(__name__)

GRAPH_SCOPES = ['https://graph.microsoft.com/.default']

USER_SELECT_FIELDS = [
    'id',
    'displayName',
    'userPrincipalName',
    'accountEnabled',
    'department',
    'country',
    'companyName',
    'jobTitle',
    'officeLocation',
    'mobilePhone',
    'employeeOrgData',
    'createdDateTime',
    'licenseAssignmentStates',
]

SIGN_IN_FIELD = 'signInActivity'

# Returned when signInActivity is requested on a tenant without Entra ID P1
PREMIUM_REQUIRED_CODE = 'Authentication_RequestFromNonPremiumTenantOrB2CTenant'

ATTACHMENT_CONTENT_TYPES = {
    '.csv': 'text/csv',
    '.json': 'application/json',
    '.html': 'text/html',
    '.xlsx': 'application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
}


# =============================================================================
# Graph Client
# =============================================================================

def is_premium_required(exc: Exception) -> bool:
    """True if Graph refused sign-in activity because the tenant lacks Entra ID P1."""
    original = getattr(exc, 'original_error', None) or exc
    error = getattr(original, 'error', None)
    return getattr(error, 'code', None) == PREMIUM_REQUIRED_CODE


def get_graph_client(tenant_id: str, client_id: str, client_secret: str) -> GraphServiceClient:
    """Create Microsoft Graph API client."""
    credential = ClientSecretCredential(
        tenant_id=tenant_id,
        client_id=client_id,
        client_secret=client_secret
    )
    return GraphServiceClient(credentials=credential, scopes=GRAPH_SCOPES)


async def collect_all_pages(initial_response, get_next_page_func: Callable[[str], Awaitable[Any]]) -> List[Any]:
    """Helper to collect all pages from a paginated Graph API response.

    Graph returns at most ``$top`` items per page. This helper follows
    odata_next_link until the collection is exhausted; a failed page fails
    the whole collection so reports are never built from partial data.

    Args:
        initial_response: The first response from a Graph API call
        get_next_page_func: Async function to get next page given a next_link

    Returns:
        List of all items from all pages
    """
    all_items: List[Any] = []
    response = initial_response

    while response:
        if getattr(response, 'value', None):
            all_items.extend(response.value)

        next_link = getattr(response, 'odata_next_link', None)
        if not next_link:
            break
        response = await get_next_page_func(next_link)

    return all_items


# =============================================================================
# SDK -> model conversion
# =============================================================================

def _enum_text(value: Any) -> Optional[str]:
    """Graph enums arrive as str subclasses or plain strings."""
    if value is None:
        return None
    return getattr(value, 'value', value)


def to_license_assignment(state) -> LicenseAssignment:
    """Convert a licenseAssignmentState into a LicenseAssignment."""
    error = state.error
    # Graph reports the literal "None" for assignments without an error
    if error in (None, "", "None"):
        error = None
    return LicenseAssignment(
        sku_id=normalize_id(state.sku_id),
        assigned_by_group=normalize_id(state.assigned_by_group) or None,
        state=state.state or STATE_ACTIVE,
        error=error,
        disabled_plans=[normalize_id(p) for p in (state.disabled_plans or [])],
        last_updated=parse_datetime(state.last_updated_date_time),
    )


def to_user(graph_user) -> User:
    """Convert an msgraph-sdk User into the report model."""
    sign_in = getattr(graph_user, 'sign_in_activity', None)
    org_data = getattr(graph_user, 'employee_org_data', None)
    manager = getattr(graph_user, 'manager', None)

    return User(
        id=normalize_id(graph_user.id),
        display_name=graph_user.display_name or "",
        user_principal_name=graph_user.user_principal_name or "",
        account_enabled=graph_user.account_enabled,
        department=graph_user.department,
        country=graph_user.country,
        company=graph_user.company_name,
        job_title=graph_user.job_title,
        cost_center=getattr(org_data, 'cost_center', None) if org_data else None,
        office_location=graph_user.office_location,
        mobile_phone=graph_user.mobile_phone,
        manager_id=(normalize_id(manager.id) or None) if manager else None,
        created=parse_datetime(graph_user.created_date_time),
        last_sign_in=parse_datetime(getattr(sign_in, 'last_sign_in_date_time', None)) if sign_in else None,
        last_non_interactive_sign_in=(
            parse_datetime(getattr(sign_in, 'last_non_interactive_sign_in_date_time', None)) if sign_in else None
        ),
        license_assignments=[
            to_license_assignment(s) for s in (graph_user.license_assignment_states or [])
        ],
    )


def to_subscription(sku) -> Subscription:
    """Convert an msgraph-sdk SubscribedSku into a Subscription."""
    prepaid = sku.prepaid_units
    return Subscription(
        sku_id=normalize_id(sku.sku_id),
        part_number=sku.sku_part_number or "",
        consumed_units=sku.consumed_units or 0,
        purchased_units=(prepaid.enabled or 0) if prepaid else 0,
        capability_status=_enum_text(sku.capability_status) or "",
    )


# =============================================================================
# Fetchers
# =============================================================================

async def fetch_users(
    graph_client: GraphServiceClient,
    include_sign_in: bool = True,
    include_manager: bool = False,
) -> List[User]:
    """
    Fetch every user with the attributes the reports need.

    ``include_sign_in`` adds signInActivity, which needs AuditLog.Read.All
    and an Entra ID P1 tenant. ``include_manager`` expands the manager id.

    Raises:
        AuthError: If Graph rejects the credentials or permissions
    """
    select = list(USER_SELECT_FIELDS)
    if include_sign_in:
        select.append(SIGN_IN_FIELD)

    query = UsersRequestBuilder.UsersRequestBuilderGetQueryParameters(
        select=select,
        top=GRAPH_PAGE_SIZE,
        expand=['manager($select=id)'] if include_manager else None,
    )
    config = RequestConfiguration(query_parameters=query)

    try:
        logger.info("Fetching users from Microsoft Graph...")
        response = await graph_client.users.get(request_configuration=config)
        raw_users = await collect_all_pages(
            response,
            lambda link: graph_client.users.with_url(link).get(),
        )
    except Exception as e:
        check_and_raise_auth_error(e, "fetch users")
        logger.error(f"Failed to fetch users: {e}")
        raise

    users = [to_user(u) for u in raw_users]
    logger.info(f"Fetched {len(users):,} users")
    return users


async def fetch_subscriptions(graph_client: GraphServiceClient) -> List[Subscription]:
    """Fetch the tenant's subscribed SKUs."""
    try:
        logger.info("Fetching subscribed SKUs...")
        response = await graph_client.subscribed_skus.get()
        raw = await collect_all_pages(
            response,
            lambda link: graph_client.subscribed_skus.with_url(link).get(),
        )
    except Exception as e:
        check_and_raise_auth_error(e, "fetch subscribed SKUs")
        logger.error(f"Failed to fetch subscribed SKUs: {e}")
        raise

    subscriptions = [to_subscription(s) for s in raw]
    current = sum(1 for s in subscriptions if s.is_current)
    logger.info(f"Fetched {len(subscriptions)} subscriptions ({current} current)")
    return subscriptions


async def fetch_group_names(graph_client: GraphServiceClient, group_ids: Iterable[str]) -> Dict[str, str]:
    """
    Resolve licensing group ids to display names.

    Groups that cannot be read (deleted, hidden) fall back to their id.
    """
    names: Dict[str, str] = {}
    for group_id in group_ids:
        try:
            group = await graph_client.groups.by_group_id(group_id).get()
            names[group_id] = (group.display_name if group else None) or group_id
        except Exception as e:
            check_and_raise_auth_error(e, f"read group {group_id}")
            logger.debug(f"Could not resolve group {group_id}: {e}")
            names[group_id] = group_id

    logger.info(f"Resolved {len(names)} licensing groups")
    return names


async def fetch_auth_methods(graph_client: GraphServiceClient, user_id: str) -> List[str]:
    """Registered authentication method types (OData type names) for one user."""
    methods = graph_client.users.by_user_id(user_id).authentication.methods
    try:
        response = await methods.get()
        items = await collect_all_pages(response, lambda link: methods.with_url(link).get())
    except Exception as e:
        check_and_raise_auth_error(e, "read authentication methods")
        raise

    return [m.odata_type for m in items if getattr(m, 'odata_type', None)]


# =============================================================================
# Mail
# =============================================================================

def build_attachment(filepath: str) -> FileAttachment:
    """Read a report file into a Graph file attachment."""
    name = os.path.basename(filepath)
    ext = os.path.splitext(name)[1].lower()
    with open(filepath, 'rb') as f:
        content = f.read()
    return FileAttachment(
        odata_type="#microsoft.graph.fileAttachment",
        name=name,
        content_type=ATTACHMENT_CONTENT_TYPES.get(ext, 'application/octet-stream'),
        content_bytes=content,
    )


def build_message(subject: str, html_body: str, recipients: Sequence[str],
                  attachments: Sequence[str] = ()) -> Message:
    return Message(
        subject=subject,
        body=ItemBody(content_type=BodyType.Html, content=html_body),
        to_recipients=[Recipient(email_address=EmailAddress(address=r)) for r in recipients],
        attachments=[build_attachment(p) for p in attachments] or None,
    )


async def send_mail(
    graph_client: GraphServiceClient,
    sender: str,
    recipients: Sequence[str],
    subject: str,
    html_body: str,
    attachments: Sequence[str] = (),
) -> None:
    """
    Send an HTML message from ``sender``'s mailbox via Graph sendMail.

    Raises:
        AuthError: If the app lacks Mail.Send
    """
    if not recipients:
        raise ValueError("No email recipients given")

    body = SendMailPostRequestBody(
        message=build_message(subject, html_body, recipients, attachments),
        save_to_sent_items=True,
    )
    try:
        await graph_client.users.by_user_id(sender).send_mail.post(body)
    except Exception as e:
        check_and_raise_auth_error(e, "send mail")
        logger.error(f"Failed to send report email: {e}")
        raise

    logger.info(f"Report emailed to {len(recipients)} recipient(s)")


def split_licensed(users: Iterable[User]) -> Tuple[List[User], int]:
    """(users holding at least one license, count of unlicensed users)."""
    licensed: List[User] = []
    unlicensed = 0
    for user in users:
        if user.is_licensed:
            licensed.append(user)
        else:
            unlicensed += 1
    return licensed, unlicensed
