"""
Microsoft Graph access for reports the Exchange admin API does not cover.

Requirements (Application permissions):
  - Group.Read.All (Microsoft 365 groups, owners, members)
"""
import logging
from typing import Any, Awaitable, Callable, Dict, List

from kiota_abstractions.base_request_configuration import RequestConfiguration
from msgraph.generated.groups.groups_request_builder import GroupsRequestBuilder
from msgraph.graph_service_client import GraphServiceClient

from .constants import GRAPH_SCOPE
from .utils import is_auth_error

logger = logging.getLogger(__name__)

UNIFIED_GROUP_FILTER = "groupTypes/any(c:c eq 'Unified')"
UNIFIED_GROUP_SELECT = [
    "id",
    "displayName",
    "mail",
    "visibility",
    "createdDateTime",
    "description",
]


def get_graph_client(credential) -> GraphServiceClient:
    """Create Microsoft Graph API client."""
    return GraphServiceClient(credentials=credential, scopes=[GRAPH_SCOPE])


async def collect_all_pages(
    initial_response,
    get_next_page_func: Callable[[str], Awaitable[Any]],
) -> List[Any]:
    """Helper to collect all pages from a paginated Graph API response.

    Microsoft Graph API returns max 100 items per page by default.
    This helper follows odata_next_link to collect all items.

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


async def check_graph_connection(graph_client) -> Dict[str, Any]:
    """
    Session check for Graph: read one Microsoft 365 group.

    Returns the same results shape as ExchangeAdminClient.check_connection().
    """
    results: Dict[str, Any] = {'success': True, 'organization': None, 'errors': [], 'warnings': []}

    query_params = GroupsRequestBuilder.GroupsRequestBuilderGetQueryParameters(
        filter=UNIFIED_GROUP_FILTER,
        select=["id"],
        top=1,
    )
    try:
        response = await graph_client.groups.get(
            request_configuration=RequestConfiguration(query_parameters=query_params)
        )
        if not response or not response.value:
            results['warnings'].append("No Microsoft 365 groups visible to the app")
    except Exception as e:
        if is_auth_error(e):
            results['errors'].append(f"Group.Read.All permission missing or denied: {e}")
        else:
            results['errors'].append(f"Microsoft Graph unreachable: {e}")
        results['success'] = False

    return results


async def list_unified_groups(graph_client) -> List[Any]:
    """All Microsoft 365 (Unified) groups."""
    query_params = GroupsRequestBuilder.GroupsRequestBuilderGetQueryParameters(
        filter=UNIFIED_GROUP_FILTER,
        select=UNIFIED_GROUP_SELECT,
        top=999,
    )
    response = await graph_client.groups.get(
        request_configuration=RequestConfiguration(query_parameters=query_params)
    )
    groups = await collect_all_pages(
        response,
        lambda link: graph_client.groups.with_url(link).get(),
    )
    logger.info(f"Found {len(groups):,} Microsoft 365 groups")
    return groups


async def list_group_owners(graph_client, group_id: str) -> List[Any]:
    builder = graph_client.groups.by_group_id(group_id).owners
    response = await builder.get()
    return await collect_all_pages(response, lambda link: builder.with_url(link).get())


async def list_group_members(graph_client, group_id: str) -> List[Any]:
    builder = graph_client.groups.by_group_id(group_id).members
    response = await builder.get()
    return await collect_all_pages(response, lambda link: builder.with_url(link).get())
