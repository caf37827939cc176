"""Typed remote resources for Jira issues and Confluence pages.

One ``RemoteResource`` describes a paginated listing: endpoint path, base
query parameters, the offset/limit parameter names, where the items live in
the response, how to tell the last page, and how to parse one raw entry.
The listing itself is driven by ``PageStream``.

References:
- https://developer.atlassian.com/cloud/jira/platform/rest/v3/api-group-issue-search/
- https://developer.atlassian.com/cloud/confluence/rest/v1/api-group-search/
"""

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..batch import Failure, Success, run_all
from ..errors import ParseError, ValidationError
from ..models import MirroredItem, SourceKind
from ..pagination import Page, PageStream
from ..transport import Request, TransportClient
from ..validation import validate_remote_id
from .composer import issue_to_item, page_to_item

logger = logging.getLogger("ji_mirror.connectors.resources")

__all__ = [
    "ISSUE_FIELDS",
    "RemoteResource",
    "assign_issue",
    "batch_assign_issues",
    "batch_get_issues",
    "confluence_pages",
    "get_current_account_id",
    "get_issue",
    "jira_issues",
    "resource_for",
]

ISSUE_FIELDS = (
    "summary,status,priority,assignee,reporter,issuetype,labels,"
    "created,updated,description,project,customfield_10020"
)
PAGE_EXPAND = "body.storage,version,space,history"

PROJECT_KEY_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]*$")
SPACE_KEY_PATTERN = re.compile(r"^~?[A-Za-z0-9_]+$")


@dataclass(frozen=True)
class RemoteResource:
    """A paginated remote listing of one scope.

    Attributes:
        source: Kind of item the listing yields
        scope_key: Project or space being listed
        path: Endpoint path below the site URL
        params: Base query parameters (query language, fields, expand)
        items_key: Response key holding the entries
        offset_param: Name of the offset query parameter
        limit_param: Name of the page-size query parameter
        last_page: Decides from (response, offset, entry count) if this is the end
        parse: Turns one raw entry into a MirroredItem (raises ParseError)
        total_key: Response key holding the listing's total size, if any
    """

    source: SourceKind
    scope_key: str
    path: str
    params: dict[str, Any]
    items_key: str
    offset_param: str
    limit_param: str
    last_page: Callable[[dict[str, Any], int, int], bool]
    parse: Callable[[Any], MirroredItem]
    label: str = field(default="")
    total_key: str | None = None

    async def fetch_page(self, client: TransportClient, offset: int, page_size: int) -> Page[Any]:
        """Fetch one page of raw entries.

        Raises:
            ParseError: The response has no list under ``items_key``
            MirrorError: Transport failure after retries
        """
        params = {**self.params, self.offset_param: offset, self.limit_param: page_size}
        response = await client.call(
            Request("GET", self.path, params=params, description=f"{self.label}@{offset}")
        )
        data = response.data
        if not isinstance(data, dict) or not isinstance(data.get(self.items_key), list):
            raise ParseError(
                f"{self.label} response has no '{self.items_key}' list",
                field=self.items_key,
                raw_value=str(data)[:200],
            )
        entries = data[self.items_key]
        total = data.get(self.total_key) if self.total_key else None
        return Page(
            items=entries,
            is_last=self.last_page(data, offset, len(entries)),
            offset=offset,
            total=total if isinstance(total, int) and not isinstance(total, bool) else None,
        )

    def stream(self, client: TransportClient, page_size: int, prefetch: int = 5) -> PageStream[Any]:
        return PageStream(
            lambda offset: self.fetch_page(client, offset, page_size),
            page_size=page_size,
            prefetch=prefetch,
            label=self.label,
        )


def _jql_time(value: datetime) -> str:
    # JQL accepts minute precision only; ISO 8601 "T" format silently matches nothing
    return value.strftime("%Y-%m-%d %H:%M")


def _jira_last_page(data: dict[str, Any], offset: int, count: int) -> bool:
    if "isLast" in data:
        return bool(data["isLast"])
    total = data.get("total")
    if isinstance(total, int):
        return offset + count >= total
    return count == 0


def _confluence_last_page(data: dict[str, Any], offset: int, count: int) -> bool:
    return "next" not in (data.get("_links") or {})


def validate_project_key(project_key: str) -> None:
    if not project_key or not PROJECT_KEY_PATTERN.match(project_key):
        raise ValidationError(
            f"Invalid project key: {project_key!r}", field="project_key", value=project_key
        )


def validate_space_key(space_key: str) -> None:
    if not space_key or not SPACE_KEY_PATTERN.match(space_key):
        raise ValidationError(f"Invalid space key: {space_key!r}", field="space_key", value=space_key)


def jira_issues(
    project_key: str,
    base_url: str,
    updated_since: datetime | None = None,
) -> RemoteResource:
    """Issue listing of one project, optionally limited to recent updates.

    CRITICAL: Jira Cloud requires bounded JQL. The query always carries
    'project = KEY'.
    """
    validate_project_key(project_key)
    jql = f'project = "{project_key}"'
    if updated_since is not None:
        jql += f" AND updated >= '{_jql_time(updated_since)}'"
    jql += " ORDER BY created ASC"

    return RemoteResource(
        source=SourceKind.JIRA_ISSUE,
        scope_key=project_key,
        path="/rest/api/3/search",
        params={"jql": jql, "fields": ISSUE_FIELDS},
        items_key="issues",
        offset_param="startAt",
        limit_param="maxResults",
        last_page=_jira_last_page,
        parse=lambda raw: issue_to_item(raw, base_url),
        label=f"jira_issues:{project_key}",
        total_key="total",
    )


def confluence_pages(
    space_key: str,
    base_url: str,
    updated_since: datetime | None = None,
) -> RemoteResource:
    """Page listing of one space via CQL, optionally limited to recent edits."""
    validate_space_key(space_key)
    cql = f'space = "{space_key}" AND type = page'
    if updated_since is not None:
        cql += f' AND lastmodified >= "{_jql_time(updated_since)}"'
    cql += " ORDER BY created ASC"

    return RemoteResource(
        source=SourceKind.CONFLUENCE_PAGE,
        scope_key=space_key,
        path="/wiki/rest/api/content/search",
        params={"cql": cql, "expand": PAGE_EXPAND},
        items_key="results",
        offset_param="start",
        limit_param="limit",
        last_page=_confluence_last_page,
        parse=lambda raw: page_to_item(raw, base_url, space_key),
        label=f"confluence_pages:{space_key}",
        total_key="totalSize",
    )


def resource_for(
    source: SourceKind,
    scope_key: str,
    base_url: str,
    updated_since: datetime | None = None,
) -> RemoteResource:
    if source is SourceKind.JIRA_ISSUE:
        return jira_issues(scope_key, base_url, updated_since)
    return confluence_pages(scope_key, base_url, updated_since)


# ----------------------------------------------------------------------
# single-item and batch operations
# ----------------------------------------------------------------------


async def get_issue(client: TransportClient, issue_key: str) -> MirroredItem:
    """Fetch one issue and compose it as a MirroredItem."""
    validate_remote_id(SourceKind.JIRA_ISSUE, issue_key)
    response = await client.call(
        Request(
            "GET",
            f"/rest/api/3/issue/{issue_key}",
            params={"fields": ISSUE_FIELDS},
            description=f"get_issue:{issue_key}",
        )
    )
    return issue_to_item(response.data, client.base_url)


async def assign_issue(client: TransportClient, issue_key: str, account_id: str | None) -> str:
    """Assign an issue (None unassigns). Returns the issue key."""
    validate_remote_id(SourceKind.JIRA_ISSUE, issue_key)
    await client.call(
        Request(
            "PUT",
            f"/rest/api/3/issue/{issue_key}/assignee",
            json={"accountId": account_id},
            description=f"assign_issue:{issue_key}",
        )
    )
    logger.info("issue_assigned", extra={"issue_key": issue_key, "account_id": account_id})
    return issue_key


async def get_current_account_id(client: TransportClient) -> str:
    response = await client.call(Request("GET", "/rest/api/3/myself", description="myself"))
    account_id = (response.data or {}).get("accountId")
    if not account_id:
        raise ParseError("Response has no accountId", field="accountId", raw_value=response.data)
    return account_id


async def batch_get_issues(
    client: TransportClient,
    issue_keys: Iterable[str],
    *,
    concurrency: int = 4,
) -> list[Success[MirroredItem] | Failure]:
    return await run_all(
        issue_keys,
        lambda key: get_issue(client, key),
        concurrency=concurrency,
    )


async def batch_assign_issues(
    client: TransportClient,
    issue_keys: Iterable[str],
    account_id: str | None,
    *,
    concurrency: int = 4,
) -> list[Success[str] | Failure]:
    return await run_all(
        issue_keys,
        lambda key: assign_issue(client, key, account_id),
        concurrency=concurrency,
    )
