"""Compose mirrored items from raw Jira issue and Confluence page JSON.

Handles nullable fields gracefully (team-managed projects omit priority,
assignees come and go). Missing identity fields raise ParseError so the sync
run can record the item as failed and move on.
"""

import logging
from datetime import datetime, timezone
from typing import Any

from ..errors import ParseError
from ..models import MirroredItem, SourceKind
from .adf_converter import adf_to_text
from .storage_format import storage_to_text

logger = logging.getLogger("ji_mirror.connectors.composer")

__all__ = [
    "compose_issue_body",
    "issue_to_item",
    "page_to_item",
    "parse_timestamp",
]

# Jira Cloud's default sprint custom field
SPRINT_FIELD = "customfield_10020"

_TIMESTAMP_FORMATS = ("%Y-%m-%dT%H:%M:%S.%f%z", "%Y-%m-%dT%H:%M:%S%z")


def parse_timestamp(value: Any, field: str) -> datetime | None:
    """Parse Atlassian timestamps ("2026-02-01T10:00:00.000+0000", ISO 8601).

    Returns None for missing values; naive results are taken as UTC.

    Raises:
        ParseError: If the value is present but not a timestamp
    """
    if value in (None, ""):
        return None
    if not isinstance(value, str):
        raise ParseError(f"Expected timestamp string for {field}", field=field, raw_value=value)
    for fmt in _TIMESTAMP_FORMATS:
        try:
            return datetime.strptime(value, fmt)
        except ValueError:
            continue
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError as e:
        raise ParseError(f"Invalid timestamp for {field}", field=field, raw_value=value, cause=e) from e
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _name(obj: Any, attr: str = "name", default: str | None = None) -> str | None:
    if isinstance(obj, dict):
        return obj.get(attr) or default
    return default


def _require(data: dict[str, Any], key: str, field: str) -> Any:
    value = data.get(key)
    if value in (None, ""):
        raise ParseError(f"Missing {field}", field=field, raw_value=data.get(key))
    return value


def _sprints(fields: dict[str, Any]) -> list[str]:
    raw = fields.get(SPRINT_FIELD)
    if not isinstance(raw, list):
        return []
    return [s["name"] for s in raw if isinstance(s, dict) and s.get("name")]


def compose_issue_body(issue: dict[str, Any]) -> str:
    """Compose the searchable text of an issue.

    Format:
        [PROJ-123] Issue Title Here
        Type: Bug | Priority: High | Status: In Progress
        Reporter: Alex | Assigned: Sarah
        Labels: authentication, frontend

        Description:
        {ADF-converted description text}

    Timestamps are left out: they change without the content changing.
    """
    key = issue.get("key", "UNKNOWN")
    fields = issue.get("fields") or {}

    labels = fields.get("labels") or []
    description = adf_to_text(fields.get("description")) or "(No description)"

    lines = [
        f"[{key}] {fields.get('summary') or 'No summary'}",
        f"Type: {_name(fields.get('issuetype'), default='Unknown')} | "
        f"Priority: {_name(fields.get('priority'), default='None')} | "
        f"Status: {_name(fields.get('status'), default='Unknown')}",
        f"Reporter: {_name(fields.get('reporter'), 'displayName', 'Unknown')} | "
        f"Assigned: {_name(fields.get('assignee'), 'displayName', 'Unassigned')}",
        f"Labels: {', '.join(labels) if labels else 'None'}",
        "",
        "Description:",
        description,
    ]
    return "\n".join(lines)


def issue_to_item(issue: dict[str, Any], base_url: str) -> MirroredItem:
    """Build a MirroredItem from a Jira search/issue response entry.

    Raises:
        ParseError: Missing key, fields, summary or project, or bad timestamps
    """
    if not isinstance(issue, dict):
        raise ParseError("Issue payload is not an object", field="issue", raw_value=issue)
    key = _require(issue, "key", "key")
    fields = issue.get("fields")
    if not isinstance(fields, dict):
        raise ParseError(f"Issue {key} has no fields", field="fields", raw_value=fields)
    summary = _require(fields, "summary", "fields.summary")
    project = _name(fields.get("project"), "key") or key.rsplit("-", 1)[0]

    metadata = {
        "issue_type": _name(fields.get("issuetype")),
        "status": _name(fields.get("status")),
        "priority": _name(fields.get("priority")),
        "assignee": _name(fields.get("assignee"), "displayName"),
        "reporter": _name(fields.get("reporter"), "displayName"),
        "labels": list(fields.get("labels") or []),
        "sprints": _sprints(fields),
    }

    return MirroredItem(
        source=SourceKind.JIRA_ISSUE,
        remote_id=key,
        scope_key=project,
        title=summary,
        body=compose_issue_body(issue),
        url=f"{base_url.rstrip('/')}/browse/{key}",
        metadata=metadata,
        created_at=parse_timestamp(fields.get("created"), "fields.created"),
        updated_at=parse_timestamp(fields.get("updated"), "fields.updated"),
    )


def page_to_item(page: dict[str, Any], base_url: str, space_key: str | None = None) -> MirroredItem:
    """Build a MirroredItem from a Confluence content entry.

    Expects ``body.storage``, ``version`` and ``space`` to be expanded.

    Raises:
        ParseError: Missing id or title, non-numeric version, bad timestamps
    """
    if not isinstance(page, dict):
        raise ParseError("Page payload is not an object", field="page", raw_value=page)
    page_id = str(_require(page, "id", "id"))
    title = _require(page, "title", "title")

    space = _name(page.get("space"), "key") or space_key
    if not space:
        raise ParseError(f"Page {page_id} has no space", field="space.key", raw_value=page.get("space"))

    version = page.get("version") or {}
    revision = version.get("number")
    if revision is not None and not isinstance(revision, int):
        raise ParseError(
            f"Page {page_id} has a non-numeric version", field="version.number", raw_value=revision
        )

    storage = ((page.get("body") or {}).get("storage") or {}).get("value")
    links = page.get("_links") or {}
    webui = links.get("webui", f"/spaces/{space}/pages/{page_id}")

    return MirroredItem(
        source=SourceKind.CONFLUENCE_PAGE,
        remote_id=page_id,
        scope_key=space,
        title=title,
        body=storage_to_text(storage),
        url=f"{base_url.rstrip('/')}/wiki{webui}",
        metadata={
            "content_type": page.get("type", "page"),
            "author": _name(version.get("by"), "displayName"),
        },
        revision=revision,
        created_at=parse_timestamp((page.get("history") or {}).get("createdDate"), "history.createdDate"),
        updated_at=parse_timestamp(version.get("when"), "version.when"),
    )
