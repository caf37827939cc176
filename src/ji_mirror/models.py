"""Data models for mirrored content.

Defines the mirrored item record, per-item version info, sync cursors and
the read-side result types of the store.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

__all__ = [
    "ContentStats",
    "MirroredItem",
    "SearchHit",
    "SourceKind",
    "SyncCursor",
    "VersionInfo",
]


class SourceKind(str, Enum):
    """Remote systems that feed the mirror.

    The value is the stored source name; ``namespace`` prefixes item ids so
    ids stay unique across sources.
    """

    JIRA_ISSUE = "jira_issue"
    CONFLUENCE_PAGE = "confluence_page"

    @property
    def namespace(self) -> str:
        return "jira" if self is SourceKind.JIRA_ISSUE else "confluence"

    def item_id(self, remote_id: str) -> str:
        return f"{self.namespace}:{remote_id}"


@dataclass
class MirroredItem:
    """Local copy of one remote issue or page.

    Attributes:
        source: Which remote system the item came from
        remote_id: Identifier within that system (issue key, page id)
        scope_key: Project key (issues) or space key (pages)
        title: Issue summary or page title
        body: Plain-text rendering of the item
        url: Browser URL of the remote item
        metadata: Source-specific fields (status, assignee, labels, ...)
        revision: Remote version number when the source reports one
        created_at: Remote creation time
        updated_at: Remote last-modified time
        synced_at: When the local copy was last written
        content_hash: SHA-256 over the normalized content
    """

    source: SourceKind
    remote_id: str
    scope_key: str
    title: str
    body: str
    url: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    revision: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None
    synced_at: datetime | None = None
    content_hash: str | None = None

    @property
    def item_id(self) -> str:
        return self.source.item_id(self.remote_id)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON output."""
        data = asdict(self)
        data["id"] = self.item_id
        data["source"] = self.source.value
        for key in ("created_at", "updated_at", "synced_at"):
            if data[key] is not None:
                data[key] = data[key].isoformat()
        return data


@dataclass(frozen=True)
class VersionInfo:
    revision: int | None
    updated_at: datetime | None
    synced_at: datetime | None


@dataclass(frozen=True)
class SyncCursor:
    source: SourceKind
    scope_key: str
    last_synced_at: datetime


@dataclass(frozen=True)
class SearchHit:
    """A full-text search match with a highlighted excerpt."""

    item_id: str
    source: SourceKind
    scope_key: str
    title: str
    url: str
    snippet: str
    updated_at: datetime | None


@dataclass
class ContentStats:
    total: int = 0
    by_source: dict[str, int] = field(default_factory=dict)
    by_scope: dict[str, int] = field(default_factory=dict)
    last_synced_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "by_source": self.by_source,
            "by_scope": self.by_scope,
            "last_synced_at": self.last_synced_at.isoformat() if self.last_synced_at else None,
        }
