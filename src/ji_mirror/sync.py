"""Sync orchestrator: remote listings into the local mirror.

Pipeline per (source, scope) run:
1. Read the scope's cursor (incremental mode) to bound the listing
2. Stream the listing page by page (prefetching, see pagination.py)
3. Per entry: compose item -> content hash -> changed? -> upsert or skip
4. Cleanup mode: delete mirrored items the listing no longer contains
5. Set the cursor to the run's START time

Error Handling:
- Per-item fail-open: parse/validation/upsert failures are recorded and the
  run continues
- Enumeration failures (a page fetch failing after retries, credentials
  revoked mid-listing) abort the run: no cursor update, no cleanup
  deletions, the error propagates
- sync_all isolates scopes: one aborted scope never stops the others
"""

import asyncio
import logging
import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from .batch import Failure, Success, run_all
from .config import MirrorConfig, get_config
from .connectors.resources import RemoteResource, get_issue, resource_for
from .errors import ConfigurationError, MirrorError, classify_error
from .metrics import sync_duration_seconds, sync_items_total, sync_runs_total
from .models import MirroredItem, SourceKind
from .store import ContentMirrorStore
from .transport import TransportClient
from .validation import compute_content_hash

logger = logging.getLogger("ji_mirror.sync")

__all__ = ["ItemFailure", "SyncMode", "SyncOrchestrator", "SyncReport", "SyncResult"]


class SyncMode(str, Enum):
    INCREMENTAL = "incremental"
    FULL = "full"
    CLEANUP = "cleanup"


@dataclass(frozen=True)
class ItemFailure:
    item_id: str
    error: MirrorError

    def to_dict(self) -> dict[str, Any]:
        return {"item_id": self.item_id, **self.error.to_dict()}


@dataclass
class SyncResult:
    """Counts and failures of one scope's sync run."""

    source: SourceKind
    scope_key: str
    mode: SyncMode
    upserted: int = 0
    unchanged: int = 0
    failed: int = 0
    deleted: int = 0
    failures: list[ItemFailure] = field(default_factory=list)
    started_at: datetime | None = None
    duration_seconds: float = 0.0

    @property
    def scope_label(self) -> str:
        return f"{self.source.namespace}:{self.scope_key}"

    def summary_line(self) -> str:
        line = f"{self.upserted} upserted, {self.unchanged} unchanged, {self.failed} failed"
        if self.mode is SyncMode.CLEANUP:
            line += f", {self.deleted} deleted"
        return line

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for JSON serialization."""
        return {
            "source": self.source.value,
            "scope_key": self.scope_key,
            "mode": self.mode.value,
            "upserted": self.upserted,
            "unchanged": self.unchanged,
            "failed": self.failed,
            "deleted": self.deleted,
            "failures": [f.to_dict() for f in self.failures],
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "duration_seconds": self.duration_seconds,
        }


@dataclass
class SyncReport:
    """Outcome of sync_all: finished runs plus scopes whose run aborted."""

    results: list[SyncResult] = field(default_factory=list)
    aborted: dict[str, MirrorError] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.aborted and all(r.failed == 0 for r in self.results)

    def to_dict(self) -> dict[str, Any]:
        return {
            "results": [r.to_dict() for r in self.results],
            "aborted": {scope: e.to_dict() for scope, e in self.aborted.items()},
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _raw_id(raw: Any) -> str | None:
    """Best-effort remote id of an entry, used when parsing it fails."""
    if isinstance(raw, dict):
        value = raw.get("key") or raw.get("id")
        return str(value) if value else None
    return None


class SyncOrchestrator:
    """Drives remote listings into the content mirror store.

    Attributes:
        client: TransportClient shared by all listings (None for purge-only use)
        store: ContentMirrorStore (sync API, called via asyncio.to_thread)
        page_size: Items per listing page
        prefetch: Page fetches kept in flight per listing
    """

    def __init__(
        self,
        client: TransportClient | None,
        store: ContentMirrorStore,
        *,
        config: MirrorConfig | None = None,
        page_size: int | None = None,
        prefetch: int | None = None,
        clock: Callable[[], datetime] = _utcnow,
        resource_factory: Callable[..., RemoteResource] = resource_for,
    ) -> None:
        self.config = config or get_config()
        self.client = client
        self.store = store
        self.page_size = page_size or self.config.page_size
        self.prefetch = prefetch or self.config.prefetch_depth
        self._clock = clock
        self._resource_factory = resource_factory

    async def sync_scope(
        self,
        source: SourceKind,
        scope_key: str,
        mode: SyncMode | str = SyncMode.INCREMENTAL,
    ) -> SyncResult:
        """Sync one Jira project or Confluence space.

        Args:
            source: SourceKind of the scope
            scope_key: Project key or space key
            mode: "incremental", "full" or "cleanup"

        Returns:
            SyncResult with counts and item-level failures

        Raises:
            MirrorError: The listing failed; the cursor is left untouched
        """
        mode = SyncMode(mode)
        started_at = self._clock()
        start = time.monotonic()
        result = SyncResult(source=source, scope_key=scope_key, mode=mode, started_at=started_at)

        updated_since = None
        if mode is SyncMode.INCREMENTAL:
            updated_since = await asyncio.to_thread(self.store.get_cursor, source, scope_key)
            if updated_since is None:
                logger.info(
                    "no_previous_sync_falling_back_to_full",
                    extra={"source": source.value, "scope_key": scope_key},
                )

        logger.info(
            "sync_scope_start",
            extra={
                "source": source.value,
                "scope_key": scope_key,
                "mode": mode.value,
                "updated_since": updated_since.isoformat() if updated_since else None,
            },
        )

        seen: set[str] = set()
        try:
            if self.client is None:
                raise ConfigurationError("sync_scope needs a transport client")
            resource = self._resource_factory(source, scope_key, self.client.base_url, updated_since)
            async for raw in resource.stream(self.client, self.page_size, self.prefetch):
                await self._sync_entry(resource, raw, result, seen)

            if mode is SyncMode.CLEANUP:
                result.deleted = await self._delete_missing(source, scope_key, seen)

            await asyncio.to_thread(self.store.set_cursor, source, scope_key, started_at)
        except Exception as e:
            error = classify_error(e)
            sync_runs_total.labels(source=source.value, mode=mode.value, status="aborted").inc()
            logger.error(
                "sync_scope_aborted",
                extra={
                    "source": source.value,
                    "scope_key": scope_key,
                    "error_tag": error.tag.value,
                    "error": error.message,
                    "upserted_before_abort": result.upserted,
                },
            )
            raise

        result.duration_seconds = round(time.monotonic() - start, 3)
        sync_runs_total.labels(source=source.value, mode=mode.value, status="completed").inc()
        sync_duration_seconds.labels(source=source.value).observe(result.duration_seconds)
        logger.info(
            "sync_scope_complete",
            extra={
                "source": source.value,
                "scope_key": scope_key,
                "mode": mode.value,
                "upserted": result.upserted,
                "unchanged": result.unchanged,
                "failed": result.failed,
                "deleted": result.deleted,
                "duration_seconds": result.duration_seconds,
            },
        )
        return result

    async def _sync_entry(
        self,
        resource: RemoteResource,
        raw: Any,
        result: SyncResult,
        seen: set[str],
    ) -> None:
        remote_id = _raw_id(raw)
        if remote_id:
            seen.add(remote_id)
        item_id = resource.source.item_id(remote_id or "unknown")

        try:
            item = resource.parse(raw)
            seen.add(item.remote_id)
            item_id = item.item_id
            upserted = await self._apply(item)
        except Exception as e:
            # Fail-open: record and continue with the next entry
            error = classify_error(e)
            result.failed += 1
            result.failures.append(ItemFailure(item_id=item_id, error=error))
            sync_items_total.labels(source=resource.source.value, outcome="failed").inc()
            logger.warning(
                "item_sync_failed",
                extra={"item_id": item_id, "error_tag": error.tag.value, "error": error.message},
            )
            return

        if upserted:
            result.upserted += 1
            sync_items_total.labels(source=resource.source.value, outcome="upserted").inc()
        else:
            result.unchanged += 1
            sync_items_total.labels(source=resource.source.value, outcome="unchanged").inc()

    async def _apply(self, item: MirroredItem) -> bool:
        """Upsert the item if its content changed. Returns True when written."""
        content_hash = compute_content_hash(item)
        changed = await asyncio.to_thread(self.store.has_changed, item.item_id, content_hash)
        if not changed:
            logger.debug("item_unchanged", extra={"item_id": item.item_id})
            return False
        await asyncio.to_thread(self.store.upsert, item)
        return True

    async def _delete_missing(self, source: SourceKind, scope_key: str, seen: set[str]) -> int:
        stored = await asyncio.to_thread(self.store.versions_by_scope, scope_key, source)
        missing = [source.item_id(remote_id) for remote_id in stored if remote_id not in seen]
        if not missing:
            return 0
        deleted = await asyncio.to_thread(self.store.delete_items, missing)
        sync_items_total.labels(source=source.value, outcome="deleted").inc(deleted)
        logger.info(
            "cleanup_deleted_missing",
            extra={"source": source.value, "scope_key": scope_key, "deleted": deleted},
        )
        return deleted

    # ------------------------------------------------------------------
    # direct writes (fetch and purge commands)
    # ------------------------------------------------------------------

    async def apply_item(self, item: MirroredItem) -> bool:
        """Write one item if its content changed. Returns True when written."""
        return await self._apply(item)

    async def fetch_issues(
        self,
        issue_keys: Iterable[str],
        *,
        concurrency: int | None = None,
    ) -> list[Success[MirroredItem] | Failure]:
        """Fetch issues by key and write the changed ones into the mirror.

        One result per key, in input order. A key that fails to fetch or
        write becomes a Failure; the other keys are unaffected.
        """
        if self.client is None:
            raise ConfigurationError("fetch_issues needs a transport client")

        async def _fetch_one(key: str) -> MirroredItem:
            item = await get_issue(self.client, key)
            written = await self._apply(item)
            sync_items_total.labels(
                source=SourceKind.JIRA_ISSUE.value,
                outcome="upserted" if written else "unchanged",
            ).inc()
            return item

        return await run_all(
            issue_keys,
            _fetch_one,
            concurrency=concurrency or self.config.batch_concurrency,
        )

    async def purge_scope(self, scope_key: str, source: SourceKind | None = None) -> int:
        """Delete a project or space (and its cursor) from the mirror."""
        deleted = await asyncio.to_thread(self.store.delete_by_scope, scope_key, source)
        logger.info(
            "scope_purged",
            extra={"scope_key": scope_key, "source": source.value if source else None, "deleted": deleted},
        )
        return deleted

    async def purge_older_than(self, days: int) -> int:
        """Delete items not re-synced within the last ``days`` days."""
        deleted = await asyncio.to_thread(self.store.cleanup_older_than, days)
        logger.info("old_items_purged", extra={"days": days, "deleted": deleted})
        return deleted

    def configured_scopes(self) -> list[tuple[SourceKind, str]]:
        return [(SourceKind.JIRA_ISSUE, key) for key in self.config.jira_projects] + [
            (SourceKind.CONFLUENCE_PAGE, key) for key in self.config.confluence_spaces
        ]

    async def sync_all(
        self,
        mode: SyncMode | str = SyncMode.INCREMENTAL,
        scopes: list[tuple[SourceKind, str]] | None = None,
    ) -> SyncReport:
        """Sync every configured project and space.

        Scopes run concurrently (bounded by scope_concurrency). An aborted
        scope is recorded in the report and never stops the others.
        """
        scopes = self.configured_scopes() if scopes is None else scopes
        report = SyncReport()
        if not scopes:
            logger.warning("no_scopes_configured")
            return report

        semaphore = asyncio.Semaphore(self.config.scope_concurrency)

        async def _one(source: SourceKind, scope_key: str) -> SyncResult | MirrorError:
            async with semaphore:
                try:
                    return await self.sync_scope(source, scope_key, mode)
                except Exception as e:
                    return classify_error(e)

        outcomes = await asyncio.gather(*(_one(source, key) for source, key in scopes))
        for (source, scope_key), outcome in zip(scopes, outcomes):
            if isinstance(outcome, MirrorError):
                report.aborted[f"{source.namespace}:{scope_key}"] = outcome
            else:
                report.results.append(outcome)
        return report
