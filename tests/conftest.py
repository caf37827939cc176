"""Shared pytest fixtures for ji-mirror tests.

Fixture Organization:
    - Clock and sleep fakes: deterministic time for sync runs and retries
    - Config fixtures: MirrorConfig built without reading .env
    - Fake remote: an in-process Jira/Confluence server behind httpx.MockTransport
    - Store fixtures: SQLite mirror in a temporary directory
"""

import json
import re
from collections.abc import Callable
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import parse_qs

import httpx
import pytest

from src.ji_mirror.config import Credentials, MirrorConfig, reset_config
from src.ji_mirror.store import ContentMirrorStore
from src.ji_mirror.transport import TransportClient

BASE_URL = "https://test.atlassian.net"
T0 = datetime(2026, 3, 1, 10, 0, tzinfo=timezone.utc)


# =============================================================================
# Time Fakes
# =============================================================================


class FakeClock:
    """Callable clock returning a settable UTC time."""

    def __init__(self, now: datetime = T0) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


class RecordingSleep:
    """Async sleep replacement that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleeper():
    return RecordingSleep()


# =============================================================================
# Config
# =============================================================================


@pytest.fixture(autouse=True)
def _isolate_config(monkeypatch):
    """Keep developer JI_* variables out of tests and reset the singleton."""
    import os

    for name in list(os.environ):
        if name.upper().startswith("JI_"):
            monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture
def mirror_config(tmp_path):
    return MirrorConfig(
        _env_file=None,
        base_url=BASE_URL,
        email="test@example.com",
        api_token="test-token",
        jira_projects=["PROJ"],
        confluence_spaces=["ENG"],
        install_dir=tmp_path,
        page_size=100,
        prefetch_depth=3,
    )


def static_credentials() -> Credentials:
    return Credentials(base_url=BASE_URL, email="test@example.com", api_token="test-token")


# =============================================================================
# Fake Atlassian Cloud
# =============================================================================


def make_issue(
    key: str,
    summary: str | None = "Issue summary",
    *,
    updated: datetime = T0 - timedelta(days=7),
    status: str = "To Do",
    description: str | None = None,
) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "summary": summary,
        "project": {"key": key.rsplit("-", 1)[0]},
        "issuetype": {"name": "Task"},
        "status": {"name": status},
        "priority": {"name": "Medium"},
        "assignee": None,
        "reporter": {"displayName": "Alice"},
        "labels": [],
        "created": "2026-01-01T09:00:00.000+0000",
        "updated": updated.strftime("%Y-%m-%dT%H:%M:%S.000+0000"),
    }
    if description is not None:
        fields["description"] = {
            "type": "doc",
            "content": [{"type": "paragraph", "content": [{"type": "text", "text": description}]}],
        }
    return {"key": key, "fields": fields}


def make_page(page_id: str, title: str, *, space: str = "ENG", version: int = 1, body: str = "<p>Body</p>") -> dict[str, Any]:
    return {
        "id": page_id,
        "type": "page",
        "title": title,
        "space": {"key": space},
        "version": {"number": version, "when": "2026-02-20T08:00:00.000Z"},
        "history": {"createdDate": "2026-01-05T08:00:00.000Z"},
        "body": {"storage": {"value": body}},
        "_links": {"webui": f"/spaces/{space}/pages/{page_id}"},
    }


class FakeAtlassian:
    """In-process Jira + Confluence endpoints for httpx.MockTransport.

    Attributes:
        issues: project key -> list of issue dicts (listing order)
        pages: space key -> list of page dicts
        fail: (path, offset) -> HTTP status returned instead of the page
        requests: every request received
    """

    JQL_UPDATED = re.compile(r"updated >= '(\d{4}-\d{2}-\d{2} \d{2}:\d{2})'")
    JQL_PROJECT = re.compile(r'project = "([^"]+)"')
    CQL_SPACE = re.compile(r'space = "([^"]+)"')

    def __init__(self) -> None:
        self.issues: dict[str, list[dict[str, Any]]] = {}
        self.pages: dict[str, list[dict[str, Any]]] = {}
        self.fail: dict[tuple[str, int], int] = {}
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        params = {k: v[0] for k, v in parse_qs(request.url.query.decode()).items()}
        path = request.url.path

        if path == "/rest/api/3/search":
            offset = int(params.get("startAt", 0))
            if (path, offset) in self.fail:
                return httpx.Response(self.fail[(path, offset)], json={"errorMessages": ["boom"]})
            return self._jira_search(params, offset)
        if path == "/wiki/rest/api/content/search":
            offset = int(params.get("start", 0))
            if (path, offset) in self.fail:
                return httpx.Response(self.fail[(path, offset)], json={"message": "boom"})
            return self._confluence_search(params, offset)
        if path.startswith("/rest/api/3/issue/") and path.endswith("/assignee"):
            return httpx.Response(204)
        if path.startswith("/rest/api/3/issue/"):
            key = path.rsplit("/", 1)[-1]
            for issues in self.issues.values():
                for issue in issues:
                    if issue["key"] == key:
                        return httpx.Response(200, json=issue)
            return httpx.Response(404, json={"errorMessages": ["Issue does not exist"]})
        if path == "/rest/api/3/myself":
            return httpx.Response(200, json={"accountId": "acc-me", "emailAddress": "test@example.com"})
        return httpx.Response(404)

    def _jira_search(self, params: dict[str, str], offset: int) -> httpx.Response:
        jql = params["jql"]
        project = self.JQL_PROJECT.search(jql).group(1)
        issues = self.issues.get(project, [])
        window = self.JQL_UPDATED.search(jql)
        if window:
            since = datetime.strptime(window.group(1), "%Y-%m-%d %H:%M").replace(tzinfo=timezone.utc)
            issues = [
                i
                for i in issues
                if datetime.strptime(i["fields"]["updated"], "%Y-%m-%dT%H:%M:%S.%f%z") >= since
            ]
        limit = int(params.get("maxResults", 50))
        return httpx.Response(
            200,
            json={
                "startAt": offset,
                "maxResults": limit,
                "total": len(issues),
                "issues": issues[offset : offset + limit],
            },
        )

    def _confluence_search(self, params: dict[str, str], offset: int) -> httpx.Response:
        space = self.CQL_SPACE.search(params["cql"]).group(1)
        pages = self.pages.get(space, [])
        limit = int(params.get("limit", 25))
        chunk = pages[offset : offset + limit]
        links: dict[str, str] = {"base": f"{BASE_URL}/wiki"}
        if offset + limit < len(pages):
            links["next"] = f"/rest/api/content/search?start={offset + limit}"
        return httpx.Response(
            200,
            json={
                "results": chunk,
                "start": offset,
                "limit": limit,
                "size": len(chunk),
                "totalSize": len(pages),
                "_links": links,
            },
        )

    def search_requests(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith("/search")]


@pytest.fixture
def fake_remote():
    return FakeAtlassian()


@pytest.fixture
def make_client(sleeper) -> Callable[..., TransportClient]:
    """Factory for TransportClient over a MockTransport handler."""

    def _make(handler, credentials=static_credentials) -> TransportClient:
        return TransportClient(credentials, httpx.MockTransport(handler), sleep=sleeper)

    return _make


def json_body(request: httpx.Request) -> Any:
    return json.loads(request.content.decode()) if request.content else None


# =============================================================================
# Store
# =============================================================================


@pytest.fixture
def store(tmp_path, clock):
    mirror = ContentMirrorStore(tmp_path / "mirror.db", clock=clock)
    yield mirror
    mirror.close()
