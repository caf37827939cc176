"""Unit tests for the ji-mirror command line.

Tests:
- sync prints per-scope summaries and uses the exit code for partial success
- search/show/status/purge against a pre-populated mirror
- assign and fetch report "N succeeded, M failed"
- Missing credentials fail with a configuration error
"""

import logging

import httpx
import pytest
from conftest import BASE_URL, json_body, make_issue, make_page

from src.ji_mirror.cli import EXIT_ERROR, EXIT_OK, EXIT_PARTIAL, build_parser, main
from src.ji_mirror.models import MirroredItem, SourceKind
from src.ji_mirror.store import ContentMirrorStore


@pytest.fixture(autouse=True)
def _restore_logging():
    """main() configures the ji_mirror logger; undo it after each test."""
    logger = logging.getLogger("ji_mirror")
    handlers, propagate, level = list(logger.handlers), logger.propagate, logger.level
    yield
    logger.handlers = handlers
    logger.propagate = propagate
    logger.setLevel(level)


@pytest.fixture
def env(monkeypatch, tmp_path):
    monkeypatch.setenv("JI_BASE_URL", BASE_URL)
    monkeypatch.setenv("JI_EMAIL", "test@example.com")
    monkeypatch.setenv("JI_API_TOKEN", "test-token")
    monkeypatch.setenv("JI_JIRA_PROJECTS", "PROJ")
    monkeypatch.setenv("JI_CONFLUENCE_SPACES", "ENG")
    monkeypatch.setenv("JI_INSTALL_DIR", str(tmp_path))
    monkeypatch.setenv("JI_LOG_LEVEL", "WARNING")
    return tmp_path


@pytest.fixture
def transport(fake_remote):
    return httpx.MockTransport(fake_remote.handler)


@pytest.fixture
def mirror(env):
    """Mirror pre-populated with one issue and one page."""
    with ContentMirrorStore(env / "mirror.db") as store:
        store.upsert(
            MirroredItem(
                source=SourceKind.JIRA_ISSUE,
                remote_id="PROJ-1",
                scope_key="PROJ",
                title="Login fails",
                body="Users cannot log in",
                url=f"{BASE_URL}/browse/PROJ-1",
            )
        )
        store.upsert(
            MirroredItem(
                source=SourceKind.CONFLUENCE_PAGE,
                remote_id="100",
                scope_key="ENG",
                title="Login runbook",
                body="Restart the login service",
                revision=1,
            )
        )
    return env / "mirror.db"


# =============================================================================
# Parser
# =============================================================================


class TestParser:
    def test_sync_modes_are_exclusive(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["sync", "--full", "--cleanup"])

    def test_repeatable_scopes(self):
        args = build_parser().parse_args(["sync", "--project", "A", "--project", "B", "--space", "ENG"])
        assert args.project == ["A", "B"]
        assert args.space == ["ENG"]

    def test_purge_requires_target(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args(["purge"])


# =============================================================================
# Remote Commands
# =============================================================================


class TestSyncCommand:
    def test_sync_all_scopes(self, env, fake_remote, transport, capsys):
        fake_remote.issues["PROJ"] = [make_issue("PROJ-1"), make_issue("PROJ-2")]
        fake_remote.pages["ENG"] = [make_page("1", "Runbook")]

        assert main(["sync"], transport=transport) == EXIT_OK

        out = capsys.readouterr().out
        assert "jira:PROJ: 2 upserted, 0 unchanged, 0 failed" in out
        assert "confluence:ENG: 1 upserted, 0 unchanged, 0 failed" in out

    def test_partial_failure_exit_code(self, env, fake_remote, transport, capsys):
        fake_remote.issues["PROJ"] = [make_issue("PROJ-1"), make_issue("PROJ-2", None)]

        assert main(["sync", "--project", "PROJ"], transport=transport) == EXIT_PARTIAL

        out = capsys.readouterr().out
        assert "1 upserted, 0 unchanged, 1 failed" in out
        assert "jira:PROJ-2: parse:" in out

    def test_aborted_scope_reported(self, env, fake_remote, transport, capsys):
        fake_remote.fail[("/rest/api/3/search", 0)] = 401

        assert main(["sync", "--full", "--project", "PROJ"], transport=transport) == EXIT_PARTIAL
        assert "jira:PROJ: aborted (authentication_failed" in capsys.readouterr().out

    def test_missing_credentials(self, monkeypatch, tmp_path, transport, capsys):
        monkeypatch.setenv("JI_INSTALL_DIR", str(tmp_path))
        monkeypatch.setenv("JI_JIRA_PROJECTS", "PROJ")

        assert main(["sync"], transport=transport) == EXIT_ERROR
        err = capsys.readouterr().err
        assert "configuration" in err
        assert "JI_BASE_URL" in err


class TestBatchCommands:
    def test_assign_to_me(self, env, fake_remote, transport, capsys):
        assert main(["assign", "PROJ-1", "PROJ-2", "--to", "me"], transport=transport) == EXIT_OK

        assert "assign: 2 succeeded, 0 failed" in capsys.readouterr().out
        puts = [r for r in fake_remote.requests if r.method == "PUT"]
        assert {json_body(r)["accountId"] for r in puts} == {"acc-me"}

    def test_unassign(self, env, fake_remote, transport):
        assert main(["assign", "PROJ-1", "--to", "none"], transport=transport) == EXIT_OK
        put = next(r for r in fake_remote.requests if r.method == "PUT")
        assert json_body(put) == {"accountId": None}

    def test_assign_invalid_key_is_partial(self, env, transport, capsys):
        assert main(["assign", "PROJ-1", "bad key", "--to", "acc-1"], transport=transport) == EXIT_PARTIAL

        out = capsys.readouterr().out
        assert "assign: 1 succeeded, 1 failed" in out
        assert "bad key: validation:" in out

    def test_fetch_stores_issues(self, env, fake_remote, transport, capsys):
        fake_remote.issues["PROJ"] = [make_issue("PROJ-1", "Login fails")]

        assert main(["fetch", "PROJ-1", "PROJ-9"], transport=transport) == EXIT_PARTIAL

        out = capsys.readouterr().out
        assert "jira:PROJ-1: Login fails" in out
        assert "fetch: 1 succeeded, 1 failed" in out
        assert "PROJ-9: not_found:" in out
        with ContentMirrorStore(env / "mirror.db") as store:
            assert store.contains("jira:PROJ-1")


# =============================================================================
# Local Commands
# =============================================================================


class TestLocalCommands:
    def test_search(self, mirror, capsys):
        assert main(["search", "login", "--source", "jira"]) == EXIT_OK
        out = capsys.readouterr().out
        assert "jira:PROJ-1  Login fails" in out
        assert "confluence:100" not in out

    def test_search_no_results(self, mirror, capsys):
        assert main(["search", "nothingmatches"]) == EXIT_OK
        assert "No results." in capsys.readouterr().out

    def test_search_invalid_query(self, mirror, capsys):
        assert main(["search", "   "]) == EXIT_ERROR
        assert "validation" in capsys.readouterr().err

    def test_show(self, mirror, capsys):
        assert main(["show", "confluence:100"]) == EXIT_OK
        assert "Restart the login service" in capsys.readouterr().out

    def test_show_missing(self, mirror, capsys):
        assert main(["show", "jira:PROJ-404"]) == EXIT_ERROR
        assert "Not in mirror" in capsys.readouterr().err

    def test_status(self, mirror, capsys):
        assert main(["status"]) == EXIT_OK
        out = capsys.readouterr().out
        assert "Items: 2" in out
        assert "jira:PROJ: 1" in out
        assert "Last sync: never" in out

    def test_purge_scope(self, mirror, capsys):
        assert main(["purge", "--scope", "PROJ", "--source", "jira"]) == EXIT_OK
        assert "purge: 1 deleted" in capsys.readouterr().out
        with ContentMirrorStore(mirror) as store:
            assert not store.contains("jira:PROJ-1")
            assert store.contains("confluence:100")

    def test_purge_older_than(self, mirror, capsys):
        assert main(["purge", "--older-than", "30"]) == EXIT_OK
        assert "purge: 0 deleted" in capsys.readouterr().out
