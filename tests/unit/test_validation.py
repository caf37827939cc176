"""Unit tests for content hashing and item validation."""

import pytest

from src.ji_mirror.errors import ContentTooLargeError, ValidationError
from src.ji_mirror.models import MirroredItem, SourceKind
from src.ji_mirror.validation import (
    compute_content_hash,
    normalize_text,
    validate_item,
    validate_remote_id,
)


def make_item(**overrides) -> MirroredItem:
    fields = dict(
        source=SourceKind.JIRA_ISSUE,
        remote_id="PROJ-1",
        scope_key="PROJ",
        title="Login fails",
        body="Users cannot log in",
        metadata={"status": "To Do", "labels": ["auth"]},
    )
    fields.update(overrides)
    return MirroredItem(**fields)


class TestNormalizeText:
    def test_line_endings_and_trailing_space(self):
        assert normalize_text("a  \r\nb\t\rc\n\n") == "a\nb\nc"

    def test_leading_blank_lines_dropped(self):
        assert normalize_text("\n\n  indented") == "  indented"


class TestContentHash:
    def test_stable_and_hex(self):
        digest = compute_content_hash(make_item())
        assert digest == compute_content_hash(make_item())
        assert len(digest) == 64
        int(digest, 16)

    def test_formatting_noise_ignored(self):
        assert compute_content_hash(make_item(body="one\r\ntwo  \n")) == compute_content_hash(
            make_item(body="one\ntwo")
        )

    def test_metadata_key_order_ignored(self):
        a = make_item(metadata={"status": "Done", "priority": "High"})
        b = make_item(metadata={"priority": "High", "status": "Done"})
        assert compute_content_hash(a) == compute_content_hash(b)

    @pytest.mark.parametrize(
        "override",
        [{"title": "Login works"}, {"body": "Fixed"}, {"metadata": {"status": "Done"}}, {"scope_key": "OTHER"}],
    )
    def test_content_changes_change_hash(self, override):
        assert compute_content_hash(make_item(**override)) != compute_content_hash(make_item())

    def test_timestamps_and_url_excluded(self, clock):
        changed = make_item(url="https://elsewhere", updated_at=clock(), revision=9)
        assert compute_content_hash(changed) == compute_content_hash(make_item())


class TestValidateRemoteId:
    @pytest.mark.parametrize("key", ["PROJ-1", "AB2-9999", "X_Y-12"])
    def test_valid_issue_keys(self, key):
        validate_remote_id(SourceKind.JIRA_ISSUE, key)

    @pytest.mark.parametrize("key", ["", "proj-1", "PROJ", "PROJ-", "1-2", "PROJ-1; DROP"])
    def test_invalid_issue_keys(self, key):
        with pytest.raises(ValidationError) as exc_info:
            validate_remote_id(SourceKind.JIRA_ISSUE, key)
        assert exc_info.value.field == "remote_id"

    def test_page_ids_are_numeric(self):
        validate_remote_id(SourceKind.CONFLUENCE_PAGE, "123456")
        with pytest.raises(ValidationError):
            validate_remote_id(SourceKind.CONFLUENCE_PAGE, "12a")


class TestValidateItem:
    def test_valid(self):
        validate_item(make_item(), max_body_bytes=1024)

    def test_empty_body_allowed(self):
        validate_item(make_item(body=""), max_body_bytes=1024)

    def test_unknown_source(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_item(make_item(source="github_issue"), max_body_bytes=1024)
        assert exc_info.value.field == "source"

    def test_missing_title(self):
        with pytest.raises(ValidationError) as exc_info:
            validate_item(make_item(title=""), max_body_bytes=1024)
        assert exc_info.value.field == "title"

    def test_body_limit_is_inclusive(self):
        validate_item(make_item(body="x" * 16), max_body_bytes=16)
        with pytest.raises(ContentTooLargeError) as exc_info:
            validate_item(make_item(body="x" * 17), max_body_bytes=16)
        assert exc_info.value.to_dict()["size"] == 17
