"""Content hashing and pre-write validation for mirrored items.

The content hash is computed over a canonical JSON document so that
formatting noise (line endings, trailing whitespace, dict key order) never
registers as a change.
"""

import hashlib
import json
import re

from .errors import ContentTooLargeError, ValidationError
from .models import MirroredItem, SourceKind

__all__ = [
    "compute_content_hash",
    "normalize_text",
    "validate_item",
    "validate_remote_id",
]

ISSUE_KEY_PATTERN = re.compile(r"^[A-Z][A-Z0-9_]*-\d+$")
PAGE_ID_PATTERN = re.compile(r"^\d+$")


def normalize_text(text: str) -> str:
    """Normalize line endings and surrounding whitespace.

    CRLF and CR become LF, trailing whitespace is stripped from every line and
    leading/trailing blank lines are dropped.
    """
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    lines = [line.rstrip() for line in text.split("\n")]
    return "\n".join(lines).strip("\n")


def compute_content_hash(item: MirroredItem) -> str:
    """Compute SHA256 hash of an item's normalized content.

    Covers title, body, scope, source and metadata. Timestamps, revision and
    URL are excluded: they change without the content changing.

    Returns:
        SHA256 hash as 64-character hex string
    """
    canonical = {
        "source": item.source.value,
        "scope_key": item.scope_key,
        "title": normalize_text(item.title),
        "body": normalize_text(item.body),
        "metadata": item.metadata,
    }
    payload = json.dumps(canonical, sort_keys=True, ensure_ascii=False, default=str)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def validate_remote_id(source: SourceKind, remote_id: str) -> None:
    """Check the shape of an issue key or page id.

    Raises:
        ValidationError: If the id does not match its source's format
    """
    pattern = ISSUE_KEY_PATTERN if source is SourceKind.JIRA_ISSUE else PAGE_ID_PATTERN
    if not remote_id or not pattern.match(remote_id):
        raise ValidationError(
            f"Invalid {source.value} id: {remote_id!r}",
            field="remote_id",
            value=remote_id,
        )


def validate_item(item: MirroredItem, max_body_bytes: int) -> None:
    """Validate an item before it is written.

    Raises:
        ValidationError: On a missing required field or unknown source
        ContentTooLargeError: If the UTF-8 body exceeds ``max_body_bytes``
    """
    if not isinstance(item.source, SourceKind):
        raise ValidationError(
            f"Unknown source: {item.source!r}", field="source", value=item.source
        )

    for field_name in ("remote_id", "scope_key", "title"):
        value = getattr(item, field_name)
        if not isinstance(value, str) or not value.strip():
            raise ValidationError(
                f"Missing required field: {field_name}", field=field_name, value=value
            )

    if item.body is None:
        raise ValidationError("Missing required field: body", field="body", value=None)

    size = len(item.body.encode("utf-8"))
    if size > max_body_bytes:
        raise ContentTooLargeError(
            f"Content for {item.item_id} is {size} bytes (limit {max_body_bytes})",
            size=size,
            max_size=max_body_bytes,
        )
