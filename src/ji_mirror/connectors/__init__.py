"""Jira and Confluence Cloud connectors.

Provides typed remote resources, ADF/storage-format converters and the
composers that turn raw API entries into mirrored items.
"""

from .adf_converter import adf_to_text
from .composer import compose_issue_body, issue_to_item, page_to_item
from .resources import (
    RemoteResource,
    assign_issue,
    batch_assign_issues,
    batch_get_issues,
    confluence_pages,
    get_issue,
    jira_issues,
    resource_for,
)
from .storage_format import storage_to_text

__all__ = [
    "RemoteResource",
    "adf_to_text",
    "assign_issue",
    "batch_assign_issues",
    "batch_get_issues",
    "compose_issue_body",
    "confluence_pages",
    "get_issue",
    "issue_to_item",
    "jira_issues",
    "page_to_item",
    "resource_for",
    "storage_to_text",
]
