"""ji-mirror - Resilient mirror and sync engine for Jira and Confluence.

Provides a local, searchable copy of remote issues and pages through:
- Error taxonomy and bounded retry for remote calls
- Prefetching paginated streams over remote listings
- SQLite/FTS5 content mirror with content-hash change detection
- Incremental sync orchestration and partial-success batch operations

Python Version: 3.10+ required
"""

from .__version__ import __version__
from .batch import Failure, Success, run_all, summarize
from .config import MirrorConfig, get_config, reset_config
from .errors import ErrorTag, MirrorError, classify_error
from .logging_config import StructuredFormatter, configure_logging
from .models import MirroredItem, SourceKind
from .pagination import Page, PageStream
from .retry import RetryPolicy, run_with_retry, schedule_for
from .store import ContentMirrorStore
from .sync import SyncMode, SyncOrchestrator, SyncResult
from .transport import Request, TransportClient

__all__ = [
    "ContentMirrorStore",
    "ErrorTag",
    "Failure",
    "MirrorConfig",
    "MirrorError",
    "MirroredItem",
    "Page",
    "PageStream",
    "Request",
    "RetryPolicy",
    "SourceKind",
    "StructuredFormatter",
    "Success",
    "SyncMode",
    "SyncOrchestrator",
    "SyncResult",
    "TransportClient",
    "__version__",
    "classify_error",
    "configure_logging",
    "get_config",
    "reset_config",
    "run_all",
    "run_with_retry",
    "schedule_for",
    "summarize",
]
