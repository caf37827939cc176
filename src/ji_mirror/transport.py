"""Atlassian Cloud REST transport.

Async httpx-based client with Basic Auth shared by the Jira and Confluence
resources. Every call:
- reads credentials from the provider (no caching, rotation applies at once)
- runs under the retry scheduler
- turns every failure into exactly one taxonomy error

The concrete httpx transport is injected at construction; tests pass an
``httpx.MockTransport``.

Reference: https://developer.atlassian.com/cloud/jira/platform/rest/v3/intro/
"""

import base64
import json
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from typing import Any

import httpx

from .config import Credentials
from .errors import MirrorError, ParseError, classify_error, error_for_status
from .metrics import transport_duration_seconds, transport_requests_total
from .retry import DEFAULT_SETTINGS, RetrySettings, run_with_retry

logger = logging.getLogger("ji_mirror.transport")

__all__ = ["Request", "Response", "TransportClient", "parse_retry_after"]

CredentialsProvider = Callable[[], Credentials]


@dataclass(frozen=True)
class Request:
    """One remote call.

    Attributes:
        method: HTTP method
        path: Path below the site URL (e.g., /rest/api/3/search)
        params: Query parameters
        json: JSON request body
        description: Label used in logs and error messages
    """

    method: str
    path: str
    params: dict[str, Any] = field(default_factory=dict)
    json: Any = None
    description: str = ""

    @property
    def label(self) -> str:
        return self.description or f"{self.method} {self.path}"


@dataclass(frozen=True)
class Response:
    status: int
    headers: dict[str, str]
    data: Any


def parse_retry_after(value: str | None) -> float | None:
    """Parse a Retry-After header given in seconds or as an HTTP date."""
    if not value:
        return None
    try:
        return max(float(value), 0.0)
    except ValueError:
        pass
    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max((when - datetime.now(timezone.utc)).total_seconds(), 0.0)


def _basic_auth(credentials: Credentials) -> str:
    encoded = base64.b64encode(f"{credentials.email}:{credentials.api_token}".encode()).decode()
    return f"Basic {encoded}"


class TransportClient:
    """Shared HTTP client for all remote resources.

    Uses a long-lived httpx.AsyncClient with connection pooling. The
    Authorization header and base URL are applied per request from the
    credentials provider.

    Example:
        >>> async with TransportClient(SettingsCredentialsProvider()) as client:
        ...     response = await client.call(Request("GET", "/rest/api/3/myself"))
    """

    def __init__(
        self,
        credentials: CredentialsProvider,
        transport: httpx.AsyncBaseTransport | None = None,
        *,
        timeout_seconds: float = 15.0,
        retry_settings: RetrySettings = DEFAULT_SETTINGS,
        sleep: Callable[[float], Awaitable[Any]] | None = None,
    ) -> None:
        """Initialize the transport.

        Args:
            credentials: Callable returning current Credentials
            transport: httpx transport (real or mock); default is the network
            timeout_seconds: Read timeout for one call
            retry_settings: Backoff knobs for transient failures
            sleep: Awaitable sleep used between retries (tests record delays)
        """
        self._credentials = credentials
        self._retry_settings = retry_settings
        self._sleep = sleep

        timeout_config = httpx.Timeout(
            connect=3.0,
            read=timeout_seconds,
            write=5.0,
            pool=3.0,
        )
        limits = httpx.Limits(
            max_keepalive_connections=20,
            max_connections=100,
            keepalive_expiry=10.0,
        )
        self.client = httpx.AsyncClient(
            transport=transport,
            timeout=timeout_config,
            limits=limits,
            headers={"Accept": "application/json"},
        )

    @property
    def base_url(self) -> str:
        """Site URL from the current credentials."""
        return self._credentials().base_url.rstrip("/")

    async def call(self, request: Request) -> Response:
        """Perform a remote call with retry.

        Returns:
            Response with parsed JSON data (None for empty bodies)

        Raises:
            MirrorError: Categorized failure after retries are exhausted
        """
        attempt = 0

        async def _attempt() -> Response:
            nonlocal attempt
            attempt += 1
            return await self._send_once(request, attempt)

        kwargs: dict[str, Any] = {"description": request.label, "settings": self._retry_settings}
        if self._sleep is not None:
            kwargs["sleep"] = self._sleep
        return await run_with_retry(_attempt, **kwargs)

    async def _send_once(self, request: Request, attempt: int) -> Response:
        logger.debug(
            "transport_attempt",
            extra={"operation": request.label, "attempt": attempt, "method": request.method},
        )

        start = time.perf_counter()
        try:
            credentials = self._credentials()
            url = f"{credentials.base_url.rstrip('/')}{request.path}"
            try:
                http_response = await self.client.request(
                    request.method,
                    url,
                    params=request.params or None,
                    json=request.json,
                    headers={"Authorization": _basic_auth(credentials)},
                )
            finally:
                transport_duration_seconds.labels(method=request.method).observe(
                    time.perf_counter() - start
                )

            if http_response.status_code >= 400:
                raise error_for_status(
                    http_response.status_code,
                    f"{request.label} failed: HTTP {http_response.status_code}",
                    retry_after=parse_retry_after(http_response.headers.get("Retry-After")),
                )

            response = Response(
                status=http_response.status_code,
                headers=dict(http_response.headers),
                data=self._decode(request, http_response),
            )
        except Exception as exc:
            error = classify_error(exc)
            self._log_failure(request, attempt, error)
            if error is exc:
                raise
            raise error from exc

        transport_requests_total.labels(method=request.method, outcome="success").inc()
        logger.debug(
            "transport_success",
            extra={
                "operation": request.label,
                "attempt": attempt,
                "status_code": response.status,
                "duration_seconds": round(time.perf_counter() - start, 4),
            },
        )
        return response

    @staticmethod
    def _decode(request: Request, http_response: httpx.Response) -> Any:
        if http_response.status_code == 204 or not http_response.content:
            return None
        try:
            return http_response.json()
        except json.JSONDecodeError as e:
            raise ParseError(
                f"{request.label} returned invalid JSON",
                field="response",
                raw_value=http_response.text,
                cause=e,
            ) from e

    @staticmethod
    def _log_failure(request: Request, attempt: int, error: MirrorError) -> None:
        transport_requests_total.labels(method=request.method, outcome=error.tag.value).inc()
        logger.info(
            "transport_failure",
            extra={
                "operation": request.label,
                "attempt": attempt,
                "error_tag": error.tag.value,
                "error": error.message,
            },
        )

    async def close(self) -> None:
        """Close the HTTP client connection."""
        if getattr(self, "client", None) is not None:
            await self.client.aclose()

    async def __aenter__(self) -> "TransportClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
