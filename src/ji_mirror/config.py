"""Configuration management with pydantic-settings for ji-mirror.

Loads from (in order of precedence):
1. Environment variables with the JI_ prefix (highest priority)
2. .env file in the working directory
3. Default values (lowest priority)

The config object is frozen. Credentials are never cached by the transport:
``SettingsCredentialsProvider`` rebuilds settings on every call so a rotated
token takes effect on the next request.
"""

import logging
import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Annotated

from pydantic import Field, SecretStr, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from .errors import ConfigurationError

logger = logging.getLogger("ji_mirror.config")

__all__ = [
    "Credentials",
    "MirrorConfig",
    "SettingsCredentialsProvider",
    "get_config",
    "reset_config",
]


class MirrorConfig(BaseSettings):
    """Configuration for the mirror and sync engine.

    Attributes:
        base_url: Atlassian Cloud site URL (e.g., https://company.atlassian.net)
        email: Account email for Basic Auth
        api_token: API token (stored as SecretStr)
        jira_projects: Jira project keys to mirror
        confluence_spaces: Confluence space keys to mirror
        install_dir: Directory for local data files
        db_path: SQLite database file (defaults to install_dir/mirror.db)
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: json for production, text for development
        request_timeout_seconds: Per-call read timeout
        retry_*: Exponential backoff knobs for transient failures
        page_size: Items requested per listing page
        prefetch_depth: Page fetches kept in flight by a stream
        batch_concurrency: Parallel operations in the batch executor
        scope_concurrency: Parallel scopes in sync_all
        max_body_bytes: Largest body the store accepts (UTF-8 bytes)
    """

    model_config = SettingsConfigDict(
        env_prefix="JI_",
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
        case_sensitive=False,
        validate_default=True,
        frozen=True,
        extra="ignore",
    )

    base_url: str = Field(
        default="",
        description="Atlassian Cloud site URL (e.g., https://company.atlassian.net)",
    )

    email: str = Field(default="", description="Account email for Basic Auth")

    api_token: SecretStr = Field(
        default=SecretStr(""),
        description="API token for authentication (stored securely)",
    )

    jira_projects: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Jira project keys to mirror (e.g., ['PROJ', 'DEV'])",
    )

    confluence_spaces: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Confluence space keys to mirror (e.g., ['ENG', 'OPS'])",
    )

    install_dir: Path = Field(
        default_factory=lambda: Path.home() / ".ji-mirror",
        description="Directory for local data files",
    )

    db_path: Path | None = Field(
        default=None,
        description="SQLite database path (default: install_dir/mirror.db)",
    )

    log_level: str = Field(
        default="INFO",
        pattern="^(DEBUG|INFO|WARNING|ERROR|CRITICAL)$",
        description="Logging level",
    )

    log_format: str = Field(
        default="json",
        pattern="^(json|text)$",
        description="Log output format",
    )

    request_timeout_seconds: float = Field(
        default=15.0,
        gt=0.0,
        le=300.0,
        description="Read timeout for a single remote call",
    )

    retry_base_seconds: float = Field(default=0.1, gt=0.0, le=60.0)
    retry_factor: float = Field(default=2.0, ge=1.0, le=10.0)
    retry_max_retries: int = Field(default=3, ge=0, le=10)
    retry_jitter_seconds: float = Field(default=0.1, ge=0.0, le=10.0)
    retry_max_delay_seconds: float = Field(default=30.0, gt=0.0, le=600.0)

    page_size: int = Field(
        default=100,
        ge=1,
        le=1000,
        description="Items requested per listing page",
    )

    prefetch_depth: int = Field(
        default=5,
        ge=1,
        le=20,
        description="Page fetches kept in flight by a paginated stream",
    )

    batch_concurrency: int = Field(
        default=4,
        ge=1,
        le=64,
        description="Parallel operations in the batch executor",
    )

    scope_concurrency: int = Field(
        default=2,
        ge=1,
        le=16,
        description="Scopes synced in parallel by sync_all",
    )

    max_body_bytes: int = Field(
        default=10 * 1024 * 1024,
        ge=1024,
        description="Largest item body accepted by the store (UTF-8 bytes)",
    )

    @field_validator("install_dir", "db_path", mode="before")
    @classmethod
    def expand_user_paths(cls, v):
        """Expand ~ and environment variables in paths."""
        if isinstance(v, str):
            return Path(os.path.expanduser(os.path.expandvars(v)))
        return v

    @field_validator("jira_projects", "confluence_spaces", mode="before")
    @classmethod
    def parse_key_list(cls, v):
        """Parse comma-separated string into list (JI_JIRA_PROJECTS=PROJ,DEV)."""
        if isinstance(v, str):
            if v.startswith("["):
                return v  # Already JSON format, let pydantic handle it
            return [p.strip() for p in v.split(",") if p.strip()]
        return v

    @field_validator("base_url")
    @classmethod
    def strip_trailing_slash(cls, v: str) -> str:
        return v.rstrip("/")

    @model_validator(mode="after")
    def validate_base_url(self) -> "MirrorConfig":
        """Reject URLs without a scheme; an empty URL is checked on use."""
        if self.base_url and not self.base_url.startswith(("http://", "https://")):
            raise ValueError("JI_BASE_URL must start with http:// or https://")
        return self

    def get_db_path(self) -> Path:
        return self.db_path or self.install_dir / "mirror.db"

    def require_credentials(self) -> "Credentials":
        """Return the credentials triple, or raise ConfigurationError."""
        missing = [
            name
            for name, value in (
                ("JI_BASE_URL", self.base_url),
                ("JI_EMAIL", self.email),
                ("JI_API_TOKEN", self.api_token.get_secret_value()),
            )
            if not value
        ]
        if missing:
            raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")
        return Credentials(
            base_url=self.base_url,
            email=self.email,
            api_token=self.api_token.get_secret_value(),
        )


@dataclass(frozen=True)
class Credentials:
    base_url: str
    email: str
    api_token: str

    def __repr__(self) -> str:
        return f"Credentials(base_url={self.base_url!r}, email={self.email!r}, api_token='**********')"


class SettingsCredentialsProvider:
    """Reads credentials from a fresh MirrorConfig on every call."""

    def __call__(self) -> Credentials:
        try:
            config = MirrorConfig()
        except PydanticValidationError as e:
            raise ConfigurationError(f"Invalid settings: {e}", cause=e) from e
        return config.require_credentials()


# Module-level singleton with lru_cache for thread-safety
@lru_cache(maxsize=1)
def get_config() -> MirrorConfig:
    """Get global configuration singleton.

    First call loads from environment + .env file, subsequent calls return
    the cached instance.

    Raises:
        pydantic.ValidationError: If configuration values are invalid.
    """
    return MirrorConfig()


def reset_config() -> None:
    """Reset configuration singleton for testing.

    Warning:
        Only use in test code.
    """
    get_config.cache_clear()
