"""Configuration management for Contributor Sync."""

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

from dotenv import load_dotenv

from contributor_sync.exceptions import ConfigurationError
from contributor_sync.models.platform import Platform


@dataclass
class Config:
    """Application configuration."""

    tokens: list[str] = field(default_factory=list)
    database_url: str = "sqlite:///contributors.db"
    platform: Platform = Platform.GITHUB

    github_api_url: str = "https://api.github.com"
    gitee_api_url: str = "https://gitee.com/api/v5"

    # Concurrency
    max_concurrent: int = 8  # contributor workers per repository
    max_concurrent_repos: int = 2  # repositories in flight in batch mode
    max_in_flight: int | None = None  # global HTTP cap, defaults to max_concurrent

    # Pagination
    page_size: int = 100  # contributors per page (max 100 on both platforms)
    max_pages: int | None = None

    # Timeouts and retries
    request_timeout: float = 30.0
    max_retries: int = 3
    backoff_base: float = 1.0
    backoff_max: float = 30.0
    max_quota_wait: float = 900.0  # longest sleep for a cooling credential
    default_quota: int = 5000  # requests per hour per credential (GitHub, authenticated)
    persist_retries: int = 3

    # Batch mode
    batch_budget_seconds: float | None = None
    cancel_grace_seconds: float = 30.0

    auto_register: bool = False
    fallback_to_partial_profile: bool = True

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        # override=False ensures environment variables take precedence over .env
        load_dotenv(override=False)

        tokens = _split_tokens(
            os.getenv("CONTRIBUTOR_SYNC_TOKENS")
            or os.getenv("GITHUB_TOKENS")
            or os.getenv("GITHUB_TOKEN")
        )
        token_file = os.getenv("CONTRIBUTOR_SYNC_TOKEN_FILE")
        if token_file:
            tokens.extend(read_token_file(token_file))

        max_in_flight = os.getenv("CONTRIBUTOR_SYNC_MAX_IN_FLIGHT")
        budget = os.getenv("CONTRIBUTOR_SYNC_BATCH_BUDGET")

        try:
            return cls(
                tokens=_dedupe(tokens),
                database_url=os.getenv("DATABASE_URL", "sqlite:///contributors.db"),
                platform=Platform(os.getenv("CONTRIBUTOR_SYNC_PLATFORM", "github").lower()),
                github_api_url=os.getenv("GITHUB_API_URL", "https://api.github.com"),
                gitee_api_url=os.getenv("GITEE_API_URL", "https://gitee.com/api/v5"),
                max_concurrent=int(os.getenv("CONTRIBUTOR_SYNC_MAX_CONCURRENT", "8")),
                max_concurrent_repos=int(os.getenv("CONTRIBUTOR_SYNC_MAX_CONCURRENT_REPOS", "2")),
                max_in_flight=int(max_in_flight) if max_in_flight else None,
                request_timeout=float(os.getenv("CONTRIBUTOR_SYNC_REQUEST_TIMEOUT", "30")),
                max_quota_wait=float(os.getenv("CONTRIBUTOR_SYNC_MAX_QUOTA_WAIT", "900")),
                batch_budget_seconds=float(budget) if budget else None,
            )
        except ValueError as e:
            raise ConfigurationError(f"Invalid configuration value: {e}") from e

    @property
    def effective_max_in_flight(self) -> int:
        return self.max_in_flight or self.max_concurrent

    def api_url_for(self, platform: Platform) -> str:
        """Base API URL for the given platform."""
        if platform is Platform.GITEE:
            return self.gitee_api_url
        return self.github_api_url

    def validate(self, require_credentials: bool = True) -> None:
        """Raise ConfigurationError if the run cannot start.

        Store-only commands (register, query) pass require_credentials=False.
        """
        if require_credentials and not self.tokens:
            raise ConfigurationError(
                "No API credentials configured. Set CONTRIBUTOR_SYNC_TOKENS "
                "(comma separated) or GITHUB_TOKEN."
            )
        if not self.database_url:
            raise ConfigurationError("DATABASE_URL is required")

        for name in ("max_concurrent", "max_concurrent_repos", "page_size", "default_quota"):
            if getattr(self, name) < 1:
                raise ConfigurationError(f"{name} must be at least 1")
        if self.max_in_flight is not None and self.max_in_flight < 1:
            raise ConfigurationError("max_in_flight must be at least 1")
        if self.max_retries < 0 or self.persist_retries < 0:
            raise ConfigurationError("retry counts cannot be negative")


def read_token_file(path: str | Path) -> list[str]:
    """Read one token per line, ignoring blanks and ``#`` comments."""
    try:
        lines = Path(path).read_text(encoding="utf-8").splitlines()
    except OSError as e:
        raise ConfigurationError(f"Cannot read token file {path}: {e}") from e
    return [line.strip() for line in lines if line.strip() and not line.lstrip().startswith("#")]


def _split_tokens(value: str | None) -> list[str]:
    if not value:
        return []
    return [t for t in re.split(r"[\s,]+", value) if t]


def _dedupe(tokens: list[str]) -> list[str]:
    seen: set[str] = set()
    unique = []
    for token in tokens:
        if token not in seen:
            seen.add(token)
            unique.append(token)
    return unique


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """Get or create the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def set_config(config: Config | None) -> None:
    """Set the global configuration instance (useful for testing)."""
    global _config
    _config = config
