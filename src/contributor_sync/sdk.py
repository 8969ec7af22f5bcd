"""Contributor Sync SDK - High-level API for syncing repository contributors."""

import asyncio
import logging
from dataclasses import replace
from typing import Any

from contributor_sync.config import Config
from contributor_sync.exceptions import (
    ConfigurationError,
    ContributorSyncError,
    RepositoryNotRegisteredError,
)
from contributor_sync.models.platform import Platform, RepositoryRef, parse_repository_url
from contributor_sync.models.report import BatchReport, SyncReport
from contributor_sync.services.contributor_fetcher import ContributorFetcher
from contributor_sync.services.geo_classifier import Region, classify_contact
from contributor_sync.services.rate_limited_client import RateLimitedClient
from contributor_sync.services.sync_pipeline import SyncPipeline
from contributor_sync.storage.database import ContributorStore, ContributorSummary
from contributor_sync.utils.credential_pool import CredentialPool

logger = logging.getLogger(__name__)


class ContributorSync:
    """High-level SDK for syncing repository contributors into a database.

    Example usage:
        ```python
        from contributor_sync import ContributorSync

        async with ContributorSync(tokens=["ghp_a", "ghp_b"]) as sync:
            await sync.register("https://github.com/rust-lang/rust")
            report = await sync.sync("rust-lang/rust")
            print(report.succeeded, report.region_tally)
        ```

    Args:
        tokens: API tokens for the platform; requests rotate across them
        database_url: SQLAlchemy URL of the contributor store
        platform: Source platform the tokens belong to
        max_concurrent: Contributor workers per repository
        config: Full configuration; overrides every other argument
    """

    def __init__(
        self,
        tokens: list[str] | None = None,
        database_url: str = "sqlite:///contributors.db",
        platform: Platform = Platform.GITHUB,
        max_concurrent: int = 8,
        config: Config | None = None,
    ):
        self._config = config or Config(
            tokens=list(tokens or []),
            database_url=database_url,
            platform=platform,
            max_concurrent=max_concurrent,
        )
        self._store: ContributorStore | None = None
        self._pool: CredentialPool | None = None
        self._client: RateLimitedClient | None = None
        self._pipeline: SyncPipeline | None = None
        self._initialized = False

    @property
    def config(self) -> Config:
        return self._config

    @property
    def platform(self) -> Platform:
        return self._config.platform

    async def __aenter__(self) -> "ContributorSync":
        """Async context manager entry."""
        await self._initialize()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    async def _initialize(self) -> None:
        """Open the store. API clients are built on first sync."""
        if self._initialized:
            return

        self._config.validate(require_credentials=False)
        self._store = await asyncio.to_thread(ContributorStore, self._config.database_url)
        self._initialized = True
        logger.debug("ContributorSync initialized (platform=%s)", self.platform.value)

    def _ensure_pipeline(self) -> SyncPipeline:
        """Build the credential pool, client and pipeline for this session."""
        self._ensure_initialized()
        if self._pipeline is None:
            self._config.validate()
            self._pool = CredentialPool(
                self._config.tokens,
                default_quota=self._config.default_quota,
            )
            self._client = RateLimitedClient(self._pool, self._config)
            fetcher = ContributorFetcher(
                self._client,
                page_size=self._config.page_size,
                max_pages=self._config.max_pages,
            )
            self._pipeline = SyncPipeline(fetcher, self._store, self._config)
            logger.debug("Credential pool ready with %d credential(s)", len(self._pool))
        return self._pipeline

    async def close(self) -> None:
        """Close HTTP connections and the database engine."""
        if self._client:
            await self._client.close()
        if self._store:
            self._store.close()
        self._client = None
        self._pool = None
        self._pipeline = None
        self._store = None
        self._initialized = False
        logger.debug("ContributorSync closed")

    def _ensure_initialized(self) -> None:
        """Ensure the client is initialized."""
        if not self._initialized:
            raise ContributorSyncError(
                "Client not initialized. Use 'async with ContributorSync(...) as sync:'"
            )

    def _ref(self, repository: RepositoryRef | str) -> RepositoryRef:
        if isinstance(repository, RepositoryRef):
            ref = repository
        else:
            ref = parse_repository_url(repository, platform=self.platform)
            if ref is None:
                raise ConfigurationError(f"Not a repository reference: {repository!r}")
        return ref

    def _require_platform(self, ref: RepositoryRef) -> None:
        if ref.platform is not self.platform:
            raise ConfigurationError(
                f"{ref} is on {ref.platform.value} but credentials are for {self.platform.value}"
            )

    def cancel(self) -> None:
        """Cooperatively cancel a running sync; it returns a partial report."""
        if self._pipeline is not None:
            self._pipeline.cancel()

    async def register(self, repository: RepositoryRef | str) -> tuple[RepositoryRef, int]:
        """Register a repository by URL or ``owner/name``.

        Returns:
            The parsed reference and its row id
        """
        self._ensure_initialized()
        ref = self._ref(repository)
        url = repository if isinstance(repository, str) and "://" in repository else None
        repository_id = await asyncio.to_thread(self._store.register_repository, ref, url)
        return ref, repository_id

    async def sync(
        self,
        repository: RepositoryRef | str,
        register: bool | None = None,
    ) -> SyncReport:
        """Sync one repository's contributors.

        Args:
            repository: RepositoryRef, URL or ``owner/name``
            register: Register the repository first if unknown

        Returns:
            SyncReport for the run

        Raises:
            ConfigurationError: no credentials, or the repository is on another platform
            RepositoryNotRegisteredError: unknown repository and register is off
            PlatformAPIError: the contributor list could not be fetched
        """
        pipeline = self._ensure_pipeline()
        ref = self._ref(repository)
        self._require_platform(ref)
        logger.info("Starting sync for %s", ref)
        return await pipeline.sync(ref, register=register)

    async def sync_all(self, budget_seconds: float | None = None) -> BatchReport:
        """Sync every repository registered for this platform."""
        pipeline = self._ensure_pipeline()
        return await pipeline.sync_all(platform=self.platform, budget_seconds=budget_seconds)

    async def list_repositories(self) -> list[RepositoryRef]:
        self._ensure_initialized()
        stored = await asyncio.to_thread(self._store.list_repositories, self.platform)
        return [s.ref for s in stored]

    async def _repository_id(self, ref: RepositoryRef) -> int:
        repository_id = await asyncio.to_thread(self._store.get_repository_id, ref)
        if repository_id is None:
            raise RepositoryNotRegisteredError(str(ref))
        return repository_id

    async def top_contributors(
        self,
        repository: RepositoryRef | str,
        limit: int = 10,
    ) -> list[ContributorSummary]:
        """Stored contributors of a repository, most contributions first."""
        self._ensure_initialized()
        repository_id = await self._repository_id(self._ref(repository))
        return await asyncio.to_thread(self._store.top_contributors, repository_id, limit)

    async def region_stats(self, repository: RepositoryRef | str) -> dict[str, int]:
        """Region tally recomputed from stored locations with the current rules."""
        self._ensure_initialized()
        repository_id = await self._repository_id(self._ref(repository))
        rows = await asyncio.to_thread(self._store.contributor_locations, repository_id)

        tally = {region.value: 0 for region in Region}
        for _login, location, email in rows:
            tally[classify_contact(location, email).value] += 1
        return tally

    async def check_tokens(self) -> list[dict[str, Any]]:
        """Probe every credential's quota; tokens are shown redacted."""
        self._ensure_pipeline()
        return await self._client.probe_credentials()

    def with_platform(self, platform: Platform) -> "ContributorSync":
        """A new, uninitialized SDK for another platform with the same settings."""
        return ContributorSync(config=replace(self._config, platform=platform))
