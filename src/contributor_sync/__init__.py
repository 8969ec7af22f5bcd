"""Contributor Sync - Ingest repository contributors from GitHub and Gitee.

This SDK walks a repository's contributor list, fetches every contributor's
profile, classifies their likely region and upserts everything into a
relational store:
- Requests rotate across several API tokens with per-token quota tracking
- Rate limits, revoked tokens and server errors are retried by kind
- Repeated syncs are idempotent (user and contribution rows are upserted)
- Batch mode syncs every registered repository under a time budget

Example usage:
    ```python
    from contributor_sync import ContributorSync

    async with ContributorSync(tokens=["ghp_a", "ghp_b"]) as sync:
        report = await sync.sync("rust-lang/rust", register=True)
        print(f"Synced {report.succeeded} of {report.total_contributors}")
    ```
"""

from contributor_sync.config import Config
from contributor_sync.exceptions import (
    AuthInvalidError,
    ConfigurationError,
    ContributorSyncError,
    NoCredentialsAvailableError,
    NotFoundError,
    PersistenceError,
    PlatformAPIError,
    RateLimitedError,
    RepositoryNotRegisteredError,
    TransientError,
)
from contributor_sync.models import (
    BatchReport,
    ContributorFailure,
    ContributorRecord,
    ExitStatus,
    Platform,
    RepositoryFailure,
    RepositoryRef,
    SyncReport,
    SyncStage,
    UserProfile,
    parse_repository_url,
)
from contributor_sync.sdk import ContributorSync
from contributor_sync.services.geo_classifier import Region, classify

try:
    from contributor_sync._version import version as __version__
except ImportError:
    __version__ = "0.0.0.dev0"

__all__ = [
    # Main SDK class
    "ContributorSync",
    # Configuration
    "Config",
    # Exceptions
    "ContributorSyncError",
    "ConfigurationError",
    "PlatformAPIError",
    "NotFoundError",
    "RepositoryNotRegisteredError",
    "RateLimitedError",
    "AuthInvalidError",
    "NoCredentialsAvailableError",
    "TransientError",
    "PersistenceError",
    # Models
    "Platform",
    "RepositoryRef",
    "parse_repository_url",
    "ContributorRecord",
    "UserProfile",
    "SyncStage",
    "ExitStatus",
    "ContributorFailure",
    "RepositoryFailure",
    "SyncReport",
    "BatchReport",
    # Classification
    "Region",
    "classify",
]
