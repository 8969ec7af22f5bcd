"""Persistence layer for Contributor Sync."""

from contributor_sync.storage.database import (
    ContributorStore,
    ContributorSummary,
    StoredRepository,
)

__all__ = [
    "ContributorStore",
    "ContributorSummary",
    "StoredRepository",
]
