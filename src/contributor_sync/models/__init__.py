"""Data models for Contributor Sync."""

from contributor_sync.models.platform import Platform, RepositoryRef, parse_repository_url
from contributor_sync.models.report import (
    BatchReport,
    ContributorFailure,
    ExitStatus,
    RepositoryFailure,
    SyncReport,
    SyncStage,
)
from contributor_sync.models.user import ContributorRecord, UserProfile

__all__ = [
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
]
