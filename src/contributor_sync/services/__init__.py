"""Services for contributor synchronization."""

from contributor_sync.services.contributor_fetcher import ContributorFetcher
from contributor_sync.services.geo_classifier import (
    Region,
    classify,
    classify_contact,
    classify_email,
    classify_profile,
)
from contributor_sync.services.rate_limited_client import RateLimitedClient
from contributor_sync.services.sync_pipeline import SyncPipeline

__all__ = [
    "RateLimitedClient",
    "ContributorFetcher",
    "SyncPipeline",
    "Region",
    "classify",
    "classify_contact",
    "classify_email",
    "classify_profile",
]
