"""Utility modules for Contributor Sync."""

from contributor_sync.utils.credential_pool import (
    Credential,
    CredentialPool,
    CredentialStatus,
    Lease,
    Outcome,
    format_time_remaining,
)
from contributor_sync.utils.pagination import (
    get_next_page_url,
    is_last_page,
    parse_link_header,
)

__all__ = [
    "Credential",
    "CredentialPool",
    "CredentialStatus",
    "Lease",
    "Outcome",
    "format_time_remaining",
    "parse_link_header",
    "get_next_page_url",
    "is_last_page",
]
