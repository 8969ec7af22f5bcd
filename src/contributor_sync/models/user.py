"""Contributor records and user profile models."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel

from contributor_sync.models.platform import Platform


class ContributorRecord(BaseModel):
    """One entry of a repository's contributor list.

    List endpoints return abbreviated records; the full profile is fetched
    separately. Gitee's list omits the numeric id, so ``user_id`` is optional.
    """

    login: str
    contributions: int = 0
    user_id: int | None = None
    avatar_url: str | None = None
    platform: Platform = Platform.GITHUB

    @classmethod
    def from_api(
        cls,
        data: dict[str, Any],
        platform: Platform = Platform.GITHUB,
    ) -> "ContributorRecord":
        """Create from a contributors-list API item."""
        return cls(
            login=data.get("login") or data.get("name") or "",
            contributions=data.get("contributions", 0) or 0,
            user_id=data.get("id"),
            avatar_url=data.get("avatar_url"),
            platform=platform,
        )

    @property
    def lookup_key(self) -> int | str:
        """Key used to fetch the full profile (numeric id preferred on GitHub)."""
        if self.platform is Platform.GITHUB and self.user_id is not None:
            return self.user_id
        return self.login


class UserProfile(BaseModel):
    """Full user profile as stored in ``contributor_users``."""

    platform_user_id: int
    login: str
    platform: Platform = Platform.GITHUB
    name: str | None = None
    email: str | None = None
    avatar_url: str | None = None
    company: str | None = None
    location: str | None = None
    bio: str | None = None
    public_repos: int | None = None
    followers: int | None = None
    following: int | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_api(
        cls,
        data: dict[str, Any],
        platform: Platform = Platform.GITHUB,
    ) -> "UserProfile":
        """Create from a GitHub or Gitee user API response."""
        return cls(
            platform_user_id=data["id"],
            login=data.get("login", ""),
            platform=platform,
            name=data.get("name") or None,
            email=data.get("email") or None,
            avatar_url=data.get("avatar_url"),
            company=data.get("company") or None,
            location=data.get("location") or None,
            bio=data.get("bio") or None,
            public_repos=data.get("public_repos"),
            followers=data.get("followers"),
            following=data.get("following"),
            created_at=_parse_datetime(data.get("created_at")),
            updated_at=_parse_datetime(data.get("updated_at")),
        )

    @classmethod
    def from_record(cls, record: ContributorRecord) -> "UserProfile":
        """Build a minimal profile when the detail endpoint cannot be read."""
        if record.user_id is None:
            raise ValueError(f"Contributor {record.login!r} has no platform user id")
        return cls(
            platform_user_id=record.user_id,
            login=record.login,
            platform=record.platform,
            avatar_url=record.avatar_url,
        )


def _parse_datetime(value: str | None) -> datetime | None:
    """Parse ISO datetime string."""
    if not value:
        return None
    try:
        # Handle ISO format with or without Z suffix
        if value.endswith("Z"):
            value = value[:-1] + "+00:00"
        return datetime.fromisoformat(value)
    except (ValueError, TypeError):
        return None
