"""Contributor list and profile fetcher."""

import logging
from collections.abc import AsyncIterator
from typing import Optional

import httpx

from contributor_sync.exceptions import NotFoundError, PlatformAPIError
from contributor_sync.models.platform import RepositoryRef
from contributor_sync.models.user import ContributorRecord, UserProfile
from contributor_sync.services.rate_limited_client import RateLimitedClient
from contributor_sync.utils.pagination import is_last_page

logger = logging.getLogger(__name__)


class ContributorFetcher:
    """Walks a repository's contributor pages and fetches user profiles.

    Both stages go through the same RateLimitedClient, so profile lookups
    spend the same quota and rotation as the list walk.
    """

    def __init__(
        self,
        client: RateLimitedClient,
        page_size: int = 100,
        max_pages: Optional[int] = None,
    ):
        self.client = client
        self.page_size = page_size
        self.max_pages = max_pages

    async def iter_pages(self, repo: RepositoryRef) -> AsyncIterator[list[ContributorRecord]]:
        """Yield contributor pages in order, starting from page 1 on every call."""
        endpoint = self.client.contributors_endpoint(repo)
        page = 1

        while self.max_pages is None or page <= self.max_pages:
            response = await self.client.call(
                endpoint,
                params={"per_page": self.page_size, "page": page},
            )

            records = self._parse_page(repo, response)
            logger.debug(
                "Fetched contributors page %d for %s (%d items)", page, repo, len(records)
            )
            if records:
                yield records

            if is_last_page(response.headers, page, len(records), self.page_size):
                return
            page += 1

        logger.info("Stopped %s contributor walk at max_pages=%d", repo, self.max_pages)

    @staticmethod
    def _parse_page(repo: RepositoryRef, response: httpx.Response) -> list[ContributorRecord]:
        """Decode one contributors page.

        Raises:
            PlatformAPIError: the body is not a JSON list of contributor objects
        """
        # GitHub answers 204 for an empty repository
        if response.status_code == 204 or not response.content:
            return []
        try:
            data = response.json()
            if not isinstance(data, list) or not all(isinstance(item, dict) for item in data):
                raise ValueError("expected a list of objects")
            return [ContributorRecord.from_api(item, repo.platform) for item in data]
        except ValueError as e:
            raise PlatformAPIError(
                f"Unexpected contributors payload for {repo.full_name}: {e}",
                status_code=response.status_code,
            ) from e

    async def list_contributors(self, repo: RepositoryRef) -> AsyncIterator[ContributorRecord]:
        """Yield every contributor of a repository, lazily.

        A user id seen earlier in the same walk is skipped, so pages that shift
        while being read do not produce duplicates.
        """
        seen: set[int | str] = set()
        async for records in self.iter_pages(repo):
            for record in records:
                key = record.user_id if record.user_id is not None else record.login
                if not key or key in seen:
                    if key:
                        logger.debug("Skipping duplicate contributor %s", record.login)
                    continue
                seen.add(key)
                yield record

    async def get_profile(self, user_id_or_login: int | str) -> UserProfile:
        """Fetch the full profile of one user.

        Raises:
            NotFoundError: if the user does not exist
        """
        data = await self.client.get_json(self.client.user_endpoint(user_id_or_login))
        if not isinstance(data, dict) or "id" not in data:
            raise NotFoundError(f"User not found: {user_id_or_login}", response_body=None)
        return UserProfile.from_api(data, self.client.platform)

    async def fetch_profile(
        self,
        record: ContributorRecord,
        allow_partial: bool = True,
    ) -> UserProfile:
        """Fetch the profile behind a contributor record.

        When the user is gone (404) but the record carries the numeric id,
        a minimal profile is built from the record instead.
        """
        try:
            return await self.get_profile(record.lookup_key)
        except NotFoundError:
            if not allow_partial or record.user_id is None:
                raise
            logger.warning(
                "Profile for %s not found; storing the contributor record only", record.login
            )
            return UserProfile.from_record(record)
