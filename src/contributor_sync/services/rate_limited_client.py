"""Rate-limited, multi-credential client for the GitHub and Gitee REST APIs."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, Optional

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception,
    wait_exponential,
)

from contributor_sync.config import Config, get_config
from contributor_sync.exceptions import (
    AuthInvalidError,
    NoCredentialsAvailableError,
    NotFoundError,
    PlatformAPIError,
    RateLimitedError,
    TransientError,
)
from contributor_sync.models.platform import Platform, RepositoryRef
from contributor_sync.utils.credential_pool import (
    Credential,
    CredentialPool,
    Lease,
    Outcome,
    format_time_remaining,
)

logger = logging.getLogger(__name__)

USER_AGENT = "contributor-sync/0.1.0"

_REVOKED_MARKERS = ("bad credentials", "revoked", "token expired", "invalid token")


class RateLimitedClient:
    """Async client that rotates credentials and retries by failure kind.

    Every request leases a credential from the pool, and the response is
    reported back so quota accounting stays current. Failure handling:
      - 401 / revoked token: credential invalidated, retried at once on another
      - 403 / 429 quota: credential cooled down, retried with backoff
      - 5xx / network: retried with backoff, then TransientError
      - 404: NotFoundError, never retried
    """

    def __init__(
        self,
        pool: CredentialPool,
        config: Optional[Config] = None,
        platform: Optional[Platform] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self.config = config or get_config()
        self.platform = platform or self.config.platform
        self.pool = pool
        self._sleep = sleep
        self._clock = clock
        self._client: Optional[httpx.AsyncClient] = None
        # Single cap on in-flight requests across every worker sharing this client
        self._in_flight = asyncio.Semaphore(self.config.effective_max_in_flight)

    def _get_headers(self) -> dict[str, str]:
        """Get headers shared by every request."""
        headers = {"User-Agent": USER_AGENT}
        if self.platform is Platform.GITHUB:
            headers["Accept"] = "application/vnd.github+json"
            headers["X-GitHub-Api-Version"] = "2022-11-28"
        else:
            headers["Accept"] = "application/json"
        return headers

    def _auth(self, credential: Credential) -> tuple[dict[str, str], dict[str, str]]:
        """Headers and query params that authenticate one request."""
        if self.platform is Platform.GITEE:
            return {}, {"access_token": credential.token}
        return {"Authorization": f"Bearer {credential.token}"}, {}

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.config.api_url_for(self.platform),
                headers=self._get_headers(),
                timeout=self.config.request_timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def __aenter__(self) -> "RateLimitedClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def call(self, endpoint: str, params: Optional[dict[str, Any]] = None) -> httpx.Response:
        """GET an endpoint with credential rotation and retries.

        Raises:
            NotFoundError: the resource does not exist
            RateLimitedError: quota still exhausted after bounded retries
            NoCredentialsAvailableError: every credential was rejected
            TransientError: server or network failure after bounded retries
            PlatformAPIError: any other client error
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception(_is_retryable),
            stop=self._should_stop,
            wait=self._backoff,
            sleep=self._sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                return await self._attempt(endpoint, params)
        raise AssertionError("unreachable")  # reraise=True always raises or returns

    async def get_json(self, endpoint: str, params: Optional[dict[str, Any]] = None) -> Any:
        """GET an endpoint and decode JSON (None for an empty 204 body)."""
        response = await self.call(endpoint, params)
        if response.status_code == 204 or not response.content:
            return None
        return response.json()

    def _should_stop(self, retry_state: RetryCallState) -> bool:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, AuthInvalidError):
            # Bounded by the pool: each rejection removes a credential
            return False
        return retry_state.attempt_number > self.config.max_retries

    def _backoff(self, retry_state: RetryCallState) -> float:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, AuthInvalidError):
            return 0.0
        return wait_exponential(
            multiplier=self.config.backoff_base,
            min=self.config.backoff_base,
            max=self.config.backoff_max,
        )(retry_state)

    async def _attempt(self, endpoint: str, params: Optional[dict[str, Any]]) -> httpx.Response:
        """One request on one leased credential."""
        lease = await self._lease()
        credential = lease.credential
        headers, auth_params = self._auth(credential)
        query = {**(params or {}), **auth_params}

        client = await self._get_client()
        try:
            async with self._in_flight:
                logger.debug("GET %s via %s", endpoint, credential.label)
                response = await client.get(endpoint, params=query, headers=headers)
        except httpx.TimeoutException as e:
            raise TransientError(f"Timed out calling {endpoint}") from e
        except httpx.TransportError as e:
            raise TransientError(f"Network error calling {endpoint}: {type(e).__name__}") from e

        return self._interpret(endpoint, credential, response)

    async def _lease(self) -> Lease:
        """Acquire a credential, sleeping once if every credential is cooling down."""
        lease = self.pool.acquire()
        if lease.wait <= 0:
            return lease

        if lease.wait > self.config.max_quota_wait:
            raise RateLimitedError(
                "All credentials exhausted; earliest reset in "
                f"{format_time_remaining(lease.wait)}",
                status_code=None,
                reset_time=lease.credential.reset_at,
            )

        logger.warning(
            "All credentials cooling down; waiting %s for %s",
            format_time_remaining(lease.wait),
            lease.credential.label,
        )
        await self._sleep(lease.wait)

        lease = self.pool.acquire()
        if lease.wait > 0:
            raise RateLimitedError(
                "All credentials still exhausted after waiting",
                status_code=None,
                reset_time=lease.credential.reset_at,
            )
        return lease

    def _interpret(
        self,
        endpoint: str,
        credential: Credential,
        response: httpx.Response,
    ) -> httpx.Response:
        """Report the response to the pool and map error statuses to exceptions."""
        status = response.status_code

        if status < 400:
            self.pool.report(credential, Outcome.from_headers(response.headers))
            return response

        body = _json_body(response)
        message = str(body.get("message", "")) if isinstance(body, dict) else ""
        lowered = message.lower()

        if status == 404:
            self.pool.report(credential, Outcome.from_headers(response.headers))
            raise NotFoundError(f"Resource not found: {endpoint}", response_body=body)

        if status == 401 or (status == 403 and any(m in lowered for m in _REVOKED_MARKERS)):
            self.pool.report(credential, Outcome.invalid())
            raise AuthInvalidError(
                f"Credential {credential.label} rejected: {message or status}",
                status_code=status,
                response_body=body,
            )

        if status in (403, 429) and self._is_rate_limited(response, lowered):
            reset_at = self._reset_time(response)
            self.pool.report(credential, Outcome.rate_limited(reset_at))
            raise RateLimitedError(
                f"Rate limit exceeded for {credential.label}",
                status_code=status,
                response_body=body,
                reset_time=reset_at,
            )

        if status >= 500:
            raise TransientError(
                f"Server error: {status}",
                status_code=status,
                response_body=body,
            )

        raise PlatformAPIError(
            f"API error {status}: {message or 'Unknown error'}",
            status_code=status,
            response_body=body,
        )

    @staticmethod
    def _is_rate_limited(response: httpx.Response, lowered_message: str) -> bool:
        if response.status_code == 429:
            return True
        if "rate limit" in lowered_message:
            return True
        if response.headers.get("x-ratelimit-remaining") == "0":
            return True
        return "retry-after" in response.headers

    def _reset_time(self, response: httpx.Response) -> Optional[float]:
        retry_after = response.headers.get("retry-after")
        if retry_after:
            try:
                return self._clock() + float(retry_after)
            except ValueError:
                pass
        reset = response.headers.get("x-ratelimit-reset")
        if reset:
            try:
                return float(reset)
            except ValueError:
                pass
        return None

    # Endpoints

    def contributors_endpoint(self, repo: RepositoryRef) -> str:
        return f"/repos/{repo.owner}/{repo.name}/contributors"

    def user_endpoint(self, user_id_or_login: int | str) -> str:
        if isinstance(user_id_or_login, int) and self.platform is Platform.GITHUB:
            return f"/user/{user_id_or_login}"
        return f"/users/{user_id_or_login}"

    async def probe_credentials(self) -> list[dict]:
        """Refresh every credential's quota from the platform (GitHub only).

        Each credential is queried directly, outside the rotation, so the
        returned status reflects all of them.
        """
        if self.platform is not Platform.GITHUB:
            return self.pool.status()

        client = await self._get_client()
        for credential in self.pool.credentials:
            headers, _ = self._auth(credential)
            try:
                response = await client.get("/rate_limit", headers=headers)
            except httpx.HTTPError as e:
                logger.warning("Could not check %s: %s", credential.label, type(e).__name__)
                continue

            if response.status_code == 401:
                self.pool.report(credential, Outcome.invalid())
                continue
            if response.status_code != 200:
                logger.warning(
                    "Could not check %s: HTTP %d", credential.label, response.status_code
                )
                continue

            core = response.json().get("resources", {}).get("core", {})
            self.pool.report(
                credential,
                Outcome.success(
                    remaining=core.get("remaining"),
                    reset_at=core.get("reset"),
                    limit=core.get("limit"),
                ),
            )

        return self.pool.status()


def _is_retryable(exc: BaseException) -> bool:
    if isinstance(exc, NoCredentialsAvailableError):
        return False
    return isinstance(exc, (RateLimitedError, AuthInvalidError, TransientError))


def _json_body(response: httpx.Response) -> Any:
    if not response.content:
        return {}
    try:
        return response.json()
    except ValueError:
        return {}
