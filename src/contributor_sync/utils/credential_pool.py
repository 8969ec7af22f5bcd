"""Credential pool: round-robin token rotation under per-token quotas."""

import hashlib
import logging
import threading
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import NamedTuple, Optional

from contributor_sync.exceptions import ConfigurationError, NoCredentialsAvailableError

logger = logging.getLogger(__name__)

# Used when a token runs dry locally before the platform told us its reset time
DEFAULT_WINDOW_SECONDS = 3600


def format_time_remaining(seconds: float) -> str:
    """Format seconds into a human-friendly string."""
    if seconds <= 0:
        return "now"

    seconds = int(seconds)

    if seconds < 60:
        return f"{seconds} second{'s' if seconds != 1 else ''}"
    elif seconds < 3600:
        minutes = seconds // 60
        secs = seconds % 60
        if secs > 0:
            return f"{minutes} min {secs} sec"
        return f"{minutes} minute{'s' if minutes != 1 else ''}"
    else:
        hours = seconds // 3600
        minutes = (seconds % 3600) // 60
        if minutes > 0:
            return f"{hours} hr {minutes} min"
        return f"{hours} hour{'s' if hours != 1 else ''}"


class CredentialStatus(str, Enum):
    ACTIVE = "active"
    COOLING_DOWN = "cooling-down"
    INVALID = "invalid"


@dataclass
class Credential:
    """Quota state for one access token.

    The token itself is excluded from repr; log ``label`` instead.
    """

    index: int
    token: str = field(repr=False)
    limit: int = 5000
    remaining: int = 5000
    reset_at: float = 0.0  # Unix timestamp, 0 when unknown
    status: CredentialStatus = CredentialStatus.ACTIVE

    @property
    def fingerprint(self) -> str:
        return hashlib.sha256(self.token.encode()).hexdigest()[:6]

    @property
    def label(self) -> str:
        """Redacted identifier safe for logs."""
        return f"token#{self.index} ({self.fingerprint})"

    def seconds_until_reset(self, now: float) -> float:
        return max(0.0, self.reset_at - now)


class OutcomeKind(str, Enum):
    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    INVALID = "invalid"


@dataclass(frozen=True)
class Outcome:
    """What a response told us about the credential that sent it."""

    kind: OutcomeKind
    remaining: Optional[int] = None
    reset_at: Optional[float] = None
    limit: Optional[int] = None

    @classmethod
    def success(
        cls,
        remaining: Optional[int] = None,
        reset_at: Optional[float] = None,
        limit: Optional[int] = None,
    ) -> "Outcome":
        return cls(OutcomeKind.SUCCESS, remaining=remaining, reset_at=reset_at, limit=limit)

    @classmethod
    def rate_limited(cls, reset_at: Optional[float] = None) -> "Outcome":
        return cls(OutcomeKind.RATE_LIMITED, remaining=0, reset_at=reset_at)

    @classmethod
    def invalid(cls) -> "Outcome":
        return cls(OutcomeKind.INVALID)

    @classmethod
    def from_headers(cls, headers: Mapping[str, str]) -> "Outcome":
        """Build a success outcome from ``x-ratelimit-*`` response headers."""
        return cls.success(
            remaining=_int_header(headers, "x-ratelimit-remaining"),
            reset_at=_float_header(headers, "x-ratelimit-reset"),
            limit=_int_header(headers, "x-ratelimit-limit"),
        )


class Lease(NamedTuple):
    """A credential handed out by acquire().

    ``wait`` is zero for an active credential. Otherwise it is how long until
    the earliest cooling credential resets; the caller decides whether to
    sleep or fail fast.
    """

    credential: Credential
    wait: float


class CredentialPool:
    """Spreads requests across several tokens.

    Credentials live in a list indexed by position; a rotating cursor gives
    round-robin selection among the active ones. acquire() reserves one unit
    of quota locally, report() reconciles with what the platform said.

    One pool belongs to one run. Both methods are safe to call from
    concurrent tasks or threads.
    """

    def __init__(
        self,
        tokens: list[str],
        default_quota: int = 5000,
        clock: Callable[[], float] = time.time,
    ):
        tokens = [t for t in tokens if t]
        if not tokens:
            raise ConfigurationError("Credential pool is empty: configure at least one token")

        self._credentials = [
            Credential(index=i, token=t, limit=default_quota, remaining=default_quota)
            for i, t in enumerate(tokens)
        ]
        self._clock = clock
        self._cursor = 0
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._credentials)

    @property
    def credentials(self) -> list[Credential]:
        return list(self._credentials)

    @property
    def active_count(self) -> int:
        with self._lock:
            self._refresh(self._clock())
            return sum(1 for c in self._credentials if c.status is CredentialStatus.ACTIVE)

    @property
    def usable_count(self) -> int:
        """Credentials not permanently removed from rotation."""
        return sum(1 for c in self._credentials if c.status is not CredentialStatus.INVALID)

    def acquire(self) -> Lease:
        """Pick the next credential.

        Raises:
            NoCredentialsAvailableError: every credential has been invalidated
        """
        with self._lock:
            now = self._clock()
            self._refresh(now)

            count = len(self._credentials)
            for offset in range(count):
                position = (self._cursor + offset) % count
                credential = self._credentials[position]
                if credential.status is not CredentialStatus.ACTIVE:
                    continue

                self._cursor = (position + 1) % count
                credential.remaining -= 1
                if credential.remaining <= 0:
                    self._start_cooldown(credential, now)
                return Lease(credential, 0.0)

            waiting = [c for c in self._credentials if c.status is CredentialStatus.COOLING_DOWN]
            if not waiting:
                raise NoCredentialsAvailableError(
                    f"All {count} credential(s) were rejected by the platform"
                )

            earliest = min(waiting, key=lambda c: c.reset_at)
            return Lease(earliest, earliest.seconds_until_reset(now))

    def report(self, credential: Credential, outcome: Outcome) -> None:
        """Update a credential's quota state from response metadata."""
        with self._lock:
            if credential.status is CredentialStatus.INVALID:
                return

            now = self._clock()

            if outcome.kind is OutcomeKind.INVALID:
                credential.status = CredentialStatus.INVALID
                credential.remaining = 0
                remaining = sum(
                    1 for c in self._credentials if c.status is not CredentialStatus.INVALID
                )
                logger.warning(
                    "Credential %s was rejected and removed from rotation (%d usable left)",
                    credential.label,
                    remaining,
                )
                return

            if outcome.kind is OutcomeKind.RATE_LIMITED:
                credential.remaining = 0
                if outcome.reset_at:
                    credential.reset_at = outcome.reset_at
                self._start_cooldown(credential, now)
                logger.info(
                    "Credential %s is rate limited, resets in %s",
                    credential.label,
                    format_time_remaining(credential.seconds_until_reset(now)),
                )
                return

            if outcome.limit is not None:
                credential.limit = outcome.limit
            if outcome.remaining is not None:
                new_window = outcome.reset_at is not None and outcome.reset_at > credential.reset_at
                if new_window:
                    credential.remaining = outcome.remaining
                else:
                    # Out-of-order responses from concurrent requests: keep the lower count
                    credential.remaining = min(credential.remaining, outcome.remaining)
            if outcome.reset_at is not None:
                credential.reset_at = max(credential.reset_at, outcome.reset_at)

            if credential.remaining <= 0:
                self._start_cooldown(credential, now)
            elif credential.status is CredentialStatus.COOLING_DOWN and credential.reset_at <= now:
                credential.status = CredentialStatus.ACTIVE

    def status(self) -> list[dict]:
        """Redacted quota status for every credential."""
        with self._lock:
            now = self._clock()
            self._refresh(now)
            return [
                {
                    "credential": c.label,
                    "status": c.status.value,
                    "remaining": c.remaining,
                    "limit": c.limit,
                    "reset_in": c.seconds_until_reset(now) if c.reset_at else None,
                }
                for c in self._credentials
            ]

    def _refresh(self, now: float) -> None:
        """Bring cooling credentials back once their reset time has passed."""
        for credential in self._credentials:
            if credential.status is CredentialStatus.COOLING_DOWN and credential.reset_at <= now:
                credential.status = CredentialStatus.ACTIVE
                credential.remaining = credential.limit
                logger.debug("Credential %s quota reset", credential.label)

    def _start_cooldown(self, credential: Credential, now: float) -> None:
        credential.remaining = 0
        if credential.reset_at <= now:
            credential.reset_at = now + DEFAULT_WINDOW_SECONDS
        credential.status = CredentialStatus.COOLING_DOWN


def _int_header(headers: Mapping[str, str], name: str) -> Optional[int]:
    value = headers.get(name)
    try:
        return int(value) if value is not None else None
    except ValueError:
        return None


def _float_header(headers: Mapping[str, str], name: str) -> Optional[float]:
    value = headers.get(name)
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None
