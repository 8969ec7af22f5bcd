"""Pytest configuration and fixtures."""

from unittest.mock import AsyncMock

import pytest

from contributor_sync.config import Config, set_config
from contributor_sync.models.platform import Platform, RepositoryRef
from contributor_sync.storage.database import ContributorStore

API_URL = "https://api.github.com"
GITEE_URL = "https://gitee.com/api/v5"


class FakeClock:
    """Controllable replacement for time.time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset global state before each test."""
    set_config(None)
    yield
    set_config(None)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def no_sleep():
    """Async sleep that returns at once and records the requested delays."""
    return AsyncMock(return_value=None)


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{tmp_path / 'contributors.db'}"


@pytest.fixture
def test_config(database_url):
    """Create a test configuration."""
    config = Config(
        tokens=["tok_alpha", "tok_bravo", "tok_charlie"],
        database_url=database_url,
        platform=Platform.GITHUB,
        github_api_url=API_URL,
        gitee_api_url=GITEE_URL,
        max_concurrent=4,
        backoff_base=0.0,
        backoff_max=0.0,
        cancel_grace_seconds=1.0,
    )
    set_config(config)
    return config


@pytest.fixture
def store(database_url):
    store = ContributorStore(database_url)
    yield store
    store.close()


@pytest.fixture
def repo():
    return RepositoryRef(owner="rust-lang", name="rust")


def contributor(user_id: int, contributions: int = 1, login: str | None = None) -> dict:
    """A contributors-list API item."""
    return {
        "id": user_id,
        "login": login or f"user{user_id}",
        "contributions": contributions,
        "avatar_url": f"https://avatars.example.com/u/{user_id}",
        "type": "User",
    }


def user(user_id: int, location: str | None = None, **extra) -> dict:
    """A user-profile API response."""
    data = {
        "id": user_id,
        "login": f"user{user_id}",
        "name": f"User {user_id}",
        "email": None,
        "avatar_url": f"https://avatars.example.com/u/{user_id}",
        "company": None,
        "location": location,
        "bio": None,
        "public_repos": 3,
        "followers": 10,
        "following": 2,
        "created_at": "2015-06-01T12:00:00Z",
        "updated_at": "2024-01-01T00:00:00Z",
    }
    data.update(extra)
    return data
