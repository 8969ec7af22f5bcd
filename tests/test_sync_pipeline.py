"""Tests for the sync pipeline."""

import asyncio
import time
from dataclasses import replace
from unittest.mock import MagicMock

import pytest
import respx
from httpx import Response
from sqlalchemy.exc import OperationalError

from contributor_sync.exceptions import (
    NoCredentialsAvailableError,
    NotFoundError,
    RepositoryNotRegisteredError,
    TransientError,
)
from contributor_sync.models.platform import RepositoryRef
from contributor_sync.models.report import ExitStatus, SyncStage
from contributor_sync.models.user import ContributorRecord, UserProfile
from contributor_sync.services.contributor_fetcher import ContributorFetcher
from contributor_sync.services.rate_limited_client import RateLimitedClient
from contributor_sync.services.sync_pipeline import SyncPipeline
from contributor_sync.utils.credential_pool import CredentialPool, CredentialStatus

from conftest import API_URL, contributor, user


class FakeFetcher:
    """In-memory stand-in for ContributorFetcher."""

    def __init__(
        self,
        records=(),
        locations=None,
        errors=None,
        list_error=None,
        delay=0.0,
        on_profile=None,
    ):
        self.records = list(records)
        self.locations = locations or {}
        self.errors = errors or {}
        self.list_error = list_error
        self.delay = delay
        self.on_profile = on_profile
        self.profile_calls = 0

    async def list_contributors(self, repo):
        for record in self.records:
            yield record
        if self.list_error is not None:
            raise self.list_error

    async def fetch_profile(self, record, allow_partial=True):
        self.profile_calls += 1
        if self.on_profile is not None:
            self.on_profile(record)
        if self.delay:
            await asyncio.sleep(self.delay)
        if record.login in self.errors:
            raise self.errors[record.login]
        return UserProfile(
            platform_user_id=record.user_id,
            login=record.login,
            location=self.locations.get(record.login),
        )


def records(count: int) -> list[ContributorRecord]:
    return [
        ContributorRecord(login=f"user{i}", user_id=i, contributions=100 - i)
        for i in range(1, count + 1)
    ]


def no_wait(_seconds):
    return None


def make_pipeline(fetcher, store, config):
    return SyncPipeline(fetcher, store, config, persist_sleep=no_wait)


class TestSingleRepository:
    """Tests for sync() of one repository."""

    @pytest.mark.asyncio
    async def test_zero_contributors(self, store, repo, test_config):
        store.register_repository(repo)
        pipeline = make_pipeline(FakeFetcher(), store, test_config)

        report = await pipeline.sync(repo)

        assert report.total_contributors == 0
        assert report.succeeded == 0
        assert report.failed == []
        assert report.stage is SyncStage.DONE
        assert report.exit_status is ExitStatus.OK
        assert store.count_contributions(report.repository_id) == 0

    @pytest.mark.asyncio
    async def test_unregistered_repository_raises(self, store, repo, test_config):
        pipeline = make_pipeline(FakeFetcher(records(2)), store, test_config)

        with pytest.raises(RepositoryNotRegisteredError):
            await pipeline.sync(repo)
        assert store.list_repositories() == []

    @pytest.mark.asyncio
    async def test_register_on_demand(self, store, repo, test_config):
        pipeline = make_pipeline(FakeFetcher(records(2)), store, test_config)

        report = await pipeline.sync(repo, register=True)

        assert report.succeeded == 2
        assert store.get_repository_id(repo) == report.repository_id

    @pytest.mark.asyncio
    async def test_syncs_and_tallies_regions(self, store, repo, test_config):
        store.register_repository(repo)
        fetcher = FakeFetcher(
            records(10),
            locations={"user1": "Beijing", "user2": "上海", "user3": "Berlin"},
        )
        pipeline = make_pipeline(fetcher, store, test_config)

        report = await pipeline.sync(repo)

        assert report.total_contributors == 10
        assert report.succeeded == 10
        assert report.region_tally == {"china": 2, "unknown": 8}
        assert store.count_contributions(report.repository_id) == 10
        assert report.finished_at is not None
        assert report.exit_status is ExitStatus.OK

    @pytest.mark.asyncio
    async def test_resync_overwrites_counts(self, store, repo, test_config):
        repository_id = store.register_repository(repo)
        first = [ContributorRecord(login="user1", user_id=1, contributions=5)]
        second = [ContributorRecord(login="user1", user_id=1, contributions=12)]

        await make_pipeline(FakeFetcher(first), store, test_config).sync(repo)
        await make_pipeline(FakeFetcher(second), store, test_config).sync(repo)

        top = store.top_contributors(repository_id)
        assert [(c.login, c.contributions) for c in top] == [("user1", 12)]

    @pytest.mark.asyncio
    async def test_contributor_failure_does_not_abort(self, store, repo, test_config):
        store.register_repository(repo)
        fetcher = FakeFetcher(records(5), errors={"user3": NotFoundError("User not found: user3")})
        pipeline = make_pipeline(fetcher, store, test_config)

        report = await pipeline.sync(repo)

        assert report.succeeded == 4
        assert len(report.failed) == 1
        failure = report.failed[0]
        assert failure.login == "user3"
        assert failure.stage is SyncStage.FETCHING
        assert failure.error == "NotFoundError"
        assert report.exit_status is ExitStatus.PARTIAL

    @pytest.mark.asyncio
    async def test_transient_persist_error_retried(self, store, repo, test_config):
        store.register_repository(repo)
        real_persist = store.persist_contributor
        locked = OperationalError("INSERT", {}, Exception("database is locked"))
        outcomes = [locked, locked]

        def flaky(*args):
            if outcomes:
                raise outcomes.pop()
            return real_persist(*args)

        store.persist_contributor = MagicMock(side_effect=flaky)
        pipeline = make_pipeline(FakeFetcher(records(1)), store, test_config)

        report = await pipeline.sync(repo)

        assert report.succeeded == 1
        assert store.persist_contributor.call_count == 3

    @pytest.mark.asyncio
    async def test_persist_failure_recorded_after_retries(self, store, repo, test_config):
        store.register_repository(repo)
        locked = OperationalError("INSERT", {}, Exception("database is locked"))
        store.persist_contributor = MagicMock(side_effect=locked)
        pipeline = make_pipeline(FakeFetcher(records(2)), store, test_config)

        report = await pipeline.sync(repo)

        assert report.succeeded == 0
        assert len(report.failed) == 2
        assert all(f.stage is SyncStage.PERSISTING for f in report.failed)
        assert all(f.error == "PersistenceError" for f in report.failed)
        assert all(f.attempts == test_config.persist_retries + 1 for f in report.failed)
        assert report.region_tally == {}

    @pytest.mark.asyncio
    async def test_list_failure_aborts_repository(self, store, repo, test_config):
        store.register_repository(repo)
        fetcher = FakeFetcher(records(3), list_error=TransientError("Server error: 502"))
        pipeline = make_pipeline(fetcher, store, test_config)

        with pytest.raises(TransientError):
            await pipeline.sync(repo)

    @pytest.mark.asyncio
    async def test_bounded_worker_pool(self, store, repo, test_config):
        store.register_repository(repo)
        in_flight = 0
        peak = 0

        class Counting(FakeFetcher):
            async def fetch_profile(self, record, allow_partial=True):
                nonlocal in_flight, peak
                in_flight += 1
                peak = max(peak, in_flight)
                try:
                    await asyncio.sleep(0.01)
                    return await super().fetch_profile(record, allow_partial)
                finally:
                    in_flight -= 1

        config = replace(test_config, max_concurrent=3)
        report = await make_pipeline(Counting(records(12)), store, config).sync(repo)

        assert report.succeeded == 12
        assert peak <= 3


class TestCancellation:
    """Tests for cooperative cancellation."""

    @pytest.mark.asyncio
    async def test_cancel_returns_partial_report(self, store, repo, test_config):
        store.register_repository(repo)
        config = replace(test_config, max_concurrent=1)
        holder = {}

        def cancel_on_third(record):
            if record.login == "user3":
                holder["pipeline"].cancel()

        fetcher = FakeFetcher(records(20), on_profile=cancel_on_third)
        pipeline = make_pipeline(fetcher, store, config)
        holder["pipeline"] = pipeline

        report = await pipeline.sync(repo)

        assert report.cancelled is True
        assert report.exit_status is ExitStatus.CANCELLED
        assert report.succeeded == 3
        assert report.failed == []
        assert report.succeeded + report.skipped == report.total_contributors
        assert store.count_contributions(report.repository_id) == 3
        assert fetcher.profile_calls == 3

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, store, repo, test_config):
        store.register_repository(repo)
        fetcher = FakeFetcher(records(5))
        pipeline = make_pipeline(fetcher, store, test_config)
        pipeline.cancel()

        report = await pipeline.sync(repo)

        assert report.total_contributors == 0
        assert report.cancelled is True
        assert fetcher.profile_calls == 0

    @pytest.mark.asyncio
    async def test_grace_period_bounds_in_flight_work(self, store, repo, test_config):
        store.register_repository(repo)
        config = replace(test_config, max_concurrent=2, cancel_grace_seconds=0.05)
        holder = {}

        def cancel_now(record):
            holder["pipeline"].cancel()

        fetcher = FakeFetcher(records(2), delay=5.0, on_profile=cancel_now)
        pipeline = make_pipeline(fetcher, store, config)
        holder["pipeline"] = pipeline

        report = await asyncio.wait_for(pipeline.sync(repo), timeout=2)

        assert report.succeeded == 0
        assert report.skipped == report.total_contributors
        assert report.cancelled is True

    @pytest.mark.asyncio
    async def test_write_outliving_grace_period_is_counted(self, store, repo, test_config):
        store.register_repository(repo)
        config = replace(test_config, max_concurrent=1, cancel_grace_seconds=0.05)
        real_persist = store.persist_contributor

        def slow_persist(*args):
            time.sleep(0.3)
            return real_persist(*args)

        store.persist_contributor = slow_persist
        holder = {}

        def cancel_on_first(record):
            if record.login == "user1":
                holder["pipeline"].cancel()

        pipeline = make_pipeline(FakeFetcher(records(2), on_profile=cancel_on_first), store, config)
        holder["pipeline"] = pipeline

        report = await asyncio.wait_for(pipeline.sync(repo), timeout=5)

        assert report.cancelled is True
        assert report.succeeded == 1
        assert report.succeeded == store.count_contributions(report.repository_id)
        assert report.skipped == 1
        assert report.region_tally == {"unknown": 1}
        assert report.succeeded + report.skipped == report.total_contributors


class TestBatch:
    """Tests for sync_all()."""

    @pytest.mark.asyncio
    async def test_failed_repository_recorded_and_batch_continues(self, store, test_config):
        good = RepositoryRef(owner="good", name="repo")
        bad = RepositoryRef(owner="bad", name="repo")
        store.register_repository(good)
        store.register_repository(bad)

        class PerRepo(FakeFetcher):
            async def list_contributors(self, repo):
                if repo.owner == "bad":
                    raise NotFoundError("Resource not found")
                async for record in super().list_contributors(repo):
                    yield record

        pipeline = make_pipeline(PerRepo(records(3)), store, test_config)
        batch = await pipeline.sync_all()

        assert [str(r.repository) for r in batch.reports] == ["github:good/repo"]
        assert len(batch.failed_repositories) == 1
        failure = batch.failed_repositories[0]
        assert failure.repository == bad
        assert failure.error == "NotFoundError"
        assert batch.succeeded == 3
        assert batch.exit_status is ExitStatus.PARTIAL

    @pytest.mark.asyncio
    async def test_all_repositories_failing_is_fatal(self, store, test_config):
        store.register_repository(RepositoryRef(owner="a", name="b"))
        fetcher = FakeFetcher(list_error=TransientError("Server error: 500"))

        batch = await make_pipeline(fetcher, store, test_config).sync_all()

        assert batch.reports == []
        assert batch.exit_status is ExitStatus.FATAL

    @pytest.mark.asyncio
    async def test_empty_batch_ok(self, store, test_config):
        batch = await make_pipeline(FakeFetcher(), store, test_config).sync_all()
        assert batch.exit_status is ExitStatus.OK

    @pytest.mark.asyncio
    async def test_budget_skips_unstarted_repositories(self, store, test_config):
        for i in range(3):
            store.register_repository(RepositoryRef(owner="org", name=f"repo{i}"))
        config = replace(test_config, max_concurrent_repos=1)
        fetcher = FakeFetcher(records(6), delay=0.05)

        batch = await make_pipeline(fetcher, store, config).sync_all(budget_seconds=0.01)

        assert batch.budget_exhausted is True
        assert batch.cancelled is False
        assert len(batch.skipped_repositories) == 2
        assert batch.failed_repositories == []
        assert len(batch.reports) == 1
        assert batch.exit_status is ExitStatus.PARTIAL

    @pytest.mark.asyncio
    async def test_exhausted_budget_does_not_stop_later_runs(self, store, test_config):
        refs = [RepositoryRef(owner="org", name=f"repo{i}") for i in range(2)]
        for ref in refs:
            store.register_repository(ref)
        config = replace(test_config, max_concurrent_repos=1)
        fetcher = FakeFetcher(records(6), delay=0.05)
        pipeline = make_pipeline(fetcher, store, config)

        batch = await pipeline.sync_all(budget_seconds=0.01)
        assert batch.budget_exhausted is True

        fetcher.records = records(3)
        fetcher.delay = 0.0
        report = await pipeline.sync(refs[0])

        assert report.total_contributors == 3
        assert report.succeeded == 3
        assert report.cancelled is False
        assert report.exit_status is ExitStatus.OK

        again = await pipeline.sync_all()
        assert again.budget_exhausted is False
        assert again.skipped_repositories == []
        assert again.succeeded == 6
        assert again.exit_status is ExitStatus.OK


class TestEndToEnd:
    """Pipeline over the real client, fetcher and store with mocked HTTP."""

    def _build(self, store, config, clock, no_sleep):
        pool = CredentialPool(config.tokens, clock=clock)
        client = RateLimitedClient(pool, config, sleep=no_sleep, clock=clock)
        fetcher = ContributorFetcher(client, page_size=config.page_size)
        return pool, client, make_pipeline(fetcher, store, config)

    @pytest.mark.asyncio
    async def test_credential_invalidated_mid_run(self, store, repo, test_config, clock, no_sleep):
        store.register_repository(repo)
        pool, client, pipeline = self._build(store, test_config, clock, no_sleep)
        items = [contributor(i) for i in range(1, 31)]
        locations = {1: "Shenzhen", 2: "Wuhan, China"}

        def respond(request):
            if request.headers["authorization"] == "Bearer tok_bravo":
                return Response(401, json={"message": "Bad credentials"})
            path = request.url.path
            if path.endswith("/contributors"):
                return Response(200, json=items)
            user_id = int(path.rsplit("/", 1)[1])
            return Response(200, json=user(user_id, location=locations.get(user_id)))

        async with respx.mock() as router:
            router.get(f"{API_URL}/repos/rust-lang/rust/contributors").mock(side_effect=respond)
            router.get(url__regex=rf"{API_URL}/user/\d+$").mock(side_effect=respond)
            async with client:
                report = await pipeline.sync(repo)

        assert report.succeeded == 30
        assert report.failed == []
        assert report.region_tally == {"china": 2, "unknown": 28}
        assert pool.credentials[1].status is CredentialStatus.INVALID
        assert pool.credentials[0].status is CredentialStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_every_credential_rejected_aborts(self, store, repo, test_config, clock, no_sleep):
        store.register_repository(repo)
        pool, client, pipeline = self._build(store, test_config, clock, no_sleep)

        async with respx.mock() as router:
            router.get(f"{API_URL}/repos/rust-lang/rust/contributors").mock(
                return_value=Response(200, json=[contributor(i) for i in range(1, 6)])
            )
            router.get(url__regex=rf"{API_URL}/user/\d+$").mock(
                return_value=Response(401, json={"message": "Bad credentials"})
            )
            async with client:
                with pytest.raises(NoCredentialsAvailableError):
                    await pipeline.sync(repo)

        assert pool.usable_count == 0

    @pytest.mark.asyncio
    async def test_garbled_list_page_fails_only_that_repository(
        self, store, test_config, clock, no_sleep
    ):
        bad = RepositoryRef(owner="bad", name="repo")
        good = RepositoryRef(owner="good", name="repo")
        store.register_repository(bad)
        store.register_repository(good)
        _, client, pipeline = self._build(store, test_config, clock, no_sleep)

        async with respx.mock() as router:
            router.get(f"{API_URL}/repos/bad/repo/contributors").mock(
                return_value=Response(200, text="<html>oops</html>")
            )
            router.get(f"{API_URL}/repos/good/repo/contributors").mock(
                return_value=Response(200, json=[])
            )
            async with client:
                batch = await pipeline.sync_all()

        assert [r.repository for r in batch.reports] == [good]
        assert len(batch.failed_repositories) == 1
        failure = batch.failed_repositories[0]
        assert failure.repository == bad
        assert failure.error == "PlatformAPIError"
        assert failure.stage is SyncStage.FETCHING
        assert batch.exit_status is ExitStatus.PARTIAL
