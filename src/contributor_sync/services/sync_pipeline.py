"""Contributor sync pipeline: list walk, profile fetch, classification, upsert."""

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import OperationalError, SQLAlchemyError
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from contributor_sync.config import Config, get_config
from contributor_sync.exceptions import (
    ContributorSyncError,
    NoCredentialsAvailableError,
    PersistenceError,
    RepositoryNotRegisteredError,
)
from contributor_sync.models.platform import Platform, RepositoryRef
from contributor_sync.models.report import (
    BatchReport,
    ContributorFailure,
    RepositoryFailure,
    SyncReport,
    SyncStage,
)
from contributor_sync.models.user import ContributorRecord, UserProfile
from contributor_sync.services.contributor_fetcher import ContributorFetcher
from contributor_sync.services.geo_classifier import Region, classify_profile
from contributor_sync.storage.database import ContributorStore, StoredRepository

logger = logging.getLogger(__name__)


@dataclass
class _Run:
    """Mutable state of one repository sync."""

    repository_id: int
    report: SyncReport
    queue: asyncio.Queue
    abort: Optional[BaseException] = None
    workers: list[asyncio.Task] = field(default_factory=list)
    # Logins whose outcome was recorded by a worker cancelled mid-write
    settled: set[str] = field(default_factory=set)


class SyncPipeline:
    """Syncs repository contributors into the store.

    The contributor list walk feeds a bounded queue drained by
    ``config.max_concurrent`` workers. Each worker fetches the full profile,
    classifies it and upserts user then contribution link. All workers share
    one fetcher (and so one client and credential pool).

    Cancellation is cooperative: after ``cancel()`` no new contributor is
    started, in-flight ones get ``cancel_grace_seconds`` to finish, and the
    partial report is returned. A cancelled pipeline stays cancelled.
    """

    def __init__(
        self,
        fetcher: ContributorFetcher,
        store: ContributorStore,
        config: Optional[Config] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        persist_sleep: Callable[[float], None] = time.sleep,
    ):
        self.fetcher = fetcher
        self.store = store
        self.config = config or get_config()
        self._sleep = sleep
        self._persist_sleep = persist_sleep
        self._stop = asyncio.Event()
        self._cancelled = False

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self) -> None:
        """Request cooperative cancellation of the current run."""
        if not self._cancelled:
            logger.warning("Cancellation requested; finishing in-flight contributors")
        self._cancelled = True
        self._stop.set()

    def _rearm(self) -> None:
        """Clear a stop left by an earlier batch budget; a cancel stays in force."""
        if not self._cancelled:
            self._stop.clear()

    # ---- Single repository ----

    async def sync(self, repo: RepositoryRef, register: Optional[bool] = None) -> SyncReport:
        """Sync one repository.

        Args:
            repo: Repository to sync
            register: Register the repository if it is unknown (default:
                ``config.auto_register``)

        Returns:
            SyncReport with counts, per-contributor failures and region tally

        Raises:
            RepositoryNotRegisteredError: the repository is not registered
            NotFoundError: the repository does not exist on the platform
            ContributorSyncError: the contributor list could not be fetched
        """
        self._rearm()
        report = SyncReport(repository=repo)
        try:
            report.repository_id = await self._resolve(repo, register)
        except ContributorSyncError as e:
            self._fail(report, SyncStage.FETCHING, e)
            raise

        await self._run_repository(repo, report)
        return report

    async def _resolve(self, repo: RepositoryRef, register: Optional[bool]) -> int:
        repository_id = await asyncio.to_thread(self.store.get_repository_id, repo)
        if repository_id is not None:
            return repository_id

        should_register = self.config.auto_register if register is None else register
        if not should_register:
            raise RepositoryNotRegisteredError(str(repo))
        return await asyncio.to_thread(self.store.register_repository, repo)

    async def _run_repository(self, repo: RepositoryRef, report: SyncReport) -> None:
        """Run the pipeline for a resolved repository.

        Records a repository-level failure on the report before re-raising it.
        """
        assert report.repository_id is not None
        run = _Run(
            repository_id=report.repository_id,
            report=report,
            queue=asyncio.Queue(maxsize=self.config.max_concurrent * 2),
        )
        run.workers = [
            asyncio.create_task(self._worker(run), name=f"sync-worker-{i}")
            for i in range(self.config.max_concurrent)
        ]
        logger.info("Syncing %s with %d workers", repo, len(run.workers))

        stopped_early = False
        try:
            report.stage = SyncStage.FETCHING
            async for record in self.fetcher.list_contributors(repo):
                if run.abort is not None:
                    raise run.abort
                if self._stop.is_set():
                    stopped_early = True
                    break
                report.total_contributors += 1
                if not await self._enqueue(run.queue, record):
                    report.skipped += 1
                    stopped_early = True
                    break

            report.stage = SyncStage.PERSISTING
            await self._drain(run)
            if run.abort is not None:
                raise run.abort
        except ContributorSyncError as e:
            stage = report.stage
            run.abort = run.abort or e
            await self._drain(run)
            self._fail(report, stage, e)
            raise
        finally:
            await self._stop_workers(run)

        report.cancelled = self._stop.is_set() and (stopped_early or report.skipped > 0)
        report.stage = SyncStage.DONE
        report.finished_at = datetime.now()
        logger.info(
            "Synced %s: %d contributors, %d succeeded, %d failed, %d skipped",
            repo,
            report.total_contributors,
            report.succeeded,
            report.failed_count,
            report.skipped,
        )

    async def _enqueue(self, queue: asyncio.Queue, record: ContributorRecord) -> bool:
        """Put a record on the queue unless the run is stopped while waiting."""
        if not queue.full():
            queue.put_nowait(record)
            return True

        put = asyncio.ensure_future(queue.put(record))
        stopper = asyncio.ensure_future(self._stop.wait())
        done, _ = await asyncio.wait({put, stopper}, return_when=asyncio.FIRST_COMPLETED)
        stopper.cancel()
        if put in done:
            return True
        put.cancel()
        return False

    async def _drain(self, run: _Run) -> None:
        """Wait for queued work to finish; bounded by the grace period once stopped."""
        join = asyncio.ensure_future(run.queue.join())
        if not self._stop.is_set():
            stopper = asyncio.ensure_future(self._stop.wait())
            await asyncio.wait({join, stopper}, return_when=asyncio.FIRST_COMPLETED)
            stopper.cancel()

        if join.done():
            return
        try:
            await asyncio.wait_for(join, timeout=self.config.cancel_grace_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "In-flight contributors of %s did not finish within %.0fs",
                run.report.repository,
                self.config.cancel_grace_seconds,
            )

    async def _stop_workers(self, run: _Run) -> None:
        for worker in run.workers:
            worker.cancel()
        await asyncio.gather(*run.workers, return_exceptions=True)

        while not run.queue.empty():
            run.queue.get_nowait()
            run.report.skipped += 1

    async def _worker(self, run: _Run) -> None:
        while True:
            record = await run.queue.get()
            try:
                if self._stop.is_set() or run.abort is not None:
                    run.report.skipped += 1
                    continue
                await self._process(run, record)
            except asyncio.CancelledError:
                if record.login not in run.settled:
                    run.report.skipped += 1
                raise
            finally:
                run.queue.task_done()

    async def _process(self, run: _Run, record: ContributorRecord) -> None:
        """Fetch, classify and persist one contributor; failures go to the report."""
        report = run.report
        stage = SyncStage.FETCHING
        attempts = 1
        try:
            profile = await self.fetcher.fetch_profile(
                record, allow_partial=self.config.fallback_to_partial_profile
            )
            stage = SyncStage.CLASSIFYING
            region = classify_profile(profile)
            stage = SyncStage.PERSISTING
            write = asyncio.ensure_future(
                asyncio.to_thread(self._persist, profile, run.repository_id, record.contributions)
            )
            try:
                await asyncio.shield(write)
            except asyncio.CancelledError:
                # The worker thread cannot be interrupted, so wait for its outcome
                await asyncio.wait({write})
                self._settle(run, record, region, write)
                raise
        except NoCredentialsAvailableError as e:
            run.abort = e
            self._record_failure(report, record, stage, e, attempts)
            return
        except PersistenceError as e:
            self._record_failure(report, record, stage, e, e.attempts)
            return
        except Exception as e:
            self._record_failure(report, record, stage, e, attempts)
            return

        report.succeeded += 1
        report.record_region(region.value)

    def _settle(
        self,
        run: _Run,
        record: ContributorRecord,
        region: Region,
        write: asyncio.Future,
    ) -> None:
        """Record the outcome of a write that outlived its cancelled worker."""
        run.settled.add(record.login)
        error = write.exception()
        if error is None:
            run.report.succeeded += 1
            run.report.record_region(region.value)
        else:
            attempts = error.attempts if isinstance(error, PersistenceError) else 1
            self._record_failure(run.report, record, SyncStage.PERSISTING, error, attempts)

    def _persist(self, profile: UserProfile, repository_id: int, count: int) -> int:
        """Upsert user then link, retrying transient database errors."""
        attempts = 0
        try:
            for attempt in Retrying(
                retry=retry_if_exception_type(OperationalError),
                stop=stop_after_attempt(self.config.persist_retries + 1),
                wait=wait_exponential(multiplier=0.1, max=self.config.backoff_max),
                sleep=self._persist_sleep,
                before_sleep=before_sleep_log(logger, logging.WARNING),
                reraise=True,
            ):
                with attempt:
                    attempts = attempt.retry_state.attempt_number
                    return self.store.persist_contributor(profile, repository_id, count)
        except SQLAlchemyError as e:
            raise PersistenceError(
                f"Could not persist {profile.login}: {type(e).__name__}", attempts=attempts
            ) from e
        raise AssertionError("unreachable")  # reraise=True always raises or returns

    def _record_failure(
        self,
        report: SyncReport,
        record: ContributorRecord,
        stage: SyncStage,
        error: Exception,
        attempts: int,
    ) -> None:
        logger.warning("Contributor %s failed at %s: %s", record.login, stage.value, error)
        report.failed.append(
            ContributorFailure(
                login=record.login,
                user_id=record.user_id,
                stage=stage,
                error=type(error).__name__,
                message=str(error),
                attempts=attempts,
            )
        )

    @staticmethod
    def _fail(report: SyncReport, stage: SyncStage, error: Exception) -> None:
        report.failure = RepositoryFailure(
            repository=report.repository,
            stage=stage,
            error=type(error).__name__,
            message=str(error),
        )
        report.stage = SyncStage.FAILED
        report.finished_at = datetime.now()
        logger.error("Sync of %s failed at %s: %s", report.repository, stage.value, error)

    # ---- Batch mode ----

    async def sync_all(
        self,
        platform: Optional[Platform] = None,
        budget_seconds: Optional[float] = None,
    ) -> BatchReport:
        """Sync every registered repository.

        Repository-level failures are recorded and the batch continues. When
        the wall-clock budget runs out, running repositories stop cooperatively
        and the ones not yet started are recorded as skipped.
        """
        self._rearm()
        batch = BatchReport()
        repositories = await asyncio.to_thread(self.store.list_repositories, platform)
        budget = budget_seconds if budget_seconds is not None else self.config.batch_budget_seconds
        logger.info("Syncing %d registered repositories", len(repositories))

        watchdog = (
            asyncio.create_task(self._expire_budget(batch, budget)) if budget is not None else None
        )
        semaphore = asyncio.Semaphore(self.config.max_concurrent_repos)

        async def run_one(stored: StoredRepository) -> None:
            async with semaphore:
                if self._stop.is_set():
                    batch.skipped_repositories.append(stored.ref)
                    return
                report = SyncReport(repository=stored.ref, repository_id=stored.id)
                try:
                    await self._run_repository(stored.ref, report)
                except ContributorSyncError:
                    batch.failed_repositories.append(report.failure)
                else:
                    batch.reports.append(report)

        try:
            await asyncio.gather(*(run_one(stored) for stored in repositories))
        finally:
            if watchdog is not None:
                watchdog.cancel()

        batch.cancelled = self._cancelled
        batch.finished_at = datetime.now()
        logger.info(
            "Batch finished: %d synced, %d failed, %d skipped",
            len(batch.reports),
            len(batch.failed_repositories),
            len(batch.skipped_repositories),
        )
        return batch

    async def _expire_budget(self, batch: BatchReport, budget: float) -> None:
        await self._sleep(budget)
        logger.warning("Batch budget of %.0fs exhausted; skipping remaining repositories", budget)
        batch.budget_exhausted = True
        self._stop.set()
