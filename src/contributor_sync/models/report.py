"""Sync report models."""

from datetime import datetime
from enum import Enum, IntEnum

from pydantic import BaseModel, Field

from contributor_sync.models.platform import RepositoryRef


class SyncStage(str, Enum):
    """Stages a repository sync (and each contributor inside it) moves through."""

    FETCHING = "fetching"
    CLASSIFYING = "classifying"
    PERSISTING = "persisting"
    DONE = "done"
    FAILED = "failed"


class ExitStatus(IntEnum):
    """Process exit statuses reported by the CLI."""

    OK = 0
    PARTIAL = 1  # ran, but some contributors or repositories failed or were skipped
    FATAL = 2  # nothing useful ran: configuration, credentials, or the repository itself
    CANCELLED = 130


class ContributorFailure(BaseModel):
    """A contributor that could not be synced."""

    login: str
    user_id: int | None = None
    stage: SyncStage
    error: str  # exception class name
    message: str
    attempts: int = 1


class RepositoryFailure(BaseModel):
    """A repository whose sync aborted (batch mode)."""

    repository: RepositoryRef
    stage: SyncStage
    error: str
    message: str


class SyncReport(BaseModel):
    """Outcome of syncing one repository."""

    repository: RepositoryRef
    repository_id: int | None = None
    stage: SyncStage = SyncStage.FETCHING
    total_contributors: int = 0
    succeeded: int = 0
    failed: list[ContributorFailure] = Field(default_factory=list)
    skipped: int = 0
    region_tally: dict[str, int] = Field(default_factory=dict)
    cancelled: bool = False
    failure: RepositoryFailure | None = None
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: datetime | None = None

    @property
    def failed_count(self) -> int:
        return len(self.failed)

    @property
    def duration_seconds(self) -> float | None:
        if self.finished_at is None:
            return None
        return (self.finished_at - self.started_at).total_seconds()

    @property
    def exit_status(self) -> ExitStatus:
        if self.failure is not None:
            return ExitStatus.FATAL
        if self.cancelled:
            return ExitStatus.CANCELLED
        if self.failed or self.skipped:
            return ExitStatus.PARTIAL
        return ExitStatus.OK

    def record_region(self, region: str) -> None:
        self.region_tally[region] = self.region_tally.get(region, 0) + 1


class BatchReport(BaseModel):
    """Outcome of syncing every registered repository."""

    reports: list[SyncReport] = Field(default_factory=list)
    failed_repositories: list[RepositoryFailure] = Field(default_factory=list)
    skipped_repositories: list[RepositoryRef] = Field(default_factory=list)
    budget_exhausted: bool = False
    cancelled: bool = False
    started_at: datetime = Field(default_factory=datetime.now)
    finished_at: datetime | None = None

    @property
    def total_contributors(self) -> int:
        return sum(r.total_contributors for r in self.reports)

    @property
    def succeeded(self) -> int:
        return sum(r.succeeded for r in self.reports)

    @property
    def failed_contributors(self) -> int:
        return sum(r.failed_count for r in self.reports)

    @property
    def region_tally(self) -> dict[str, int]:
        tally: dict[str, int] = {}
        for report in self.reports:
            for region, count in report.region_tally.items():
                tally[region] = tally.get(region, 0) + count
        return tally

    @property
    def exit_status(self) -> ExitStatus:
        if self.cancelled:
            return ExitStatus.CANCELLED
        if not self.reports and self.failed_repositories:
            return ExitStatus.FATAL
        if (
            self.failed_repositories
            or self.skipped_repositories
            or any(r.exit_status != ExitStatus.OK for r in self.reports)
        ):
            return ExitStatus.PARTIAL
        return ExitStatus.OK
