"""SQLAlchemy-backed store for users and repository contributor links."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterator, Optional

from sqlalchemy import (
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Text,
    UniqueConstraint,
    create_engine,
    event,
    select,
)
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from contributor_sync.exceptions import ConfigurationError
from contributor_sync.models.platform import Platform, RepositoryRef
from contributor_sync.models.user import UserProfile

logger = logging.getLogger(__name__)

Base = declarative_base()


def _enable_sqlite_foreign_keys(dbapi_connection: Any, _connection_record: Any) -> None:
    # SQLite leaves FOREIGN KEY clauses unenforced per connection by default
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


class RepositoryModel(Base):
    __tablename__ = "repositories"
    __table_args__ = (UniqueConstraint("platform", "owner", "name", name="uq_repository_identity"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    platform = Column(String(16), nullable=False)
    owner = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    url = Column(Text, nullable=True)
    registered_at = Column(DateTime, nullable=False)


class UserModel(Base):
    __tablename__ = "contributor_users"
    __table_args__ = (
        UniqueConstraint("platform", "platform_user_id", name="uq_contributor_user_identity"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    platform = Column(String(16), nullable=False)
    platform_user_id = Column(BigInteger, nullable=False)
    login = Column(String(255), nullable=False, index=True)
    name = Column(String(255), nullable=True)
    email = Column(String(255), nullable=True)
    avatar_url = Column(Text, nullable=True)
    company = Column(String(255), nullable=True)
    location = Column(String(255), nullable=True)
    bio = Column(Text, nullable=True)
    public_repos = Column(Integer, nullable=True)
    followers = Column(Integer, nullable=True)
    following = Column(Integer, nullable=True)
    created_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)
    inserted_at = Column(DateTime, nullable=False)
    updated_at_local = Column(DateTime, nullable=False)


class ContributionModel(Base):
    __tablename__ = "repository_contributors"
    __table_args__ = (UniqueConstraint("repository_id", "user_id", name="uq_repository_user"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    repository_id = Column(Integer, ForeignKey("repositories.id"), nullable=False, index=True)
    user_id = Column(Integer, ForeignKey("contributor_users.id"), nullable=False, index=True)
    contributions = Column(Integer, nullable=False, default=0)
    inserted_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=False)


@dataclass
class StoredRepository:
    id: int
    ref: RepositoryRef
    url: Optional[str] = None


@dataclass
class ContributorSummary:
    platform_user_id: int
    login: str
    name: Optional[str]
    location: Optional[str]
    contributions: int


class ContributorStore:
    """Relational store with upsert-by-natural-key operations.

    Every public method runs in its own transaction. Methods are blocking;
    async callers go through ``asyncio.to_thread``. The engine's connection
    pool handles concurrent use.
    """

    def __init__(self, database_url: str, echo: bool = False) -> None:
        if not database_url:
            raise ConfigurationError("DATABASE_URL is required for ContributorStore")

        engine_kwargs: dict[str, Any] = {"echo": echo, "pool_pre_ping": True}
        if database_url.startswith("sqlite"):
            # Writes arrive from worker threads via asyncio.to_thread
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:") or "mode=memory" in database_url:
                # One shared connection, otherwise every pooled connection sees its own empty DB
                engine_kwargs["poolclass"] = StaticPool

        try:
            self.engine: Engine = create_engine(database_url, **engine_kwargs)
        except (SQLAlchemyError, ImportError) as e:
            raise ConfigurationError(f"Cannot create database engine: {e}") from e

        if self.engine.dialect.name == "sqlite":
            event.listen(self.engine, "connect", _enable_sqlite_foreign_keys)

        self.SessionLocal = sessionmaker(bind=self.engine, autocommit=False, autoflush=False)
        self._ensure_tables()

    def _ensure_tables(self) -> None:
        """Create tables if they don't exist."""
        try:
            Base.metadata.create_all(bind=self.engine)
        except SQLAlchemyError as e:
            raise ConfigurationError(f"Cannot initialise database: {e}") from e

    @contextmanager
    def _session(self) -> Iterator[Session]:
        """Get a new database session with proper cleanup."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def close(self) -> None:
        self.engine.dispose()

    # ---- Repositories ----

    def register_repository(self, ref: RepositoryRef, url: Optional[str] = None) -> int:
        """Register a repository, returning its id. Idempotent."""
        with self._session() as session:
            row_id = self._upsert(
                session,
                RepositoryModel,
                values={
                    "platform": ref.platform.value,
                    "owner": ref.owner,
                    "name": ref.name,
                    "url": url or ref.html_url,
                    "registered_at": _utcnow(),
                },
                key=("platform", "owner", "name"),
                update=("url",),
            )
        logger.info("Registered repository %s (id=%d)", ref, row_id)
        return row_id

    def get_repository_id(self, ref: RepositoryRef) -> Optional[int]:
        """Look up a registered repository by owner, name and platform.

        Falls back to a case-insensitive match since platform names are not
        case sensitive.
        """
        with self._session() as session:
            row_id = session.scalar(
                select(RepositoryModel.id).where(
                    RepositoryModel.platform == ref.platform.value,
                    RepositoryModel.owner == ref.owner,
                    RepositoryModel.name == ref.name,
                )
            )
            if row_id is not None:
                return row_id

            for model in session.scalars(
                select(RepositoryModel).where(RepositoryModel.platform == ref.platform.value)
            ):
                if model.owner.lower() == ref.owner.lower() and model.name.lower() == ref.name.lower():
                    return model.id
        return None

    def list_repositories(self, platform: Optional[Platform] = None) -> list[StoredRepository]:
        """All registered repositories, oldest first."""
        with self._session() as session:
            query = select(RepositoryModel).order_by(RepositoryModel.id)
            if platform is not None:
                query = query.where(RepositoryModel.platform == platform.value)
            return [
                StoredRepository(
                    id=model.id,
                    ref=RepositoryRef(
                        owner=model.owner, name=model.name, platform=Platform(model.platform)
                    ),
                    url=model.url,
                )
                for model in session.scalars(query)
            ]

    # ---- Users and contributor links ----

    def upsert_user(self, profile: UserProfile) -> int:
        """Insert or update a user keyed by platform user id; returns the row id."""
        with self._session() as session:
            return self._upsert_user(session, profile)

    def upsert_contribution(self, repository_id: int, user_row_id: int, count: int) -> None:
        """Insert or overwrite the contribution count for a (repository, user) pair."""
        with self._session() as session:
            self._upsert_contribution(session, repository_id, user_row_id, count)

    def persist_contributor(self, profile: UserProfile, repository_id: int, count: int) -> int:
        """Upsert the user, then its contribution link, in one transaction."""
        with self._session() as session:
            user_row_id = self._upsert_user(session, profile)
            self._upsert_contribution(session, repository_id, user_row_id, count)
            return user_row_id

    def _upsert_user(self, session: Session, profile: UserProfile) -> int:
        now = _utcnow()
        fields = {
            "login": profile.login,
            "name": profile.name,
            "email": profile.email,
            "avatar_url": profile.avatar_url,
            "company": profile.company,
            "location": profile.location,
            "bio": profile.bio,
            "public_repos": profile.public_repos,
            "followers": profile.followers,
            "following": profile.following,
            "created_at": _naive(profile.created_at),
            "updated_at": _naive(profile.updated_at),
        }
        return self._upsert(
            session,
            UserModel,
            values={
                "platform": profile.platform.value,
                "platform_user_id": profile.platform_user_id,
                **fields,
                "inserted_at": now,
                "updated_at_local": now,
            },
            key=("platform", "platform_user_id"),
            update=(*fields.keys(), "updated_at_local"),
        )

    def _upsert_contribution(
        self,
        session: Session,
        repository_id: int,
        user_row_id: int,
        count: int,
    ) -> None:
        now = _utcnow()
        self._upsert(
            session,
            ContributionModel,
            values={
                "repository_id": repository_id,
                "user_id": user_row_id,
                "contributions": count,
                "inserted_at": now,
                "updated_at": now,
            },
            key=("repository_id", "user_id"),
            update=("contributions", "updated_at"),
        )

    def _upsert(
        self,
        session: Session,
        model: Any,
        values: dict[str, Any],
        key: tuple[str, ...],
        update: tuple[str, ...],
    ) -> int:
        """INSERT ... ON CONFLICT (key) DO UPDATE, returning the row id."""
        dialect = session.get_bind().dialect.name

        if dialect in ("postgresql", "sqlite"):
            if dialect == "postgresql":
                from sqlalchemy.dialects.postgresql import insert
            else:
                from sqlalchemy.dialects.sqlite import insert

            stmt = insert(model).values(**values)
            stmt = stmt.on_conflict_do_update(
                index_elements=list(key),
                set_={name: stmt.excluded[name] for name in update},
            ).returning(model.id)
            return session.execute(stmt).scalar_one()

        # Other dialects: read then write inside the caller's transaction
        existing = session.scalars(
            select(model).where(*(getattr(model, name) == values[name] for name in key))
        ).first()
        if existing is None:
            existing = model(**values)
            session.add(existing)
        else:
            for name in update:
                setattr(existing, name, values[name])
        session.flush()
        return existing.id

    # ---- Queries ----

    def top_contributors(self, repository_id: int, limit: int = 10) -> list[ContributorSummary]:
        """Contributors of a repository ordered by contribution count."""
        with self._session() as session:
            rows = session.execute(
                select(
                    UserModel.platform_user_id,
                    UserModel.login,
                    UserModel.name,
                    UserModel.location,
                    ContributionModel.contributions,
                )
                .join(ContributionModel, ContributionModel.user_id == UserModel.id)
                .where(ContributionModel.repository_id == repository_id)
                .order_by(ContributionModel.contributions.desc(), UserModel.login)
                .limit(limit)
            )
            return [ContributorSummary(*row) for row in rows]

    def contributor_locations(self, repository_id: int) -> list[tuple[str, Optional[str], Optional[str]]]:
        """(login, location, email) for every contributor of a repository."""
        with self._session() as session:
            rows = session.execute(
                select(UserModel.login, UserModel.location, UserModel.email)
                .join(ContributionModel, ContributionModel.user_id == UserModel.id)
                .where(ContributionModel.repository_id == repository_id)
            )
            return [tuple(row) for row in rows]

    def count_contributions(self, repository_id: int) -> int:
        with self._session() as session:
            return len(
                session.scalars(
                    select(ContributionModel.id).where(
                        ContributionModel.repository_id == repository_id
                    )
                ).all()
            )

    def get_user(self, platform: Platform, platform_user_id: int) -> Optional[dict[str, Any]]:
        """Stored user row as a dict, or None."""
        with self._session() as session:
            model = session.scalars(
                select(UserModel).where(
                    UserModel.platform == platform.value,
                    UserModel.platform_user_id == platform_user_id,
                )
            ).first()
            if model is None:
                return None
            return {c.name: getattr(model, c.name) for c in UserModel.__table__.columns}

    def get_contribution(self, repository_id: int, user_row_id: int) -> Optional[int]:
        with self._session() as session:
            return session.scalar(
                select(ContributionModel.contributions).where(
                    ContributionModel.repository_id == repository_id,
                    ContributionModel.user_id == user_row_id,
                )
            )


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _naive(value: Optional[datetime]) -> Optional[datetime]:
    """Store platform timestamps as naive UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
