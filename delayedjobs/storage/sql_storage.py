# delayedjobs/storage/sql_storage.py
from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime, timedelta
from typing import List, Optional

from sqlalchemy import (
    DateTime,
    Engine,
    Integer,
    String,
    Text,
    create_engine,
    func,
    or_,
    select,
    update,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, sessionmaker

from delayedjobs.common.job import Job
from delayedjobs.common.states import READY_STATES
from delayedjobs.storage.base import (
    FetchedJob,
    JobStorage,
    StorageConnection,
    StorageTransaction,
)

logger = logging.getLogger(__name__)

DEFAULT_INVISIBILITY_TIMEOUT = timedelta(minutes=30)


class Base(DeclarativeBase):
    pass


class JobModel(Base):
    __tablename__ = "delayedjobs_jobs"

    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    data: Mapped[str] = mapped_column(Text)
    state_name: Mapped[str] = mapped_column(String(50), index=True)
    retries: Mapped[int] = mapped_column(Integer, default=0)
    added: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    due: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), index=True)
    fetched_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    fetch_token: Mapped[Optional[str]] = mapped_column(String(64))


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite hands back naive datetimes
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _to_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite stores the wall-clock time and drops the offset
    if value is not None and value.tzinfo is not None:
        return value.astimezone(UTC)
    return value


class SqlFetchedJob(FetchedJob):
    def __init__(self, storage: "SqlStorage", job_id: str, token: str):
        super().__init__(job_id)
        self._storage = storage
        self._token = token

    def _clear_lease(self) -> None:
        with self._storage._session_factory.begin() as session:
            session.execute(
                update(JobModel)
                .where(JobModel.id == self.job_id, JobModel.fetch_token == self._token)
                .values(fetched_at=None, fetch_token=None)
                .execution_options(synchronize_session=False)
            )

    def _remove_from_queue(self) -> None:
        self._clear_lease()

    def _requeue(self) -> None:
        self._clear_lease()


class SqlStorageTransaction(StorageTransaction):
    def __init__(self, storage: "SqlStorage"):
        super().__init__()
        self._storage = storage

    def _commit(self, jobs: List[Job]) -> None:
        with self._storage._session_factory.begin() as session:
            for job in jobs:
                session.execute(
                    update(JobModel)
                    .where(JobModel.id == job.id)
                    .values(
                        data=job.data,
                        state_name=job.state_name,
                        retries=job.retries,
                        due=_to_utc(job.due),
                    )
                    .execution_options(synchronize_session=False)
                )


class SqlStorageConnection(StorageConnection):
    # Candidates tried per fetch when another worker wins the compare-and-set
    FETCH_ATTEMPTS = 3

    def __init__(self, storage: "SqlStorage"):
        self._storage = storage

    def store_job(self, job: Job) -> str:
        with self._storage._session_factory.begin() as session:
            session.add(
                JobModel(
                    id=job.id,
                    data=job.data,
                    state_name=job.state_name,
                    retries=job.retries,
                    added=_to_utc(job.added),
                    due=_to_utc(job.due),
                )
            )
        return job.id

    def fetch_next_job(self) -> Optional[FetchedJob]:
        storage = self._storage
        for _ in range(self.FETCH_ATTEMPTS):
            now = datetime.now(UTC)
            lease_free = or_(
                JobModel.fetched_at.is_(None),
                JobModel.fetched_at <= now - storage.invisibility_timeout,
            )
            with storage._session_factory.begin() as session:
                query = (
                    select(JobModel.id)
                    .where(
                        JobModel.state_name.in_(READY_STATES),
                        JobModel.due.is_not(None),
                        JobModel.due <= now,
                        lease_free,
                    )
                    .order_by(JobModel.due)
                    .limit(1)
                )
                if storage._supports_skip_locked:
                    query = query.with_for_update(skip_locked=True)

                job_id = session.execute(query).scalar_one_or_none()
                if job_id is None:
                    return None

                token = uuid.uuid4().hex
                updated = session.execute(
                    update(JobModel)
                    .where(JobModel.id == job_id, lease_free)
                    .values(fetched_at=now, fetch_token=token)
                    .execution_options(synchronize_session=False)
                )
                if updated.rowcount == 1:
                    return SqlFetchedJob(storage, job_id, token)

            logger.debug("Lost the race for job %s, trying the next one", job_id)
        return None

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._storage._session_factory() as session:
            model = session.get(JobModel, job_id)
            return self._storage._job_from_model(model) if model else None

    def create_transaction(self) -> StorageTransaction:
        return SqlStorageTransaction(self._storage)

    def get_job_ids_by_state(self, state_name: str, start: int, count: int) -> List[str]:
        with self._storage._session_factory() as session:
            rows = session.execute(
                select(JobModel.id)
                .where(JobModel.state_name == state_name)
                .order_by(JobModel.added.desc())
                .offset(start)
                .limit(count)
            ).scalars()
            return list(rows)

    def get_state_job_count(self, state_name: str) -> int:
        with self._storage._session_factory() as session:
            result = session.execute(
                select(func.count(JobModel.id)).where(JobModel.state_name == state_name)
            ).scalar_one()
            return int(result or 0)


class SqlStorage(JobStorage):
    def __init__(
        self,
        connection_url: Optional[str] = None,
        engine: Optional[Engine] = None,
        create_tables: bool = True,
        invisibility_timeout: timedelta = DEFAULT_INVISIBILITY_TIMEOUT,
    ) -> None:
        if engine is None and connection_url is None:
            raise ValueError("connection_url or engine is required")
        self.engine = engine or create_engine(connection_url)
        self.invisibility_timeout = invisibility_timeout
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        if create_tables:
            self.initialize()

        self._supports_skip_locked = self.engine.dialect.name in {
            "postgresql",
            "mysql",
            "mariadb",
        }

    def initialize(self) -> None:
        Base.metadata.create_all(self.engine)

    def get_connection(self) -> StorageConnection:
        return SqlStorageConnection(self)

    def _job_from_model(self, model: JobModel) -> Job:
        return Job(
            id=model.id,
            data=model.data,
            state_name=model.state_name,
            retries=model.retries,
            added=_as_utc(model.added),
            due=_as_utc(model.due),
        )
