# delayedjobs/storage/base.py
from abc import ABC, abstractmethod
from typing import List, Optional

from delayedjobs.common.job import Job


class FetchedJob(ABC):
    """
    An exclusive lease over one job.

    Exactly one of `remove_from_queue` or `requeue` takes effect. Disposing the
    handle without calling either requeues the job, so a lease is never lost
    when a cycle is interrupted.
    """

    def __init__(self, job_id: str):
        self.job_id = job_id
        self._removed_from_queue = False
        self._requeued = False

    @property
    def is_finished(self) -> bool:
        return self._removed_from_queue or self._requeued

    def remove_from_queue(self) -> None:
        if self.is_finished:
            return
        self._remove_from_queue()
        self._removed_from_queue = True

    def requeue(self) -> None:
        if self.is_finished:
            return
        self._requeue()
        self._requeued = True

    def dispose(self) -> None:
        if not self.is_finished:
            self.requeue()

    def __enter__(self) -> "FetchedJob":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.dispose()

    @abstractmethod
    def _remove_from_queue(self) -> None: ...

    @abstractmethod
    def _requeue(self) -> None: ...


class StorageTransaction(ABC):
    """
    Collects job updates and applies them all-or-nothing on `commit`.
    Leaving the `with` block without committing discards them.
    """

    def __init__(self):
        self._updates: List[Job] = []
        self._committed = False

    def update_job(self, job: Job) -> None:
        self._updates.append(job)

    def commit(self) -> None:
        if self._committed:
            raise RuntimeError("Transaction has already been committed")
        self._commit(list(self._updates))
        self._committed = True
        self._updates.clear()

    def __enter__(self) -> "StorageTransaction":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self._updates.clear()

    @abstractmethod
    def _commit(self, jobs: List[Job]) -> None: ...


class StorageConnection(ABC):
    def __enter__(self) -> "StorageConnection":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def close(self) -> None:
        pass

    @abstractmethod
    def store_job(self, job: Job) -> str: ...

    @abstractmethod
    def fetch_next_job(self) -> Optional[FetchedJob]:
        """Leases the earliest due job, or returns None when nothing is due."""

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[Job]: ...

    @abstractmethod
    def create_transaction(self) -> StorageTransaction: ...

    @abstractmethod
    def get_job_ids_by_state(
        self, state_name: str, start: int, count: int
    ) -> List[str]: ...

    @abstractmethod
    def get_state_job_count(self, state_name: str) -> int: ...


class JobStorage(ABC):
    @abstractmethod
    def get_connection(self) -> StorageConnection: ...

    def initialize(self) -> None:
        """Prepares the backing store (schema, scripts). Safe to call repeatedly."""
        pass
