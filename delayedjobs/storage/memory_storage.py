# delayedjobs/storage/memory_storage.py
from dataclasses import replace
from datetime import datetime, UTC
from threading import RLock
from typing import Dict, List, Optional, Set

from delayedjobs.common.job import Job
from delayedjobs.common.states import READY_STATES
from delayedjobs.storage.base import (
    FetchedJob,
    JobStorage,
    StorageConnection,
    StorageTransaction,
)


class MemoryFetchedJob(FetchedJob):
    def __init__(self, storage: "MemoryStorage", job_id: str):
        super().__init__(job_id)
        self._storage = storage

    def _remove_from_queue(self) -> None:
        self._storage._release_lease(self.job_id)

    def _requeue(self) -> None:
        self._storage._release_lease(self.job_id)


class MemoryStorageTransaction(StorageTransaction):
    def __init__(self, storage: "MemoryStorage"):
        super().__init__()
        self._storage = storage

    def _commit(self, jobs: List[Job]) -> None:
        with self._storage._lock:
            for job in jobs:
                if job.id in self._storage._jobs:
                    self._storage._jobs[job.id] = replace(job)


class MemoryStorageConnection(StorageConnection):
    def __init__(self, storage: "MemoryStorage"):
        self._storage = storage

    def store_job(self, job: Job) -> str:
        with self._storage._lock:
            self._storage._jobs[job.id] = replace(job)
        return job.id

    def fetch_next_job(self) -> Optional[FetchedJob]:
        storage = self._storage
        now = datetime.now(UTC)
        with storage._lock:
            candidates = [
                job
                for job in storage._jobs.values()
                if job.state_name in READY_STATES
                and job.is_due(now)
                and job.id not in storage._leases
            ]
            if not candidates:
                return None
            job = min(candidates, key=lambda j: j.due)
            storage._leases.add(job.id)
        return MemoryFetchedJob(storage, job.id)

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._storage._lock:
            job = self._storage._jobs.get(job_id)
            # Callers mutate the copy; only a commit writes it back
            return replace(job) if job else None

    def create_transaction(self) -> StorageTransaction:
        return MemoryStorageTransaction(self._storage)

    def get_job_ids_by_state(self, state_name: str, start: int, count: int) -> List[str]:
        with self._storage._lock:
            jobs = sorted(
                (j for j in self._storage._jobs.values() if j.state_name == state_name),
                key=lambda j: j.added,
                reverse=True,
            )
            return [j.id for j in jobs[start : start + count]]

    def get_state_job_count(self, state_name: str) -> int:
        with self._storage._lock:
            return sum(1 for j in self._storage._jobs.values() if j.state_name == state_name)


class MemoryStorage(JobStorage):
    """In-process store. Leases live only as long as the process does."""

    def __init__(self):
        self._jobs: Dict[str, Job] = {}
        self._leases: Set[str] = set()
        self._lock = RLock()

    def get_connection(self) -> StorageConnection:
        return MemoryStorageConnection(self)

    def is_leased(self, job_id: str) -> bool:
        with self._lock:
            return job_id in self._leases

    def _release_lease(self, job_id: str) -> None:
        with self._lock:
            self._leases.discard(job_id)
