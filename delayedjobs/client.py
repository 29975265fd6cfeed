# delayedjobs/client.py
from datetime import datetime, timedelta, UTC
from typing import Any, Callable, Dict, List, Optional, Union

from .common.exceptions import JobNotFoundError
from .common.job import Job
from .common.states import ALL_STATES, FailedState, ScheduledState, StateChanger
from .config import JobsOptions, get_options
from .execution.invocation import JobRegistry
from .storage.base import JobStorage


class BackgroundJobClient:
    """
    Creates jobs for registered targets and answers operator queries.

    Storing a job raises the process-wide pulse so idle local processors pick
    it up without waiting for their polling delay.
    """

    def __init__(
        self,
        storage: JobStorage,
        registry: JobRegistry,
        options: Optional[JobsOptions] = None,
    ):
        self.storage = storage
        self.registry = registry
        self.options = options or get_options()
        self._state_changer = StateChanger()

    def enqueue(self, target: Callable, *args: Any, **kwargs: Any) -> str:
        """Creates a job that is due immediately."""
        return self._create(target, datetime.now(UTC), args, kwargs)

    def schedule(
        self,
        target: Callable,
        delay: Union[timedelta, datetime],
        *args: Any,
        **kwargs: Any,
    ) -> str:
        """Creates a job that becomes due after `delay` (or at an absolute time)."""
        if isinstance(delay, timedelta):
            due = datetime.now(UTC) + delay
        else:
            if delay.tzinfo is None:
                raise ValueError("schedule() needs a timezone-aware datetime")
            due = delay.astimezone(UTC)
        return self._create(target, due, args, kwargs)

    def _create(self, target: Callable, due: datetime, args, kwargs) -> str:
        job = Job(
            data=self.registry.serialize(target, *args, **kwargs),
            state_name=ScheduledState.NAME,
            due=due,
        )
        with self.storage.get_connection() as connection:
            job_id = connection.store_job(job)
        self.options.pulse.pulse()
        return job_id

    def requeue(self, job_id: str) -> bool:
        """Moves a failed job back to Scheduled, due now, with its retries reset."""
        with self.storage.get_connection() as connection:
            job = connection.get_job(job_id)
            if job is None:
                raise JobNotFoundError(job_id)
            if job.state_name != FailedState.NAME:
                return False
            job.retries = 0
            self._state_changer.change_state_and_commit(job, ScheduledState(), connection)
        self.options.pulse.pulse()
        return True

    # --- Dashboard Methods ---

    def get_jobs_by_state(
        self, state_name: str, page: int = 1, page_size: int = 20
    ) -> List[Job]:
        start = (page - 1) * page_size
        with self.storage.get_connection() as connection:
            job_ids = connection.get_job_ids_by_state(state_name, start, page_size)
            jobs = []
            for job_id in job_ids:
                job = connection.get_job(job_id)
                if job:
                    jobs.append(job)
            return jobs

    def get_job_details(self, job_id: str) -> Optional[Job]:
        with self.storage.get_connection() as connection:
            return connection.get_job(job_id)

    def get_state_counts(self) -> Dict[str, int]:
        with self.storage.get_connection() as connection:
            return {state: connection.get_state_job_count(state) for state in ALL_STATES}
