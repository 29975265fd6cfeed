# delayedjobs/server/processor.py
import logging
import time
from datetime import datetime, timedelta
from typing import Optional

from delayedjobs.common.job import Job
from delayedjobs.common.states import (
    FailedState,
    ProcessingState,
    ScheduledState,
    StateChanger,
    SucceededState,
)
from delayedjobs.config import JobsOptions
from delayedjobs.execution.invocation import (
    InvocationLoadFailure,
    JobDescriptor,
    JobRegistry,
)
from delayedjobs.execution.performer import perform_job
from delayedjobs.server.context import JobActivatorScope, ProcessingContext
from delayedjobs.storage.base import FetchedJob, StorageConnection

logger = logging.getLogger(__name__)


class DelayedJobProcessor:
    """
    Runs one fetch-execute-transition cycle per `process` call.

    Every leased job leaves the cycle acknowledged (succeeded, failed or
    rescheduled) or released back to the store. When nothing is due the
    processor suspends until a pulse, a stop request or the polling delay.
    """

    def __init__(
        self,
        options: JobsOptions,
        registry: JobRegistry,
        state_changer: Optional[StateChanger] = None,
    ):
        self._options = options
        self._registry = registry
        self._state_changer = state_changer or StateChanger()
        self.waiting = False

    def process(self, context: ProcessingContext) -> bool:
        """Returns True when a job was leased during this cycle."""
        if context is None:
            raise ValueError("context is required")
        if context.is_stopping:
            return False

        try:
            pulse_mark = context.pulse.mark()
            worked = self._step(context)
            if context.is_stopping:
                return worked

            if not worked:
                self.waiting = True
                context.pulse.wait(
                    self._options.polling_delay,
                    since=pulse_mark,
                    stopping=context.stopping,
                )
            return worked
        finally:
            self.waiting = False

    def _step(self, context: ProcessingContext) -> bool:
        with context.storage.get_connection() as connection:
            fetched = connection.fetch_next_job()
            if fetched is None:
                return False

            with fetched, context.create_scope() as scope:
                self._process_fetched(fetched, connection, scope)
        return True

    def _process_fetched(
        self,
        fetched: FetchedJob,
        connection: StorageConnection,
        scope: JobActivatorScope,
    ) -> None:
        job = connection.get_job(fetched.job_id)
        if job is None:
            logger.warning("Fetched job '%s' no longer exists.", fetched.job_id)
            fetched.remove_from_queue()
            return

        try:
            resolution = self._registry.resolve(job.data)
            if isinstance(resolution, InvocationLoadFailure):
                logger.warning(
                    "Could not load a job: '%s'.", job.id, exc_info=resolution.error
                )
                self._state_changer.change_state_and_commit(job, FailedState(), connection)
                fetched.remove_from_queue()
                return

            descriptor = resolution.descriptor
            instance = None
            if not descriptor.is_static:
                instance = scope.activate(descriptor.job_type)

            started = time.perf_counter()
            self._state_changer.change_state_and_commit(job, ProcessingState(), connection)

            if job.retries > 0:
                logger.debug("Retrying a job: %d...", job.retries)

            result = perform_job(resolution, instance)
            elapsed = time.perf_counter() - started

            if result.succeeded:
                new_state = SucceededState()
            else:
                due = self._update_job_for_retry(descriptor, job)
                if due is not None:
                    new_state = ScheduledState(due)
                    logger.warning(
                        "Job '%s' failed (retry %d), will run again at %s.",
                        job.id,
                        job.retries,
                        due.isoformat(),
                        exc_info=result.exception,
                    )
                else:
                    new_state = FailedState()
                    logger.error(
                        "Job '%s' failed permanently after %d retries.",
                        job.id,
                        job.retries,
                        exc_info=result.exception,
                    )

            self._state_changer.change_state_and_commit(job, new_state, connection)
            fetched.remove_from_queue()

            if result.succeeded:
                logger.info("Job '%s' executed in %.3fs.", job.id, elapsed)
        except Exception:
            logger.warning(
                "An exception occurred while trying to execute a job: '%s'. "
                "Requeuing for another retry.",
                job.id,
                exc_info=True,
            )

    def _update_job_for_retry(
        self, descriptor: JobDescriptor, job: Job
    ) -> Optional[datetime]:
        """Counts the failure; returns the next due time, or None when out of retries."""
        retry_behavior = descriptor.retry_behavior or self._options.retry_behavior
        if not retry_behavior.retry:
            return None

        job.retries += 1
        if not retry_behavior.should_retry(job.retries):
            return None

        delay = retry_behavior.retry_in(job.retries, self._options.jitter)
        return job.added + timedelta(seconds=delay)
