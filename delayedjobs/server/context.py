# delayedjobs/server/context.py
import logging
import threading
from typing import Any, List, Optional

from delayedjobs.server.pulse import PulseSignal
from delayedjobs.storage.base import JobStorage

logger = logging.getLogger(__name__)


class JobActivatorScope:
    """Instances activated for one job; closed together when the scope ends."""

    def __init__(self, activator: "JobActivator"):
        self._activator = activator
        self._instances: List[Any] = []

    def activate(self, job_type: type) -> Any:
        instance = self._activator.activate_job(job_type)
        self._instances.append(instance)
        return instance

    def dispose(self) -> None:
        while self._instances:
            instance = self._instances.pop()
            close = getattr(instance, "close", None)
            if not callable(close):
                continue
            try:
                close()
            except Exception:
                logger.warning(
                    "Failed to close job instance of %s", type(instance).__name__,
                    exc_info=True,
                )

    def __enter__(self) -> "JobActivatorScope":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.dispose()


class JobActivator:
    """Builds job instances. Subclass to plug in a container or factory."""

    def activate_job(self, job_type: type) -> Any:
        return job_type()

    def begin_scope(self) -> JobActivatorScope:
        return JobActivatorScope(self)


class ProcessingContext:
    def __init__(
        self,
        storage: JobStorage,
        pulse: PulseSignal,
        activator: Optional[JobActivator] = None,
        stopping: Optional[threading.Event] = None,
    ):
        self.storage = storage
        self.pulse = pulse
        self.activator = activator or JobActivator()
        self.stopping = stopping or threading.Event()

    @property
    def is_stopping(self) -> bool:
        return self.stopping.is_set()

    def request_stop(self) -> None:
        self.stopping.set()
        self.pulse.interrupt()

    def create_scope(self) -> JobActivatorScope:
        return self.activator.begin_scope()

    def wait(self, timeout: float) -> bool:
        """Sleeps up to `timeout` seconds; returns True if stopping was requested."""
        return self.stopping.wait(timeout)
