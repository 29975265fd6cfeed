# delayedjobs/server/worker.py
import logging
import threading
import uuid
from typing import List, Optional

from delayedjobs.config import JobsOptions, get_options
from delayedjobs.execution.invocation import JobRegistry
from delayedjobs.server.context import JobActivator, ProcessingContext
from delayedjobs.server.processor import DelayedJobProcessor
from delayedjobs.storage.base import JobStorage

logger = logging.getLogger(__name__)


class BackgroundJobServer:
    """Runs `worker_count` processor loops on daemon threads until stopped."""

    def __init__(
        self,
        storage: JobStorage,
        registry: JobRegistry,
        options: Optional[JobsOptions] = None,
        activator: Optional[JobActivator] = None,
    ):
        self.storage = storage
        self.registry = registry
        self.options = options or get_options()
        self.server_id = f"server:{uuid.uuid4()}"
        self.context = ProcessingContext(storage, self.options.pulse, activator)
        self.processors: List[DelayedJobProcessor] = []
        self._threads: List[threading.Thread] = []

    @property
    def is_running(self) -> bool:
        return any(thread.is_alive() for thread in self._threads)

    def start(self) -> "BackgroundJobServer":
        if self._threads:
            raise RuntimeError("Server has already been started")

        self.storage.initialize()
        for index in range(self.options.worker_count):
            processor = DelayedJobProcessor(self.options, self.registry)
            thread = threading.Thread(
                target=self._run,
                args=(processor,),
                name=f"{self.server_id}:worker-{index}",
                daemon=True,
            )
            self.processors.append(processor)
            self._threads.append(thread)
            thread.start()

        logger.info(
            "Server %s started with %d worker(s).", self.server_id, len(self._threads)
        )
        return self

    def _run(self, processor: DelayedJobProcessor) -> None:
        name = threading.current_thread().name
        logger.debug("[%s] Worker loop starting", name)
        while not self.context.is_stopping:
            try:
                processor.process(self.context)
            except Exception:
                logger.exception("[%s] Unhandled exception in worker loop", name)
                self.context.wait(self.options.error_cooldown)
        logger.debug("[%s] Worker loop has stopped", name)

    def stop(self, timeout: Optional[float] = 10.0) -> None:
        self.context.request_stop()
        for thread in self._threads:
            thread.join(timeout=timeout)
        logger.info("Server %s stopped.", self.server_id)

    def __enter__(self) -> "BackgroundJobServer":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.stop()
