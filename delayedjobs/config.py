# delayedjobs/config.py
import os
import threading
from dataclasses import dataclass, field
from typing import Callable, Optional

from delayedjobs.common.exceptions import ConfigurationError
from delayedjobs.common.retry import DEFAULT_RETRY_COUNT, JitterSource, RetryBehavior
from delayedjobs.server.pulse import PulseSignal
from delayedjobs.storage.base import JobStorage


@dataclass
class JobsOptions:
    polling_delay: float = 15.0
    retry_count: int = DEFAULT_RETRY_COUNT
    retry_in: Optional[Callable[[int], int]] = None
    worker_count: int = 1
    error_cooldown: float = 5.0

    # Process-wide singletons; share one JobsOptions across servers and clients
    jitter: JitterSource = field(default_factory=JitterSource, repr=False)
    pulse: PulseSignal = field(default_factory=PulseSignal, repr=False)

    retry_behavior: RetryBehavior = field(init=False, repr=False)

    def __post_init__(self):
        if self.polling_delay <= 0:
            raise ConfigurationError("polling_delay must be positive")
        if self.retry_count < 0:
            raise ConfigurationError("retry_count can't be negative")
        if self.worker_count < 1:
            raise ConfigurationError("worker_count must be at least 1")
        if self.error_cooldown < 0:
            raise ConfigurationError("error_cooldown can't be negative")

        self.retry_behavior = RetryBehavior(
            True, self.retry_count, self.retry_in, jitter=self.jitter
        )

    @classmethod
    def from_env(cls, **overrides) -> "JobsOptions":
        values = {}
        try:
            if "DELAYEDJOBS_POLLING_DELAY" in os.environ:
                values["polling_delay"] = float(os.environ["DELAYEDJOBS_POLLING_DELAY"])
            if "DELAYEDJOBS_RETRY_COUNT" in os.environ:
                values["retry_count"] = int(os.environ["DELAYEDJOBS_RETRY_COUNT"])
            if "DELAYEDJOBS_WORKER_COUNT" in os.environ:
                values["worker_count"] = int(os.environ["DELAYEDJOBS_WORKER_COUNT"])
            if "DELAYEDJOBS_ERROR_COOLDOWN" in os.environ:
                values["error_cooldown"] = float(os.environ["DELAYEDJOBS_ERROR_COOLDOWN"])
        except ValueError as e:
            raise ConfigurationError(f"Invalid delayedjobs environment setting: {e}") from e
        values.update(overrides)
        return cls(**values)


class _GlobalConfig:
    def __init__(self):
        self.storage: Optional[JobStorage] = None
        self.options: Optional[JobsOptions] = None
        self.lock = threading.Lock()


_GLOBAL_CONFIG = _GlobalConfig()


def configure(storage: Optional[JobStorage], options: Optional[JobsOptions] = None) -> None:
    """
    Registers the process-wide storage. Passing `options` replaces the shared
    options; otherwise clients and servers keep the ones already in use.
    """
    with _GLOBAL_CONFIG.lock:
        _GLOBAL_CONFIG.storage = storage
        if options is not None:
            _GLOBAL_CONFIG.options = options


def get_storage() -> JobStorage:
    if not _GLOBAL_CONFIG.storage:
        raise RuntimeError("delayedjobs has not been configured. Call delayedjobs.configure() first.")
    return _GLOBAL_CONFIG.storage


def get_options() -> JobsOptions:
    """The shared options, and with them the process-wide pulse and jitter source."""
    with _GLOBAL_CONFIG.lock:
        if _GLOBAL_CONFIG.options is None:
            _GLOBAL_CONFIG.options = JobsOptions()
        return _GLOBAL_CONFIG.options
