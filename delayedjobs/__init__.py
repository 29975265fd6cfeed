from .client import BackgroundJobClient
from .common.exceptions import (
    ConfigurationError,
    DelayedJobsException,
    JobLoadError,
    JobNotFoundError,
)
from .common.retry import NO_RETRY, JitterSource, RetryBehavior
from .config import JobsOptions, configure as _configure, get_options, get_storage
from .execution.invocation import JobRegistry
from .server.context import JobActivator
from .server.pulse import PulseSignal
from .server.worker import BackgroundJobServer
from .storage.base import JobStorage

_client: BackgroundJobClient | None = None

registry = JobRegistry()


def configure(storage: JobStorage | None, options: JobsOptions | None = None) -> None:
    _configure(storage, options)
    global _client
    _client = None


def get_client() -> BackgroundJobClient:
    global _client
    if _client is None:
        _client = BackgroundJobClient(get_storage(), registry, get_options())
    return _client


__all__ = [
    "BackgroundJobClient",
    "BackgroundJobServer",
    "ConfigurationError",
    "DelayedJobsException",
    "JitterSource",
    "JobActivator",
    "JobLoadError",
    "JobNotFoundError",
    "JobRegistry",
    "JobStorage",
    "JobsOptions",
    "NO_RETRY",
    "PulseSignal",
    "RetryBehavior",
    "configure",
    "get_client",
    "get_options",
    "get_storage",
    "registry",
]
