"""Litestar integration helpers for delayedjobs."""

from __future__ import annotations

from typing import Optional

try:
    from litestar import Litestar
    from litestar.datastructures import State
    from litestar.di import Provide
except ImportError as exc:  # pragma: no cover - optional dependency
    raise ImportError(
        "Litestar integration requires 'litestar'. Install with `pip install litestar`."
    ) from exc

from delayedjobs.client import BackgroundJobClient
from delayedjobs.config import JobsOptions
from delayedjobs.execution.invocation import JobRegistry
from delayedjobs.storage.base import JobStorage


def get_delayedjobs_client(state: State) -> BackgroundJobClient:
    return state.delayedjobs_client


def delayedjobs_dependency() -> Provide:
    return Provide(get_delayedjobs_client, sync_to_thread=False)


def configure_delayedjobs(
    app: Litestar,
    storage: JobStorage,
    registry: JobRegistry,
    options: Optional[JobsOptions] = None,
) -> BackgroundJobClient:
    client = BackgroundJobClient(storage, registry, options)
    app.state.delayedjobs_client = client
    return client
