"""FastAPI integration helpers for delayedjobs."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

try:
    from fastapi import FastAPI, Request
except ImportError as exc:  # pragma: no cover - optional dependency
    raise ImportError(
        "FastAPI integration requires 'fastapi'. Install with `pip install fastapi`."
    ) from exc

from delayedjobs.client import BackgroundJobClient
from delayedjobs.config import JobsOptions, get_options
from delayedjobs.execution.invocation import JobRegistry
from delayedjobs.server.context import JobActivator
from delayedjobs.server.worker import BackgroundJobServer
from delayedjobs.storage.base import JobStorage


class DelayedJobsFastAPIPlugin:
    """
    Ties a BackgroundJobServer to the application's lifespan.

        plugin = DelayedJobsFastAPIPlugin(storage, registry)
        app = FastAPI(lifespan=plugin.lifespan)
    """

    def __init__(
        self,
        storage: JobStorage,
        registry: JobRegistry,
        options: Optional[JobsOptions] = None,
        activator: Optional[JobActivator] = None,
        run_server: bool = True,
    ):
        self.storage = storage
        self.options = options or get_options()
        self.client = BackgroundJobClient(storage, registry, self.options)
        self.server: Optional[BackgroundJobServer] = None
        if run_server:
            self.server = BackgroundJobServer(storage, registry, self.options, activator)

    def get_client(self) -> BackgroundJobClient:
        return self.client

    def include_dashboard(
        self, app: FastAPI, path: str = "/delayedjobs", debug: bool = False
    ) -> None:
        from delayedjobs.dashboard.app import create_dashboard_app

        app.mount(path, create_dashboard_app(self.client, debug=debug))

    @asynccontextmanager
    async def lifespan(self, app: FastAPI) -> AsyncIterator[None]:
        app.state.delayedjobs_client = self.client
        if self.server:
            self.server.start()
        try:
            yield
        finally:
            if self.server:
                self.server.stop()


def get_delayedjobs_client(request: Request) -> BackgroundJobClient:
    return request.app.state.delayedjobs_client
