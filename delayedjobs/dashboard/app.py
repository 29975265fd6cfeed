"""Litestar application factory for the delayedjobs dashboard."""
from litestar import Litestar
from litestar.datastructures import State
from litestar.di import Provide

from delayedjobs.client import BackgroundJobClient

from .controllers.core import CoreController
from .controllers.jobs import JobsController


async def get_client(state: State) -> BackgroundJobClient:
    return state.client


def create_dashboard_app(client: BackgroundJobClient, debug: bool = False) -> Litestar:
    """Create the Litestar application for the dashboard.

    Args:
        client: The client the dashboard reads jobs through.
        debug: Enables Litestar debug mode.

    Returns:
        A Litestar application serving JSON.
    """
    return Litestar(
        route_handlers=[CoreController, JobsController],
        state=State({"client": client}),
        dependencies={"client": Provide(get_client)},
        debug=debug,
    )
