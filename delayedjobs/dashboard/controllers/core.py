"""Core dashboard routes."""
from typing import Any, Dict

from litestar import Controller, get

from delayedjobs.client import BackgroundJobClient


class CoreController(Controller):
    path = "/"

    @get(sync_to_thread=True)
    def home(self, client: BackgroundJobClient) -> Dict[str, Any]:
        return {"stats": client.get_state_counts()}
