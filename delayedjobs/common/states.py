# delayedjobs/common/states.py

from datetime import datetime, UTC
from typing import Optional, TYPE_CHECKING

from delayedjobs.common.job import Job

if TYPE_CHECKING:
    from delayedjobs.storage.base import StorageConnection, StorageTransaction


class BaseState:
    """
    A lifecycle state. Entering a state stamps the job record through
    `apply`; the state tag itself is written by the StateChanger.
    """

    NAME = "base"
    IS_FINAL = False

    @property
    def name(self) -> str:
        return self.NAME

    def apply(self, job: Job) -> None:
        pass

    def __repr__(self) -> str:
        return f"<{type(self).__name__}>"


class ScheduledState(BaseState):
    NAME = "Scheduled"

    def __init__(self, due: Optional[datetime] = None):
        self.due = due

    def apply(self, job: Job) -> None:
        job.due = self.due or datetime.now(UTC)


class ProcessingState(BaseState):
    NAME = "Processing"


class SucceededState(BaseState):
    NAME = "Succeeded"
    IS_FINAL = True


class FailedState(BaseState):
    NAME = "Failed"
    IS_FINAL = True


ALL_STATES = [
    ScheduledState.NAME,
    ProcessingState.NAME,
    SucceededState.NAME,
    FailedState.NAME,
]

# States a store may lease a due job from
READY_STATES = [ScheduledState.NAME, ProcessingState.NAME]


class StateChanger:
    """Applies state transitions to job records inside a store transaction."""

    def change_state(
        self, job: Job, state: BaseState, transaction: "StorageTransaction"
    ) -> None:
        state.apply(job)
        job.state_name = state.name
        transaction.update_job(job)

    def change_state_and_commit(
        self, job: Job, state: BaseState, connection: "StorageConnection"
    ) -> None:
        with connection.create_transaction() as transaction:
            self.change_state(job, state, transaction)
            transaction.commit()
