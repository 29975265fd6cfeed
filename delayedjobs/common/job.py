# delayedjobs/common/job.py
import uuid
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Optional


@dataclass
class Job:
    """
    A durable background job record.

    `data` is the serialized invocation descriptor; its format belongs to the
    serializer, the engine only carries it around. A job is fetch-eligible
    while it is in a non-final state and `due` has passed.
    """

    data: str
    state_name: str

    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    added: datetime = field(default_factory=lambda: datetime.now(UTC))
    due: Optional[datetime] = None

    # Incremented once per classified failure
    retries: int = 0

    def is_due(self, now: Optional[datetime] = None) -> bool:
        if self.due is None:
            return False
        return self.due <= (now or datetime.now(UTC))
