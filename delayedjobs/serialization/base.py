# delayedjobs/serialization/base.py
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass(frozen=True)
class InvocationData:
    """What a job calls: a registered type, one of its operations and the arguments."""

    type: str
    method: str
    args: List[Any] = field(default_factory=list)
    kwargs: Dict[str, Any] = field(default_factory=dict)


class BaseSerializer(ABC):
    @abstractmethod
    def serialize_invocation(self, data: InvocationData) -> str: ...

    @abstractmethod
    def deserialize_invocation(self, payload: str) -> InvocationData:
        """Raises JobLoadError when the payload is not a valid descriptor."""
