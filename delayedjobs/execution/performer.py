# delayedjobs/execution/performer.py
import asyncio
import inspect
from dataclasses import dataclass
from typing import Any, Optional

from delayedjobs.execution.invocation import ResolvedInvocation


@dataclass(frozen=True)
class ExecutionResult:
    succeeded: bool
    exception: Optional[BaseException] = None

    @classmethod
    def failure(cls, exception: BaseException) -> "ExecutionResult":
        return cls(False, exception)


ExecutionResult.SUCCESS = ExecutionResult(True)


async def _await(awaitable):
    return await awaitable


def perform_job(invocation: ResolvedInvocation, instance: Any = None) -> ExecutionResult:
    """
    Calls the resolved target and waits for it if it is asynchronous.

    Anything the job body raises is captured in the result; the caller decides
    whether the job is retried.
    """
    descriptor = invocation.descriptor
    try:
        if descriptor.is_static:
            result = descriptor.func(*invocation.args, **invocation.kwargs)
        else:
            result = descriptor.func(instance, *invocation.args, **invocation.kwargs)

        if inspect.isawaitable(result):
            asyncio.run(_await(result))
        return ExecutionResult.SUCCESS
    except Exception as e:
        return ExecutionResult.failure(e)
