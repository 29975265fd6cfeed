# delayedjobs/execution/invocation.py
"""
Job registry: maps a stable (type, method) key to the callable that runs it.

Producers describe a registered target as InvocationData; workers resolve the
stored descriptor back into a ResolvedInvocation. Resolution never raises for
bad input, it returns an InvocationLoadFailure instead.
"""
import inspect
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, Optional, Tuple, Union

from delayedjobs.common.exceptions import JobLoadError
from delayedjobs.common.retry import RetryBehavior
from delayedjobs.serialization.base import BaseSerializer, InvocationData
from delayedjobs.serialization.json_serializer import JsonSerializer

STATIC_METHOD = "__call__"


@dataclass(frozen=True)
class JobDescriptor:
    type_name: str
    method_name: str
    func: Callable[..., Any]
    # None for free functions and static methods
    job_type: Optional[type] = None
    retry_behavior: Optional[RetryBehavior] = None

    @property
    def is_static(self) -> bool:
        return self.job_type is None


@dataclass(frozen=True)
class ResolvedInvocation:
    descriptor: JobDescriptor
    args: Tuple[Any, ...] = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class InvocationLoadFailure:
    error: JobLoadError


Resolution = Union[ResolvedInvocation, InvocationLoadFailure]


def _default_name(obj: Any) -> str:
    return f"{obj.__module__}:{obj.__qualname__}"


class JobRegistry:
    def __init__(self, serializer: Optional[BaseSerializer] = None):
        self.serializer = serializer or JsonSerializer()
        self._descriptors: Dict[Tuple[str, str], JobDescriptor] = {}
        self._by_target: Dict[Callable[..., Any], JobDescriptor] = {}

    def job(
        self, name: Optional[str] = None, retry_behavior: Optional[RetryBehavior] = None
    ):
        """Decorator registering a free function as a job target."""

        def decorator(func):
            self.register_function(func, name=name, retry_behavior=retry_behavior)
            return func

        return decorator

    def register_function(
        self,
        func: Callable[..., Any],
        name: Optional[str] = None,
        retry_behavior: Optional[RetryBehavior] = None,
    ) -> JobDescriptor:
        descriptor = JobDescriptor(
            type_name=name or _default_name(func),
            method_name=STATIC_METHOD,
            func=func,
            retry_behavior=retry_behavior,
        )
        self._add(descriptor, func)
        return descriptor

    def register_type(
        self,
        cls: type,
        methods: Iterable[str] = ("run",),
        name: Optional[str] = None,
        retry_behavior: Optional[RetryBehavior] = None,
    ) -> None:
        """
        Registers operations of `cls`. Plain methods get an instance from the
        activator on every dispatch; static and class methods are called as is.
        """
        type_name = name or _default_name(cls)
        for method_name in methods:
            raw = inspect.getattr_static(cls, method_name, None)
            if raw is None:
                raise ValueError(f"{cls.__name__} has no method '{method_name}'")
            func = getattr(cls, method_name)
            is_static = isinstance(raw, (staticmethod, classmethod))
            descriptor = JobDescriptor(
                type_name=type_name,
                method_name=method_name,
                func=func,
                job_type=None if is_static else cls,
                retry_behavior=retry_behavior,
            )
            self._add(descriptor, func)

    def _add(self, descriptor: JobDescriptor, target: Callable[..., Any]) -> None:
        key = (descriptor.type_name, descriptor.method_name)
        if key in self._descriptors:
            raise ValueError(f"A job is already registered as {key[0]}.{key[1]}")
        self._descriptors[key] = descriptor
        self._by_target[target] = descriptor

    def get(self, type_name: str, method_name: str) -> Optional[JobDescriptor]:
        return self._descriptors.get((type_name, method_name))

    def describe(self, target: Callable[..., Any], *args: Any, **kwargs: Any) -> InvocationData:
        descriptor = self._by_target.get(target)
        if descriptor is None:
            raise ValueError(f"{target!r} is not a registered job")
        return InvocationData(
            type=descriptor.type_name,
            method=descriptor.method_name,
            args=list(args),
            kwargs=dict(kwargs),
        )

    def serialize(self, target: Callable[..., Any], *args: Any, **kwargs: Any) -> str:
        return self.serializer.serialize_invocation(self.describe(target, *args, **kwargs))

    def resolve(self, payload: str) -> Resolution:
        try:
            data = self.serializer.deserialize_invocation(payload)
        except JobLoadError as e:
            return InvocationLoadFailure(e)

        descriptor = self.get(data.type, data.method)
        if descriptor is None:
            return InvocationLoadFailure(
                JobLoadError(f"Could not load job target: {data.type}.{data.method}")
            )

        args = tuple(data.args)
        try:
            signature = inspect.signature(descriptor.func)
            if descriptor.is_static:
                signature.bind(*args, **data.kwargs)
            else:
                signature.bind(None, *args, **data.kwargs)
        except (TypeError, ValueError) as e:
            return InvocationLoadFailure(
                JobLoadError(
                    f"Arguments do not match {data.type}.{data.method}: {e}"
                )
            )

        return ResolvedInvocation(descriptor=descriptor, args=args, kwargs=dict(data.kwargs))
