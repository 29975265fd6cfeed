# delayedjobs/common/retry.py
import random
import threading
from typing import Callable, Optional

DEFAULT_RETRY_COUNT = 25


class JitterSource:
    """
    Random source for retry jitter.

    One instance is meant to be shared by every processor in the process, so
    access to the underlying generator is serialized with a lock.
    """

    def __init__(self, seed: Optional[int] = None):
        self._random = random.Random(seed)
        self._lock = threading.Lock()

    def next(self, upper: int) -> int:
        """Returns an integer in [0, upper)."""
        with self._lock:
            return self._random.randrange(upper)


def make_default_retry_in(jitter: JitterSource) -> Callable[[int], int]:
    """
    Builds the default backoff: (retries - 1)^4 + 15 + jitter(0..29) * retries.

    The constant guarantees at least 15 seconds before the first retry, the
    quartic term widens the gap quickly for persistent failures and the jitter
    spreads out jobs that failed together.
    """

    def retry_in(retries: int) -> int:
        return int(round((retries - 1) ** 4 + 15 + jitter.next(30) * retries))

    return retry_in


_SHARED_JITTER = JitterSource()


class RetryBehavior:
    """Immutable retry policy: whether to retry, how often and how long to wait."""

    __slots__ = ("_retry", "_retry_count", "_retry_in", "_jitter")

    def __init__(
        self,
        retry: bool,
        retry_count: int = DEFAULT_RETRY_COUNT,
        retry_in: Optional[Callable[[int], int]] = None,
        jitter: Optional[JitterSource] = None,
    ):
        if retry and retry_count < 0:
            raise ValueError("retry_count can't be negative.")

        object.__setattr__(self, "_retry", retry)
        object.__setattr__(self, "_retry_count", retry_count)
        object.__setattr__(self, "_retry_in", retry_in)
        object.__setattr__(self, "_jitter", jitter)

    def __setattr__(self, name, value):
        raise AttributeError("RetryBehavior is immutable")

    @property
    def retry(self) -> bool:
        return self._retry

    @property
    def retry_count(self) -> int:
        return self._retry_count

    def should_retry(self, retries: int) -> bool:
        """Whether a job that has now failed `retries` times may run again."""
        return self._retry and retries < self._retry_count

    def retry_in(self, retries: int, jitter: Optional[JitterSource] = None) -> int:
        """
        Seconds, counted from the job's creation, before retry number `retries`.

        Without a custom `retry_in` the default backoff draws from the jitter
        source given at construction, else from `jitter`, else from the
        module-wide source.
        """
        if self._retry_in is not None:
            return self._retry_in(retries)
        source = self._jitter or jitter or _SHARED_JITTER
        return make_default_retry_in(source)(retries)

    def __repr__(self) -> str:
        return f"RetryBehavior(retry={self._retry}, retry_count={self._retry_count})"


NO_RETRY = RetryBehavior(False)
