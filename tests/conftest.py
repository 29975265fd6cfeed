import pytest

import delayedjobs
from delayedjobs.client import BackgroundJobClient
from delayedjobs.common.retry import JitterSource
from delayedjobs.config import JobsOptions
from delayedjobs.server.context import ProcessingContext
from delayedjobs.storage.memory_storage import MemoryStorage

from tests import test_tasks


class FixedJitter(JitterSource):
    def __init__(self, value: int = 0):
        super().__init__()
        self.value = value

    def next(self, upper: int) -> int:
        return self.value


@pytest.fixture(autouse=True)
def reset_recorded():
    test_tasks.RECORDED.clear()
    test_tasks.ReportJob.closed = 0
    yield
    delayedjobs.configure(None, JobsOptions())


@pytest.fixture
def registry():
    return test_tasks.build_registry()


@pytest.fixture
def options():
    return JobsOptions(polling_delay=0.05, jitter=FixedJitter(0))


@pytest.fixture
def memory_storage():
    return MemoryStorage()


@pytest.fixture
def client(memory_storage, registry, options):
    return BackgroundJobClient(memory_storage, registry, options)


@pytest.fixture
def context(memory_storage, options):
    return ProcessingContext(memory_storage, options.pulse)
