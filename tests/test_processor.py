import json
import threading
import time
from datetime import datetime, timedelta, UTC

import pytest

from delayedjobs.common.job import Job
from delayedjobs.common.retry import RetryBehavior, make_default_retry_in
from delayedjobs.common.states import (
    FailedState,
    ProcessingState,
    ScheduledState,
    StateChanger,
    SucceededState,
)
from delayedjobs.config import JobsOptions
from delayedjobs.execution.invocation import JobRegistry
from delayedjobs.server.context import JobActivator, ProcessingContext
from delayedjobs.server.processor import DelayedJobProcessor
from delayedjobs.storage.memory_storage import MemoryFetchedJob

from tests import test_tasks
from tests.conftest import FixedJitter


class RecordingStateChanger(StateChanger):
    def __init__(self):
        self.states = []

    def change_state(self, job, state, transaction):
        self.states.append(state.name)
        super().change_state(job, state, transaction)


class FailingActivator(JobActivator):
    def activate_job(self, job_type):
        raise RuntimeError("container is down")


class FailOnProcessingStateChanger(StateChanger):
    def change_state(self, job, state, transaction):
        if isinstance(state, ProcessingState):
            raise ConnectionError("store went away")
        super().change_state(job, state, transaction)


@pytest.fixture
def processor(options, registry):
    return DelayedJobProcessor(options, registry)


@pytest.fixture
def acks(monkeypatch):
    calls = []
    original = MemoryFetchedJob._remove_from_queue

    def remove_from_queue(self):
        calls.append(self.job_id)
        original(self)

    monkeypatch.setattr(MemoryFetchedJob, "_remove_from_queue", remove_from_queue)
    return calls


def _load(storage, job_id) -> Job:
    with storage.get_connection() as connection:
        return connection.get_job(job_id)


def _make_due_now(storage, job_id) -> None:
    with storage.get_connection() as connection:
        job = connection.get_job(job_id)
        job.due = datetime.now(UTC) - timedelta(seconds=1)
        with connection.create_transaction() as transaction:
            transaction.update_job(job)
            transaction.commit()


def test_successful_job_goes_through_processing_to_succeeded(
    memory_storage, registry, options, context, client, acks
):
    state_changer = RecordingStateChanger()
    processor = DelayedJobProcessor(options, registry, state_changer)
    job_id = client.enqueue(test_tasks.success_task, 10, 5)
    assert _load(memory_storage, job_id).state_name == ScheduledState.NAME

    assert processor.process(context) is True

    job = _load(memory_storage, job_id)
    assert state_changer.states == [ProcessingState.NAME, SucceededState.NAME]
    assert job.state_name == SucceededState.NAME
    assert job.retries == 0
    assert acks == [job_id]
    assert not memory_storage.is_leased(job_id)


def test_processor_has_nothing_to_do(processor, context):
    started = time.monotonic()
    assert processor.process(context) is False
    assert time.monotonic() - started < 5
    assert processor.waiting is False


def test_failed_job_is_rescheduled_from_creation_time(
    memory_storage, registry, context, client, acks
):
    options = JobsOptions(polling_delay=0.05, retry_in=lambda retries: 100 * retries)
    processor = DelayedJobProcessor(options, registry)
    job_id = client.enqueue(test_tasks.failure_task)

    assert processor.process(context) is True

    job = _load(memory_storage, job_id)
    assert job.state_name == ScheduledState.NAME
    assert job.retries == 1
    assert job.due == job.added + timedelta(seconds=100)
    assert acks == [job_id]
    assert not memory_storage.is_leased(job_id)


def test_retry_ceiling(memory_storage, registry, context):
    options = JobsOptions(polling_delay=0.05, retry_count=3, retry_in=lambda r: 1)
    processor = DelayedJobProcessor(options, registry)
    payload = registry.serialize(test_tasks.failure_task)
    now = datetime.now(UTC)
    below = Job(data=payload, state_name=ScheduledState.NAME, due=now, retries=1)
    at = Job(data=payload, state_name=ScheduledState.NAME, due=now, retries=2)
    with memory_storage.get_connection() as connection:
        connection.store_job(below)
        connection.store_job(at)

    processor.process(context)
    processor.process(context)

    # The (N-1)th failure is retried, the Nth is final
    assert _load(memory_storage, below.id).state_name == ScheduledState.NAME
    assert _load(memory_storage, below.id).retries == 2
    assert _load(memory_storage, at.id).state_name == FailedState.NAME
    assert _load(memory_storage, at.id).retries == 3


def test_always_failing_job_runs_retry_count_times(
    memory_storage, registry, context, client
):
    options = JobsOptions(
        polling_delay=0.05,
        retry_in=make_default_retry_in(FixedJitter(0)),
    )
    processor = DelayedJobProcessor(options, registry)
    job_id = client.enqueue(test_tasks.failure_task)

    attempts = 0
    dues = []
    while True:
        assert processor.process(context) is True
        attempts += 1
        job = _load(memory_storage, job_id)
        if job.state_name == FailedState.NAME:
            break
        assert job.state_name == ScheduledState.NAME
        dues.append(job.due)
        _make_due_now(memory_storage, job_id)

    assert attempts == 25
    assert job.retries == 25
    assert len(dues) == 24
    assert all(earlier < later for earlier, later in zip(dues, dues[1:]))
    assert processor.process(context) is False


def test_job_type_retry_behavior_overrides_default(memory_storage, processor, context, client):
    job_id = client.enqueue(test_tasks.FlakyJob.run)

    processor.process(context)
    job = _load(memory_storage, job_id)
    assert job.state_name == ScheduledState.NAME
    assert job.due == job.added + timedelta(seconds=60)

    _make_due_now(memory_storage, job_id)
    processor.process(context)
    job = _load(memory_storage, job_id)
    assert job.state_name == FailedState.NAME
    assert job.retries == 2


def test_job_type_default_backoff_uses_shared_jitter(memory_storage, client):
    registry = JobRegistry()
    registry.register_function(test_tasks.failure_task, retry_behavior=RetryBehavior(True, 3))
    options = JobsOptions(polling_delay=0.05, jitter=FixedJitter(7), pulse=client.options.pulse)
    processor = DelayedJobProcessor(options, registry)
    client.registry = registry
    job_id = client.enqueue(test_tasks.failure_task)

    processor.process(ProcessingContext(memory_storage, options.pulse))

    job = _load(memory_storage, job_id)
    assert job.state_name == ScheduledState.NAME
    assert job.due == job.added + timedelta(seconds=15 + 7)


def test_disabled_retry_fails_on_first_attempt(memory_storage, processor, context, client, acks):
    job_id = client.enqueue(test_tasks.NoRetryJob.run)

    processor.process(context)

    job = _load(memory_storage, job_id)
    assert job.state_name == FailedState.NAME
    assert job.retries == 0
    assert acks == [job_id]


@pytest.mark.parametrize(
    "payload",
    [
        "definitely not json",
        json.dumps({"type": "tests.test_tasks:gone", "method": "__call__"}),
    ],
)
def test_unresolvable_job_fails_without_retry(
    memory_storage, registry, options, context, acks, payload
):
    state_changer = RecordingStateChanger()
    processor = DelayedJobProcessor(options, registry, state_changer)
    job = Job(data=payload, state_name=ScheduledState.NAME, due=datetime.now(UTC))
    with memory_storage.get_connection() as connection:
        connection.store_job(job)

    assert processor.process(context) is True

    stored = _load(memory_storage, job.id)
    assert state_changer.states == [FailedState.NAME]
    assert stored.state_name == FailedState.NAME
    assert stored.retries == 0
    assert acks == [job.id]
    assert processor.process(context) is False


def test_activation_error_releases_job_untouched(memory_storage, registry, options, client, acks):
    context = ProcessingContext(memory_storage, options.pulse, FailingActivator())
    processor = DelayedJobProcessor(options, registry)
    job_id = client.enqueue(test_tasks.ReportJob.run, 1)
    before = _load(memory_storage, job_id)

    assert processor.process(context) is True

    after = _load(memory_storage, job_id)
    assert after == before
    assert acks == []
    assert not memory_storage.is_leased(job_id)
    assert test_tasks.RECORDED == []


def test_store_error_while_marking_processing_requeues(
    memory_storage, registry, options, context, client, acks
):
    processor = DelayedJobProcessor(options, registry, FailOnProcessingStateChanger())
    job_id = client.enqueue(test_tasks.success_task, 1, 1)

    assert processor.process(context) is True

    job = _load(memory_storage, job_id)
    assert job.state_name == ScheduledState.NAME
    assert job.retries == 0
    assert acks == []
    with memory_storage.get_connection() as connection:
        assert connection.fetch_next_job().job_id == job_id


def test_release_error_after_dispatch_error_is_raised_once(
    memory_storage, registry, options, context, client, monkeypatch
):
    calls = []

    def failing_requeue(self):
        calls.append(self.job_id)
        raise ConnectionError("store unavailable")

    monkeypatch.setattr(MemoryFetchedJob, "_requeue", failing_requeue)
    processor = DelayedJobProcessor(options, registry, FailOnProcessingStateChanger())
    job_id = client.enqueue(test_tasks.success_task, 1, 1)

    with pytest.raises(ConnectionError):
        processor.process(context)

    assert calls == [job_id]


def test_instance_jobs_are_activated_and_closed(memory_storage, processor, context, client):
    job_id = client.enqueue(test_tasks.ReportJob.run, 42)

    processor.process(context)

    assert test_tasks.RECORDED == [42]
    assert test_tasks.ReportJob.closed == 1
    assert _load(memory_storage, job_id).state_name == SucceededState.NAME


def test_static_method_runs_without_instance(memory_storage, processor, context, client):
    client.enqueue(test_tasks.ReportJob.render, "weekly")
    processor.process(context)
    assert test_tasks.RECORDED == ["render:weekly"]
    assert test_tasks.ReportJob.closed == 0


def test_async_job_is_awaited(memory_storage, processor, context, client):
    job_id = client.enqueue(test_tasks.async_success_task, 2, 3)
    processor.process(context)
    assert test_tasks.RECORDED == [5]
    assert _load(memory_storage, job_id).state_name == SucceededState.NAME


def test_side_effects_of_job_are_visible(memory_storage, processor, context, client, tmp_path):
    target = tmp_path / "out.txt"
    client.enqueue(test_tasks.side_effect_task, str(target), "hello")
    processor.process(context)
    assert target.read_text() == "hello"


def test_stopping_context_does_not_lease(memory_storage, processor, context, client):
    job_id = client.enqueue(test_tasks.success_task, 1, 2)
    context.request_stop()

    assert processor.process(context) is False

    assert _load(memory_storage, job_id).state_name == ScheduledState.NAME
    assert not memory_storage.is_leased(job_id)


def test_process_requires_context(processor):
    with pytest.raises(ValueError):
        processor.process(None)


def _run_in_thread(processor, context):
    result = {}

    def target():
        result["worked"] = processor.process(context)

    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    return thread, result


def _wait_until_waiting(processor):
    deadline = time.monotonic() + 5
    while not processor.waiting and time.monotonic() < deadline:
        time.sleep(0.01)
    assert processor.waiting


def test_pulse_wakes_idle_processor(memory_storage, registry):
    options = JobsOptions(polling_delay=30)
    processor = DelayedJobProcessor(options, registry)
    context = ProcessingContext(memory_storage, options.pulse)
    thread, result = _run_in_thread(processor, context)
    _wait_until_waiting(processor)

    options.pulse.pulse()
    thread.join(timeout=5)

    assert not thread.is_alive()
    assert result["worked"] is False


def test_stop_request_wakes_idle_processor(memory_storage, registry):
    options = JobsOptions(polling_delay=30)
    processor = DelayedJobProcessor(options, registry)
    context = ProcessingContext(memory_storage, options.pulse)
    thread, _ = _run_in_thread(processor, context)
    _wait_until_waiting(processor)

    context.request_stop()
    thread.join(timeout=5)

    assert not thread.is_alive()
