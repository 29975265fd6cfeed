import pytest
from datetime import UTC, datetime, timedelta, timezone

sqlalchemy = pytest.importorskip("sqlalchemy")
from sqlalchemy import create_engine
from sqlalchemy.pool import StaticPool

from delayedjobs.client import BackgroundJobClient
from delayedjobs.common.job import Job
from delayedjobs.common.states import (
    FailedState,
    ProcessingState,
    ScheduledState,
    StateChanger,
    SucceededState,
)
from delayedjobs.server.context import ProcessingContext
from delayedjobs.server.processor import DelayedJobProcessor
from delayedjobs.storage.sql_storage import JobModel, SqlStorage

from tests import test_tasks


def _make_storage(**kwargs) -> SqlStorage:
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    return SqlStorage(engine=engine, create_tables=True, **kwargs)


def _due_job(seconds: int = -1, **kwargs) -> Job:
    return Job(
        data='{"type": "tests.test_tasks:success_task", "method": "__call__", "args": [1, 2]}',
        state_name=ScheduledState.NAME,
        due=datetime.now(UTC) + timedelta(seconds=seconds),
        **kwargs,
    )


def test_sql_storage_requires_engine_or_url():
    with pytest.raises(ValueError):
        SqlStorage()


def test_sql_storage_store_and_get():
    storage = _make_storage()
    job = _due_job(retries=2)
    with storage.get_connection() as connection:
        connection.store_job(job)
        loaded = connection.get_job(job.id)

    assert loaded == job
    assert loaded.added.tzinfo is not None


def test_sql_storage_fetch_leases_once():
    storage = _make_storage()
    job = _due_job()
    with storage.get_connection() as first, storage.get_connection() as second:
        first.store_job(job)
        fetched = first.fetch_next_job()
        assert fetched is not None
        assert fetched.job_id == job.id
        assert second.fetch_next_job() is None


def test_sql_storage_skips_future_and_final_jobs():
    storage = _make_storage()
    with storage.get_connection() as connection:
        connection.store_job(_due_job(seconds=300))
        connection.store_job(
            Job(data="{}", state_name=SucceededState.NAME, due=datetime.now(UTC))
        )
        connection.store_job(
            Job(data="{}", state_name=FailedState.NAME, due=datetime.now(UTC))
        )
        assert connection.fetch_next_job() is None


def test_sql_storage_fetches_earliest_due_first():
    storage = _make_storage()
    later, earlier = _due_job(seconds=-1), _due_job(seconds=-100)
    with storage.get_connection() as connection:
        connection.store_job(later)
        connection.store_job(earlier)
        assert connection.fetch_next_job().job_id == earlier.id
        assert connection.fetch_next_job().job_id == later.id


def test_sql_storage_dispose_releases_lease():
    storage = _make_storage()
    job = _due_job()
    with storage.get_connection() as connection:
        connection.store_job(job)
        with connection.fetch_next_job():
            pass
        assert connection.fetch_next_job().job_id == job.id


def test_sql_storage_acknowledge_after_success():
    storage = _make_storage()
    job = _due_job()
    with storage.get_connection() as connection:
        connection.store_job(job)
        with connection.fetch_next_job() as fetched:
            loaded = connection.get_job(fetched.job_id)
            StateChanger().change_state_and_commit(loaded, SucceededState(), connection)
            fetched.remove_from_queue()
        assert connection.fetch_next_job() is None
        assert connection.get_job(job.id).state_name == SucceededState.NAME


def test_sql_storage_transaction_is_atomic():
    storage = _make_storage()
    first, second = _due_job(), _due_job()
    with storage.get_connection() as connection:
        connection.store_job(first)
        connection.store_job(second)

        first.state_name = ProcessingState.NAME
        second.state_name = ProcessingState.NAME
        with connection.create_transaction() as transaction:
            transaction.update_job(first)
            transaction.update_job(second)
        assert connection.get_job(first.id).state_name == ScheduledState.NAME

        with connection.create_transaction() as transaction:
            transaction.update_job(first)
            transaction.update_job(second)
            transaction.commit()
        assert connection.get_job(first.id).state_name == ProcessingState.NAME
        assert connection.get_job(second.id).state_name == ProcessingState.NAME


def test_sql_storage_recovers_abandoned_lease():
    storage = _make_storage(invisibility_timeout=timedelta(minutes=5))
    job = _due_job()
    with storage.get_connection() as connection:
        connection.store_job(job)
        abandoned = connection.fetch_next_job()
        assert connection.fetch_next_job() is None

        stale_time = datetime.now(UTC) - timedelta(minutes=10)
        with storage._session_factory.begin() as session:
            model = session.get(JobModel, job.id)
            model.fetched_at = stale_time

        recovered = connection.fetch_next_job()
        assert recovered is not None
        assert recovered.job_id == job.id

        # The stale handle no longer owns the lease
        abandoned.requeue()
        assert connection.fetch_next_job() is None


def test_sql_storage_state_queries():
    storage = _make_storage()
    with storage.get_connection() as connection:
        ids = [connection.store_job(_due_job()) for _ in range(3)]
        assert connection.get_state_job_count(ScheduledState.NAME) == 3
        assert connection.get_state_job_count(FailedState.NAME) == 0
        assert set(connection.get_job_ids_by_state(ScheduledState.NAME, 0, 10)) == set(ids)
        assert len(connection.get_job_ids_by_state(ScheduledState.NAME, 1, 10)) == 2


def test_sql_storage_full_cycle(registry, options):
    storage = _make_storage()
    client = BackgroundJobClient(storage, registry, options)
    context = ProcessingContext(storage, options.pulse)
    processor = DelayedJobProcessor(options, registry)

    ok_id = client.enqueue(test_tasks.ReportJob.run, 9)
    failing_id = client.enqueue(test_tasks.failure_task)

    assert processor.process(context) is True
    assert processor.process(context) is True

    assert client.get_job_details(ok_id).state_name == SucceededState.NAME
    failing = client.get_job_details(failing_id)
    assert failing.state_name == ScheduledState.NAME
    assert failing.retries == 1
    assert failing.due == failing.added + timedelta(seconds=15)
    assert test_tasks.RECORDED == [9]


def test_sql_storage_requeue_from_failed(registry, options):
    storage = _make_storage()
    client = BackgroundJobClient(storage, registry, options)
    job = Job(
        data=registry.serialize(test_tasks.success_task, 1, 2),
        state_name=FailedState.NAME,
        retries=25,
    )
    with storage.get_connection() as connection:
        connection.store_job(job)

    assert client.requeue(job.id)
    requeued = client.get_job_details(job.id)
    assert requeued.state_name == ScheduledState.NAME
    assert requeued.retries == 0

    with storage.get_connection() as connection:
        fetched = connection.fetch_next_job()
        assert fetched is not None
        assert fetched.job_id == job.id


def test_sql_storage_keeps_instant_of_non_utc_times():
    storage = _make_storage()
    eastern = timezone(timedelta(hours=-5))
    due = datetime.now(eastern) + timedelta(hours=1)
    job = Job(data="{}", state_name=ScheduledState.NAME, added=datetime.now(eastern), due=due)

    with storage.get_connection() as connection:
        connection.store_job(job)
        loaded = connection.get_job(job.id)
        assert loaded.due == due
        assert loaded.added == job.added
        assert connection.fetch_next_job() is None

        later = datetime.now(eastern) + timedelta(hours=2)
        loaded.due = later
        with connection.create_transaction() as transaction:
            transaction.update_job(loaded)
            transaction.commit()
        assert connection.get_job(job.id).due == later


def test_sql_storage_client_schedule_with_offset(registry, options):
    storage = _make_storage()
    client = BackgroundJobClient(storage, registry, options)
    due = datetime.now(timezone(timedelta(hours=-5))) + timedelta(hours=1)

    job_id = client.schedule(test_tasks.success_task, due, 1, 2)

    loaded = client.get_job_details(job_id)
    assert loaded.due == due
    assert loaded.due.utcoffset() == timedelta(0)
