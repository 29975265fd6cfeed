# delayedjobs/storage/redis_storage.py
import logging
import uuid
from datetime import datetime, timedelta, UTC
from typing import List, Optional

import redis

from .base import FetchedJob, JobStorage, StorageConnection, StorageTransaction
from ..common.job import Job
from ..common.states import READY_STATES

logger = logging.getLogger(__name__)

DEFAULT_INVISIBILITY_TIMEOUT = timedelta(minutes=30)

# KEYS: due set, lease set, lease tokens
# ARGV: now, expired-before, token, key prefix, ready state 1, ready state 2
FETCH_SCRIPT = """
    local expired = redis.call('ZRANGEBYSCORE', KEYS[2], '-inf', ARGV[2])
    for _, id in ipairs(expired) do
        redis.call('ZREM', KEYS[2], id)
        redis.call('HDEL', KEYS[3], id)
        local job_key = ARGV[4] .. 'job:' .. id
        local state = redis.call('HGET', job_key, 'state_name')
        local score = redis.call('HGET', job_key, 'due_score')
        if (state == ARGV[5] or state == ARGV[6]) and score and score ~= '' then
            redis.call('ZADD', KEYS[1], score, id)
        end
    end

    local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, 1)
    if #ids == 0 then
        return false
    end

    local id = ids[1]
    redis.call('ZREM', KEYS[1], id)
    redis.call('ZADD', KEYS[2], ARGV[1], id)
    redis.call('HSET', KEYS[3], id, ARGV[3])
    return id
"""

# KEYS: due set, lease set, lease tokens, job hash
# ARGV: job id, token, ready state 1, ready state 2
FINISH_LEASE_SCRIPT = """
    if redis.call('HGET', KEYS[3], ARGV[1]) ~= ARGV[2] then
        return 0
    end
    redis.call('ZREM', KEYS[2], ARGV[1])
    redis.call('HDEL', KEYS[3], ARGV[1])

    local state = redis.call('HGET', KEYS[4], 'state_name')
    local score = redis.call('HGET', KEYS[4], 'due_score')
    if (state == ARGV[3] or state == ARGV[4]) and score and score ~= '' then
        redis.call('ZADD', KEYS[1], score, ARGV[1])
    end
    return 1
"""

# KEYS: job hash, due set, lease set
# ARGV: job id, data, state, retries, due, due score, ready state 1,
#       ready state 2, state set prefix, added score
UPDATE_JOB_SCRIPT = """
    if redis.call('EXISTS', KEYS[1]) == 0 then
        return 0
    end

    local old_state = redis.call('HGET', KEYS[1], 'state_name')
    redis.call('HSET', KEYS[1],
        'data', ARGV[2], 'state_name', ARGV[3], 'retries', ARGV[4],
        'due', ARGV[5], 'due_score', ARGV[6])

    if old_state and old_state ~= ARGV[3] then
        redis.call('ZREM', ARGV[9] .. old_state, ARGV[1])
    end
    redis.call('ZADD', ARGV[9] .. ARGV[3], ARGV[10], ARGV[1])

    -- A leased job rejoins the due set when its lease is finished
    if redis.call('ZSCORE', KEYS[3], ARGV[1]) then
        return 1
    end

    if (ARGV[3] == ARGV[7] or ARGV[3] == ARGV[8]) and ARGV[6] ~= '' then
        redis.call('ZADD', KEYS[2], ARGV[6], ARGV[1])
    else
        redis.call('ZREM', KEYS[2], ARGV[1])
    end
    return 1
"""


class RedisFetchedJob(FetchedJob):
    def __init__(self, storage: "RedisStorage", job_id: str, token: str):
        super().__init__(job_id)
        self._storage = storage
        self._token = token

    def _finish(self) -> None:
        storage = self._storage
        storage.finish_lease_script(
            keys=[
                storage.due_key,
                storage.leases_key,
                storage.lease_tokens_key,
                storage.job_key(self.job_id),
            ],
            args=[self.job_id, self._token, *READY_STATES],
        )

    def _remove_from_queue(self) -> None:
        self._finish()

    def _requeue(self) -> None:
        self._finish()


class RedisStorageTransaction(StorageTransaction):
    def __init__(self, storage: "RedisStorage"):
        super().__init__()
        self._storage = storage

    def _commit(self, jobs: List[Job]) -> None:
        storage = self._storage
        with storage.redis_client.pipeline(transaction=True) as pipe:
            for job in jobs:
                storage.update_job_script(
                    keys=[storage.job_key(job.id), storage.due_key, storage.leases_key],
                    args=[
                        job.id,
                        job.data,
                        job.state_name,
                        job.retries,
                        job.due.isoformat() if job.due else "",
                        job.due.timestamp() if job.due else "",
                        *READY_STATES,
                        storage.state_key(""),
                        job.added.timestamp(),
                    ],
                    client=pipe,
                )
            pipe.execute()


class RedisStorageConnection(StorageConnection):
    def __init__(self, storage: "RedisStorage"):
        self._storage = storage

    def store_job(self, job: Job) -> str:
        storage = self._storage
        with storage.redis_client.pipeline(transaction=True) as pipe:
            pipe.hset(
                storage.job_key(job.id),
                mapping={
                    "data": job.data,
                    "state_name": job.state_name,
                    "retries": job.retries,
                    "added": job.added.isoformat(),
                    "due": job.due.isoformat() if job.due else "",
                    "due_score": job.due.timestamp() if job.due else "",
                },
            )
            pipe.zadd(storage.state_key(job.state_name), {job.id: job.added.timestamp()})
            if job.state_name in READY_STATES and job.due is not None:
                pipe.zadd(storage.due_key, {job.id: job.due.timestamp()})
            pipe.execute()
        return job.id

    def fetch_next_job(self) -> Optional[FetchedJob]:
        storage = self._storage
        now = datetime.now(UTC)
        token = uuid.uuid4().hex
        job_id = storage.fetch_script(
            keys=[storage.due_key, storage.leases_key, storage.lease_tokens_key],
            args=[
                now.timestamp(),
                (now - storage.invisibility_timeout).timestamp(),
                token,
                storage.prefix,
                *READY_STATES,
            ],
        )
        if not job_id:
            return None
        return RedisFetchedJob(storage, job_id, token)

    def get_job(self, job_id: str) -> Optional[Job]:
        job_data = self._storage.redis_client.hgetall(self._storage.job_key(job_id))
        if not job_data:
            return None
        return Job(
            id=job_id,
            data=job_data["data"],
            state_name=job_data["state_name"],
            retries=int(job_data.get("retries") or 0),
            added=datetime.fromisoformat(job_data["added"]),
            due=datetime.fromisoformat(job_data["due"]) if job_data.get("due") else None,
        )

    def create_transaction(self) -> StorageTransaction:
        return RedisStorageTransaction(self._storage)

    def get_job_ids_by_state(self, state_name: str, start: int, count: int) -> List[str]:
        return self._storage.redis_client.zrevrange(
            self._storage.state_key(state_name), start, start + count - 1
        )

    def get_state_job_count(self, state_name: str) -> int:
        return self._storage.redis_client.zcard(self._storage.state_key(state_name))


class RedisStorage(JobStorage):
    def __init__(
        self,
        redis_client: Optional[redis.Redis] = None,
        url: Optional[str] = None,
        prefix: str = "delayedjobs:",
        invisibility_timeout: timedelta = DEFAULT_INVISIBILITY_TIMEOUT,
    ):
        if redis_client is None:
            redis_client = redis.Redis.from_url(
                url or "redis://localhost:6379/0", decode_responses=True
            )
        elif not redis_client.get_connection_kwargs().get("decode_responses", False):
            # The scripts and readers below expect str replies
            pool = redis_client.connection_pool
            redis_client = redis.Redis(
                connection_pool=redis.ConnectionPool(
                    connection_class=pool.connection_class,
                    **{**pool.connection_kwargs, "decode_responses": True},
                )
            )
        self.redis_client = redis_client

        self.prefix = prefix
        self.invisibility_timeout = invisibility_timeout
        self.due_key = f"{prefix}due"
        self.leases_key = f"{prefix}leases"
        self.lease_tokens_key = f"{prefix}lease-tokens"

        self.fetch_script = self.redis_client.register_script(FETCH_SCRIPT)
        self.finish_lease_script = self.redis_client.register_script(FINISH_LEASE_SCRIPT)
        self.update_job_script = self.redis_client.register_script(UPDATE_JOB_SCRIPT)

    def job_key(self, job_id: str) -> str:
        return f"{self.prefix}job:{job_id}"

    def state_key(self, state_name: str) -> str:
        return f"{self.prefix}state:{state_name}"

    def get_connection(self) -> StorageConnection:
        return RedisStorageConnection(self)
