"""Example of how to run the delayedjobs dashboard."""
from __future__ import annotations

import argparse
import os

import redis
import uvicorn

from delayedjobs.client import BackgroundJobClient
from delayedjobs.dashboard import create_dashboard_app
from delayedjobs.execution.invocation import JobRegistry
from delayedjobs.storage.base import JobStorage
from delayedjobs.storage.memory_storage import MemoryStorage
from delayedjobs.storage.redis_storage import RedisStorage
from delayedjobs.storage.sql_storage import SqlStorage


def create_storage(storage: str, redis_url: str | None, database_url: str | None) -> JobStorage:
    storage = storage.strip().lower()
    if storage == "memory":
        return MemoryStorage()
    if storage == "sql":
        return SqlStorage(connection_url=database_url or "sqlite:///delayedjobs.db")
    if storage != "redis":
        raise ValueError("storage must be 'redis', 'sql' or 'memory'")

    if redis_url:
        return RedisStorage(redis_client=redis.Redis.from_url(redis_url, decode_responses=True))
    return RedisStorage()


def create_client(
    storage: str, redis_url: str | None = None, database_url: str | None = None
) -> BackgroundJobClient:
    # The dashboard only reads and requeues, so it needs no registered targets
    return BackgroundJobClient(create_storage(storage, redis_url, database_url), JobRegistry())


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the delayedjobs dashboard")
    parser.add_argument(
        "--storage",
        choices=["redis", "sql", "memory"],
        default=os.getenv("DELAYEDJOBS_STORAGE", "memory"),
        help="Storage backend to use (env: DELAYEDJOBS_STORAGE).",
    )
    parser.add_argument(
        "--redis-url",
        default=os.getenv("DELAYEDJOBS_REDIS_URL"),
        help="Redis URL for the redis backend (env: DELAYEDJOBS_REDIS_URL).",
    )
    parser.add_argument(
        "--database-url",
        default=os.getenv("DELAYEDJOBS_DATABASE_URL"),
        help="SQLAlchemy URL for the sql backend (env: DELAYEDJOBS_DATABASE_URL).",
    )
    parser.add_argument("--host", default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8000)
    return parser


default_client = create_client(
    os.getenv("DELAYEDJOBS_STORAGE", "memory"),
    os.getenv("DELAYEDJOBS_REDIS_URL"),
    os.getenv("DELAYEDJOBS_DATABASE_URL"),
)
app = create_dashboard_app(default_client, debug=True)


if __name__ == "__main__":
    args = build_arg_parser().parse_args()
    client = create_client(args.storage, args.redis_url, args.database_url)
    app = create_dashboard_app(client, debug=True)
    uvicorn.run(app, host=args.host, port=args.port)
