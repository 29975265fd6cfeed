from .base import FetchedJob, JobStorage, StorageConnection, StorageTransaction
from .memory_storage import MemoryStorage
from .redis_storage import RedisStorage
from .sql_storage import SqlStorage

__all__ = [
    "FetchedJob",
    "JobStorage",
    "MemoryStorage",
    "RedisStorage",
    "SqlStorage",
    "StorageConnection",
    "StorageTransaction",
]
