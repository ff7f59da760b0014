"""Queue for reconciliation work the request path must not do inline."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from arq import create_pool
from arq.connections import ArqRedis

from consultpay.core.config import Settings
from consultpay.core.logging import get_logger

log = get_logger(__name__)


class TaskQueue(ABC):
    @abstractmethod
    async def enqueue(self, job_name: str, *args: Any, job_id: str | None = None) -> None:
        ...

    async def close(self) -> None:
        pass


class ArqTaskQueue(TaskQueue):
    """Enqueues onto the arq worker (consultpay.worker.run_worker)."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._pool: ArqRedis | None = None

    async def _get_pool(self) -> ArqRedis:
        if self._pool is None:
            from consultpay.worker.tasks import get_redis_settings
            self._pool = await create_pool(get_redis_settings(self._settings))
        return self._pool

    async def enqueue(self, job_name: str, *args: Any, job_id: str | None = None) -> None:
        pool = await self._get_pool()
        job = await pool.enqueue_job(job_name, *args, _job_id=job_id)
        # arq returns None when a job with this id is already queued
        log.info("job_enqueued", job=job_name, job_id=job_id, duplicate=job is None)

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.aclose()
            self._pool = None


@dataclass
class QueuedJob:
    job_name: str
    args: tuple[Any, ...]
    job_id: str | None = None


@dataclass
class InMemoryTaskQueue(TaskQueue):
    """Records jobs for the memory backend; drained by tests or a dev loop."""

    jobs: list[QueuedJob] = field(default_factory=list)

    async def enqueue(self, job_name: str, *args: Any, job_id: str | None = None) -> None:
        if job_id is not None and any(j.job_id == job_id for j in self.jobs):
            return
        self.jobs.append(QueuedJob(job_name=job_name, args=args, job_id=job_id))
        log.info("job_enqueued", job=job_name, job_id=job_id, backend="memory")


def get_task_queue(settings: Settings) -> TaskQueue:
    if settings.payment_store_backend == "memory":
        return InMemoryTaskQueue()
    return ArqTaskQueue(settings)
