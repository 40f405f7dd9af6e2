"""ARQ wiring shared by the API process and the worker.

The API only enqueues notification deliveries; ``app.workers.arq_tasks``
consumes them and runs the scheduled ledger sweeps.
"""

import logging
from typing import Any, Optional

from arq import create_pool
from arq.connections import ArqRedis, RedisSettings
from arq.jobs import Job
from redis.exceptions import RedisError

from app.core.config import settings

logger = logging.getLogger(__name__)

_pool: Optional[ArqRedis] = None


def parse_redis_url(url: str) -> RedisSettings:
    """Build ARQ connection settings from a ``redis://`` or ``rediss://`` URL.

    Raises:
        ValueError: URL is not a Redis URL
    """
    if not url.startswith(("redis://", "rediss://")):
        raise ValueError(f"Invalid Redis URL format: {url}")

    redis_settings = RedisSettings.from_dsn(url)
    # Fail fast: notifications are best-effort and must not stall requests
    redis_settings.conn_retries = settings.REDIS_CONNECT_RETRIES
    return redis_settings


def get_redis_settings() -> RedisSettings:
    return parse_redis_url(settings.REDIS_URL)


async def get_arq_pool() -> ArqRedis:
    """Return the process-wide ARQ pool, connecting on first use."""
    global _pool
    if _pool is None:
        _pool = await create_pool(
            get_redis_settings(), default_queue_name=settings.ARQ_QUEUE_NAME
        )
    return _pool


async def close_arq_pool() -> None:
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


async def enqueue_job(
    function_name: str, *args: Any, _job_id: Optional[str] = None, **kwargs: Any
) -> Optional[Job]:
    """Enqueue ``function_name`` on the marketplace queue.

    Returns None when a job with the same ``_job_id`` is already queued.
    Connection errors propagate to the caller.
    """
    pool = await get_arq_pool()
    job = await pool.enqueue_job(function_name, *args, _job_id=_job_id, **kwargs)

    if job is None:
        logger.warning(f"Job {function_name} with ID {_job_id} already queued, skipping")
    else:
        logger.debug(f"Enqueued job {function_name} ({job.job_id})")
    return job


async def ping_queue() -> bool:
    """True when the queue's Redis answers."""
    try:
        pool = await get_arq_pool()
        return bool(await pool.ping())
    except (RedisError, OSError) as e:
        logger.warning(f"Job queue unreachable: {e}")
        return False
