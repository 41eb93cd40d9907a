"""Best-effort enqueueing of background jobs on the ARQ worker"""

import asyncio
import logging

from arq import create_pool

from .domain.schedules.schemas import QueuedJob
from .worker import get_redis_settings

logger = logging.getLogger(__name__)

POOL_TIMEOUT_SECONDS = 10.0


async def enqueue_jobs(jobs: list[QueuedJob]) -> list[str]:
    """
    Enqueue jobs requested by a workflow. Failures are logged and never raised:
    the workflow that requested them has already committed.
    """
    if not jobs:
        return []

    try:
        pool = await asyncio.wait_for(
            create_pool(get_redis_settings()), timeout=POOL_TIMEOUT_SECONDS
        )
    except Exception as e:
        logger.warning(f"⚠️ Job queue unavailable, dropping {len(jobs)} job(s): {e}")
        return []

    job_ids = []
    try:
        for queued in jobs:
            try:
                job = await pool.enqueue_job(queued.function, *queued.args)
                if job is not None:
                    job_ids.append(job.job_id)
                    logger.info(f"📋 Queued {queued.function}: {job.job_id}")
            except Exception as e:
                logger.error(f"❌ Failed to queue {queued.function}: {e}")
    finally:
        await pool.close()

    return job_ids
