import asyncio
import logging
from typing import Optional

from config import LOG_FORMAT, LOG_LEVEL, MAX_JOB_ATTEMPTS
from models import JobType, ModerationJob, ModerationTransaction
from moderation_manager import ModerationManager, build_manager
from redis_client import RedisClient

logger = logging.getLogger(__name__)


async def process_job(manager: ModerationManager, job: ModerationJob) -> Optional[ModerationTransaction]:
    """Run a single queued job"""
    if job.job_type == JobType.CONTENT:
        return await manager.submit_content_for_moderation(job)
    if job.job_type == JobType.IMAGE:
        return await manager.submit_image_for_moderation(job)
    if job.job_type == JobType.USER:
        return await manager.submit_user_for_moderation(job)
    if job.job_type == JobType.CONTENT_REPORT:
        return await manager.submit_content_report_for_review(job)
    if job.job_type == JobType.USER_REPORT:
        return await manager.submit_user_report_for_review(job)
    raise ValueError(f"Unknown job type: {job.job_type}")


async def handle_job(manager: ModerationManager, redis_client: RedisClient, job: ModerationJob) -> bool:
    """
    Process a job without letting it take the worker down.

    Failed jobs go back on their queue until they have been attempted
    MAX_JOB_ATTEMPTS times. Returns True if the job ran to completion.
    """
    job.dequeue_count += 1
    attempt = "first attempt" if job.dequeue_count == 1 else f"attempt {job.dequeue_count}"
    logger.info(f"Processing {job.job_type.value} job {job.handle} for app {job.app_handle} ({attempt})")

    try:
        transaction = await process_job(manager, job)
    except Exception:
        logger.exception(f"Error processing {job.job_type.value} job {job.handle}")
        if job.dequeue_count < MAX_JOB_ATTEMPTS:
            await redis_client.requeue_job(job)
        else:
            logger.error(f"Dropping job {job.handle} after {job.dequeue_count} attempts")
        return False

    if transaction is None:
        logger.info(f"Nothing submitted for job {job.handle}")
    else:
        logger.info(f"Job {job.handle} submitted to {transaction.provider}")
    return True


async def run(redis_client: RedisClient, manager: ModerationManager):
    logger.info("Worker ready. Waiting for jobs...")
    while True:
        try:
            job = await redis_client.dequeue_job(timeout=5)
        except Exception:
            logger.exception("Could not read from the job queues")
            await asyncio.sleep(5)
            continue

        if job is None:
            await asyncio.sleep(1)
            continue
        await handle_job(manager, redis_client, job)


async def serve():
    redis_client = RedisClient()
    if not await redis_client.ping():
        logger.error("Cannot connect to Redis. Please start Redis server.")
        return

    manager = build_manager(redis_client)
    try:
        await run(redis_client, manager)
    finally:
        await redis_client.close()


def main():
    """Main worker loop"""
    logging.basicConfig(level=LOG_LEVEL, format=LOG_FORMAT)
    logger.info("Starting moderation worker...")
    try:
        asyncio.run(serve())
    except KeyboardInterrupt:
        logger.info("Shutting down worker...")


if __name__ == "__main__":
    main()
