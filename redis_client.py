import logging
from datetime import datetime
from typing import List, Optional, Type, TypeVar, Tuple

import redis.asyncio as redis
from redis.exceptions import RedisError
from pydantic import BaseModel

from config import (
    REDIS_HOST, REDIS_PORT, REDIS_DB, MODERATION_QUEUE, REPORTS_QUEUE,
    IMAGE_CDN_BASE_URL, IMAGE_SIZES, CLASSIFIER_CREDENTIALS_KEY,
)
from errors import TransactionNotFoundError
from models import (
    Comment, ContentReport, ImageBlob, ImageMetadata, ImageSize, ImageType,
    ModerationJob, ModerationRecord, ModerationStatus, ModerationTransaction,
    ReportFeed, Reply, Topic, UserProfile, UserReport, ValidationConfig, JobType,
)

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)

REPORT_JOB_TYPES = {JobType.CONTENT_REPORT, JobType.USER_REPORT}


def feed_key(kind: str, app_handle: str, feed: ReportFeed, owner_handle: Optional[str] = None) -> str:
    if feed == ReportFeed.FOR_APP:
        return f"{kind}_feed:{app_handle}:{feed.value}"
    return f"{kind}_feed:{app_handle}:{feed.value}:{owner_handle}"


class RedisClient:
    """Redis-backed stores and job queue for the moderation core"""

    def __init__(self, client: Optional[redis.Redis] = None, binary_client: Optional[redis.Redis] = None):
        self.client = client or redis.Redis(
            host=REDIS_HOST,
            port=REDIS_PORT,
            db=REDIS_DB,
            decode_responses=True
        )
        # image bytes must not be decoded
        self.binary = binary_client or redis.Redis(
            host=REDIS_HOST,
            port=REDIS_PORT,
            db=REDIS_DB,
            decode_responses=False
        )

    async def _read_model(self, key: str, model: Type[ModelT]) -> Optional[ModelT]:
        data = await self.client.get(key)
        if data:
            return model.model_validate_json(data)
        return None

    async def _write_model(self, key: str, value: BaseModel):
        await self.client.set(key, value.model_dump_json())

    # Queue

    async def enqueue_moderation_job(self, job: ModerationJob):
        """Add a proactive submission job to the moderation queue"""
        await self.client.lpush(MODERATION_QUEUE, job.model_dump_json())

    async def enqueue_report_review_job(self, job: ModerationJob):
        """Add a report review job to the reports queue"""
        await self.client.lpush(REPORTS_QUEUE, job.model_dump_json())

    async def requeue_job(self, job: ModerationJob):
        """Push a job back for another attempt"""
        if job.job_type in REPORT_JOB_TYPES:
            await self.enqueue_report_review_job(job)
        else:
            await self.enqueue_moderation_job(job)

    async def dequeue_job(self, timeout: int = 5) -> Optional[ModerationJob]:
        """Get the next job from either queue"""
        result = await self.client.brpop([MODERATION_QUEUE, REPORTS_QUEUE], timeout=timeout)
        if result:
            _, data = result
            return ModerationJob.model_validate_json(data)
        return None

    # Transactions and moderation records

    async def insert_transaction(self, transaction: ModerationTransaction):
        await self._write_model(f"transaction:{transaction.handle}", transaction)

    async def query_transaction(self, handle: str) -> Optional[ModerationTransaction]:
        return await self._read_model(f"transaction:{handle}", ModerationTransaction)

    async def update_transaction_response(self, handle: str, responded_at: datetime, response_body: str):
        """Overwrite the response fields; providers may call back more than once"""
        transaction = await self.query_transaction(handle)
        if transaction is None:
            raise TransactionNotFoundError(handle)
        transaction.responded_at = responded_at
        transaction.response_body = response_body
        await self.insert_transaction(transaction)

    async def insert_moderation(self, record: ModerationRecord):
        await self._write_model(f"moderation:{record.app_handle}:{record.handle}", record)

    async def query_moderation(self, app_handle: str, handle: str) -> Optional[ModerationRecord]:
        return await self._read_model(f"moderation:{app_handle}:{handle}", ModerationRecord)

    async def update_moderation_status(self, app_handle: str, handle: str, status: ModerationStatus):
        record = await self.query_moderation(app_handle, handle)
        if record is None:
            logger.error(f"No moderation record {handle} in app {app_handle} to mark {status.value}")
            return
        record.status = status
        await self.insert_moderation(record)

    # Reports

    async def insert_content_report(self, report: ContentReport):
        app, content = report.app_handle, report.content_handle
        pipe = self.client.pipeline()
        pipe.set(f"content_report:{app}:{report.report_handle}", report.model_dump_json())
        pipe.sadd(f"content_reports:{app}:{content}", report.report_handle)
        pipe.sadd(f"content_reporters:{app}:{content}", report.reporting_user_handle)
        feeds = (
            (ReportFeed.FOR_CONTENT, content),
            (ReportFeed.FOR_USER, report.content_user_handle),
            (ReportFeed.FROM_USER, report.reporting_user_handle),
            (ReportFeed.FOR_APP, None),
        )
        for feed, owner_handle in feeds:
            pipe.zadd(feed_key("content_report", app, feed, owner_handle), {report.report_handle: report.created_at.timestamp()})
        await pipe.execute()

    async def query_content_report(self, app_handle: str, report_handle: str) -> Optional[ContentReport]:
        return await self._read_model(f"content_report:{app_handle}:{report_handle}", ContentReport)

    async def count_content_reports(self, app_handle: str, content_handle: str) -> int:
        return int(await self.client.scard(f"content_reports:{app_handle}:{content_handle}"))

    async def has_reported_content_before(self, app_handle: str, content_handle: str, reporting_user_handle: str) -> bool:
        return bool(await self.client.sismember(f"content_reporters:{app_handle}:{content_handle}", reporting_user_handle))

    async def read_content_reports(
        self, app_handle: str, feed: ReportFeed, owner_handle: Optional[str], cursor: Optional[str], limit: int,
    ) -> List[ContentReport]:
        return await self._read_report_feed("content_report", ContentReport, app_handle, feed, owner_handle, cursor, limit)

    async def insert_user_report(self, report: UserReport):
        app, user = report.app_handle, report.reported_user_handle
        pipe = self.client.pipeline()
        pipe.set(f"user_report:{app}:{report.report_handle}", report.model_dump_json())
        pipe.sadd(f"user_reports:{app}:{user}", report.report_handle)
        pipe.sadd(f"user_reporters:{app}:{user}", report.reporting_user_handle)
        feeds = (
            (ReportFeed.FOR_USER, user),
            (ReportFeed.FROM_USER, report.reporting_user_handle),
            (ReportFeed.FOR_APP, None),
        )
        for feed, owner_handle in feeds:
            pipe.zadd(feed_key("user_report", app, feed, owner_handle), {report.report_handle: report.created_at.timestamp()})
        await pipe.execute()

    async def query_user_report(self, app_handle: str, report_handle: str) -> Optional[UserReport]:
        return await self._read_model(f"user_report:{app_handle}:{report_handle}", UserReport)

    async def count_user_reports(self, app_handle: str, reported_user_handle: str) -> int:
        return int(await self.client.scard(f"user_reports:{app_handle}:{reported_user_handle}"))

    async def has_reported_user_before(self, app_handle: str, reported_user_handle: str, reporting_user_handle: str) -> bool:
        return bool(await self.client.sismember(f"user_reporters:{app_handle}:{reported_user_handle}", reporting_user_handle))

    async def read_user_reports(
        self, app_handle: str, feed: ReportFeed, owner_handle: Optional[str], cursor: Optional[str], limit: int,
    ) -> List[UserReport]:
        return await self._read_report_feed("user_report", UserReport, app_handle, feed, owner_handle, cursor, limit)

    async def _read_report_feed(self, kind: str, model: Type[ModelT], app_handle: str, feed: ReportFeed,
                                owner_handle: Optional[str], cursor: Optional[str], limit: int) -> List[ModelT]:
        """Newest first; `cursor` is the last report handle of the previous page"""
        key = feed_key(kind, app_handle, feed, owner_handle)
        start = 0
        if cursor:
            rank = await self.client.zrevrank(key, cursor)
            if rank is None:
                return []
            start = rank + 1
        handles = await self.client.zrevrange(key, start, start + limit - 1)
        if not handles:
            return []
        values = await self.client.mget([f"{kind}:{app_handle}:{handle}" for handle in handles])
        return [model.model_validate_json(value) for value in values if value]

    # App configuration

    async def read_validation_config(self, app_handle: str) -> Optional[ValidationConfig]:
        data = await self.client.hgetall(f"validation_config:{app_handle}")
        if not data:
            return None
        return ValidationConfig(
            allow_mature_content=data.get("allow_mature_content", "true").lower() in ("1", "true", "yes"),
            content_report_threshold=int(data.get("content_report_threshold", 0)),
            user_report_threshold=int(data.get("user_report_threshold", 0)),
        )

    async def read_classifier_credentials(self) -> Tuple[str, str]:
        """Endpoint and key of the classification provider, as provisioned by ops"""
        data = await self.client.hgetall(CLASSIFIER_CREDENTIALS_KEY)
        return data.get("url", ""), data.get("key", "")

    # Content and users

    async def read_topic(self, topic_handle: str) -> Optional[Topic]:
        return await self._read_model(f"topic:{topic_handle}", Topic)

    async def update_topic(self, topic: Topic):
        await self._write_model(f"topic:{topic.handle}", topic)

    async def read_comment(self, comment_handle: str) -> Optional[Comment]:
        return await self._read_model(f"comment:{comment_handle}", Comment)

    async def update_comment(self, comment: Comment):
        await self._write_model(f"comment:{comment.handle}", comment)

    async def read_reply(self, reply_handle: str) -> Optional[Reply]:
        return await self._read_model(f"reply:{reply_handle}", Reply)

    async def update_reply(self, reply: Reply):
        await self._write_model(f"reply:{reply.handle}", reply)

    async def read_user_profile(self, user_handle: str, app_handle: str) -> Optional[UserProfile]:
        return await self._read_model(f"user_profile:{app_handle}:{user_handle}", UserProfile)

    async def update_user_profile(self, profile: UserProfile):
        await self._write_model(f"user_profile:{profile.app_handle}:{profile.user_handle}", profile)

    # Images

    async def read_image(self, image_handle: str) -> Optional[ImageBlob]:
        data = await self.binary.get(f"image:{image_handle}")
        if data is None:
            return None
        return ImageBlob(handle=image_handle, data=data, size=len(data))

    async def image_exists(self, image_handle: str) -> bool:
        return bool(await self.binary.exists(f"image:{image_handle}"))

    async def create_resized_image(self, image_handle: str, data: bytes, size: ImageSize):
        await self.binary.set(f"image:{image_handle}", data)

    async def delete_image(self, app_handle: str, user_handle: str, image_handle: str, image_type: ImageType):
        """Delete the image bytes together with every rendition"""
        keys = [f"image:{image_handle}"]
        keys.extend(f"image:{image_handle}{size['id']}" for size in IMAGE_SIZES.values())
        await self.binary.delete(*keys)
        logger.info(f"Deleted image {image_handle} ({image_type.value}) of user {user_handle} in app {app_handle}")

    async def read_image_cdn_url(self, image_handle: str) -> Optional[str]:
        if await self.image_exists(image_handle):
            return f"{IMAGE_CDN_BASE_URL}/{image_handle}"
        return None

    async def read_image_metadata(self, image_handle: str) -> Optional[ImageMetadata]:
        return await self._read_model(f"image_meta:{image_handle}", ImageMetadata)

    async def update_image_metadata(self, metadata: ImageMetadata):
        """Upsert: images uploaded elsewhere may have no metadata yet"""
        await self._write_model(f"image_meta:{metadata.handle}", metadata)

    async def ping(self) -> bool:
        """Check Redis connection"""
        try:
            return bool(await self.client.ping())
        except RedisError:
            return False

    async def close(self):
        await self.client.aclose()
        await self.binary.aclose()
