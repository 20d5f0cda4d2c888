"""
Collaborator interfaces consumed by the moderation core.

Every method is a coroutine; implementations are free to talk to remote
storage. `redis_client.RedisClient` implements all of them.
"""
from datetime import datetime
from typing import List, Optional, Protocol

from models import (
    Comment, ContentReport, ImageBlob, ImageMetadata, ImageSize, ImageType,
    ModerationJob, ModerationRecord, ModerationStatus, ModerationTransaction,
    ReportFeed, Reply, Topic, UserProfile, UserReport, ValidationConfig,
)


class ContentStore(Protocol):
    async def read_topic(self, topic_handle: str) -> Optional[Topic]: ...

    async def update_topic(self, topic: Topic) -> None: ...

    async def read_comment(self, comment_handle: str) -> Optional[Comment]: ...

    async def update_comment(self, comment: Comment) -> None: ...

    async def read_reply(self, reply_handle: str) -> Optional[Reply]: ...

    async def update_reply(self, reply: Reply) -> None: ...


class UserStore(Protocol):
    async def read_user_profile(self, user_handle: str, app_handle: str) -> Optional[UserProfile]: ...

    async def update_user_profile(self, profile: UserProfile) -> None: ...


class ImageStore(Protocol):
    async def read_image(self, image_handle: str) -> Optional[ImageBlob]: ...

    async def image_exists(self, image_handle: str) -> bool: ...

    async def create_resized_image(self, image_handle: str, data: bytes, size: ImageSize) -> None: ...

    async def delete_image(self, app_handle: str, user_handle: str, image_handle: str, image_type: ImageType) -> None: ...

    async def read_image_cdn_url(self, image_handle: str) -> Optional[str]: ...

    async def read_image_metadata(self, image_handle: str) -> Optional[ImageMetadata]: ...

    async def update_image_metadata(self, metadata: ImageMetadata) -> None: ...


class AppConfigStore(Protocol):
    async def read_validation_config(self, app_handle: str) -> Optional[ValidationConfig]: ...


class TransactionStore(Protocol):
    async def insert_transaction(self, transaction: ModerationTransaction) -> None: ...

    async def query_transaction(self, handle: str) -> Optional[ModerationTransaction]: ...

    async def update_transaction_response(self, handle: str, responded_at: datetime, response_body: str) -> None: ...


class ModerationStore(Protocol):
    async def insert_moderation(self, record: ModerationRecord) -> None: ...

    async def query_moderation(self, app_handle: str, handle: str) -> Optional[ModerationRecord]: ...

    async def update_moderation_status(self, app_handle: str, handle: str, status: ModerationStatus) -> None: ...


class ReportStore(Protocol):
    async def insert_content_report(self, report: ContentReport) -> None: ...

    async def query_content_report(self, app_handle: str, report_handle: str) -> Optional[ContentReport]: ...

    async def count_content_reports(self, app_handle: str, content_handle: str) -> int: ...

    async def has_reported_content_before(self, app_handle: str, content_handle: str, reporting_user_handle: str) -> bool: ...

    async def read_content_reports(
        self, app_handle: str, feed: ReportFeed, owner_handle: Optional[str], cursor: Optional[str], limit: int,
    ) -> List[ContentReport]: ...

    async def insert_user_report(self, report: UserReport) -> None: ...

    async def query_user_report(self, app_handle: str, report_handle: str) -> Optional[UserReport]: ...

    async def count_user_reports(self, app_handle: str, reported_user_handle: str) -> int: ...

    async def has_reported_user_before(self, app_handle: str, reported_user_handle: str, reporting_user_handle: str) -> bool: ...

    async def read_user_reports(
        self, app_handle: str, feed: ReportFeed, owner_handle: Optional[str], cursor: Optional[str], limit: int,
    ) -> List[UserReport]: ...


class ModerationQueue(Protocol):
    async def enqueue_moderation_job(self, job: ModerationJob) -> None: ...

    async def enqueue_report_review_job(self, job: ModerationJob) -> None: ...
