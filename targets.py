"""
Moderation targets.

Each kind of moderated entity (topic, comment, reply, user profile, image)
is a `ModerationTarget` variant that knows how to read itself fresh from its
store, what text and image it exposes for review, and how to persist a new
review status. Ban and tag are written once on the base class.

Nothing here locks: a read-modify-write may race with another writer on the
same entity. `severity.transition_allowed` keeps a stale verdict from
undoing a stronger one.
"""
import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel

from errors import UnknownTargetError
from models import (
    BlobType, ContentType, ImageMetadata, ImageType, ModerationRecord,
    ReportType, ReviewStatus,
)
from severity import transition_allowed
from stores import ContentStore, ImageStore, UserStore

logger = logging.getLogger(__name__)


class TargetRef(BaseModel):
    app_handle: str
    handle: str
    user_handle: Optional[str] = None
    image_type: ImageType = ImageType.CONTENT_BLOB


class ModerationTarget:
    name = "target"

    def __init__(self, image_target: Optional["ImageTarget"] = None):
        self.image_target = image_target

    async def read(self, ref: TargetRef):
        raise NotImplementedError

    async def save(self, entity) -> None:
        raise NotImplementedError

    def texts(self, entity) -> List[str]:
        return []

    def attached_image(self, entity) -> Optional[str]:
        return None

    def image_ref(self, ref: TargetRef, entity, image_handle: str) -> TargetRef:
        return TargetRef(
            app_handle=ref.app_handle,
            handle=image_handle,
            user_handle=entity.user_handle,
            image_type=ImageType.CONTENT_BLOB,
        )

    def detach_image(self, entity) -> None:
        pass

    async def ban(self, ref: TargetRef) -> bool:
        """Ban the target and its attached image. Returns False on a no-op."""
        entity = await self.read(ref)
        if entity is None:
            logger.info(f"{self.name} {ref.handle} is already deleted or not found")
            return False
        if entity.review_status == ReviewStatus.BANNED:
            logger.info(f"{self.name} {ref.handle} is already banned")
            return False

        logger.info(f"Banning {self.name} {ref.handle} in app {ref.app_handle}")
        image_handle = self.attached_image(entity)
        if image_handle and self.image_target is not None:
            await self.image_target.ban(self.image_ref(ref, entity, image_handle))

        self.detach_image(entity)
        entity.review_status = ReviewStatus.BANNED
        await self.save(entity)
        return True

    async def tag(self, ref: TargetRef, severity: ReviewStatus) -> bool:
        """Overwrite the review status only. Returns False on a no-op."""
        entity = await self.read(ref)
        if entity is None:
            logger.info(f"{self.name} {ref.handle} is already deleted or not found")
            return False
        if not transition_allowed(entity.review_status, severity):
            logger.info(
                f"Cannot tag {self.name} {ref.handle} as {severity.value}; "
                f"it is tagged at a higher moderation threshold ({entity.review_status.value})"
            )
            return False

        logger.info(f"Tagging {self.name} {ref.handle} as {severity.value}")
        entity.review_status = severity
        await self.save(entity)
        return True


class ImageTarget(ModerationTarget):
    name = "image"

    def __init__(self, images: ImageStore):
        super().__init__()
        self.images = images

    async def read(self, ref: TargetRef) -> Optional[ImageMetadata]:
        # an image whose bytes are gone counts as deleted
        if not await self.images.image_exists(ref.handle):
            return None
        metadata = await self.images.read_image_metadata(ref.handle)
        if metadata is None:
            metadata = ImageMetadata(
                handle=ref.handle,
                app_handle=ref.app_handle,
                user_handle=ref.user_handle or "",
                image_type=ref.image_type,
            )
        return metadata

    async def save(self, entity: ImageMetadata) -> None:
        await self.images.update_image_metadata(entity)

    def attached_image(self, entity: ImageMetadata) -> Optional[str]:
        return entity.handle

    async def ban(self, ref: TargetRef) -> bool:
        """Tag the metadata banned, then delete the bytes and renditions"""
        metadata = await self.read(ref)
        if metadata is None:
            logger.info(f"Image {ref.handle} is already deleted or not found")
            return False

        logger.info(f"Banning image {ref.handle} in app {ref.app_handle}")
        if metadata.review_status != ReviewStatus.BANNED:
            metadata.review_status = ReviewStatus.BANNED
            await self.save(metadata)
        await self.images.delete_image(ref.app_handle, metadata.user_handle, ref.handle, metadata.image_type)
        return True


class TopicTarget(ModerationTarget):
    name = "topic"

    def __init__(self, content: ContentStore, image_target: Optional[ImageTarget] = None):
        super().__init__(image_target)
        self.content = content

    async def read(self, ref):
        return await self.content.read_topic(ref.handle)

    async def save(self, entity):
        entity.last_updated_time = datetime.utcnow()
        await self.content.update_topic(entity)

    def texts(self, entity):
        return [entity.title, entity.text]

    def attached_image(self, entity):
        if entity.blob_type == BlobType.IMAGE and entity.blob_handle.strip():
            return entity.blob_handle
        return None

    def detach_image(self, entity):
        entity.blob_type = BlobType.UNKNOWN
        entity.blob_handle = ""


class CommentTarget(ModerationTarget):
    name = "comment"

    def __init__(self, content: ContentStore, image_target: Optional[ImageTarget] = None):
        super().__init__(image_target)
        self.content = content

    async def read(self, ref):
        return await self.content.read_comment(ref.handle)

    async def save(self, entity):
        entity.last_updated_time = datetime.utcnow()
        await self.content.update_comment(entity)

    def texts(self, entity):
        return [entity.text]

    def attached_image(self, entity):
        if entity.blob_type == BlobType.IMAGE and entity.blob_handle.strip():
            return entity.blob_handle
        return None

    def detach_image(self, entity):
        entity.blob_type = BlobType.UNKNOWN
        entity.blob_handle = ""


class ReplyTarget(ModerationTarget):
    name = "reply"

    def __init__(self, content: ContentStore):
        super().__init__()
        self.content = content

    async def read(self, ref):
        return await self.content.read_reply(ref.handle)

    async def save(self, entity):
        entity.last_updated_time = datetime.utcnow()
        await self.content.update_reply(entity)

    def texts(self, entity):
        return [entity.text]


class UserProfileTarget(ModerationTarget):
    name = "user profile"

    def __init__(self, users: UserStore, image_target: Optional[ImageTarget] = None):
        super().__init__(image_target)
        self.users = users

    async def read(self, ref):
        return await self.users.read_user_profile(ref.handle, ref.app_handle)

    async def save(self, entity):
        entity.last_updated_time = datetime.utcnow()
        await self.users.update_user_profile(entity)

    def texts(self, entity):
        return [entity.first_name, entity.last_name, entity.bio]

    def attached_image(self, entity):
        if entity.photo_handle.strip():
            return entity.photo_handle
        return None

    def image_ref(self, ref, entity, image_handle):
        return TargetRef(
            app_handle=ref.app_handle,
            handle=image_handle,
            user_handle=entity.user_handle,
            image_type=ImageType.USER_PHOTO,
        )

    def detach_image(self, entity):
        entity.photo_handle = ""


class TargetRegistry:
    """Resolves content types and moderation records to target variants"""

    def __init__(self, content: ContentStore, users: UserStore, images: ImageStore):
        self.image = ImageTarget(images)
        self.user = UserProfileTarget(users, self.image)
        self.content: Dict[ContentType, ModerationTarget] = {
            ContentType.TOPIC: TopicTarget(content, self.image),
            ContentType.COMMENT: CommentTarget(content, self.image),
            ContentType.REPLY: ReplyTarget(content),
        }

    def for_content(self, content_type: ContentType) -> ModerationTarget:
        target = self.content.get(content_type)
        if target is None:
            raise UnknownTargetError(f"Unexpected content type: {content_type}")
        return target

    def resolve(self, kind: ReportType, record: ModerationRecord) -> Tuple[ModerationTarget, TargetRef]:
        """Map a moderation record back to the target it concerns"""
        if kind == ReportType.CONTENT:
            target = self.for_content(record.content_type)
            if not record.content_handle:
                raise UnknownTargetError(f"Moderation {record.handle} has no content handle")
            return target, TargetRef(
                app_handle=record.app_handle,
                handle=record.content_handle,
                user_handle=record.user_handle,
            )

        if kind == ReportType.USER:
            return self.user, TargetRef(app_handle=record.app_handle, handle=record.user_handle)

        if kind == ReportType.IMAGE:
            if not record.image_handle:
                raise UnknownTargetError(f"Moderation {record.handle} has no image handle")
            return self.image, TargetRef(
                app_handle=record.app_handle,
                handle=record.image_handle,
                user_handle=record.user_handle,
                image_type=record.image_type,
            )

        raise UnknownTargetError(f"Unexpected moderation kind: {kind}")
