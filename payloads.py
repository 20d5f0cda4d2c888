import logging
from typing import List, Optional

from pydantic import BaseModel, Field

from image_moderation import ImageGate
from models import ReviewStatus
from stores import ImageStore
from targets import ModerationTarget, TargetRef

logger = logging.getLogger(__name__)


class Payload(BaseModel):
    user_handle: str
    texts: List[str] = Field(default_factory=list)
    image_handle: Optional[str] = None
    image_url: Optional[str] = None


class PayloadAssembler:
    """Collects the text fragments and eligible image of a target for review"""

    def __init__(self, images: ImageStore, gate: ImageGate):
        self.images = images
        self.gate = gate

    async def assemble(self, target: ModerationTarget, ref: TargetRef) -> Optional[Payload]:
        """
        Read the target fresh and build its payload.

        Returns None when the target is gone, already banned, or has nothing
        left to review once blank text and ineligible images are dropped.
        """
        entity = await target.read(ref)
        if entity is None:
            logger.info(f"{target.name} {ref.handle} has already been deleted in app {ref.app_handle}")
            return None
        if entity.review_status == ReviewStatus.BANNED:
            logger.info(f"{target.name} {ref.handle} has already been banned in app {ref.app_handle}")
            return None

        texts = [text for text in target.texts(entity) if text and text.strip()]
        image_handle = target.attached_image(entity)
        image_url = await self.image_url(image_handle) if image_handle else None

        if not texts and image_url is None:
            logger.info(f"The {target.name} {ref.handle} is empty in app {ref.app_handle}")
            return None

        return Payload(
            user_handle=entity.user_handle,
            texts=texts,
            image_handle=image_handle,
            image_url=image_url,
        )

    async def image_url(self, image_handle: str) -> Optional[str]:
        """CDN address of the eligible rendition of an image, if any"""
        if not await self.images.image_exists(image_handle):
            return None

        eligible = await self.gate.select_image(image_handle)
        if eligible is None:
            return None

        url = await self.images.read_image_cdn_url(eligible)
        if url is None:
            logger.info(f"There is no image url to validate for image {eligible}")
        return url
