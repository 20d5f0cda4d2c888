import asyncio
import io
import logging
from typing import Optional, Tuple

from PIL import Image, UnidentifiedImageError

from config import MAX_IMAGE_BYTES, MIN_IMAGE_EDGE, SUPPORTED_IMAGE_FORMATS, IMAGE_SIZES
from models import ImageSize
from stores import ImageStore

logger = logging.getLogger(__name__)

HUGE = ImageSize(**IMAGE_SIZES["huge"])


def read_dimensions(data: bytes) -> Tuple[str, int, int]:
    """Return (format, width, height) of an encoded image"""
    with Image.open(io.BytesIO(data)) as img:
        return img.format or "", img.width, img.height


def render_resized(data: bytes, size: ImageSize) -> bytes:
    """
    Re-encode an image at the profile width, preserving aspect ratio.

    Images already narrower than the profile are re-encoded at their own
    width. The output is JPEG, which every provider accepts.
    """
    with Image.open(io.BytesIO(data)) as img:
        width = min(img.width, size.width)
        height = max(1, round(img.height * width / img.width))
        resized = img.convert("RGB").resize((width, height), Image.LANCZOS)

    buffer = io.BytesIO()
    resized.save(buffer, format="JPEG", quality=90)
    return buffer.getvalue()


class ImageGate:
    """Pick the rendition of an image the classification provider will accept"""

    def __init__(
        self,
        images: ImageStore,
        max_bytes: int = MAX_IMAGE_BYTES,
        min_edge: int = MIN_IMAGE_EDGE,
        resize_profile: ImageSize = HUGE,
    ):
        self.images = images
        self.max_bytes = max_bytes
        self.min_edge = min_edge
        self.resize_profile = resize_profile

    async def select_image(self, image_handle: str) -> Optional[str]:
        """
        Return the handle to submit for `image_handle`, or None if no
        rendition of it is eligible.

        Oversized images are swapped for the bounded rendition, created on
        demand from the original. Images below the minimum edge are never
        submitted; upscaling them gains nothing.
        """
        blob = await self.images.read_image(image_handle)
        if blob is None or not blob.data:
            logger.error(f"Could not read image {image_handle}")
            return None

        if blob.size > self.max_bytes:
            resized_handle = image_handle + self.resize_profile.id
            logger.info(f"Image {image_handle} exceeds {self.max_bytes} bytes, using rendition {resized_handle}")

            resized = await self.images.read_image(resized_handle)
            if resized is None or not resized.data:
                logger.info(f"Rendition {resized_handle} does not exist yet, creating it")
                try:
                    data = await asyncio.to_thread(render_resized, blob.data, self.resize_profile)
                except (UnidentifiedImageError, OSError) as e:
                    logger.error(f"Could not decode image {image_handle}: {e}")
                    return None
                await self.images.create_resized_image(resized_handle, data, self.resize_profile)
            return resized_handle

        try:
            image_format, width, height = await asyncio.to_thread(read_dimensions, blob.data)
        except (UnidentifiedImageError, OSError) as e:
            logger.error(f"Could not decode image {image_handle}: {e}")
            return None

        if image_format.upper() not in SUPPORTED_IMAGE_FORMATS:
            logger.info(f"Image {image_handle} has unsupported format {image_format!r}")
            return None

        if width < self.min_edge or height < self.min_edge:
            logger.info(
                f"Image {image_handle} is {width}x{height}, below the {self.min_edge} pixel minimum"
            )
            return None

        return image_handle
