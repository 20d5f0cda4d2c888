import asyncio
import io

from PIL import Image

from conftest import make_image
from image_moderation import ImageGate, read_dimensions, render_resized
from models import ImageSize

FIVE_MB = 5 * 1024 * 1024


def test_render_resized_keeps_aspect_ratio():
    data = render_resized(make_image(1200, 600), ImageSize(id="t", width=500))

    image_format, width, height = read_dimensions(data)
    assert image_format == "JPEG"
    assert (width, height) == (500, 250)


def test_render_resized_never_upscales():
    data = render_resized(make_image(300, 200), ImageSize(id="t", width=500))
    assert read_dimensions(data)[1:] == (300, 200)


def test_oversized_image_replaced_by_synthesized_rendition(store):
    store.add_image("img-1", make_image(1200, 800), size=FIVE_MB)
    gate = ImageGate(store)

    selected = asyncio.run(gate.select_image("img-1"))

    assert selected == "img-1t"
    assert store.writes_of("resized_image") == [("resized_image", "img-1t")]
    with Image.open(io.BytesIO(store.images["img-1t"])) as rendition:
        assert rendition.width == 500


def test_existing_rendition_is_reused(store):
    store.add_image("img-1", make_image(1200, 800), size=FIVE_MB)
    store.add_image("img-1t", make_image(500, 333))
    gate = ImageGate(store)

    assert asyncio.run(gate.select_image("img-1")) == "img-1t"
    assert store.writes_of("resized_image") == []


def test_small_image_is_not_eligible(store):
    store.add_image("img-1", make_image(40, 40))
    assert asyncio.run(ImageGate(store).select_image("img-1")) is None


def test_narrow_image_is_not_eligible(store):
    store.add_image("img-1", make_image(400, 49))
    assert asyncio.run(ImageGate(store).select_image("img-1")) is None


def test_eligible_image_keeps_its_handle(store):
    store.add_image("img-1", make_image(50, 50, "JPEG"))
    assert asyncio.run(ImageGate(store).select_image("img-1")) == "img-1"
    assert store.writes == []


def test_unsupported_format_is_not_eligible(store):
    store.add_image("img-1", make_image(100, 100, "TIFF"))
    assert asyncio.run(ImageGate(store).select_image("img-1")) is None


def test_undecodable_image_is_not_eligible(store):
    store.add_image("img-1", b"definitely not an image")
    assert asyncio.run(ImageGate(store).select_image("img-1")) is None


def test_missing_image_is_not_eligible(store):
    assert asyncio.run(ImageGate(store).select_image("img-404")) is None


def test_limits_are_configurable(store):
    data = make_image(600, 600)
    store.add_image("img-1", data)
    gate = ImageGate(store, max_bytes=len(data) - 1, resize_profile=ImageSize(id="l", width=100))

    assert asyncio.run(gate.select_image("img-1")) == "img-1l"
    assert read_dimensions(store.images["img-1l"])[1:] == (100, 100)
