import io
import struct
import zlib

import numpy as np
import pytest
from PIL import Image

from app.adapters.cache.memory_plate_cache import MemoryPlateCache
from app.domain.models import (
    EnhancedImage,
    ImageBuffer,
    ImageFormat,
    NormalizedRegion,
    PlateReading,
    VehicleAttributes,
)


def _image_bytes(fmt: ImageFormat, size=(400, 300), mode="RGB", color=(120, 130, 140), noise=False) -> bytes:
    w, h = size
    channels = {"RGB": 3, "RGBA": 4, "L": 1}[mode]
    if noise:
        rng = np.random.default_rng(7)
        arr = rng.integers(0, 256, size=(h, w, channels), dtype=np.uint8)
    else:
        fill = color if channels > 1 else color[:1]
        if channels == 4 and len(fill) == 3:
            fill = tuple(fill) + (200,)
        arr = np.empty((h, w, channels), dtype=np.uint8)
        arr[:, :] = fill[:channels]
    if channels == 1:
        arr = arr[:, :, 0]
    buf = io.BytesIO()
    Image.fromarray(arr).save(buf, format=fmt.pil_format)
    return buf.getvalue()


@pytest.fixture
def image_factory():
    """Builds an ImageBuffer holding a real encoded image."""
    def build(fmt=ImageFormat.JPEG, size=(400, 300), mode="RGB", color=(120, 130, 140), noise=False):
        return ImageBuffer(data=_image_bytes(fmt, size, mode, color, noise), format=fmt)
    return build


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache(clock):
    return MemoryPlateCache(clock=clock)


class FakeProvider:
    """In-memory VisionProviderPort that records every call."""
    name = "fake"

    def __init__(
        self,
        plate="ABC1234",
        region=NormalizedRegion(x=0.4, y=0.6, width=0.2, height=0.1),
        vehicle=None,
        crop=None,
        plate_error=None,
        vehicle_error=None,
        crop_error=None,
    ):
        self.reading = PlateReading(plate=plate, confidence=0.9, region=region)
        self.vehicle = vehicle or VehicleAttributes(
            color="White", body_type="Sedan", manufacturer="Fiat", plate_format="Mercosul"
        )
        self.crop = crop or EnhancedImage(data=b"\xff\xd8crop", mime_type="image/jpeg")
        self.plate_error = plate_error
        self.vehicle_error = vehicle_error
        self.crop_error = crop_error
        self.calls = []

    async def extract_plate(self, image):
        self.calls.append("extract_plate")
        if self.plate_error:
            raise self.plate_error
        return self.reading

    async def extract_attributes(self, image, plate):
        self.calls.append("extract_attributes")
        if self.vehicle_error:
            raise self.vehicle_error
        return self.vehicle

    async def crop_plate(self, image, reading):
        self.calls.append("crop_plate")
        if self.crop_error:
            raise self.crop_error
        return self.crop


@pytest.fixture
def make_provider():
    return FakeProvider


def _png_chunk(kind: bytes, data: bytes) -> bytes:
    return struct.pack(">I", len(data)) + kind + data + struct.pack(">I", zlib.crc32(kind + data))


@pytest.fixture
def oversized_png():
    """A few hundred bytes of PNG that declare a 20000x20000 1-bit image."""
    header = struct.pack(">IIBBBBB", 20000, 20000, 1, 0, 0, 0, 0)
    return (
        b"\x89PNG\r\n\x1a\n"
        + _png_chunk(b"IHDR", header)
        + _png_chunk(b"IDAT", zlib.compress(b"\x00" * 64))
        + _png_chunk(b"IEND", b"")
    )
