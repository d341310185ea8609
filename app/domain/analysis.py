import base64
import binascii
import logging
from typing import Optional

from app.core.errors import EnhancementFailure, ProviderError, ValidationError
from app.domain.image_utils import probe_image
from app.domain.models import (
    PROCESSING_ERROR,
    AnalysisResult,
    EnhancedImage,
    ImageBuffer,
    ImageFormat,
    PlateReading,
    VehicleAttributes,
)
from app.ports.plate_cache_port import PlateCachePort
from app.ports.vision_provider_port import VisionProviderPort

logger = logging.getLogger(__name__)

DUPLICATE_MESSAGE = 'Plate "{plate}" was already processed in this session. Processing stopped.'
CROP_FAILED_CAVEAT = "Could not crop the plate image."


# =========================
# Validation
# =========================

def strip_data_url(payload: str) -> str:
    payload = (payload or "").strip()
    if payload[:5].lower() == "data:":
        comma = payload.find(",")
        if comma > 0:
            return payload[comma + 1:]
    return payload


def validate_image_payload(data: bytes, mime_type: Optional[str]) -> ImageBuffer:
    fmt = ImageFormat.from_mime(mime_type)
    if fmt is None:
        raise ValidationError(
            f"Mime type '{mime_type}' is not supported. Use: image/jpeg, image/png, image/gif or image/webp.",
            unsupported_type=True,
        )
    if not data:
        raise ValidationError("The image is required and cannot be empty.")
    try:
        probe_image(data)
    except ValueError as exc:
        raise ValidationError(str(exc)) from exc
    return ImageBuffer(data=data, format=fmt)


def decode_base64_image(image_base64: str, mime_type: Optional[str]) -> ImageBuffer:
    """
    Accepts plain base64 or a data URL. The mime type is checked first so an
    unsupported type is reported as such even when the payload is also bad.
    """
    if ImageFormat.from_mime(mime_type) is None:
        validate_image_payload(b"", mime_type)

    raw = "".join(strip_data_url(image_base64).split())
    if not raw:
        raise ValidationError("The base64 image is required.")
    try:
        data = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as exc:
        raise ValidationError("The base64 image format is invalid.") from exc
    return validate_image_payload(data, mime_type)


# =========================
# Orchestration
# =========================

class PlateAnalysisService:
    """
    Runs one analysis: plate -> dedup check -> vehicle attributes -> plate crop.

    Only the plate step is fatal. A duplicate plate stops the pipeline before
    any further provider call. Attribute failures are reported in `error`,
    crop failures as a caveat on `plate_image`.
    """
    def __init__(self, provider: VisionProviderPort, cache: PlateCachePort):
        self.provider = provider
        self.cache = cache

    async def analyze(self, image: ImageBuffer) -> AnalysisResult:
        provider = self.provider.name

        logger.info("Extracting plate via %s", provider)
        try:
            reading = await self.provider.extract_plate(image)
        except ProviderError as exc:
            logger.error("Plate extraction failed (%s): %s", exc.kind.value, exc)
            return AnalysisResult(plate=PROCESSING_ERROR, error=str(exc), provider=provider)

        plate = reading.plate
        if reading.found:
            if self.cache.is_duplicate(plate):
                logger.warning("Duplicate plate detected: %s", plate)
                return AnalysisResult(
                    plate=plate,
                    duplicate=True,
                    error=DUPLICATE_MESSAGE.format(plate=plate),
                    provider=provider,
                )
            self.cache.insert(plate)
        else:
            logger.info("No plate found; continuing with vehicle analysis")

        error = None
        vehicle: Optional[VehicleAttributes] = None
        try:
            logger.info("Analysing vehicle details for plate: %s", plate)
            vehicle = await self.provider.extract_attributes(image, plate)
        except ProviderError as exc:
            logger.error("Vehicle analysis failed (%s): %s", exc.kind.value, exc)
            error = str(exc)

        plate_image = await self._locate_and_enhance(image, reading)

        return AnalysisResult(
            plate=plate,
            duplicate=False,
            vehicle=vehicle,
            plate_image=plate_image,
            error=error,
            provider=provider,
        )

    async def _locate_and_enhance(self, image: ImageBuffer, reading: PlateReading) -> EnhancedImage:
        try:
            cropped = await self.provider.crop_plate(image, reading)
        except (ProviderError, EnhancementFailure) as exc:
            logger.warning("Could not crop plate image: %s", exc)
            return EnhancedImage(caveat=f"{CROP_FAILED_CAVEAT} {exc}")

        if cropped.available:
            logger.info("Plate image cropped successfully")
        elif not cropped.caveat:
            return cropped.model_copy(update={"caveat": CROP_FAILED_CAVEAT})
        else:
            logger.info("Plate image not available: %s", cropped.caveat)
        return cropped
