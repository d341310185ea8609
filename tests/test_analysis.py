"""
Tests for input validation and the analysis orchestrator.
"""

import asyncio
import base64

import pytest

from app.core.errors import (
    AuthenticationError,
    EnhancementFailure,
    MalformedResponseError,
    RateLimitedError,
    ValidationError,
)
from app.domain.analysis import (
    CROP_FAILED_CAVEAT,
    PlateAnalysisService,
    decode_base64_image,
    strip_data_url,
    validate_image_payload,
)
from app.domain.models import PLATE_NOT_FOUND, PROCESSING_ERROR, EnhancedImage, ImageFormat


def analyze(service, image):
    return asyncio.run(service.analyze(image))


# =============================================================================
# Validation
# =============================================================================

class TestValidation:

    def test_strip_data_url(self):
        assert strip_data_url("data:image/png;base64,AAAA") == "AAAA"
        assert strip_data_url("  AAAA ") == "AAAA"

    def test_valid_base64(self, image_factory):
        source = image_factory(ImageFormat.PNG)
        encoded = base64.b64encode(source.data).decode()

        image = decode_base64_image(encoded, "image/png")

        assert image.data == source.data
        assert image.format == ImageFormat.PNG

    def test_data_url_with_line_breaks(self, image_factory):
        source = image_factory()
        encoded = base64.b64encode(source.data).decode()
        wrapped = "\n".join(encoded[i:i + 76] for i in range(0, len(encoded), 76))

        image = decode_base64_image(f"data:image/jpeg;base64,{wrapped}", "image/jpg")

        assert image.data == source.data
        assert image.mime_type == "image/jpeg"

    @pytest.mark.parametrize("mime", ["image/bmp", "application/pdf", "", None])
    def test_unsupported_type(self, mime, image_factory):
        encoded = base64.b64encode(image_factory().data).decode()
        with pytest.raises(ValidationError) as exc_info:
            decode_base64_image(encoded, mime)
        assert exc_info.value.unsupported_type

    def test_unsupported_type_reported_before_bad_payload(self):
        with pytest.raises(ValidationError) as exc_info:
            decode_base64_image("%%%not-base64%%%", "image/tiff")
        assert exc_info.value.unsupported_type

    @pytest.mark.parametrize("payload", ["", "   ", "%%%not-base64%%%", base64.b64encode(b"hello").decode()])
    def test_bad_payload(self, payload):
        with pytest.raises(ValidationError) as exc_info:
            decode_base64_image(payload, "image/jpeg")
        assert not exc_info.value.unsupported_type

    def test_empty_upload(self):
        with pytest.raises(ValidationError):
            validate_image_payload(b"", "image/png")

    def test_oversized_image_rejected(self, oversized_png):
        with pytest.raises(ValidationError) as exc_info:
            validate_image_payload(oversized_png, "image/png")
        assert not exc_info.value.unsupported_type

    def test_oversized_base64_rejected(self, oversized_png):
        with pytest.raises(ValidationError):
            decode_base64_image(base64.b64encode(oversized_png).decode(), "image/png")


# =============================================================================
# Orchestrator
# =============================================================================

class TestPlateAnalysisService:

    def test_full_pipeline(self, make_provider, cache, image_factory):
        provider = make_provider()
        result = analyze(PlateAnalysisService(provider, cache), image_factory())

        assert result.plate == "ABC1234"
        assert result.duplicate is False
        assert result.vehicle.manufacturer == "Fiat"
        assert result.plate_image.available
        assert result.error is None
        assert result.provider == "fake"
        assert provider.calls == ["extract_plate", "extract_attributes", "crop_plate"]
        assert cache.is_duplicate("ABC1234")

    def test_duplicate_stops_pipeline(self, make_provider, cache, image_factory):
        service = PlateAnalysisService(make_provider(), cache)
        first = analyze(service, image_factory())

        provider = make_provider()
        second = analyze(PlateAnalysisService(provider, cache), image_factory())

        assert first.duplicate is False
        assert second.duplicate is True
        assert second.plate == "ABC1234"
        assert "ABC1234" in second.error
        assert second.vehicle is None
        assert second.plate_image is None
        assert provider.calls == ["extract_plate"]

    @pytest.mark.parametrize("error", [
        AuthenticationError("Gemini authentication failed", 403),
        RateLimitedError("Gemini rate limit reached"),
        MalformedResponseError("bad json"),
    ])
    def test_plate_failure_is_terminal(self, error, make_provider, cache, image_factory):
        provider = make_provider(plate_error=error)

        result = analyze(PlateAnalysisService(provider, cache), image_factory())

        assert result.plate == PROCESSING_ERROR
        assert result.error == str(error)
        assert result.vehicle is None
        assert provider.calls == ["extract_plate"]
        assert cache.count() == 0

    def test_plate_not_found_continues(self, make_provider, cache, image_factory):
        provider = make_provider(
            plate=PLATE_NOT_FOUND, region=None, crop=EnhancedImage(caveat="no plate")
        )

        result = analyze(PlateAnalysisService(provider, cache), image_factory())

        assert result.plate == PLATE_NOT_FOUND
        assert result.vehicle is not None
        assert result.plate_image.caveat == "no plate"
        assert result.error is None
        assert cache.count() == 0

    def test_not_found_never_duplicate(self, make_provider, cache, image_factory):
        for _ in range(2):
            provider = make_provider(plate=PLATE_NOT_FOUND, region=None)
            result = analyze(PlateAnalysisService(provider, cache), image_factory())
            assert result.duplicate is False
            assert "extract_attributes" in provider.calls

    def test_attribute_failure_keeps_crop(self, make_provider, cache, image_factory):
        provider = make_provider(vehicle_error=MalformedResponseError("no fields"))

        result = analyze(PlateAnalysisService(provider, cache), image_factory())

        assert result.plate == "ABC1234"
        assert result.vehicle is None
        assert result.error == "no fields"
        assert result.plate_image.available
        assert provider.calls[-1] == "crop_plate"

    @pytest.mark.parametrize("error", [
        RateLimitedError("image model rate limited"),
        EnhancementFailure("cannot decode"),
    ])
    def test_crop_failure_becomes_caveat(self, error, make_provider, cache, image_factory):
        provider = make_provider(crop_error=error)

        result = analyze(PlateAnalysisService(provider, cache), image_factory())

        assert result.error is None
        assert result.vehicle is not None
        assert not result.plate_image.available
        assert result.plate_image.caveat.startswith(CROP_FAILED_CAVEAT)

    def test_empty_crop_gets_caveat(self, make_provider, cache, image_factory):
        provider = make_provider(crop=EnhancedImage())
        result = analyze(PlateAnalysisService(provider, cache), image_factory())
        assert result.plate_image.caveat == CROP_FAILED_CAVEAT

    def test_cancellation_propagates(self, make_provider, cache, image_factory):
        provider = make_provider()

        async def hang(image, plate):
            provider.calls.append("extract_attributes")
            await asyncio.Event().wait()

        provider.extract_attributes = hang

        async def scenario():
            task = asyncio.ensure_future(PlateAnalysisService(provider, cache).analyze(image_factory()))
            while "extract_attributes" not in provider.calls:
                await asyncio.sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        asyncio.run(scenario())
        assert "crop_plate" not in provider.calls
