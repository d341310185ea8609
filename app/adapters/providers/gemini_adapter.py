import asyncio
import base64
import logging
from typing import Any, Dict

from app.adapters.http.resilient_client import ResilientClient
from app.adapters.providers import prompts
from app.core.config import Settings, settings
from app.core.errors import MalformedResponseError
from app.domain.image_utils import NO_REGION_CAVEAT, enhance_plate_region
from app.domain.models import (
    EnhancedImage,
    ImageBuffer,
    PlateReading,
    ProviderRequest,
    ResponseShape,
    VehicleAttributes,
)
from app.domain.services import parse_plate_reading, parse_vehicle_attributes
from app.ports.vision_provider_port import VisionProviderPort

logger = logging.getLogger(__name__)

PLATE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "plate": {
            "type": "STRING",
            "description": "Plate number, e.g. 'ABC1234' or 'JKL5M67'. 'Plate not found' when absent.",
        },
        "confidence": {
            "type": "NUMBER",
            "description": "Reading confidence between 0.0 and 1.0. 0.0 when the plate was not found.",
        },
        "coordinates": {
            "type": "OBJECT",
            "description": "Normalised (0.0 to 1.0) plate rectangle. All 0.0 when the plate was not found.",
            "properties": {
                "x": {"type": "NUMBER", "description": "Normalised X of the top-left corner."},
                "y": {"type": "NUMBER", "description": "Normalised Y of the top-left corner."},
                "width": {"type": "NUMBER", "description": "Normalised width."},
                "height": {"type": "NUMBER", "description": "Normalised height."},
            },
            "required": ["x", "y", "width", "height"],
        },
    },
    "required": ["plate", "confidence", "coordinates"],
}

VEHICLE_SCHEMA = {
    "type": "OBJECT",
    "properties": {
        "color": {"type": "STRING", "description": "Predominant color, e.g. 'Red' or 'White'."},
        "body_type": {"type": "STRING", "description": "Body type, e.g. 'Box Truck', 'Hatchback', 'Sedan'."},
        "manufacturer": {"type": "STRING", "description": "Manufacturer, e.g. 'Mercedes-Benz', 'Fiat'."},
        "plate_format": {
            "type": "STRING",
            "description": "'Mercosul', 'Legacy' or 'Unidentified' when the plate was not found.",
        },
    },
    "required": ["color", "body_type", "manufacturer", "plate_format"],
}


def _candidate_parts(body: Dict[str, Any]) -> list:
    return body["candidates"][0]["content"]["parts"]


def extract_text(body: Dict[str, Any]) -> str:
    text = (_candidate_parts(body)[0].get("text") or "").strip()
    if not text:
        raise MalformedResponseError("Gemini returned an empty text response")
    return text


def extract_image(body: Dict[str, Any]) -> EnhancedImage:
    """
    First inlineData part of the first candidate, as image bytes + mime type.
    """
    for part in _candidate_parts(body):
        if not isinstance(part, dict):
            continue
        inline = part.get("inlineData") or {}
        data = inline.get("data")
        if data:
            return EnhancedImage(data=base64.b64decode(data), mime_type=inline.get("mimeType"))
        if part.get("text"):
            logger.info("Gemini image response carried text: %s", part["text"][:200])
    raise MalformedResponseError("Gemini did not return a cropped image")


class GeminiAdapter(VisionProviderPort):
    """
    Google Gemini generateContent API. Plate and vehicle calls use
    schema-constrained JSON; cropping is local when the plate coordinates are
    known, otherwise it falls back to the image model unless local_crop is on.
    """
    name = "gemini"

    def __init__(self, client: ResilientClient, cfg: Settings = settings):
        if not cfg.gemini_api_key.strip():
            raise ValueError("Gemini API key is not configured. Set GEMINI_API_KEY.")
        if not cfg.gemini_api_key.startswith("AIza"):
            logger.warning(
                "Gemini API key format may be incorrect (expected 'AIza...', got '%s...')",
                cfg.gemini_api_key[:4]
            )
        self.client = client
        self.api_key = cfg.gemini_api_key
        self.text_model = cfg.gemini_text_model
        self.image_model = cfg.gemini_image_model
        self.base_url = cfg.gemini_base_url.rstrip("/")
        self.local_crop = cfg.gemini_local_crop

    def _request(
        self,
        model: str,
        image: ImageBuffer,
        prompt: str,
        system: str,
        generation_config: Dict[str, Any],
        shape: ResponseShape,
        operation: str,
    ) -> ProviderRequest:
        payload = {
            "contents": [{
                "role": "user",
                "parts": [
                    {"text": prompt},
                    {"inlineData": {"mimeType": image.mime_type, "data": image.base64}},
                ],
            }],
            "generationConfig": generation_config,
            "systemInstruction": {"parts": [{"text": system}]},
        }
        return ProviderRequest(
            url=f"{self.base_url}/{model}:generateContent",
            payload=payload,
            headers={"x-goog-api-key": self.api_key},
            shape=shape,
            operation=operation,
        )

    async def extract_plate(self, image: ImageBuffer) -> PlateReading:
        request = self._request(
            self.text_model,
            image,
            prompts.PLATE_USER_PROMPT,
            prompts.PLATE_SYSTEM_PROMPT,
            {"responseMimeType": "application/json", "responseSchema": PLATE_SCHEMA},
            ResponseShape.JSON,
            "extract_plate",
        )
        return await self.client.invoke(request, lambda body: parse_plate_reading(extract_text(body)))

    async def extract_attributes(self, image: ImageBuffer, plate: str) -> VehicleAttributes:
        request = self._request(
            self.text_model,
            image,
            prompts.vehicle_user_prompt(plate),
            prompts.VEHICLE_SYSTEM_PROMPT,
            {"responseMimeType": "application/json", "responseSchema": VEHICLE_SCHEMA},
            ResponseShape.JSON,
            "extract_attributes",
        )
        return await self.client.invoke(request, lambda body: parse_vehicle_attributes(extract_text(body)))

    async def crop_plate(self, image: ImageBuffer, reading: PlateReading) -> EnhancedImage:
        if not reading.found:
            return EnhancedImage(caveat=prompts.PLATE_NOT_FOUND_CAVEAT)

        if reading.region is not None and reading.region.is_valid:
            logger.info("Cropping plate locally from detected coordinates")
            return await asyncio.to_thread(enhance_plate_region, image, reading.region)

        if self.local_crop:
            logger.warning("Plate coordinates missing and image model disabled; skipping crop")
            return EnhancedImage(caveat=NO_REGION_CAVEAT)

        request = self._request(
            self.image_model,
            image,
            prompts.CROP_USER_PROMPT,
            prompts.CROP_SYSTEM_PROMPT,
            {"responseModalities": ["TEXT", "IMAGE"]},
            ResponseShape.IMAGE,
            "crop_plate",
        )
        cropped = await self.client.invoke(request, extract_image)
        if not cropped.mime_type:
            cropped = cropped.model_copy(update={"mime_type": image.mime_type})
        return cropped
