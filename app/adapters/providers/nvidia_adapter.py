import asyncio
import logging
from typing import Any, Dict

from app.adapters.http.resilient_client import ResilientClient
from app.adapters.providers import prompts
from app.core.config import Settings, settings
from app.core.errors import MalformedResponseError
from app.domain.image_utils import enhance_plate_region
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

NO_IMAGE_MODEL_CAVEAT = (
    "The NVIDIA provider cannot generate cropped images and the model returned no plate "
    "coordinates, so no plate crop is available."
)


def extract_message(body: Dict[str, Any]) -> str:
    content = body["choices"][0]["message"]["content"]
    # OpenAI-style list of content parts
    if isinstance(content, list):
        content = "".join(
            part.get("text") or "" for part in content
            if isinstance(part, dict) and part.get("type") == "text"
        )
    if content is not None and not isinstance(content, str):
        raise MalformedResponseError(f"NVIDIA returned unexpected content of type {type(content).__name__}")
    text = (content or "").strip()
    if not text:
        raise MalformedResponseError("NVIDIA returned an empty text response")
    return text


class NvidiaAdapter(VisionProviderPort):
    """
    NVIDIA NIM chat completions (OpenAI-compatible) with an inline data URL.
    """
    name = "nvidia"

    def __init__(self, client: ResilientClient, cfg: Settings = settings):
        if not cfg.nvidia_api_key.strip():
            raise ValueError("NVIDIA API key is not configured. Set NVIDIA_API_KEY.")
        self.client = client
        self.api_key = cfg.nvidia_api_key
        self.model = cfg.nvidia_vision_model
        self.base_url = cfg.nvidia_base_url.rstrip("/")

    def _request(
        self,
        image: ImageBuffer,
        system: str,
        prompt: str,
        temperature: float,
        max_tokens: int,
        operation: str,
    ) -> ProviderRequest:
        payload = {
            "model": self.model,
            "messages": [
                {"role": "system", "content": system},
                {
                    "role": "user",
                    "content": [
                        {"type": "text", "text": prompt},
                        {
                            "type": "image_url",
                            "image_url": {"url": f"data:{image.mime_type};base64,{image.base64}"},
                        },
                    ],
                },
            ],
            "temperature": temperature,
            "max_tokens": max_tokens,
            "top_p": 0.9,
        }
        return ProviderRequest(
            url=f"{self.base_url}/chat/completions",
            payload=payload,
            headers={"Authorization": f"Bearer {self.api_key}", "Accept": "application/json"},
            shape=ResponseShape.TEXT,
            operation=operation,
        )

    async def extract_plate(self, image: ImageBuffer) -> PlateReading:
        request = self._request(
            image,
            prompts.PLATE_SYSTEM_PROMPT,
            f"{prompts.PLATE_USER_PROMPT} {prompts.PLATE_JSON_FORMAT}",
            temperature=0.1,
            max_tokens=300,
            operation="extract_plate",
        )
        return await self.client.invoke(request, lambda body: parse_plate_reading(extract_message(body)))

    async def extract_attributes(self, image: ImageBuffer, plate: str) -> VehicleAttributes:
        request = self._request(
            image,
            prompts.VEHICLE_SYSTEM_PROMPT,
            f"{prompts.vehicle_user_prompt(plate)} {prompts.VEHICLE_JSON_FORMAT}",
            temperature=0.2,
            max_tokens=500,
            operation="extract_attributes",
        )
        return await self.client.invoke(request, lambda body: parse_vehicle_attributes(extract_message(body)))

    async def crop_plate(self, image: ImageBuffer, reading: PlateReading) -> EnhancedImage:
        if not reading.found:
            return EnhancedImage(caveat=prompts.PLATE_NOT_FOUND_CAVEAT)

        if reading.region is not None and reading.region.is_valid:
            return await asyncio.to_thread(enhance_plate_region, image, reading.region)

        logger.warning("No plate coordinates from NVIDIA; image cropping unavailable")
        return EnhancedImage(caveat=NO_IMAGE_MODEL_CAVEAT)
