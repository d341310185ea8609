from typing import Protocol
from app.domain.models import EnhancedImage, ImageBuffer, PlateReading, VehicleAttributes


class VisionProviderPort(Protocol):
    name: str

    async def extract_plate(self, image: ImageBuffer) -> PlateReading:
        ...

    async def extract_attributes(self, image: ImageBuffer, plate: str) -> VehicleAttributes:
        ...

    async def crop_plate(self, image: ImageBuffer, reading: PlateReading) -> EnhancedImage:
        ...
