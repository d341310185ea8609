import base64
from typing import Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from app.domain.models import AnalysisResult, EnhancedImage, VehicleAttributes


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PlateAnalysisRequest(CamelModel):
    image_base64: str = ""
    mime_type: str = "image/jpeg"


class VehicleOut(CamelModel):
    color: str
    body_type: str
    manufacturer: str
    plate_format: str

    @classmethod
    def from_domain(cls, vehicle: VehicleAttributes) -> "VehicleOut":
        return cls(**vehicle.model_dump())


class PlateImageOut(CamelModel):
    base64: Optional[str] = None
    mime_type: Optional[str] = None
    caveat: Optional[str] = None

    @classmethod
    def from_domain(cls, image: EnhancedImage) -> "PlateImageOut":
        return cls(
            base64=base64.b64encode(image.data).decode("ascii") if image.available else None,
            mime_type=image.mime_type if image.available else None,
            caveat=image.caveat,
        )


class PlateAnalysisResponse(CamelModel):
    plate: str = ""
    duplicate: bool = False
    vehicle: Optional[VehicleOut] = None
    plate_image: Optional[PlateImageOut] = None
    error: Optional[str] = None
    provider: Optional[str] = None

    @classmethod
    def from_result(cls, result: AnalysisResult) -> "PlateAnalysisResponse":
        return cls(
            plate=result.plate,
            duplicate=result.duplicate,
            vehicle=VehicleOut.from_domain(result.vehicle) if result.vehicle else None,
            plate_image=PlateImageOut.from_domain(result.plate_image) if result.plate_image else None,
            error=result.error,
            provider=result.provider,
        )
