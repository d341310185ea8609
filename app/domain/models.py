import base64
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

PLATE_NOT_FOUND = "Plate not found"
PROCESSING_ERROR = "Processing error"
SENTINEL_PLATES = (PLATE_NOT_FOUND, PROCESSING_ERROR)

UNKNOWN = "Unknown"


class ImageFormat(str, Enum):
    JPEG = "image/jpeg"
    PNG = "image/png"
    GIF = "image/gif"
    WEBP = "image/webp"

    @classmethod
    def from_mime(cls, mime_type: Optional[str]) -> Optional["ImageFormat"]:
        value = (mime_type or "").strip().lower()
        if value == "image/jpg":
            return cls.JPEG
        try:
            return cls(value)
        except ValueError:
            return None

    @property
    def pil_format(self) -> str:
        return self.name


class ResponseShape(str, Enum):
    TEXT = "text"
    JSON = "json"
    IMAGE = "image"


class ImageBuffer(BaseModel):
    model_config = ConfigDict(frozen=True)

    data: bytes
    format: ImageFormat

    @property
    def mime_type(self) -> str:
        return self.format.value

    @property
    def base64(self) -> str:
        return base64.b64encode(self.data).decode("ascii")


class NormalizedRegion(BaseModel):
    x: float = Field(default=0.0, ge=0.0, le=1.0)
    y: float = Field(default=0.0, ge=0.0, le=1.0)
    width: float = Field(default=0.0, ge=0.0, le=1.0)
    height: float = Field(default=0.0, ge=0.0, le=1.0)

    @property
    def is_valid(self) -> bool:
        return self.width > 0 and self.height > 0


class PlateReading(BaseModel):
    plate: str
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)
    region: Optional[NormalizedRegion] = None

    @property
    def found(self) -> bool:
        return bool(self.plate.strip()) and self.plate not in SENTINEL_PLATES


class VehicleAttributes(BaseModel):
    color: str = UNKNOWN
    body_type: str = UNKNOWN
    manufacturer: str = UNKNOWN
    plate_format: str = UNKNOWN


class EnhancedImage(BaseModel):
    data: Optional[bytes] = None
    mime_type: Optional[str] = None
    caveat: Optional[str] = None

    @property
    def available(self) -> bool:
        return bool(self.data)


class AnalysisResult(BaseModel):
    plate: str = ""
    duplicate: bool = False
    vehicle: Optional[VehicleAttributes] = None
    plate_image: Optional[EnhancedImage] = None
    error: Optional[str] = None
    provider: Optional[str] = None


class ProviderRequest(BaseModel):
    url: str
    payload: Dict[str, Any]
    shape: ResponseShape = ResponseShape.JSON
    headers: Dict[str, str] = Field(default_factory=dict)
    operation: str = ""


class AttemptEvent(BaseModel):
    provider: str
    operation: str
    attempt: int
    success: bool
    latency_ms: float
    error_kind: Optional[str] = None
    status_code: Optional[int] = None
