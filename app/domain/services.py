import json
import re
from typing import Any, Dict, Optional

from app.core.errors import MalformedResponseError
from app.domain.models import (
    PLATE_NOT_FOUND,
    SENTINEL_PLATES,
    UNKNOWN,
    NormalizedRegion,
    PlateReading,
    VehicleAttributes,
)

# =========================
# DOMAIN LOGIC (Pure Python)
# =========================

CODE_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)
JSON_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def clean_alnum_upper(s: str) -> str:
    return "".join(ch for ch in (s or "").upper() if ch.isalnum())


def is_sentinel_plate(plate: Optional[str]) -> bool:
    return not (plate or "").strip() or plate in SENTINEL_PLATES


def canonical_plate_key(plate: Optional[str]) -> str:
    """
    Cache key for a plate reading: 'abc-1234' and 'ABC 1234' map to 'ABC1234'.
    Sentinels map to the empty key.
    """
    if is_sentinel_plate(plate):
        return ""
    return clean_alnum_upper(plate)


def strip_code_fence(text: str) -> str:
    return CODE_FENCE_RE.sub("", (text or "").strip()).strip()


def parse_json_object(text: str) -> Dict[str, Any]:
    """
    Parses a JSON object out of model output. Tolerates markdown fences and
    prose around the object; anything else is a malformed response.
    """
    cleaned = strip_code_fence(text)
    if not cleaned:
        raise MalformedResponseError("Model returned an empty response")

    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        m = JSON_OBJECT_RE.search(cleaned)
        if not m:
            raise MalformedResponseError(f"Model response is not JSON: {cleaned[:200]!r}")
        try:
            data = json.loads(m.group(0))
        except json.JSONDecodeError as exc:
            raise MalformedResponseError(f"Model response is not valid JSON: {exc}") from exc

    if not isinstance(data, dict):
        raise MalformedResponseError("Model response is not a JSON object")
    return data


def _first(data: Dict[str, Any], *keys: str) -> Any:
    lowered = {str(k).lower(): v for k, v in data.items()}
    for key in keys:
        if key in lowered and lowered[key] is not None:
            return lowered[key]
    return None


def _unit(value: Any) -> float:
    try:
        v = float(value)
    except (TypeError, ValueError):
        return 0.0
    return min(1.0, max(0.0, v))


def parse_region(data: Any) -> Optional[NormalizedRegion]:
    if not isinstance(data, dict):
        return None
    region = NormalizedRegion(
        x=_unit(_first(data, "x")),
        y=_unit(_first(data, "y")),
        width=_unit(_first(data, "width", "w")),
        height=_unit(_first(data, "height", "h")),
    )
    return region if region.is_valid else None


def parse_plate_reading(text: str) -> PlateReading:
    data = parse_json_object(text)

    plate = _first(data, "plate", "placa")
    if plate is None:
        raise MalformedResponseError("Plate response is missing the 'plate' field")
    plate = str(plate).strip()
    if not plate or plate.lower() in (PLATE_NOT_FOUND.lower(), "placa não encontrada", "not found"):
        return PlateReading(plate=PLATE_NOT_FOUND, confidence=0.0)

    confidence = _first(data, "confidence", "nivelconfianca")
    return PlateReading(
        plate=plate.upper(),
        confidence=_unit(confidence) if confidence is not None else None,
        region=parse_region(_first(data, "coordinates", "coordenadas", "region")),
    )


def parse_vehicle_attributes(text: str) -> VehicleAttributes:
    data = parse_json_object(text)

    fields = {
        "color": _first(data, "color", "cor"),
        "body_type": _first(data, "body_type", "bodytype", "type", "tipo"),
        "manufacturer": _first(data, "manufacturer", "make", "fabricante", "marca"),
        "plate_format": _first(data, "plate_format", "plateformat", "placa_mercosul"),
    }
    if all(v is None for v in fields.values()):
        raise MalformedResponseError("Vehicle response has none of the expected fields")

    return VehicleAttributes(**{
        k: (str(v).strip() or UNKNOWN) if v is not None else UNKNOWN
        for k, v in fields.items()
    })
