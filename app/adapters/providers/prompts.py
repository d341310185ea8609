from app.domain.models import PLATE_NOT_FOUND

PLATE_SYSTEM_PROMPT = (
    "You are an OCR model specialised in Brazilian vehicle plates. Your only task is to read "
    "the plate and return JSON. Do NOT add any text outside the JSON."
)

PLATE_USER_PROMPT = (
    "Analyse this vehicle image, read the plate text and locate the plate in the image. "
    "Return the plate number, the reading confidence (0.0 to 1.0) and the normalised "
    "coordinates (0.0 to 1.0) of a rectangle that contains the whole plate with a small margin. "
    f"If the plate is not visible, return \"{PLATE_NOT_FOUND}\" with confidence 0.0 and all "
    "coordinates 0.0."
)

PLATE_JSON_FORMAT = (
    'Return only valid JSON in this format: {"plate": "ABC1234", "confidence": 0.95, '
    '"coordinates": {"x": 0.41, "y": 0.62, "width": 0.18, "height": 0.07}}.'
)

VEHICLE_SYSTEM_PROMPT = (
    "You are a high-precision computer vision system specialised in vehicles. Your only task "
    "is to return a JSON object strictly following the requested schema, even when the plate "
    "was not found in the first analysis step."
)


def vehicle_user_prompt(plate: str) -> str:
    return (
        "Analyse the image to determine the vehicle characteristics: predominant color, body "
        "type (e.g. truck, hatchback, sedan, SUV) and manufacturer. "
        f"The plate read in the previous step is \"{plate}\"; decide whether it is a new "
        "Mercosul plate or a legacy Brazilian plate and set plate_format to 'Mercosul' or "
        f"'Legacy'. If the plate is \"{PLATE_NOT_FOUND}\", set plate_format to 'Unidentified' "
        "but keep analysing the visual characteristics (color, body type, manufacturer) normally."
    )


VEHICLE_JSON_FORMAT = (
    'Return only valid JSON with the fields color, body_type, manufacturer and plate_format, '
    'e.g. {"color": "White", "body_type": "Sedan", "manufacturer": "Fiat", "plate_format": "Mercosul"}.'
)

CROP_SYSTEM_PROMPT = (
    "You are a vehicle plate detection and cropping tool. Detect ONLY the main, most prominent "
    "plate and generate a new image containing only that plate, cropped as precisely and "
    "cleanly as possible. Return ONLY the generated image, without any additional text."
)

CROP_USER_PROMPT = "Crop the vehicle plate from this image. Prioritise a single plate."

PLATE_NOT_FOUND_CAVEAT = "Could not crop the plate image (no plate was found in the first step)."
