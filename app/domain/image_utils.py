import io
import logging
from typing import Optional, Tuple

import cv2
import numpy as np
from PIL import Image, UnidentifiedImageError

from app.core.errors import EnhancementFailure
from app.domain.models import EnhancedImage, ImageBuffer, ImageFormat, NormalizedRegion

logger = logging.getLogger(__name__)

# x, y, w, h in pixels
Rect = Tuple[int, int, int, int]

PAD_X_FRAC = 0.15
PAD_Y_FRAC = 0.12
MIN_CROP_W = 100
MIN_CROP_H = 40
ZOOM_FACTOR = 2.5
MAX_OUTPUT_W = 1200
JPEG_QUALITY = 95

# Light unsharp mask; weights sum to 1.0 so flat areas are unchanged
SHARPEN_KERNEL = np.array([
    [0.0, -0.1, 0.0],
    [-0.1, 1.4, -0.1],
    [0.0, -0.1, 0.0],
], dtype=np.float32)

NO_REGION_CAVEAT = "No plate region available for cropping."


def probe_image(data: bytes) -> Tuple[int, int]:
    """
    Checks that `data` is a decodable image and returns (width, height).
    Raises ValueError otherwise.
    """
    try:
        with Image.open(io.BytesIO(data)) as im:
            size = im.size
            im.verify()
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, SyntaxError) as exc:
        raise ValueError(f"Could not decode image: {exc}") from exc
    return size


def _normalize_mode(im: Image.Image) -> Image.Image:
    if im.mode in ("RGB", "RGBA", "L"):
        return im.copy()
    if im.mode in ("LA", "PA") or (im.mode == "P" and "transparency" in im.info):
        return im.convert("RGBA")
    return im.convert("RGB")


def decode_image(image: ImageBuffer) -> np.ndarray:
    """
    Decodes to an RGB, RGBA or grayscale uint8 array (first frame for GIF).
    """
    try:
        with Image.open(io.BytesIO(image.data)) as im:
            im.load()
            normalized = _normalize_mode(im)
    except (UnidentifiedImageError, Image.DecompressionBombError, OSError, ValueError) as exc:
        raise EnhancementFailure(f"Could not decode {image.mime_type} image: {exc}") from exc
    return np.array(normalized)


def encode_image(pixels: np.ndarray, fmt: ImageFormat) -> bytes:
    pil = Image.fromarray(pixels)
    params = {}
    if fmt is ImageFormat.JPEG:
        if pil.mode not in ("RGB", "L"):
            pil = pil.convert("RGB")
        params["quality"] = JPEG_QUALITY

    buf = io.BytesIO()
    try:
        pil.save(buf, format=fmt.pil_format, **params)
    except (OSError, ValueError, KeyError) as exc:
        raise EnhancementFailure(f"Could not encode image as {fmt.value}: {exc}") from exc
    return buf.getvalue()


def region_to_pixels(region: NormalizedRegion, img_w: int, img_h: int) -> Rect:
    x = min(int(region.x * img_w), img_w - 1)
    y = min(int(region.y * img_h), img_h - 1)
    w = int(region.width * img_w)
    h = int(region.height * img_h)
    return x, y, w, h


def pad_and_clamp(rect: Rect, img_w: int, img_h: int) -> Rect:
    x, y, w, h = rect
    pad_x = int(w * PAD_X_FRAC)
    pad_y = int(h * PAD_Y_FRAC)

    x = max(0, x - pad_x)
    y = max(0, y - pad_y)
    w = min(img_w - x, w + pad_x * 2)
    h = min(img_h - y, h + pad_y * 2)
    return x, y, max(1, w), max(1, h)


def apply_minimum_size(rect: Rect, img_w: int, img_h: int) -> Rect:
    x, y, w, h = rect
    if w < MIN_CROP_W:
        w = min(MIN_CROP_W, img_w - x)
    if h < MIN_CROP_H:
        h = min(MIN_CROP_H, img_h - y)
    return x, y, w, h


def output_size(w: int, h: int) -> Tuple[int, int, float]:
    """
    Target (width, height, zoom) for a crop of w x h. Zoom is 2.5x unless the
    width would pass 1200px, in which case the width is pinned to 1200.
    """
    zoom = ZOOM_FACTOR
    target_w = int(w * zoom)
    target_h = int(h * zoom)

    if target_w > MAX_OUTPUT_W:
        zoom = MAX_OUTPUT_W / w
        target_w = MAX_OUTPUT_W
        target_h = int(h * zoom)

    return max(1, target_w), max(1, target_h), zoom


def sharpen(pixels: np.ndarray) -> np.ndarray:
    """
    Applies SHARPEN_KERNEL to the colour channels. The outermost rows and
    columns are copied as-is and alpha is never touched.
    """
    if pixels.dtype != np.uint8:
        raise ValueError(f"Unsupported pixel type for sharpening: {pixels.dtype}")
    if pixels.ndim == 2:
        color = pixels
    elif pixels.ndim == 3 and pixels.shape[2] in (3, 4):
        color = pixels[:, :, :3]
    else:
        raise ValueError(f"Unsupported pixel layout for sharpening: {pixels.shape}")

    out = pixels.copy()
    h, w = pixels.shape[:2]
    if h < 3 or w < 3:
        return out

    filtered = cv2.filter2D(color.astype(np.float32), -1, SHARPEN_KERNEL, borderType=cv2.BORDER_REPLICATE)
    filtered = np.clip(np.rint(filtered), 0, 255).astype(np.uint8)

    if pixels.ndim == 2:
        out[1:-1, 1:-1] = filtered[1:-1, 1:-1]
    else:
        out[1:-1, 1:-1, :3] = filtered[1:-1, 1:-1]
    return out


def crop_rect_for_region(region: NormalizedRegion, img_w: int, img_h: int) -> Rect:
    rect = region_to_pixels(region, img_w, img_h)
    rect = pad_and_clamp(rect, img_w, img_h)
    return apply_minimum_size(rect, img_w, img_h)


def enhance_plate_region(image: ImageBuffer, region: Optional[NormalizedRegion]) -> EnhancedImage:
    """
    Crops the plate out of `image`, zooms it and sharpens it.

    Returns an EnhancedImage without data (and with a caveat) when there is
    no usable region. Raises EnhancementFailure when the source cannot be
    decoded or the result cannot be encoded.
    """
    if region is None or not region.is_valid:
        return EnhancedImage(caveat=NO_REGION_CAVEAT)

    pixels = decode_image(image)
    img_h, img_w = pixels.shape[:2]

    x, y, w, h = crop_rect_for_region(region, img_w, img_h)
    target_w, target_h, zoom = output_size(w, h)

    crop = np.ascontiguousarray(pixels[y:y + h, x:x + w])
    try:
        resized = cv2.resize(crop, (target_w, target_h), interpolation=cv2.INTER_CUBIC)
    except cv2.error as exc:
        raise EnhancementFailure(f"Could not resample plate crop: {exc}") from exc

    try:
        result = sharpen(resized)
    except (ValueError, cv2.error) as exc:
        logger.warning("Sharpening failed, returning unsharpened crop: %s", exc)
        result = resized

    data = encode_image(result, image.format)
    logger.info(
        "Plate crop %dx%d at (%d,%d) -> %dx%d (zoom %.2fx)",
        w, h, x, y, target_w, target_h, zoom
    )
    return EnhancedImage(data=data, mime_type=image.mime_type)
