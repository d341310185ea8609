import asyncio
import contextlib
import logging
from datetime import datetime, timezone
from functools import lru_cache
from typing import Dict

import httpx
from fastapi import APIRouter, Depends, File, HTTPException, Request, UploadFile
from fastapi.responses import JSONResponse, Response

from app.adapters.cache.memory_plate_cache import MemoryPlateCache
from app.adapters.http.resilient_client import ResilientClient
from app.adapters.providers.gemini_adapter import GeminiAdapter
from app.adapters.providers.nvidia_adapter import NvidiaAdapter
from app.api.schemas import PlateAnalysisRequest, PlateAnalysisResponse
from app.core.config import settings
from app.core.errors import ValidationError
from app.domain.analysis import PlateAnalysisService, decode_base64_image, validate_image_payload
from app.domain.models import AnalysisResult, ImageBuffer
from app.ports.vision_provider_port import VisionProviderPort

logger = logging.getLogger(__name__)

router = APIRouter()

DISCONNECT_POLL_S = 0.5
# nginx convention for "client closed request"
CLIENT_CLOSED_REQUEST = 499


# Dependency Injection (Cached)
@lru_cache()
def get_plate_cache() -> MemoryPlateCache:
    return MemoryPlateCache(
        retention_s=settings.cache_retention_hours * 3600,
        sweep_interval_s=settings.cache_sweep_interval_s,
    )

@lru_cache()
def get_http_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=settings.provider_timeout_s)

def _resilient_client(provider: str) -> ResilientClient:
    return ResilientClient(
        get_http_client(),
        provider,
        max_attempts=settings.provider_max_attempts,
        max_retry_delay_s=settings.provider_max_retry_delay_s,
    )

@lru_cache()
def get_providers() -> Dict[str, VisionProviderPort]:
    providers: Dict[str, VisionProviderPort] = {}
    if settings.gemini_api_key:
        providers[GeminiAdapter.name] = GeminiAdapter(_resilient_client("Gemini"))
    if settings.nvidia_api_key:
        providers[NvidiaAdapter.name] = NvidiaAdapter(_resilient_client("NVIDIA"))
    return providers


def _resolve_provider(name: str, providers: Dict[str, VisionProviderPort]) -> VisionProviderPort:
    provider = providers.get(name.lower())
    if provider is None:
        raise HTTPException(status_code=404, detail=f"Provider '{name}' is not configured")
    return provider


def _validation_response(exc: ValidationError, provider: str) -> JSONResponse:
    body = PlateAnalysisResponse(error=str(exc), provider=provider)
    return JSONResponse(
        status_code=415 if exc.unsupported_type else 400,
        content=body.model_dump(by_alias=True),
    )


async def _analyze(
    request: Request,
    image: ImageBuffer,
    provider: VisionProviderPort,
    cache: MemoryPlateCache,
):
    service = PlateAnalysisService(provider, cache)
    task = asyncio.ensure_future(service.analyze(image))

    # Stop provider calls and cache writes as soon as the client goes away
    while True:
        done, _ = await asyncio.wait({task}, timeout=DISCONNECT_POLL_S)
        if done:
            result: AnalysisResult = task.result()
            return PlateAnalysisResponse.from_result(result)
        if await request.is_disconnected():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task
            logger.info("Client disconnected; analysis cancelled")
            return Response(status_code=CLIENT_CLOSED_REQUEST)


async def _analyze_base64(
    request: Request,
    body: PlateAnalysisRequest,
    provider_name: str,
    providers: Dict[str, VisionProviderPort],
    cache: MemoryPlateCache,
):
    provider = _resolve_provider(provider_name, providers)
    try:
        image = decode_base64_image(body.image_base64, body.mime_type)
    except ValidationError as exc:
        logger.warning("Rejected analysis request: %s", exc)
        return _validation_response(exc, provider.name)
    return await _analyze(request, image, provider, cache)


@router.post("/analyze-plate", response_model=PlateAnalysisResponse)
async def analyze_plate(
    request: Request,
    body: PlateAnalysisRequest,
    providers: Dict[str, VisionProviderPort] = Depends(get_providers),
    cache: MemoryPlateCache = Depends(get_plate_cache),
):
    return await _analyze_base64(request, body, settings.default_provider, providers, cache)


@router.post("/analyze-plate/upload", response_model=PlateAnalysisResponse)
async def analyze_plate_upload(
    request: Request,
    file: UploadFile = File(...),
    providers: Dict[str, VisionProviderPort] = Depends(get_providers),
    cache: MemoryPlateCache = Depends(get_plate_cache),
):
    provider = _resolve_provider(settings.default_provider, providers)
    data = await file.read()
    try:
        image = validate_image_payload(data, file.content_type)
    except ValidationError as exc:
        logger.warning("Rejected upload %s: %s", file.filename, exc)
        return _validation_response(exc, provider.name)
    return await _analyze(request, image, provider, cache)


@router.post("/{provider_name}/analyze-plate", response_model=PlateAnalysisResponse)
async def analyze_plate_with(
    provider_name: str,
    request: Request,
    body: PlateAnalysisRequest,
    providers: Dict[str, VisionProviderPort] = Depends(get_providers),
    cache: MemoryPlateCache = Depends(get_plate_cache),
):
    return await _analyze_base64(request, body, provider_name, providers, cache)


@router.get("/health")
def health(
    providers: Dict[str, VisionProviderPort] = Depends(get_providers),
    cache: MemoryPlateCache = Depends(get_plate_cache),
):
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "cachedPlates": cache.count(),
        "providers": sorted(providers),
    }
