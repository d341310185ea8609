import logging

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.api.routers import get_http_client, get_plate_cache, get_providers, router
from app.core.config import settings
from app.core.logging_config import configure_logging

configure_logging(settings)
logger = logging.getLogger(__name__)

app = FastAPI(title="Plate Analysis Service", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(router)


@app.on_event("startup")
async def start_services():
    get_plate_cache().start()
    providers = get_providers()
    if not providers:
        logger.warning("No AI provider configured. Set GEMINI_API_KEY and/or NVIDIA_API_KEY.")
    elif settings.default_provider not in providers:
        logger.warning(
            "Default provider '%s' is not configured; available: %s",
            settings.default_provider, ", ".join(sorted(providers))
        )
    logger.info("=== Application started (providers: %s) ===", ", ".join(sorted(providers)) or "none")


@app.on_event("shutdown")
async def stop_services():
    await get_plate_cache().stop()
    await get_http_client().aclose()
    get_providers.cache_clear()
    get_http_client.cache_clear()
    logger.info("=== Application stopped ===")
