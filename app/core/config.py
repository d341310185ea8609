from pydantic import BaseModel
import os


def _env_bool(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    default_provider: str = os.getenv("DEFAULT_PROVIDER", "gemini").lower()

    # Gemini (Google Generative Language API)
    gemini_api_key: str = os.getenv("GEMINI_API_KEY", "")
    gemini_text_model: str = os.getenv("GEMINI_TEXT_MODEL", "gemini-2.5-flash-preview-09-2025")
    gemini_image_model: str = os.getenv("GEMINI_IMAGE_MODEL", "gemini-2.5-flash-image-preview")
    gemini_base_url: str = os.getenv(
        "GEMINI_BASE_URL",
        "https://generativelanguage.googleapis.com/v1beta/models"
    )
    # Free-tier keys cannot use the image model: crop locally from coordinates
    gemini_local_crop: bool = _env_bool("GEMINI_LOCAL_CROP", "true")

    # NVIDIA NIM (OpenAI-compatible chat completions)
    nvidia_api_key: str = os.getenv("NVIDIA_API_KEY", "")
    nvidia_vision_model: str = os.getenv("NVIDIA_VISION_MODEL", "nvidia/nemotron-nano-12b-v2-vl")
    nvidia_base_url: str = os.getenv("NVIDIA_BASE_URL", "https://integrate.api.nvidia.com/v1")

    # Provider client
    provider_max_attempts: int = int(os.getenv("PROVIDER_MAX_ATTEMPTS", "3"))
    provider_max_retry_delay_s: float = float(os.getenv("PROVIDER_MAX_RETRY_DELAY_S", "60"))
    provider_timeout_s: float = float(os.getenv("PROVIDER_TIMEOUT_S", "60"))

    # Plate deduplication cache
    cache_retention_hours: float = float(os.getenv("CACHE_RETENTION_HOURS", "24"))
    cache_sweep_interval_s: float = float(os.getenv("CACHE_SWEEP_INTERVAL_S", "3600"))

    log_level: str = os.getenv("LOG_LEVEL", "INFO")
    log_dir: str = os.getenv("LOG_DIR", "")

settings = Settings()
