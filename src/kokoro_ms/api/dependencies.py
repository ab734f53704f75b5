"""
FastAPI Dependency Injection Providers.

Architecture:
    1. get_settings() - Loads and caches application configuration
    2. get_tts_service() - Creates/returns singleton TTSService
    3. warmup_service() - Starts model warmup on startup

All providers return process-wide singletons so the model and voice
registry are loaded once.

Usage in Route Handlers:
    from fastapi import Depends
    from kokoro_ms.api.dependencies import get_tts_service

    @router.post("/v1/tts")
    def synthesize(req: TTSRequest, service: TTSService = Depends(get_tts_service)):
        ...

Tests override get_tts_service via app.dependency_overrides.

See Also:
    - core/config.py: Settings class and load_settings()
    - services/tts_service.py: TTSService class and get_service()
    - main.py: Application startup
"""
from __future__ import annotations

from functools import lru_cache

from kokoro_ms.core.config import Settings, load_settings
from kokoro_ms.services.tts_service import TTSService, get_service


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Load and cache application settings.

    The path comes from KOKORO_MS_SETTINGS (default config/settings.yaml);
    a missing file yields defaults.
    """
    return load_settings()


def get_tts_service() -> TTSService:
    """Get the singleton TTSService instance."""
    return get_service(get_settings())


def warmup_service() -> None:
    """
    Start warming up the service.

    Non-blocking: warmup runs in a background thread and /health reports
    progress. Skipped with KOKORO_MS_SKIP_WARMUP=1.
    """
    get_tts_service().warmup()
