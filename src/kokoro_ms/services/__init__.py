"""
kokoro-ms Services Layer.

The business logic layer between the serving layer (api/, cli.py) and
the synthesis core (tts/).

Components:
    - tts_service.py: TTSService (validation, caching, admission, sessions)
    - validators.py: Input validation functions
"""
from kokoro_ms.core.errors import (
    ErrorCode,
    QueueFullError,
    TimeoutError,
    TTSError,
    ValidationError,
)

from .tts_service import (
    PreparedRequest,
    SynthesisRequest,
    SynthesisResult,
    TTSService,
    get_service,
    reset_service,
)

__all__ = [
    "TTSService",
    "SynthesisRequest",
    "PreparedRequest",
    "SynthesisResult",
    "get_service",
    "reset_service",
    "TTSError",
    "ValidationError",
    "TimeoutError",
    "QueueFullError",
    "ErrorCode",
]
