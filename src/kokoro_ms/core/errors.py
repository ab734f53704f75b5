"""
Error Taxonomy for kokoro-ms.

Every failure that can cross a component boundary is a TTSError subclass
carrying a machine-readable code. The serving layer maps codes to HTTP
status codes (api/) or process exit codes (cli.py); the core never decides
caller-visible status itself.

Hierarchy:
    TTSError
    ├── ValidationError      - rejected before any inference work begins
    │   └── UnknownVoice     - style-mix references an unregistered voice
    ├── ModelFailure         - forward pass failed, aborts one session only
    ├── EncodeFailure        - container encoding failed after generation
    ├── ModelNotReady        - model or voices not loaded yet
    ├── TimeoutError         - admission control wait exceeded
    └── QueueFullError       - admission control queue at capacity

Phonemization never raises: unsupported scripts degrade to a neutral
marker (see tts/phonemizer.py).

Example:
    >>> try:
    ...     registry.resolve(parse_style_mix("af_unknown"))
    ... except UnknownVoice as e:
    ...     print(e.to_dict())
    {'ok': False, 'error': 'UNKNOWN_VOICE', 'message': ..., 'details': {'voice': 'af_unknown'}}
"""
from __future__ import annotations

from typing import Any, Dict, Optional


class ErrorCode:
    """
    Standardized error codes for API and CLI responses.
    """
    MODEL_NOT_READY = "MODEL_NOT_READY"     # Model/voices not loaded
    MODEL_FAILURE = "MODEL_FAILURE"         # Forward pass failed
    ENCODE_FAILURE = "ENCODE_FAILURE"       # WAV/MP3 encoding failed
    TIMEOUT = "TIMEOUT"                     # Admission wait exceeded
    QUEUE_FULL = "QUEUE_FULL"               # Admission queue at capacity
    INVALID_INPUT = "INVALID_INPUT"         # Bad request data
    INVALID_VOICE = "INVALID_VOICE"         # Malformed style-mix expression
    UNKNOWN_VOICE = "UNKNOWN_VOICE"         # Voice name not in registry
    INVALID_SPEED = "INVALID_SPEED"         # Speed <= 0 or not finite
    INVALID_FORMAT = "INVALID_FORMAT"       # Unsupported output format
    TEXT_TOO_LONG = "TEXT_TOO_LONG"         # Input over configured limit
    INTERNAL_ERROR = "INTERNAL_ERROR"       # Unexpected error


class TTSError(Exception):
    """
    Base exception for kokoro-ms errors.

    Attributes:
        message: Human-readable error message.
        code: Error code from ErrorCode class.
        details: Optional dictionary with additional context.
    """
    def __init__(self, message: str, code: str = ErrorCode.INTERNAL_ERROR, details: Optional[Dict] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to standardized error response dict for API."""
        result = {
            "ok": False,
            "error": self.code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result


class ValidationError(TTSError):
    """Raised for requests that must be rejected before inference."""
    def __init__(self, message: str, code: str = ErrorCode.INVALID_INPUT, details: Optional[Dict] = None):
        super().__init__(message, code, details)


class UnknownVoice(ValidationError):
    """Raised when a style-mix expression names a voice the registry lacks."""
    def __init__(self, voice: str, available: Optional[int] = None):
        details: Dict[str, Any] = {"voice": voice}
        if available is not None:
            details["available"] = available
        super().__init__(f"Unknown voice: {voice!r}", ErrorCode.UNKNOWN_VOICE, details)
        self.voice = voice


class ModelFailure(TTSError):
    """Raised when the forward pass fails. Never retried."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.MODEL_FAILURE, details)


class EncodeFailure(TTSError):
    """Raised when the container encoder reports an error."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.ENCODE_FAILURE, details)


class ModelNotReady(TTSError):
    """Raised when synthesis is requested before the model is usable."""
    def __init__(self, message: str = "Model not ready, please wait for warmup", details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.MODEL_NOT_READY, details)


class TimeoutError(TTSError):
    """Raised when synthesis times out waiting for a concurrency slot."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.TIMEOUT, details)


class QueueFullError(TTSError):
    """Raised when the admission queue is full."""
    def __init__(self, message: str, details: Optional[Dict] = None):
        super().__init__(message, ErrorCode.QUEUE_FULL, details)
