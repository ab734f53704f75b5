"""
Input Validation for the Synthesis Service.

Validation happens early in the request pipeline so that a bad request
is rejected before any phonemization or inference work.

Validation Rules:
    - Text: may be empty (yields a single empty chunk), max ``max_chars``
    - Voice: non-empty style-mix expression, max 200 characters
    - Speed: finite number in (0, 5]
    - Format: "wav" or "mp3"
    - Language: optional, max 10 characters

Error Handling:
    Every function raises core.errors.ValidationError with a code from
    ErrorCode (TEXT_TOO_LONG, INVALID_VOICE, INVALID_SPEED, ...).

Usage:
    from kokoro_ms.services.validators import validate_text, validate_speed

    text = validate_text(request.input, max_chars=4000)
    speed = validate_speed(request.speed)

See Also:
    - api/schemas.py: Pydantic schemas with basic type checks
    - tts_service.py: build_request() runs every validator
"""
from __future__ import annotations

import math
from typing import Optional

from kokoro_ms.core.errors import ErrorCode, ValidationError
from kokoro_ms.tts.encoder import FORMATS

MAX_SPEED = 5.0
MAX_VOICE_EXPRESSION = 200


def validate_text(text: Optional[str], max_chars: int = 4000) -> str:
    """
    Validate text input.

    Returns:
        The text unchanged ("" for None).

    Raises:
        ValidationError: (TEXT_TOO_LONG) text is longer than ``max_chars``.
    """
    if text is None:
        return ""
    if not isinstance(text, str):
        raise ValidationError("Text must be a string")
    if len(text) > max_chars:
        raise ValidationError(
            f"Text exceeds maximum length ({len(text)} > {max_chars})",
            ErrorCode.TEXT_TOO_LONG,
            {"chars": len(text), "max_chars": max_chars},
        )
    return text


def validate_voice(voice: Optional[str]) -> str:
    if voice is None or not str(voice).strip():
        raise ValidationError("Voice expression is empty", ErrorCode.INVALID_VOICE)
    voice = str(voice).strip()
    if len(voice) > MAX_VOICE_EXPRESSION:
        raise ValidationError(
            f"Voice expression exceeds maximum length ({len(voice)} > {MAX_VOICE_EXPRESSION})",
            ErrorCode.INVALID_VOICE,
        )
    return voice


def validate_speed(speed) -> float:
    """
    Validate the speed multiplier.

    Raises:
        ValidationError: (INVALID_SPEED) not a number, not finite, <= 0
            or above MAX_SPEED.
    """
    if isinstance(speed, bool) or not isinstance(speed, (int, float)):
        raise ValidationError(f"speed must be a number, got {speed!r}", ErrorCode.INVALID_SPEED)
    speed = float(speed)
    if not math.isfinite(speed) or speed <= 0 or speed > MAX_SPEED:
        raise ValidationError(
            f"speed must be in (0, {MAX_SPEED}], got {speed}",
            ErrorCode.INVALID_SPEED,
            {"speed": speed},
        )
    return speed


def validate_format(fmt: Optional[str]) -> str:
    value = (fmt or "").strip().lower()
    if value not in FORMATS:
        raise ValidationError(
            f"Unsupported response_format {fmt!r}, expected one of {', '.join(FORMATS)}",
            ErrorCode.INVALID_FORMAT,
        )
    return value


def validate_language(language: Optional[str], max_length: int = 10) -> Optional[str]:
    """
    Validate a language hint.

    Unknown but well-formed hints pass; the phonemizer falls back to
    en-us for them.
    """
    if not language:
        return None
    if len(language) > max_length:
        raise ValidationError(f"Language code exceeds maximum length ({len(language)} > {max_length})")
    return language.strip().lower()
