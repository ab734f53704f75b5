"""
API Request/Response Schemas.

Pydantic models for the native endpoints. Only structural checks live
here; value rules (speed range, format, text length, voice grammar) are
enforced by services/validators.py so the API and the CLI reject the
same inputs with the same error codes.

Models:
    TTSRequest: Input schema for /v1/tts and /v1/tts/stream
    VoiceInfo / VoicesResponse: Output of /v1/voices

Example Request:
    {
        "text": "Hello there.",
        "voice": "af_sky.4+af_nicole.5",
        "speed": 1.0,
        "format": "wav"
    }

See Also:
    - api/openai_compat.py: OpenAI-compatible schema (OpenAISpeechRequest)
    - services/tts_service.py: SynthesisRequest/SynthesisResult
"""
from __future__ import annotations

from typing import List

from pydantic import BaseModel, Field


class TTSRequest(BaseModel):
    """
    Synthesis request for the native endpoints.

    Attributes:
        text: Text to synthesize. Empty text yields empty audio.
        voice: Style-mix expression; None uses tts.default_voice.
        speed: Duration scale, >1 is faster.
        format: "wav" (default) or "mp3".
        language: Optional language hint, e.g. "en-gb", "ja".
    """
    text: str = Field(default="", description="Text to synthesize")
    voice: str | None = Field(default=None, description="Voice or style mix, e.g. af_sky.4+af_nicole.5")
    speed: float = Field(default=1.0, description="Speaking speed multiplier")
    format: str = Field(default="wav", description="wav or mp3")
    language: str | None = Field(default=None, description="Language hint (e.g. 'en-us', 'ja')")


class VoiceInfo(BaseModel):
    name: str
    language: str
    shape: List[int]


class VoicesResponse(BaseModel):
    voices: List[VoiceInfo]
    default: str
    count: int
