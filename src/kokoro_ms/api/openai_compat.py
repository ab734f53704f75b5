"""
OpenAI-Compatible Speech Endpoint.

``POST /v1/audio/speech`` accepts OpenAI's TTS request body, extended
with the fields Kokoro front ends commonly send:

    model            required, accepted and ignored
    input            text to speak
    voice            voice or style mix, default "af_sky"
    response_format  "mp3" (default) or "wav"
    speed            duration scale, default 1.0
    return_audio     embed base64 audio in the JSON reply (default true)
    raw_audio        reply with the audio bytes instead of JSON (default false)
    stream           deliver encoded chunks progressively (default false)
    language         optional language hint

Response Shapes:
    stream=true        binary body, chunks sent as they are encoded
    raw_audio=true     binary body, Content-Type audio/mpeg or audio/wav
    otherwise          {"status": "success", "file_path": ..., "audio": ...}
                       return_audio=true: audio is base64, file_path null
                       return_audio=false: audio is written to
                       output.dir/output_<unix_ts>.<ext>, audio null

Error Responses:
    OpenAI's error format, with status 400 / 408 / 429 / 500 / 503:
    {
        "error": {
            "message": "Unknown voice: 'af_unknown'",
            "type": "invalid_request_error",
            "code": "unknown_voice"
        }
    }

Example Usage:
    from openai import OpenAI
    client = OpenAI(base_url="http://localhost:8000/v1", api_key="unused")
    response = client.audio.speech.create(
        model="kokoro",
        voice="af_sky.4+af_nicole.5",
        input="Hello there.",
    )
    response.stream_to_file("output.mp3")

See Also:
    - api/routes.py: Native endpoints (/v1/tts, /v1/tts/stream)
"""
from __future__ import annotations

import base64
from typing import Optional

from fastapi import APIRouter, Depends, Response
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, Field

from kokoro_ms.api.dependencies import get_tts_service
from kokoro_ms.api.routes import audio_bytes, drain, new_request_id, status_for
from kokoro_ms.core.errors import ErrorCode, ModelNotReady, TTSError
from kokoro_ms.core.logging import debug, get_logger, info
from kokoro_ms.services.tts_service import TTSService
from kokoro_ms.tts.encoder import media_type

router = APIRouter()

_LOG = get_logger("kokoro-ms.openai")

_ERROR_TYPES = {
    408: "timeout_error",
    429: "rate_limit_error",
    400: "invalid_request_error",
}


class OpenAISpeechRequest(BaseModel):
    """
    OpenAI-compatible speech synthesis request.

    Example:
        >>> OpenAISpeechRequest(model="kokoro", input="Hello", voice="af_sky", response_format="wav")
    """
    model: str = Field(..., description="Model name. Required for compatibility, ignored.")
    input: str = Field(default="", description="The text to generate audio for.")
    voice: str = Field(default="af_sky", description="Voice or style mix, e.g. af_sky.4+af_nicole.5")
    response_format: str = Field(default="mp3", description="mp3 or wav")
    speed: float = Field(default=1.0, description="Speaking speed multiplier")
    return_audio: bool = Field(default=True, description="Embed base64 audio in the JSON reply")
    raw_audio: bool = Field(default=False, description="Reply with the audio bytes instead of JSON")
    stream: bool = Field(default=False, description="Send encoded chunks as they are produced")
    language: Optional[str] = Field(default=None, description="Language hint")


def openai_error(message: str, code: str, status_code: int) -> JSONResponse:
    """Error body in OpenAI's nested format."""
    return JSONResponse(
        status_code=status_code,
        content={
            "error": {
                "message": message,
                "type": _ERROR_TYPES.get(status_code, "server_error"),
                "code": code.lower(),
            }
        },
    )


def _from_tts_error(e: TTSError) -> JSONResponse:
    return openai_error(e.message, e.code, status_for(e.code))


@router.post("/v1/audio/speech", response_class=Response)
def openai_speech(
    req: OpenAISpeechRequest,
    service: TTSService = Depends(get_tts_service),
):
    """
    OpenAI-compatible text-to-speech endpoint.

    Raises:
        400: Validation error or unknown voice
        408: Admission timeout
        429: Admission queue full
        500: Model or encoder failure
        503: Model not ready

    Example:
        curl -X POST http://localhost:8000/v1/audio/speech \\
            -H "Content-Type: application/json" \\
            -d '{"model": "kokoro", "input": "Hello!", "voice": "af_sky", "raw_audio": true}' \\
            --output speech.mp3
    """
    rid = new_request_id()

    if not service.is_ready():
        return _from_tts_error(ModelNotReady())

    info(_LOG, "openai_request", chars=len(req.input), voice=req.voice, model=req.model,
         format=req.response_format, stream=req.stream, raw=req.raw_audio)
    debug(_LOG, "openai_request_full", text=req.input, speed=req.speed, language=req.language)

    try:
        synth = service.build_request(
            req.input,
            voice=req.voice,
            speed=req.speed,
            fmt=req.response_format,
            stream=req.stream,
            language=req.language,
        )
        headers = {"X-Request-Id": rid}

        # ─────────────────────────────────────────────────────────────────────
        # Progressive binary stream
        # ─────────────────────────────────────────────────────────────────────
        if synth.stream:
            chunks = service.synthesize_stream(synth, rid)
            # errors up to the first chunk still get a proper status code
            try:
                first = next(chunks, None)
            except TTSError:
                chunks.close()
                raise
            return StreamingResponse(
                drain(audio_bytes(first, chunks)),
                media_type=media_type(synth.fmt),
                headers=headers,
            )

        result = service.synthesize(synth, rid)

        if req.raw_audio:
            return Response(content=result.audio, media_type=result.media_type, headers=headers)

        if req.return_audio:
            return JSONResponse(
                content={
                    "status": "success",
                    "file_path": None,
                    "audio": base64.b64encode(result.audio).decode("ascii"),
                },
                headers=headers,
            )

        path = service.save_output(result.audio, result.fmt)
        return JSONResponse(
            content={"status": "success", "file_path": str(path), "audio": None},
            headers=headers,
        )

    except TTSError as e:
        return _from_tts_error(e)

    except OSError as e:
        # output directory not writable
        return openai_error(f"Could not write output file: {e}", ErrorCode.INTERNAL_ERROR, 500)
