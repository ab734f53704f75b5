"""
Native API Routes.

Endpoints:
    POST /v1/tts          - Whole-utterance synthesis (binary audio)
    POST /v1/tts/stream   - Server-Sent Events streaming synthesis
    GET  /v1/voices       - Registered voices
    GET  /health          - Health check for load balancers and probes
    GET  /metrics         - Prometheus metrics

Request Flow:
    1. Generate a request ID for tracing
    2. Check service readiness (503 if not ready)
    3. TTSService.build_request() validates the parameters
    4. synthesize() or synthesize_stream()
    5. Return audio with metadata headers

Error Handling:
    Errors are JSON in the TTSError.to_dict() format:
    {
        "ok": false,
        "error": "<ERROR_CODE>",
        "message": "<human readable message>"
    }

    HTTP status codes are mapped from error codes:
        - INVALID_* / UNKNOWN_VOICE / TEXT_TOO_LONG -> 400
        - TIMEOUT -> 408
        - QUEUE_FULL -> 429
        - MODEL_NOT_READY -> 503
        - MODEL_FAILURE / ENCODE_FAILURE / INTERNAL_ERROR -> 500

Streaming:
    Once the first chunk has been sent the status line is gone, so a
    later failure is reported as an SSE ``error`` event on
    /v1/tts/stream (the raw binary stream on /v1/audio/speech is cut
    short instead). A client disconnect closes the generator and the
    session ends CANCELLED.

See Also:
    - api/openai_compat.py: OpenAI-compatible endpoint (/v1/audio/speech)
    - services/tts_service.py: Core synthesis logic
"""
from __future__ import annotations

import base64
import json
import time
import uuid
from typing import AsyncIterator, Iterator, Optional

from fastapi import APIRouter, Depends, Response
from fastapi.concurrency import iterate_in_threadpool
from fastapi.responses import JSONResponse, StreamingResponse

from kokoro_ms.api.dependencies import get_tts_service
from kokoro_ms.api.schemas import TTSRequest, VoicesResponse
from kokoro_ms.core.errors import ErrorCode, ModelNotReady, TTSError
from kokoro_ms.core.logging import error, get_logger, set_request_id, verbose
from kokoro_ms.core.metrics import metrics
from kokoro_ms.services.tts_service import TTSService
from kokoro_ms.tts.session import EncodedChunk

router = APIRouter()

_LOG = get_logger("kokoro-ms.api")

_STATUS_BY_CODE = {
    ErrorCode.INVALID_INPUT: 400,
    ErrorCode.INVALID_VOICE: 400,
    ErrorCode.UNKNOWN_VOICE: 400,
    ErrorCode.INVALID_SPEED: 400,
    ErrorCode.INVALID_FORMAT: 400,
    ErrorCode.TEXT_TOO_LONG: 400,
    ErrorCode.TIMEOUT: 408,
    ErrorCode.QUEUE_FULL: 429,
    ErrorCode.MODEL_NOT_READY: 503,
    ErrorCode.MODEL_FAILURE: 500,
    ErrorCode.ENCODE_FAILURE: 500,
    ErrorCode.INTERNAL_ERROR: 500,
}


def status_for(code: str) -> int:
    return _STATUS_BY_CODE.get(code, 500)


def new_request_id() -> str:
    rid = str(uuid.uuid4())[:12]
    set_request_id(rid)
    return rid


def _error_response(err: TTSError, request_id: Optional[str] = None) -> JSONResponse:
    content = err.to_dict()
    if request_id:
        content["request_id"] = request_id
    return JSONResponse(status_code=status_for(err.code), content=content)


async def drain(chunks: Iterator[bytes]) -> AsyncIterator[bytes]:
    """
    Pull a blocking generator from the threadpool.

    The generator is closed on every exit path, including a client
    disconnect, which cancels the underlying session.
    """
    try:
        async for data in iterate_in_threadpool(chunks):
            yield data
    finally:
        chunks.close()


def audio_bytes(first: Optional[EncodedChunk], rest: Iterator[EncodedChunk]) -> Iterator[bytes]:
    """Encoded bytes of an already started stream, first chunk included."""
    try:
        if first is not None:
            yield first.data
        for chunk in rest:
            yield chunk.data
    finally:
        rest.close()


@router.post("/v1/tts", response_class=Response)
def tts_v1(
    req: TTSRequest,
    service: TTSService = Depends(get_tts_service),
):
    """
    Whole-utterance synthesis.

    Returns:
        Response: WAV or MP3 bytes with headers:
            - X-Request-Id: Request identifier for tracing
            - X-Sample-Rate: Audio sample rate
            - X-Cache: "hit" or "miss"
            - X-Chunks: Inference chunks used

    Example:
        curl -X POST http://localhost:8000/v1/tts \\
            -H "Content-Type: application/json" \\
            -d '{"text": "Hello!", "voice": "af_sky"}' \\
            --output speech.wav
    """
    rid = new_request_id()
    if not service.is_ready():
        return _error_response(ModelNotReady(), rid)

    try:
        synth = service.build_request(req.text, voice=req.voice, speed=req.speed, fmt=req.format,
                                      language=req.language)
        result = service.synthesize(synth, rid)
        headers = {
            "X-Request-Id": rid,
            "X-Sample-Rate": str(result.sample_rate),
            "X-Cache": result.cache_status,
            "X-Chunks": str(result.chunks),
        }
        return Response(content=result.audio, media_type=result.media_type, headers=headers)

    except TTSError as e:
        return _error_response(e, rid)


@router.post("/v1/tts/stream")
def tts_stream(
    req: TTSRequest,
    service: TTSService = Depends(get_tts_service),
):
    """
    Server-Sent Events streaming synthesis.

    Events:
        meta   - request_id, sample_rate, format, voice
        chunk  - i (index), last, samples, audio_b64 (encoded bytes)
        done   - chunks, seconds_total
        error  - code, message, delivered (after a partial delivery)

    For WAV the first chunk carries the streaming header and later
    chunks are bare PCM frames, so concatenating the decoded payloads
    yields one playable file. MP3 chunks decode independently.
    """
    rid = new_request_id()
    if not service.is_ready():
        return _error_response(ModelNotReady(), rid)

    try:
        synth = service.build_request(req.text, voice=req.voice, speed=req.speed, fmt=req.format,
                                      stream=True, language=req.language)
        chunks = service.synthesize_stream(synth, rid)
    except TTSError as e:
        return _error_response(e, rid)

    def sse(event: str, payload: dict) -> str:
        return f"event: {event}\ndata: {json.dumps(payload, ensure_ascii=False)}\n\n"

    def gen() -> Iterator[str]:
        t0 = time.perf_counter()
        delivered = 0
        try:
            yield sse("meta", {
                "request_id": rid,
                "sample_rate": service.engine.sample_rate,
                "format": synth.fmt,
                "voice": synth.voice,
            })
            for chunk in chunks:
                delivered += 1
                yield sse("chunk", {
                    "i": chunk.index,
                    "last": chunk.is_last,
                    "samples": chunk.samples,
                    "audio_b64": base64.b64encode(chunk.data).decode("ascii"),
                })
            yield sse("done", {"chunks": delivered, "seconds_total": round(time.perf_counter() - t0, 3)})

        except TTSError as e:
            yield sse("error", {"code": e.code, "message": e.message, "delivered": delivered})
        finally:
            chunks.close()
            verbose(_LOG, "sse_closed", delivered=delivered)

    return StreamingResponse(drain(gen()), media_type="text/event-stream", headers={"X-Request-Id": rid})


@router.get("/v1/voices", response_model=VoicesResponse)
def voices(service: TTSService = Depends(get_tts_service)):
    listed = service.list_voices()
    return {"voices": listed, "default": service.settings.default_voice, "count": len(listed)}


@router.get("/health")
def health(service: TTSService = Depends(get_tts_service)):
    """
    Health check for load balancers and orchestration.

    Always 200; ``ready`` tells whether synthesis requests will be
    accepted.
    """
    return service.get_health_info()


@router.get("/metrics")
def prometheus_metrics():
    """Prometheus text exposition of the service metrics."""
    content, content_type = metrics.get_metrics_response()
    return Response(content=content, media_type=content_type)


def warmup_engine() -> None:
    """Startup hook: begin loading and warming the model."""
    from kokoro_ms.api.dependencies import warmup_service

    try:
        warmup_service()
    except TTSError as e:
        error(_LOG, "startup_warmup_failed", code=e.code, error=e.message)
