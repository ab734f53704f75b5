"""
FastAPI Application Entry Point.

Creates the FastAPI application for kokoro-ms: logging, CORS, routers,
request validation errors and the warmup hook.

The application exposes two routers:
    - Native API: /v1/tts, /v1/tts/stream, /v1/voices, /health, /metrics
    - OpenAI-compatible API: /v1/audio/speech

Usage:
    uvicorn kokoro_ms.main:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from kokoro_ms import __version__
from kokoro_ms.api.openai_compat import openai_error
from kokoro_ms.api.openai_compat import router as openai_router
from kokoro_ms.api.routes import router, warmup_engine
from kokoro_ms.core.errors import ErrorCode
from kokoro_ms.core.logging import configure_logging, get_logger, warn

_LOG = get_logger("kokoro-ms.main")


@asynccontextmanager
async def lifespan(app: FastAPI):
    warmup_engine()
    yield


async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Malformed request bodies are 400, in each router's error format."""
    message = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ())[1:]) or 'body'}: {err.get('msg')}"
        for err in exc.errors()
    ) or "Invalid request"
    warn(_LOG, "request_rejected", path=request.url.path, reason=message)
    if request.url.path.startswith("/v1/audio/"):
        return openai_error(message, ErrorCode.INVALID_INPUT, 400)
    return JSONResponse(
        status_code=400,
        content={"ok": False, "error": ErrorCode.INVALID_INPUT, "message": message},
    )


def create_app() -> FastAPI:
    """
    Create and configure the FastAPI application.

    Steps:
        1. Configure structured logging (KOKORO_MS_LOG_LEVEL etc.)
        2. Create the app and allow any origin (browser front ends)
        3. Register native and OpenAI-compatible routers
        4. Start model warmup on startup (unless KOKORO_MS_SKIP_WARMUP=1)
    """
    configure_logging()

    app = FastAPI(title="kokoro-ms", version=__version__, lifespan=lifespan)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=False,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(router)
    app.include_router(openai_router)
    app.add_exception_handler(RequestValidationError, _validation_error)

    return app


app = create_app()
