"""
FastAPI REST API Layer for kokoro-ms.

This package defines all HTTP endpoints:
    - routes.py: Native endpoints (/v1/tts, /v1/tts/stream, /v1/voices, /health, /metrics)
    - openai_compat.py: OpenAI-compatible endpoint (/v1/audio/speech)
    - schemas.py: Request/response Pydantic models
    - dependencies.py: FastAPI dependency injection
"""
