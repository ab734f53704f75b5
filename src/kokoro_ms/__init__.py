"""
kokoro-ms: Kokoro-82M Text-to-Speech Inference Service.

Turns text into 24 kHz speech with the Kokoro ONNX model, on CPU, with
low time-to-first-audio.

Pipeline:
    text -> normalize -> phonemize (IPA) -> tokenize -> chunked inference
         -> WAV / MP3 encoding, whole or streamed chunk by chunk

Key Features:
    - Style mixing: ``af_sky.4+af_nicole.5`` blends voice embeddings
    - Streaming sessions with cooperative cancellation
    - OpenAI-compatible endpoint (/v1/audio/speech)
    - Native binary and SSE endpoints (/v1/tts, /v1/tts/stream)
    - Command line interface (``kokoro-ms``)
    - Prometheus metrics

Example Usage:
    >>> from kokoro_ms.core.config import load_settings
    >>> from kokoro_ms.services import TTSService
    >>>
    >>> service = TTSService(load_settings())
    >>> req = service.build_request("Hello there.", voice="af_sky", fmt="wav")
    >>> result = service.synthesize(req, request_id="cli")
    >>> with open("hello.wav", "wb") as f:
    ...     f.write(result.audio)
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
