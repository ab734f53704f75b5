"""
TTSService - Unified Synthesis Pipeline.

This module provides the central TTSService class, the single entry point
used by the HTTP endpoints (/v1/tts, /v1/tts/stream, /v1/audio/speech)
and the CLI.

Architecture:
    Request → Validate → Normalize → Phonemize → Tokenize → Resolve style
            → Cache check → Admission → Session (chunked inference + encode)
            → Cache store → Response

Key Components:
    - Phonemizer / Tokenizer: text to model ids (tts/phonemizer.py, tts/tokenizer.py)
    - VoiceRegistry: style-mix resolution (tts/voices.py)
    - KokoroEngine: lazy chunked inference (tts/engine.py)
    - SessionManager: per-request state machine (tts/session.py)
    - AudioEncoder: WAV / MP3 with the global MP3 lock (tts/encoder.py)
    - TinyLRUCache: encoded non-streaming results (tts/cache.py)
    - ConcurrencyController: optional admission control (tts/concurrency.py)

Error Handling:
    Everything raised is a core.errors.TTSError; unexpected exceptions
    are wrapped with code INTERNAL_ERROR. The caller maps codes to HTTP
    statuses or exit codes.

Example:
    >>> from kokoro_ms.core.config import load_settings
    >>> from kokoro_ms.services import TTSService
    >>>
    >>> service = TTSService(load_settings())
    >>> req = service.build_request("Hello", voice="af_sky.4+af_nicole.5", fmt="wav")
    >>> result = service.synthesize(req, request_id="req-123")
    >>> len(result.audio)
"""
from __future__ import annotations

import hashlib
import os
import threading
import time
from contextlib import closing, nullcontext
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional

from kokoro_ms.core.config import Settings
from kokoro_ms.core.errors import ErrorCode, TTSError
from kokoro_ms.core.logging import debug, error, fail, get_logger, info, success, verbose
from kokoro_ms.core.metrics import metrics
from kokoro_ms.services.validators import (
    validate_format,
    validate_language,
    validate_speed,
    validate_text,
    validate_voice,
)
from kokoro_ms.tts.cache import CacheItem, TinyLRUCache
from kokoro_ms.tts.chunker import plan_token_chunks
from kokoro_ms.tts.concurrency import ConcurrencyController, get_controller
from kokoro_ms.tts.encoder import AudioEncoder, media_type
from kokoro_ms.tts.engine import KokoroEngine, get_engine
from kokoro_ms.tts.phonemizer import PhonemeSequence, Phonemizer
from kokoro_ms.tts.session import EncodedChunk, SessionManager
from kokoro_ms.tts.tokenizer import Tokenizer, TokenSequence, Vocabulary
from kokoro_ms.tts.voices import ResolvedStyleEmbedding, VoiceRegistry, get_registry, parse_style_mix
from kokoro_ms.utils.text import NORMALIZE_VERSION, normalize_text
from kokoro_ms.utils.timeit import StageTimer, timeit

_LOG = get_logger("kokoro-ms.service")


# =============================================================================
# Request/Response Dataclasses
# =============================================================================

@dataclass(frozen=True)
class SynthesisRequest:
    """
    A validated synthesis request.

    Built by TTSService.build_request(); every field has already passed
    the validators.

    Attributes:
        text: Raw input text (may be empty).
        voice: Style-mix expression, e.g. "af_sky" or "af_sky.4+af_nicole.5".
        speed: Duration scale, >1 is faster.
        fmt: "wav" or "mp3".
        stream: Deliver chunks progressively.
        language: Optional language hint.
    """
    text: str
    voice: str
    speed: float = 1.0
    fmt: str = "mp3"
    stream: bool = False
    language: Optional[str] = None


@dataclass
class PreparedRequest:
    """Model-ready form of a request: tokens plus the blended style."""
    request: SynthesisRequest
    normalized: str
    language: str
    phonemes: PhonemeSequence
    tokens: TokenSequence
    style: ResolvedStyleEmbedding
    timings: Dict[str, float] = field(default_factory=dict)

    @property
    def ipa(self) -> str:
        return "".join(p.symbol for p in self.phonemes)


@dataclass
class SynthesisResult:
    """
    Result of a non-streaming synthesis.

    Attributes:
        audio: Encoded WAV or MP3 bytes.
        fmt: Container format.
        sample_rate: Audio sample rate (24000 for Kokoro).
        n_samples: PCM samples before encoding.
        chunks: Number of inference chunks.
        cache_status: "hit" or "miss".
        total_seconds: Total processing time.
        request_id: Request ID for tracing.
        timings: Per-stage timing breakdown.
    """
    audio: bytes
    fmt: str
    sample_rate: int
    n_samples: int
    chunks: int
    cache_status: str
    total_seconds: float
    request_id: str
    timings: Dict[str, float] = field(default_factory=dict)

    @property
    def media_type(self) -> str:
        return media_type(self.fmt)

    @property
    def duration(self) -> float:
        return self.n_samples / float(self.sample_rate) if self.sample_rate else 0.0


# =============================================================================
# Main Service Class
# =============================================================================

class TTSService:
    """
    Synthesis service with caching, admission control and health reporting.

    Collaborators default to the process-wide instances built from
    ``settings``; tests inject a fake-backed engine and an in-memory
    registry instead.

    Usage:
        service = TTSService(settings)
        service.warmup()
        req = service.build_request("Hello", voice="af_sky", fmt="wav")
        result = service.synthesize(req, request_id="req-123")
    """

    def __init__(
        self,
        settings: Settings,
        engine: Optional[KokoroEngine] = None,
        registry: Optional[VoiceRegistry] = None,
        phonemizer: Optional[Phonemizer] = None,
        encoder: Optional[AudioEncoder] = None,
    ):
        self._settings = settings
        self._config = settings.get_service_config()

        # ─────────────────────────────────────────────────────────────────────
        # Text → tokens
        # ─────────────────────────────────────────────────────────────────────
        tok_cfg = self._config.tokenizer
        vocab = Vocabulary.from_json(tok_cfg.vocab_path) if tok_cfg.vocab_path else Vocabulary.default()
        self._tokenizer = Tokenizer(vocab, unknown_id=tok_cfg.unknown_id)
        self._phonemizer = phonemizer or Phonemizer(
            default_language=settings.default_language,
            backend=self._config.phonemizer_backend,
        )

        # ─────────────────────────────────────────────────────────────────────
        # Voices, engine, encoder, sessions
        # ─────────────────────────────────────────────────────────────────────
        self._registry = registry if registry is not None else get_registry(settings)
        self._engine = engine or get_engine(settings)
        self._encoder = encoder or AudioEncoder.from_config(self._engine.sample_rate, self._config.audio)
        self._sessions = SessionManager(self._engine, self._encoder)

        # ─────────────────────────────────────────────────────────────────────
        # Cache
        # ─────────────────────────────────────────────────────────────────────
        self._cache: Optional[TinyLRUCache] = None
        if self._config.cache.enabled:
            self._cache = TinyLRUCache(
                max_items=self._config.cache.max_items,
                ttl_seconds=self._config.cache.ttl_seconds,
            )

        # ─────────────────────────────────────────────────────────────────────
        # Concurrency Control
        # ─────────────────────────────────────────────────────────────────────
        self._controller: Optional[ConcurrencyController] = None
        if self._config.concurrency.enabled:
            self._controller = get_controller(
                max_concurrent=self._config.concurrency.max_concurrent,
                max_queue=self._config.concurrency.max_queue,
            )
        self._concurrency_timeout = self._config.concurrency.timeout_s

        self._text_preview_chars = self._config.logging.text_preview_chars
        self._output_dir = Path(self._config.output_dir)

        # ─────────────────────────────────────────────────────────────────────
        # Warmup State
        # ─────────────────────────────────────────────────────────────────────
        self._warmed_up = False
        self._warmup_in_progress = False
        self._warmup_seconds: Optional[float] = None
        self._warmup_error: Optional[str] = None
        self._warmup_lock = threading.Lock()

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def engine(self) -> KokoroEngine:
        return self._engine

    @property
    def registry(self) -> VoiceRegistry:
        return self._registry

    @property
    def encoder(self) -> AudioEncoder:
        return self._encoder

    @property
    def sessions(self) -> SessionManager:
        return self._sessions

    @property
    def controller(self) -> Optional[ConcurrencyController]:
        return self._controller

    @property
    def warmed_up(self) -> bool:
        return self._warmed_up

    def is_ready(self) -> bool:
        """
        Check if the service can take requests.

        Returns True if at least one voice is registered and either
        KOKORO_MS_SKIP_WARMUP=1 is set or the model is loaded and warmed.
        """
        if len(self._registry) == 0:
            return False
        if os.getenv("KOKORO_MS_SKIP_WARMUP", "0") == "1":
            return True
        return self._engine.is_loaded() and self._engine.is_warmed()

    # =========================================================================
    # Warmup
    # =========================================================================

    def warmup(self, background: bool = True) -> None:
        """
        Load the model and run one short inference.

        Runs in a daemon thread by default so server startup is not
        blocked; /health reports progress. Skipped with
        KOKORO_MS_SKIP_WARMUP=1.
        """
        if os.getenv("KOKORO_MS_SKIP_WARMUP", "0") == "1":
            info(_LOG, "warmup_skipped", reason="KOKORO_MS_SKIP_WARMUP=1")
            return

        with self._warmup_lock:
            if self._warmed_up or self._warmup_in_progress:
                return
            self._warmup_in_progress = True

        def _do():
            try:
                info(_LOG, "warmup_start", model=self._settings.model_path)
                with timeit("warmup") as t:
                    self._engine.warmup()
                self._warmup_seconds = t.seconds
                self._warmed_up = True
                success(_LOG, "warmup_done", seconds=round(t.seconds, 3))
            except TTSError as e:
                self._warmup_error = e.message
                error(_LOG, "warmup_failed", code=e.code, error=e.message)
            finally:
                self._warmup_in_progress = False

        if background:
            threading.Thread(target=_do, name="kokoro-warmup", daemon=True).start()
        else:
            _do()

    # =========================================================================
    # Request building
    # =========================================================================

    def build_request(
        self,
        text: Optional[str],
        voice: Optional[str] = None,
        speed: float = 1.0,
        fmt: str = "mp3",
        stream: bool = False,
        language: Optional[str] = None,
    ) -> SynthesisRequest:
        """
        Validate raw parameters into a SynthesisRequest.

        The style-mix grammar is checked here; voice names are checked
        against the registry later, in prepare().

        Raises:
            ValidationError: Text too long, bad speed, bad format, empty
                or malformed voice expression.
        """
        voice_expr = validate_voice(voice if voice is not None else self._settings.default_voice)
        parse_style_mix(voice_expr)
        return SynthesisRequest(
            text=validate_text(text, max_chars=self._config.max_chars),
            voice=voice_expr,
            speed=validate_speed(speed),
            fmt=validate_format(fmt),
            stream=bool(stream),
            language=validate_language(language),
        )

    def prepare(self, request: SynthesisRequest) -> PreparedRequest:
        """
        Resolve the style and turn text into token ids.

        The style is resolved first so an unknown voice fails before any
        text processing or inference.

        Raises:
            UnknownVoice: A component names an unregistered voice.
            ValidationError: Malformed expression or mismatched shapes.
        """
        stages = StageTimer()
        with stages("style"):
            style = self._registry.resolve(parse_style_mix(request.voice))

        hint = self._phonemizer.resolve_language(request.language)
        language = hint or self._phonemizer.default_language
        with stages("normalize"):
            normalized, _ = normalize_text(request.text, language)
        with stages("phonemize"):
            phonemes = self._phonemizer.phonemize_normalized(normalized, hint)
        with stages("tokenize"):
            tokens = self._tokenizer.tokenize(phonemes)

        debug(_LOG, "prepared", normalized=normalized, tokens=len(tokens), voice=request.voice, language=language)
        return PreparedRequest(
            request=request,
            normalized=normalized,
            language=language,
            phonemes=phonemes,
            tokens=tokens,
            style=style,
            timings=stages.as_dict(5),
        )

    def analyze(self, request: SynthesisRequest) -> Dict[str, Any]:
        """
        Dry run: everything up to inference.

        Returns normalized text, IPA, token ids and the chunk plan. No
        model is loaded.
        """
        prepared = self.prepare(request)
        chunking = self._engine.chunking
        plan = plan_token_chunks(
            prepared.tokens,
            first_chunk_max=chunking.first_chunk_max,
            rest_chunk_max=chunking.rest_chunk_max,
            vocab=self._tokenizer.vocab,
        )
        return {
            "text": request.text,
            "normalized": prepared.normalized,
            "language": prepared.language,
            "voice": request.voice,
            "components": [{"name": c.name, "weight": c.weight} for c in prepared.style.components],
            "phonemes": prepared.ipa,
            "tokens": list(prepared.tokens),
            "chunks": [list(span) for span in plan.spans],
            "timings": prepared.timings,
        }

    # =========================================================================
    # Cache Methods
    # =========================================================================

    def cache_key(self, prepared: PreparedRequest) -> str:
        """
        Hash of everything that changes the encoded output.

        NORMALIZE_VERSION is part of the key, so a normalizer change
        never serves audio produced from differently normalized text.
        """
        req = prepared.request
        parts = (
            NORMALIZE_VERSION,
            self._engine.model_id,
            self._phonemizer.backend,
            prepared.language,
            prepared.normalized,
            req.voice,
            f"{req.speed:.4f}",
            req.fmt,
        )
        return hashlib.sha256("\x1f".join(parts).encode("utf-8")).hexdigest()

    def _check_cache(self, key: str) -> Optional[CacheItem]:
        if self._cache is None:
            return None
        item, _ = self._cache.get(key)
        metrics.record_cache(item is not None)
        return item

    def _store_cache(self, key: str, item: CacheItem) -> None:
        if self._cache is not None:
            self._cache.set(key, item)

    # =========================================================================
    # Admission
    # =========================================================================

    def _admit(self):
        """Hold a concurrency slot, or nothing when admission control is off."""
        if self._controller is None:
            return nullcontext()
        return self._controller.acquire_sync(timeout=self._concurrency_timeout)

    def _log_request(self, event: str, request: SynthesisRequest) -> None:
        preview = request.text[:self._text_preview_chars] if self._text_preview_chars > 0 else ""
        info(_LOG, event, chars=len(request.text), voice=request.voice, fmt=request.fmt,
             speed=request.speed, text_preview=preview)

    # =========================================================================
    # Public API: synthesize()
    # =========================================================================

    def synthesize(self, request: SynthesisRequest, request_id: str) -> SynthesisResult:
        """
        Synthesize a whole utterance and encode it once.

        Raises:
            ValidationError / UnknownVoice: Before any inference.
            QueueFullError / TimeoutError: Admission rejected.
            ModelNotReady: Model file missing.
            ModelFailure / EncodeFailure: Nothing is returned.
        """
        self._log_request("request", request)
        t0 = time.perf_counter()
        cache_status = "miss"
        try:
            prepared = self.prepare(request)
            timings = dict(prepared.timings)

            key = self.cache_key(prepared)
            item = self._check_cache(key)
            if item is not None:
                cache_status = "hit"
            else:
                with self._admit():
                    session = self._sessions.open(request_id, prepared.tokens, prepared.style,
                                                  request.speed, request.fmt)
                    with timeit("synth") as t_synth:
                        collected = session.collect()
                timings["synth"] = round(t_synth.seconds, 5)
                verbose(_LOG, "stage", event="synth", seconds=timings["synth"], chunks=collected.chunks)

                item = CacheItem(
                    audio_bytes=collected.data,
                    fmt=request.fmt,
                    sample_rate=collected.sample_rate,
                    n_samples=len(collected.samples),
                )
                self._store_cache(key, item)
                metrics.add_audio_seconds(item.n_samples / float(item.sample_rate))

            total_s = time.perf_counter() - t0
            success(_LOG, "done", bytes=len(item.audio_bytes), cache=cache_status, seconds=round(total_s, 3))
            metrics.record_request(request.fmt, "success", total_s, cache_status)

            return SynthesisResult(
                audio=item.audio_bytes,
                fmt=request.fmt,
                sample_rate=item.sample_rate,
                n_samples=item.n_samples,
                chunks=0 if cache_status == "hit" else collected.chunks,
                cache_status=cache_status,
                total_seconds=total_s,
                request_id=request_id,
                timings=timings,
            )

        except TTSError as e:
            fail(_LOG, "request_failed", code=e.code, error=e.message)
            metrics.record_request(request.fmt, "error")
            raise
        except Exception as e:
            fail(_LOG, "request_failed", error=str(e), error_type=type(e).__name__)
            metrics.record_request(request.fmt, "error")
            raise TTSError(f"Unexpected error: {e}", ErrorCode.INTERNAL_ERROR,
                           {"error_type": type(e).__name__}) from e

    # =========================================================================
    # Public API: synthesize_stream()
    # =========================================================================

    def synthesize_stream(self, request: SynthesisRequest, request_id: str) -> Iterator[EncodedChunk]:
        """
        Start a streaming synthesis.

        Validation and style resolution run now, so they raise before
        any byte is produced. The returned generator acquires the
        admission slot on first use, yields encoded chunks in order and
        cancels the session if the consumer closes it early.
        """
        self._log_request("stream_request", request)
        prepared = self.prepare(request)
        return self._stream(prepared, request_id)

    def _stream(self, prepared: PreparedRequest, request_id: str) -> Iterator[EncodedChunk]:
        request = prepared.request
        t0 = time.perf_counter()
        samples = 0
        delivered = 0
        try:
            with self._admit():
                session = self._sessions.open(request_id, prepared.tokens, prepared.style,
                                              request.speed, request.fmt)
                with closing(session.stream()) as chunks:
                    for chunk in chunks:
                        if delivered == 0:
                            metrics.record_first_chunk(request.fmt, time.perf_counter() - t0)
                        delivered += 1
                        samples += chunk.samples
                        yield chunk
        except TTSError as e:
            fail(_LOG, "stream_failed", code=e.code, error=e.message, delivered=delivered)
            metrics.record_request(request.fmt, "error")
            raise
        else:
            total_s = time.perf_counter() - t0
            sr = self._engine.sample_rate
            metrics.add_audio_seconds(samples / float(sr))
            metrics.record_request(request.fmt, "success", total_s, "stream")
            success(_LOG, "stream_done", chunks=delivered, phase=session.phase.value, seconds=round(total_s, 3))

    # =========================================================================
    # Output files
    # =========================================================================

    def save_output(self, data: bytes, fmt: str) -> Path:
        """
        Write encoded audio to ``output.dir/output_<unix_ts>.<fmt>``.

        A numeric suffix is added when two requests land in the same
        second.
        """
        self._output_dir.mkdir(parents=True, exist_ok=True)
        stem = f"output_{int(time.time())}"
        path = self._output_dir / f"{stem}.{fmt}"
        n = 1
        while path.exists():
            path = self._output_dir / f"{stem}_{n}.{fmt}"
            n += 1
        path.write_bytes(data)
        info(_LOG, "output_saved", path=str(path), bytes=len(data))
        return path

    # =========================================================================
    # Health Check
    # =========================================================================

    def list_voices(self) -> List[Dict[str, Any]]:
        return [
            {"name": v.name, "language": v.language, "shape": list(v.embedding.shape)}
            for v in self._registry
        ]

    def get_health_info(self) -> Dict[str, Any]:
        loaded = self._engine.is_loaded()
        metrics.set_engine_loaded(loaded)

        result: Dict[str, Any] = {
            "ok": True,
            "ready": self.is_ready(),
            "warmed_up": self._warmed_up,
            "in_progress": self._warmup_in_progress,
            "warmup_seconds": self._warmup_seconds,
            "warmup_error": self._warmup_error,
            "model_id": self._engine.model_id,
            "model_path": self._settings.model_path,
            "loaded": loaded,
            "sample_rate": self._engine.sample_rate,
            "voices": len(self._registry),
            "default_voice": self._settings.default_voice,
            "phonemizer": self._phonemizer.backend,
            "normalize_version": NORMALIZE_VERSION,
            "chunking": {
                "first_chunk_max": self._engine.chunking.first_chunk_max,
                "rest_chunk_max": self._engine.chunking.rest_chunk_max,
            },
            "sessions": self._sessions.stats(),
        }
        if self._cache is not None:
            result["cache"] = self._cache.stats()

        if self._controller is not None:
            stats = self._controller.stats()
            result["concurrency"] = {
                "max_concurrent": stats.max_concurrent,
                "active": stats.current_active,
                "waiting": stats.current_waiting,
                "total_processed": stats.total_processed,
                "total_rejected": stats.total_rejected,
            }
        return result


# =============================================================================
# Global Service Singleton
# =============================================================================

_service: Optional[TTSService] = None
_service_lock = threading.Lock()


def get_service(settings: Settings) -> TTSService:
    """Get or create the global TTSService instance."""
    global _service
    if _service is None:
        with _service_lock:
            if _service is None:
                _service = TTSService(settings)
    return _service


def reset_service() -> None:
    """Reset the global service instance (for testing)."""
    global _service
    with _service_lock:
        _service = None
