"""
Configuration Management for kokoro-ms.

This module provides centralized configuration handling with:
    - Default values (Defaults class)
    - Dataclass-based configuration objects
    - YAML file loading with environment variable overrides
    - Validation with meaningful error messages

Configuration Hierarchy (highest priority first):
    1. Environment variables (KOKORO_MS_MODEL_PATH, KOKORO_MS_LOG_LEVEL, etc.)
    2. YAML config file (config/settings.yaml, or $KOKORO_MS_SETTINGS)
    3. Defaults class values

Example settings.yaml:
    tts:
      default_voice: af_sky
      default_language: en-us
      kokoro:
        model_path: models/kokoro/kokoro-v1.0.onnx
        voices_path: models/kokoro/voices-v1.0.bin

    chunking:
      first_chunk_max: 100
      rest_chunk_max: 400

    logging:
      level: 2  # NORMAL
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional
import os
import yaml


# Kokoro's text encoder has a 512 position context; two are used by padding.
MODEL_MAX_TOKENS = 510


class ConfigValidationError(Exception):
    """
    Raised when configuration validation fails.

    This exception is thrown when a configuration value is outside
    acceptable bounds or of the wrong type.
    """
    pass


class Defaults:
    """
    Centralized default configuration values.

    Sections:
        - TTS: Model files, voices, language
        - Phonemizer / Tokenizer: G2P backend, fallback token id
        - Chunking: Token chunk sizes for streaming
        - Audio: Container encoding options
        - Cache: In-memory LRU cache settings
        - Concurrency: Admission control
        - Output: Where non-returned audio files are written
        - Logging: Log level and formatting
    """

    # ─────────────────────────────────────────────────────────────────────────
    # TTS Defaults
    # ─────────────────────────────────────────────────────────────────────────
    TTS_MODEL_PATH = "models/kokoro/kokoro-v1.0.onnx"
    TTS_VOICES_PATH = "models/kokoro/voices-v1.0.bin"
    TTS_DEFAULT_VOICE = "af_sky"        # Same default as the OpenAI-style endpoint
    TTS_DEFAULT_LANGUAGE = "en-us"      # Language for Latin-script runs
    TTS_SAMPLE_RATE = 24000             # Kokoro output sample rate
    TTS_INTRA_OP_THREADS = 0            # 0 = onnxruntime decides

    # ─────────────────────────────────────────────────────────────────────────
    # Phonemizer / Tokenizer
    # ─────────────────────────────────────────────────────────────────────────
    PHONEMIZER_BACKEND = "auto"         # auto | espeak | rules
    TOKENIZER_UNKNOWN_ID = 0            # Pad symbol "$"

    # ─────────────────────────────────────────────────────────────────────────
    # Token Chunking
    # ─────────────────────────────────────────────────────────────────────────
    CHUNKING_FIRST_CHUNK_MAX = 100      # First chunk limit (faster first audio)
    CHUNKING_REST_CHUNK_MAX = 400       # Subsequent chunk limit

    # ─────────────────────────────────────────────────────────────────────────
    # Audio Encoding
    # ─────────────────────────────────────────────────────────────────────────
    AUDIO_WAV_SUBTYPE = "PCM_16"        # PCM_16 or FLOAT
    AUDIO_MP3_COMPRESSION = 0.3         # libsndfile compression level, 0..1

    # ─────────────────────────────────────────────────────────────────────────
    # Cache Settings
    # ─────────────────────────────────────────────────────────────────────────
    CACHE_ENABLED = True
    CACHE_MAX_ITEMS = 256               # Maximum cached encoded results
    CACHE_TTL_SECONDS = 3600            # Cache entry lifetime (1 hour)

    # ─────────────────────────────────────────────────────────────────────────
    # Concurrency Control
    # ─────────────────────────────────────────────────────────────────────────
    CONCURRENCY_ENABLED = True          # Enable admission control
    CONCURRENCY_MAX_CONCURRENT = 4      # Max simultaneous sessions
    CONCURRENCY_MAX_QUEUE = 16          # Max queued requests before rejection
    CONCURRENCY_TIMEOUT_S = 30.0        # Timeout for acquiring a slot

    # ─────────────────────────────────────────────────────────────────────────
    # Limits / Output
    # ─────────────────────────────────────────────────────────────────────────
    LIMITS_MAX_CHARS = 4096             # Longest accepted input text
    OUTPUT_DIR = "tmp"                  # Files written when return_audio=false

    # ─────────────────────────────────────────────────────────────────────────
    # Logging
    # ─────────────────────────────────────────────────────────────────────────
    LOGGING_TEXT_PREVIEW_CHARS = 80     # Characters to show in text preview
    LOGGING_LEVEL = 2                   # 1=MINIMAL, 2=NORMAL, 3=VERBOSE, 4=DEBUG


_PHONEMIZER_BACKENDS = ("auto", "espeak", "rules")
_WAV_SUBTYPES = ("PCM_16", "PCM_24", "FLOAT")


@dataclass
class TokenizerConfig:
    """Fallback id for symbols outside the vocabulary, optional vocab file."""
    unknown_id: int = Defaults.TOKENIZER_UNKNOWN_ID
    vocab_path: Optional[str] = None


@dataclass
class ChunkingConfig:
    """
    Token chunking configuration.

    A smaller first chunk gives faster time-to-first-audio; later chunks
    may use the full model context.
    """
    first_chunk_max: int = Defaults.CHUNKING_FIRST_CHUNK_MAX
    rest_chunk_max: int = Defaults.CHUNKING_REST_CHUNK_MAX


@dataclass
class AudioConfig:
    wav_subtype: str = Defaults.AUDIO_WAV_SUBTYPE
    mp3_compression: float = Defaults.AUDIO_MP3_COMPRESSION


@dataclass
class CacheConfig:
    """
    In-memory cache configuration.

    The cache stores encoded non-streaming results keyed by a hash of
    everything that affects the output.
    """
    enabled: bool = Defaults.CACHE_ENABLED
    max_items: int = Defaults.CACHE_MAX_ITEMS
    ttl_seconds: int = Defaults.CACHE_TTL_SECONDS


@dataclass
class ConcurrencyConfig:
    """
    Admission control configuration.

    The core imposes no limit itself; this caps simultaneous sessions
    at the service boundary.
    """
    enabled: bool = Defaults.CONCURRENCY_ENABLED
    max_concurrent: int = Defaults.CONCURRENCY_MAX_CONCURRENT
    max_queue: int = Defaults.CONCURRENCY_MAX_QUEUE
    timeout_s: float = Defaults.CONCURRENCY_TIMEOUT_S


@dataclass
class LoggingConfig:
    """
    Logging configuration.

    Log levels:
        1 = MINIMAL: Startup, shutdown, critical errors only
        2 = NORMAL: Request lifecycle, cache status (default)
        3 = VERBOSE: Per-stage timing, per-chunk flow
        4 = DEBUG: Phonemes, tokens, internal state
    """
    text_preview_chars: int = Defaults.LOGGING_TEXT_PREVIEW_CHARS
    level: int = Defaults.LOGGING_LEVEL


@dataclass
class ServiceConfig:
    """
    Validated configuration for TTSService.

    Usage:
        settings = load_settings("config/settings.yaml")
        config = ServiceConfig.from_settings(settings)
        print(config.chunking.first_chunk_max)
    """
    tokenizer: TokenizerConfig = field(default_factory=TokenizerConfig)
    chunking: ChunkingConfig = field(default_factory=ChunkingConfig)
    audio: AudioConfig = field(default_factory=AudioConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    concurrency: ConcurrencyConfig = field(default_factory=ConcurrencyConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    max_chars: int = Defaults.LIMITS_MAX_CHARS
    output_dir: str = Defaults.OUTPUT_DIR
    phonemizer_backend: str = Defaults.PHONEMIZER_BACKEND

    @classmethod
    def from_settings(cls, settings: "Settings") -> "ServiceConfig":
        """
        Create ServiceConfig from Settings with validation.

        Raises:
            ConfigValidationError: If any value fails validation.
        """
        raw = settings.raw

        # ─────────────────────────────────────────────────────────────────────
        # Tokenizer / phonemizer
        # ─────────────────────────────────────────────────────────────────────
        tok_raw = raw.get("tokenizer", {}) or {}
        tokenizer = TokenizerConfig(
            unknown_id=int(tok_raw.get("unknown_id", Defaults.TOKENIZER_UNKNOWN_ID)),
            vocab_path=tok_raw.get("vocab_path"),
        )
        cls._validate_non_negative("tokenizer.unknown_id", tokenizer.unknown_id)

        backend = str((raw.get("phonemizer", {}) or {}).get("backend", Defaults.PHONEMIZER_BACKEND)).lower()
        cls._validate_choice("phonemizer.backend", backend, _PHONEMIZER_BACKENDS)

        # ─────────────────────────────────────────────────────────────────────
        # Chunking
        # ─────────────────────────────────────────────────────────────────────
        chunking_raw = raw.get("chunking", {}) or {}
        chunking = ChunkingConfig(
            first_chunk_max=int(chunking_raw.get("first_chunk_max", Defaults.CHUNKING_FIRST_CHUNK_MAX)),
            rest_chunk_max=int(chunking_raw.get("rest_chunk_max", Defaults.CHUNKING_REST_CHUNK_MAX)),
        )
        cls._validate_range("chunking.first_chunk_max", chunking.first_chunk_max, 1, MODEL_MAX_TOKENS)
        cls._validate_range("chunking.rest_chunk_max", chunking.rest_chunk_max, 1, MODEL_MAX_TOKENS)

        # ─────────────────────────────────────────────────────────────────────
        # Audio
        # ─────────────────────────────────────────────────────────────────────
        audio_raw = raw.get("audio", {}) or {}
        audio = AudioConfig(
            wav_subtype=str(audio_raw.get("wav_subtype", Defaults.AUDIO_WAV_SUBTYPE)).upper(),
            mp3_compression=float(audio_raw.get("mp3_compression", Defaults.AUDIO_MP3_COMPRESSION)),
        )
        cls._validate_choice("audio.wav_subtype", audio.wav_subtype, _WAV_SUBTYPES)
        cls._validate_range("audio.mp3_compression", audio.mp3_compression, 0.0, 1.0)

        # ─────────────────────────────────────────────────────────────────────
        # Cache
        # ─────────────────────────────────────────────────────────────────────
        cache_raw = raw.get("cache", {}) or {}
        cache = CacheConfig(
            enabled=bool(cache_raw.get("enabled", Defaults.CACHE_ENABLED)),
            max_items=int(cache_raw.get("max_items", Defaults.CACHE_MAX_ITEMS)),
            ttl_seconds=int(cache_raw.get("ttl_seconds", Defaults.CACHE_TTL_SECONDS)),
        )
        cls._validate_positive("cache.max_items", cache.max_items)
        cls._validate_non_negative("cache.ttl_seconds", cache.ttl_seconds)

        # ─────────────────────────────────────────────────────────────────────
        # Concurrency
        # ─────────────────────────────────────────────────────────────────────
        concurrency_raw = raw.get("concurrency", {}) or {}
        concurrency = ConcurrencyConfig(
            enabled=bool(concurrency_raw.get("enabled", Defaults.CONCURRENCY_ENABLED)),
            max_concurrent=int(concurrency_raw.get("max_concurrent", Defaults.CONCURRENCY_MAX_CONCURRENT)),
            max_queue=int(concurrency_raw.get("max_queue", Defaults.CONCURRENCY_MAX_QUEUE)),
            timeout_s=float(concurrency_raw.get("timeout_s", Defaults.CONCURRENCY_TIMEOUT_S)),
        )
        cls._validate_positive("concurrency.max_concurrent", concurrency.max_concurrent)
        cls._validate_non_negative("concurrency.max_queue", concurrency.max_queue)
        cls._validate_positive("concurrency.timeout_s", concurrency.timeout_s)

        # ─────────────────────────────────────────────────────────────────────
        # Logging
        # ─────────────────────────────────────────────────────────────────────
        logging_raw = raw.get("logging", {}) or {}
        log_level_raw = logging_raw.get("level", Defaults.LOGGING_LEVEL)

        # Handle string log levels (e.g., "INFO", "DEBUG")
        if isinstance(log_level_raw, str):
            from kokoro_ms.core.logging.levels import coerce_level
            log_level = int(coerce_level(log_level_raw))
        else:
            log_level = int(log_level_raw)

        logging_cfg = LoggingConfig(
            text_preview_chars=int(logging_raw.get("text_preview_chars", Defaults.LOGGING_TEXT_PREVIEW_CHARS)),
            level=log_level,
        )
        cls._validate_non_negative("logging.text_preview_chars", logging_cfg.text_preview_chars)
        cls._validate_range("logging.level", logging_cfg.level, 1, 4)

        # ─────────────────────────────────────────────────────────────────────
        # Limits / output
        # ─────────────────────────────────────────────────────────────────────
        max_chars = int((raw.get("limits", {}) or {}).get("max_chars", Defaults.LIMITS_MAX_CHARS))
        cls._validate_positive("limits.max_chars", max_chars)
        output_dir = str((raw.get("output", {}) or {}).get("dir", Defaults.OUTPUT_DIR))

        return cls(
            tokenizer=tokenizer,
            chunking=chunking,
            audio=audio,
            cache=cache,
            concurrency=concurrency,
            logging=logging_cfg,
            max_chars=max_chars,
            output_dir=output_dir,
            phonemizer_backend=backend,
        )

    @staticmethod
    def _validate_positive(name: str, value: int | float) -> None:
        """Validate that a value is positive (> 0)."""
        if value <= 0:
            raise ConfigValidationError(f"{name} must be positive, got {value}")

    @staticmethod
    def _validate_non_negative(name: str, value: int | float) -> None:
        """Validate that a value is non-negative (>= 0)."""
        if value < 0:
            raise ConfigValidationError(f"{name} must be non-negative, got {value}")

    @staticmethod
    def _validate_range(name: str, value: int | float, min_val: int | float, max_val: int | float) -> None:
        """Validate that a value is within a range [min_val, max_val]."""
        if not (min_val <= value <= max_val):
            raise ConfigValidationError(f"{name} must be between {min_val} and {max_val}, got {value}")

    @staticmethod
    def _validate_choice(name: str, value: str, choices: tuple) -> None:
        if value not in choices:
            raise ConfigValidationError(f"{name} must be one of {', '.join(choices)}, got {value!r}")


@dataclass(frozen=True)
class Settings:
    """
    Immutable settings container loaded from YAML.

    Attributes:
        raw: Dictionary of raw configuration values.

    Properties provide convenient typed access to common settings.
    """
    raw: Dict[str, Any]

    def _tts(self) -> Dict[str, Any]:
        return self.raw.get("tts", {}) or {}

    def _kokoro(self) -> Dict[str, Any]:
        return self._tts().get("kokoro", {}) or {}

    @property
    def model_path(self) -> str:
        """Path to the Kokoro ONNX model."""
        return str(self._kokoro().get("model_path", Defaults.TTS_MODEL_PATH))

    @property
    def voices_path(self) -> str:
        """Path to the voice registry asset (.bin/.npz/.json)."""
        return str(self._kokoro().get("voices_path", Defaults.TTS_VOICES_PATH))

    @property
    def model_id(self) -> str:
        """Model identifier used in cache keys and health output."""
        return str(self._kokoro().get("model_id") or Path(self.model_path).stem)

    @property
    def intra_op_threads(self) -> int:
        return int(self._kokoro().get("intra_op_threads", Defaults.TTS_INTRA_OP_THREADS))

    @property
    def default_voice(self) -> str:
        """Voice expression used when a request names none."""
        return str(self._tts().get("default_voice", Defaults.TTS_DEFAULT_VOICE))

    @property
    def default_language(self) -> str:
        """Language assumed for Latin-script text without a hint."""
        return str(self._tts().get("default_language", Defaults.TTS_DEFAULT_LANGUAGE))

    @property
    def sample_rate(self) -> int:
        """Output audio sample rate."""
        return int(self._tts().get("sample_rate", Defaults.TTS_SAMPLE_RATE))

    def get_service_config(self) -> ServiceConfig:
        """
        Get validated ServiceConfig from these settings.

        Raises:
            ConfigValidationError: If validation fails.
        """
        return ServiceConfig.from_settings(self)


def settings_path() -> str:
    """Settings file location, overridable with KOKORO_MS_SETTINGS."""
    return os.getenv("KOKORO_MS_SETTINGS", "config/settings.yaml")


def load_settings(path: Optional[str] = None) -> Settings:
    """
    Load settings from a YAML configuration file.

    A missing file yields defaults, so the CLI and tests work from any
    directory.

    Environment variable overrides:
        - KOKORO_MS_MODEL_PATH: Override tts.kokoro.model_path
        - KOKORO_MS_VOICES_PATH: Override tts.kokoro.voices_path
        - KOKORO_MS_PHONEMIZER: Override phonemizer.backend

    Args:
        path: Path to the YAML configuration file.

    Returns:
        Settings object with loaded configuration.
    """
    p = Path(path or settings_path())
    raw: Dict[str, Any] = {}
    if p.exists():
        with p.open("r", encoding="utf-8") as f:
            raw = yaml.safe_load(f) or {}

    # Apply environment variable overrides
    model_path = os.getenv("KOKORO_MS_MODEL_PATH")
    if model_path:
        raw.setdefault("tts", {}).setdefault("kokoro", {})["model_path"] = model_path
    voices_path = os.getenv("KOKORO_MS_VOICES_PATH")
    if voices_path:
        raw.setdefault("tts", {}).setdefault("kokoro", {})["voices_path"] = voices_path
    backend = os.getenv("KOKORO_MS_PHONEMIZER")
    if backend:
        raw.setdefault("phonemizer", {})["backend"] = backend

    return Settings(raw=raw)
