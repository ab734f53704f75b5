"""
Audio Encoding.

Turns float32 samples into WAV or MP3 bytes.

WAV:
    RIFF/WAVE through soundfile (libsndfile). Each call works on its own
    buffer, so any number of threads may encode at once. The subtype is
    configurable: PCM_16 (default), PCM_24, or FLOAT (32-bit float).

MP3:
    libsndfile's MPEG Layer III writer (LAME underneath). The encoder is
    treated as non-reentrant: every call, from every session, goes
    through one process-wide lock. The lock covers a single encode call
    (one chunk), never a whole session, so concurrent streams interleave
    at chunk granularity.

Streaming:
    stream_encoder(fmt) returns a per-session StreamEncoder. For WAV the
    first chunk carries a header with placeholder sizes (data size
    0x7FFFFFFF, length unknown up front) and later chunks are bare PCM
    frames. For MP3 every chunk is an independently decodable segment.

Empty input:
    An empty buffer encodes to a header-only WAV (zero data frames). MP3
    has no valid zero-frame stream, so an empty buffer encodes to b""
    without touching the encoder or its lock; a zero-length terminal
    chunk of an MP3 stream therefore carries no bytes.

Example:
    >>> enc = AudioEncoder(sample_rate=24000)
    >>> wav = enc.encode(samples, "wav")
    >>> samples2, sr = decode(wav)
"""
from __future__ import annotations

import io
import struct
import threading
from time import perf_counter
from typing import Callable, Optional

import numpy as np
import soundfile as sf

from kokoro_ms.core.config import AudioConfig
from kokoro_ms.core.errors import EncodeFailure, ErrorCode, ValidationError
from kokoro_ms.core.logging import debug, get_logger, verbose
from kokoro_ms.core.metrics import metrics
from kokoro_ms.utils.timeit import timeit

_LOG = get_logger("kokoro-ms.encoder")

FORMATS = ("wav", "mp3")
MEDIA_TYPES = {"wav": "audio/wav", "mp3": "audio/mpeg"}

# Serializes every call into the MP3 encoder, process-wide
MP3_ENCODER_LOCK = threading.Lock()

STREAM_DATA_SIZE = 0x7FFFFFFF

# subtype -> (WAVE format tag, bits per sample)
_WAV_LAYOUT = {
    "PCM_16": (1, 16),
    "PCM_24": (1, 24),
    "FLOAT": (3, 32),
}

Mp3Routine = Callable[[np.ndarray, int], bytes]


def media_type(fmt: str) -> str:
    try:
        return MEDIA_TYPES[fmt]
    except KeyError:
        raise ValidationError(f"Unsupported format: {fmt!r}", ErrorCode.INVALID_FORMAT) from None


def decode(data: bytes) -> tuple[np.ndarray, int]:
    """Decode WAV or MP3 bytes to (mono float32 samples, sample_rate)."""
    samples, sr = sf.read(io.BytesIO(data), dtype="float32")
    if samples.ndim > 1:
        samples = samples.mean(axis=1)
    return np.asarray(samples, dtype=np.float32), int(sr)


def streaming_wav_header(sample_rate: int, subtype: str = "PCM_16") -> bytes:
    """44-byte mono WAV header with placeholder sizes for unknown length."""
    fmt_tag, bits = _WAV_LAYOUT[subtype]
    block_align = bits // 8
    return struct.pack(
        "<4sI4s4sIHHIIHH4sI",
        b"RIFF", 36 + STREAM_DATA_SIZE, b"WAVE",
        b"fmt ", 16, fmt_tag, 1, sample_rate, sample_rate * block_align, block_align, bits,
        b"data", STREAM_DATA_SIZE,
    )


def _as_mono(samples: np.ndarray) -> np.ndarray:
    wav = np.asarray(samples, dtype=np.float32)
    if wav.ndim > 1:
        wav = wav.reshape(-1)
    return wav


class AudioEncoder:
    """
    Stateless encoder front end.

    Args:
        sample_rate: Rate written into the container.
        wav_subtype: PCM_16, PCM_24 or FLOAT.
        mp3_compression: libsndfile compression level, 0.0 (best) to 1.0.
        mp3_routine: Replacement for the MP3 call (samples, sr) -> bytes;
            still serialized through the MP3 lock.
        lock: Lock guarding the MP3 routine (default: the process-wide one).
    """

    def __init__(
        self,
        sample_rate: int = 24000,
        wav_subtype: str = "PCM_16",
        mp3_compression: float = 0.3,
        mp3_routine: Optional[Mp3Routine] = None,
        lock: Optional[threading.Lock] = None,
    ):
        if wav_subtype not in _WAV_LAYOUT:
            raise ValueError(f"wav_subtype must be one of {tuple(_WAV_LAYOUT)}, got {wav_subtype!r}")
        self.sample_rate = int(sample_rate)
        self.wav_subtype = wav_subtype
        self.mp3_compression = float(mp3_compression)
        self._mp3_routine = mp3_routine or self._soundfile_mp3
        self._lock = lock or MP3_ENCODER_LOCK

    @classmethod
    def from_config(cls, sample_rate: int, audio: AudioConfig, **kwargs) -> "AudioEncoder":
        return cls(sample_rate, wav_subtype=audio.wav_subtype, mp3_compression=audio.mp3_compression, **kwargs)

    def encode(self, samples: np.ndarray, fmt: str) -> bytes:
        """
        Encode a complete buffer.

        Raises:
            ValidationError: Unknown format.
            EncodeFailure: The underlying routine reported an error.
        """
        media_type(fmt)
        wav = _as_mono(samples)
        with timeit("encode") as t:
            if fmt == "wav":
                out = self._encode_wav(wav)
            else:
                out = self._encode_mp3(wav)
        verbose(_LOG, "encoded", fmt=fmt, samples=len(wav), bytes=len(out), seconds=round(t.seconds, 4))
        return out

    def stream_encoder(self, fmt: str) -> "StreamEncoder":
        media_type(fmt)
        return StreamEncoder(self, fmt)

    # ── WAV ──────────────────────────────────────────────────────────────────

    def _encode_wav(self, wav: np.ndarray) -> bytes:
        buf = io.BytesIO()
        try:
            sf.write(buf, wav, self.sample_rate, format="WAV", subtype=self.wav_subtype)
        except (sf.LibsndfileError, RuntimeError, ValueError) as exc:
            raise EncodeFailure(f"WAV encoding failed: {exc}") from exc
        return buf.getvalue()

    def encode_raw(self, wav: np.ndarray) -> bytes:
        """Bare PCM frames in the configured WAV subtype."""
        buf = io.BytesIO()
        try:
            sf.write(buf, _as_mono(wav), self.sample_rate, format="RAW", subtype=self.wav_subtype)
        except (sf.LibsndfileError, RuntimeError, ValueError) as exc:
            raise EncodeFailure(f"PCM encoding failed: {exc}") from exc
        return buf.getvalue()

    # ── MP3 ──────────────────────────────────────────────────────────────────

    def _soundfile_mp3(self, wav: np.ndarray, sample_rate: int) -> bytes:
        buf = io.BytesIO()
        sf.write(
            buf, wav, sample_rate,
            format="MP3", subtype="MPEG_LAYER_III",
            compression_level=self.mp3_compression,
        )
        return buf.getvalue()

    def _encode_mp3(self, wav: np.ndarray) -> bytes:
        if len(wav) == 0:
            return b""
        t0 = perf_counter()
        with self._lock:
            waited = perf_counter() - t0
            metrics.observe_encoder_lock_wait(waited)
            debug(_LOG, "mp3_lock", waited=round(waited, 5))
            try:
                return self._mp3_routine(wav, self.sample_rate)
            except EncodeFailure:
                raise
            except Exception as exc:
                raise EncodeFailure(f"MP3 encoding failed: {exc}") from exc


class StreamEncoder:
    """
    Encodes one session's chunks in order.

    Not shared between sessions; the first call decides whether a WAV
    header is emitted.
    """

    def __init__(self, encoder: AudioEncoder, fmt: str):
        self.encoder = encoder
        self.fmt = fmt
        self._started = False

    def encode_chunk(self, samples: np.ndarray) -> bytes:
        if self.fmt == "mp3":
            self._started = True
            return self.encoder.encode(samples, "mp3")

        out = b""
        if not self._started:
            out = streaming_wav_header(self.encoder.sample_rate, self.encoder.wav_subtype)
            self._started = True
        if len(samples):
            out += self.encoder.encode_raw(samples)
        return out
