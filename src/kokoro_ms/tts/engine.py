"""
Kokoro Inference Engine.

This module provides:
    - InferenceBackend: the opaque forward function contract
    - OnnxBackend: Kokoro ONNX model via onnxruntime (CPU)
    - AudioChunk: one block of generated samples
    - KokoroEngine: chunked, lazy inference over a token sequence
    - get_engine(): process-wide engine singleton

Model Contract:
    forward(token_ids, style, speed) -> float32 samples

    token_ids   int64 (1, N+2), the chunk padded with id 0 on both ends
    style       float32 (1, 256), the voice row for an N-token chunk
    speed       duration scale (>1 is faster); pitch is unaffected

Streaming:
    infer() returns a generator. Each planned chunk is run through the
    model only when the consumer asks for the next item, so the first
    chunk is audible before the rest is computed and a consumer that
    stops pulling stops inference.

Model Files:
    kokoro-v1.0.onnx from onnx-community/Kokoro-82M-v1.0-ONNX

Configuration:
    settings.yaml:
        tts:
          kokoro:
            model_path: models/kokoro/kokoro-v1.0.onnx
            intra_op_threads: 0
        chunking:
          first_chunk_max: 100
          rest_chunk_max: 400
"""
from __future__ import annotations

import math
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Iterator, Optional, Sequence

import numpy as np

from kokoro_ms.core.config import ChunkingConfig, Settings
from kokoro_ms.core.errors import ErrorCode, ModelFailure, ModelNotReady, ValidationError
from kokoro_ms.core.logging import debug, get_logger, info, success, verbose
from kokoro_ms.core.metrics import metrics
from kokoro_ms.tts.chunker import plan_token_chunks
from kokoro_ms.tts.tokenizer import PAD_ID, Vocabulary
from kokoro_ms.tts.voices import ResolvedStyleEmbedding
from kokoro_ms.utils.timeit import timeit

_LOG = get_logger("kokoro-ms.engine")

SAMPLE_RATE = 24000


@dataclass(frozen=True, eq=False)
class AudioChunk:
    """
    One contiguous block of mono float32 samples.

    Attributes:
        index: Position in the session, starting at 0.
        samples: 1-D float32 array (may be empty for the empty-input chunk).
        sample_rate: Samples per second.
        is_last: True only on the final chunk of a session.
    """
    index: int
    samples: np.ndarray
    sample_rate: int
    is_last: bool

    @property
    def duration(self) -> float:
        return len(self.samples) / float(self.sample_rate)


# ─────────────────────────────────────────────────────────────────────────────
# Backends
# ─────────────────────────────────────────────────────────────────────────────

class InferenceBackend:
    """
    Base class for model backends.

    Subclasses implement load() and forward(). Tests substitute a
    deterministic backend; production uses OnnxBackend.
    """
    name: str = "base"
    sample_rate: int = SAMPLE_RATE

    def __init__(self) -> None:
        self._loaded = False

    def load(self) -> None:
        raise NotImplementedError

    def is_loaded(self) -> bool:
        return bool(self._loaded)

    def forward(self, token_ids: np.ndarray, style: np.ndarray, speed: float) -> np.ndarray:
        raise NotImplementedError


class OnnxBackend(InferenceBackend):
    """
    Kokoro ONNX model on onnxruntime.

    Handles both exported input layouts: ``tokens`` (older exports) and
    ``input_ids`` (onnx-community exports), and whichever dtype the
    ``speed`` input declares.
    """
    name = "onnx"

    def __init__(self, model_path: str, intra_op_threads: int = 0, sample_rate: int = SAMPLE_RATE):
        super().__init__()
        self.model_path = model_path
        self.intra_op_threads = intra_op_threads
        self.sample_rate = sample_rate
        self._session = None
        self._token_input = "tokens"
        self._speed_dtype = np.float32
        self._lock = threading.Lock()

    def load(self) -> None:
        with self._lock:
            if self._loaded:
                return
            if not Path(self.model_path).exists():
                raise ModelNotReady(
                    f"Model file not found: {self.model_path}",
                    details={"model_path": self.model_path},
                )

            import onnxruntime as ort

            opts = ort.SessionOptions()
            if self.intra_op_threads > 0:
                opts.intra_op_num_threads = self.intra_op_threads

            info(_LOG, "loading model", model=self.model_path, threads=self.intra_op_threads or "auto")
            with timeit("load_model") as t:
                self._session = ort.InferenceSession(
                    self.model_path,
                    sess_options=opts,
                    providers=["CPUExecutionProvider"],
                )

            inputs = {i.name: i for i in self._session.get_inputs()}
            self._token_input = "input_ids" if "input_ids" in inputs else "tokens"
            speed_input = inputs.get("speed")
            self._speed_dtype = np.int32 if speed_input is not None and speed_input.type == "tensor(int32)" else np.float32

            self._loaded = True
            success(_LOG, "model loaded", seconds=round(t.seconds, 3), token_input=self._token_input)

    def forward(self, token_ids: np.ndarray, style: np.ndarray, speed: float) -> np.ndarray:
        feeds = {
            self._token_input: token_ids,
            "style": style,
            "speed": np.array([speed], dtype=self._speed_dtype),
        }
        return self._session.run(None, feeds)[0]


# ─────────────────────────────────────────────────────────────────────────────
# Engine
# ─────────────────────────────────────────────────────────────────────────────

class KokoroEngine:
    """
    Chunked Kokoro inference.

    Args:
        settings: Application settings (model path, chunking).
        backend: Model backend; defaults to OnnxBackend on settings.model_path.
        vocab: Vocabulary used to locate pause tokens for chunk planning.

    Example:
        engine = KokoroEngine(settings)
        for chunk in engine.infer(tokens, style, speed=1.0):
            play(chunk.samples)
    """

    def __init__(
        self,
        settings: Settings,
        backend: Optional[InferenceBackend] = None,
        vocab: Optional[Vocabulary] = None,
        chunking: Optional[ChunkingConfig] = None,
    ):
        self.settings = settings
        self.backend = backend or OnnxBackend(
            settings.model_path,
            intra_op_threads=settings.intra_op_threads,
            sample_rate=settings.sample_rate,
        )
        self.vocab = vocab or Vocabulary.default()
        self.chunking = chunking or settings.get_service_config().chunking
        self.model_id = settings.model_id
        self._warmed = False

    @property
    def sample_rate(self) -> int:
        return int(self.backend.sample_rate)

    def load(self) -> None:
        if not self.backend.is_loaded():
            self.backend.load()
        metrics.set_engine_loaded(self.backend.is_loaded())

    def is_loaded(self) -> bool:
        return self.backend.is_loaded()

    def is_warmed(self) -> bool:
        return self._warmed

    def warmup(self) -> None:
        """Load the model and run one short inference."""
        self.load()
        silent = ResolvedStyleEmbedding(embedding=np.zeros(256, dtype=np.float32), components=(), language="en-us")
        probe = tuple(self.vocab.id_of(ch, PAD_ID) for ch in "hə")
        with timeit("warmup") as t:
            for _ in self.infer(probe, silent, 1.0):
                pass
        self._warmed = True
        info(_LOG, "warmup_done", seconds=round(t.seconds, 3))

    def infer(
        self,
        tokens: Sequence[int],
        style: ResolvedStyleEmbedding,
        speed: float = 1.0,
    ) -> Iterator[AudioChunk]:
        """
        Plan chunks and return a lazy generator of AudioChunks.

        Arguments are checked here, before any model work; the returned
        generator is finite and cannot be restarted.

        Zero tokens yields exactly one empty chunk with is_last=True.

        Raises:
            ValidationError: speed is not a positive finite number.
            ModelFailure: (from the generator) the forward pass failed or
                produced invalid output. Never retried.
        """
        if not isinstance(speed, (int, float)) or not math.isfinite(speed) or speed <= 0:
            raise ValidationError(f"speed must be positive, got {speed!r}", ErrorCode.INVALID_SPEED)

        tokens = tuple(tokens)
        plan = plan_token_chunks(
            tokens,
            first_chunk_max=self.chunking.first_chunk_max,
            rest_chunk_max=self.chunking.rest_chunk_max,
            vocab=self.vocab,
        )
        return self._generate(tokens, plan.spans, style, float(speed))

    def _generate(self, tokens, spans, style: ResolvedStyleEmbedding, speed: float) -> Iterator[AudioChunk]:
        sr = self.sample_rate
        if not spans:
            verbose(_LOG, "empty_input")
            yield AudioChunk(index=0, samples=np.zeros(0, dtype=np.float32), sample_rate=sr, is_last=True)
            return

        self.load()
        last = len(spans) - 1
        for index, (start, end) in enumerate(spans):
            chunk_ids = tokens[start:end]
            with timeit("forward") as t:
                samples = self._forward(chunk_ids, style, speed)
            verbose(_LOG, "chunk", index=index, tokens=len(chunk_ids), samples=len(samples),
                    seconds=round(t.seconds, 4))
            yield AudioChunk(index=index, samples=samples, sample_rate=sr, is_last=index == last)

    def _forward(self, chunk_ids: Sequence[int], style: ResolvedStyleEmbedding, speed: float) -> np.ndarray:
        padded = np.array([[PAD_ID, *chunk_ids, PAD_ID]], dtype=np.int64)
        style_row = style.row_for(len(chunk_ids))
        debug(_LOG, "forward", tokens=len(chunk_ids), speed=speed)

        try:
            raw = self.backend.forward(padded, style_row, speed)
        except Exception as exc:
            raise ModelFailure(f"Inference failed: {exc}", details={"tokens": len(chunk_ids)}) from exc

        samples = np.asarray(raw, dtype=np.float32).squeeze()
        if samples.ndim == 0:
            samples = samples.reshape(1)
        if samples.ndim != 1:
            raise ModelFailure(f"Model output has shape {np.shape(raw)}, expected mono samples")
        if not np.all(np.isfinite(samples)):
            raise ModelFailure("Model output contains non-finite values", details={"tokens": len(chunk_ids)})
        return samples


# ─────────────────────────────────────────────────────────────────────────────
# Engine singleton
# ─────────────────────────────────────────────────────────────────────────────

_ENGINE: Optional[KokoroEngine] = None
_ENGINE_LOCK = threading.Lock()


def get_engine(settings: Settings) -> KokoroEngine:
    """
    Get or create the process-wide engine.

    Only one model instance is kept in memory; double-checked locking
    keeps two threads from loading it twice.
    """
    global _ENGINE
    if _ENGINE is None:
        with _ENGINE_LOCK:
            if _ENGINE is None:
                _ENGINE = KokoroEngine(settings)
    return _ENGINE


def reset_engine() -> None:
    """Reset the global engine (for testing)."""
    global _ENGINE
    with _ENGINE_LOCK:
        _ENGINE = None
