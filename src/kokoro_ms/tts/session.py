"""
Synthesis Sessions.

A session is the live state of one request: its phase, its cancellation
flag and how many chunks it has delivered. Sessions are owned by a
SessionManager and dropped from it as soon as they reach a terminal
phase.

Phases:
    CREATED ──> GENERATING ──> COMPLETED
                          ├──> CANCELLED
                          └──> FAILED

    Terminal phases are final; leaving one raises RuntimeError.

Delivery:
    stream()    yields EncodedChunk objects in index order, encoding each
                AudioChunk as soon as the engine produces it
    collect()   drains the engine, concatenates, encodes once

Cancellation is cooperative: the flag is checked before and after every
pull from the engine. Once it is observed, the chunk being produced (if
any) is discarded and nothing more is yielded. Closing the stream()
generator (client disconnect) cancels the session the same way.

Failures (ModelFailure, EncodeFailure) move the session to FAILED and
propagate to the consumer after the chunks already delivered.

Usage:
    manager = SessionManager(engine, encoder)
    session = manager.open("req-1", tokens, style, speed=1.0, fmt="mp3")
    for chunk in session.stream():
        send(chunk.data)
"""
from __future__ import annotations

import threading
import time
from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterator, List, Optional, Sequence

import numpy as np

from kokoro_ms.core.errors import TTSError
from kokoro_ms.core.logging import error, get_logger, info, verbose
from kokoro_ms.core.metrics import metrics
from kokoro_ms.tts.encoder import AudioEncoder
from kokoro_ms.tts.engine import AudioChunk, KokoroEngine
from kokoro_ms.tts.voices import ResolvedStyleEmbedding

_LOG = get_logger("kokoro-ms.session")


class SessionPhase(str, Enum):
    CREATED = "created"
    GENERATING = "generating"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in _TERMINAL


_TERMINAL = frozenset({SessionPhase.COMPLETED, SessionPhase.CANCELLED, SessionPhase.FAILED})

_TRANSITIONS = {
    SessionPhase.CREATED: frozenset({SessionPhase.GENERATING, SessionPhase.CANCELLED}),
    SessionPhase.GENERATING: _TERMINAL,
    SessionPhase.COMPLETED: frozenset(),
    SessionPhase.CANCELLED: frozenset(),
    SessionPhase.FAILED: frozenset(),
}


@dataclass(frozen=True)
class EncodedChunk:
    index: int
    data: bytes
    is_last: bool
    samples: int


@dataclass
class CollectedAudio:
    """Result of a non-streaming session."""
    data: bytes
    samples: np.ndarray
    sample_rate: int
    chunks: int


class SynthesisSession:
    """
    One in-flight synthesis.

    Created through SessionManager.open(); not meant to be shared
    between threads except for cancel().
    """

    def __init__(
        self,
        manager: "SessionManager",
        session_id: str,
        tokens: Sequence[int],
        style: ResolvedStyleEmbedding,
        speed: float,
        fmt: str,
    ):
        self.id = session_id
        self.fmt = fmt
        self._manager = manager
        self._tokens = tuple(tokens)
        self._style = style
        self._speed = speed
        self._phase = SessionPhase.CREATED
        self._phase_lock = threading.Lock()
        self._cancel = threading.Event()
        self.delivered = 0
        self.error: Optional[TTSError] = None
        self.created_at = time.monotonic()

    # ── state ────────────────────────────────────────────────────────────────

    @property
    def phase(self) -> SessionPhase:
        return self._phase

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def cancel(self) -> None:
        """Request cancellation; honoured before the next chunk is delivered."""
        self._cancel.set()
        # a session that already started settles in its own consumer thread
        self._transition(SessionPhase.CANCELLED, only_from=SessionPhase.CREATED)

    def _transition(
        self,
        target: SessionPhase,
        only_from: Optional[SessionPhase] = None,
        settle: bool = False,
    ) -> bool:
        """
        Move to ``target`` under the phase lock.

        With ``only_from`` the move happens only from that phase; with
        ``settle`` it is skipped once the session is terminal. Skipped
        moves return False, any other illegal move raises RuntimeError.
        """
        with self._phase_lock:
            current = self._phase
            if only_from is not None and current is not only_from:
                return False
            if settle and current.terminal:
                return False
            if target not in _TRANSITIONS[current]:
                raise RuntimeError(f"session {self.id}: illegal transition {current.value} -> {target.value}")
            self._phase = target
        verbose(_LOG, "phase", session=self.id, phase=target.value)
        if target.terminal:
            self._manager._finish(self)
        return True

    def _start(self) -> Optional[Iterator[AudioChunk]]:
        """Begin inference; None when cancel() got in first."""
        if not self._transition(SessionPhase.GENERATING, only_from=SessionPhase.CREATED):
            return None
        try:
            return self._manager.engine.infer(self._tokens, self._style, self._speed)
        except TTSError as exc:
            self._fail(exc)
            raise

    def _fail(self, exc: Exception) -> None:
        if isinstance(exc, TTSError):
            self.error = exc
        error(_LOG, "session_failed", session=self.id, code=getattr(exc, "code", type(exc).__name__),
              message=str(exc), delivered=self.delivered)
        self._transition(SessionPhase.FAILED, settle=True)

    # ── delivery ─────────────────────────────────────────────────────────────

    def stream(self) -> Iterator[EncodedChunk]:
        """
        Yield encoded chunks as the engine produces them.

        Raises:
            ModelFailure / EncodeFailure: after the chunks already
                yielded; the session is FAILED.
        """
        if self._cancel.is_set():
            return
        chunks = self._start()
        if chunks is None:
            return
        encoder = self._manager.encoder.stream_encoder(self.fmt)
        try:
            while not self._cancel.is_set():
                try:
                    chunk = next(chunks)
                except StopIteration:
                    break
                if self._cancel.is_set():
                    break
                data = encoder.encode_chunk(chunk.samples)
                self.delivered += 1
                yield EncodedChunk(index=chunk.index, data=data, is_last=chunk.is_last, samples=len(chunk.samples))
                if chunk.is_last:
                    self._transition(SessionPhase.COMPLETED)
                    return
            self._transition(SessionPhase.CANCELLED, settle=True)
        except Exception as exc:
            self._fail(exc)
            raise
        finally:
            chunks.close()
            if not self._phase.terminal:
                # consumer closed the generator early
                self._cancel.set()
                self._transition(SessionPhase.CANCELLED, settle=True)

    def collect(self) -> CollectedAudio:
        """
        Drain the engine and encode the whole utterance once.

        Raises:
            ModelFailure / EncodeFailure: nothing is returned; the
                session is FAILED.
        """
        sr = self._manager.engine.sample_rate
        if self._cancel.is_set():
            return CollectedAudio(b"", np.zeros(0, dtype=np.float32), sr, 0)

        chunks = self._start()
        if chunks is None:
            return CollectedAudio(b"", np.zeros(0, dtype=np.float32), sr, 0)
        parts: List[np.ndarray] = []
        try:
            for chunk in chunks:
                if self._cancel.is_set():
                    break
                parts.append(chunk.samples)
                self.delivered += 1
            if self._cancel.is_set():
                self._transition(SessionPhase.CANCELLED, settle=True)
                return CollectedAudio(b"", np.zeros(0, dtype=np.float32), sr, 0)

            samples = np.concatenate(parts) if parts else np.zeros(0, dtype=np.float32)
            data = self._manager.encoder.encode(samples, self.fmt)
            self._transition(SessionPhase.COMPLETED)
            return CollectedAudio(data, samples, sr, len(parts))
        except Exception as exc:
            self._fail(exc)
            raise
        finally:
            chunks.close()


class SessionManager:
    """
    Registry of in-flight sessions.

    Sessions register on open() and unregister the moment they reach a
    terminal phase; stats() reports how many ended in each phase.
    """

    def __init__(self, engine: KokoroEngine, encoder: AudioEncoder):
        self.engine = engine
        self.encoder = encoder
        self._sessions: Dict[str, SynthesisSession] = {}
        self._lock = threading.Lock()
        self._counts = {p.value: 0 for p in _TERMINAL}

    def open(
        self,
        session_id: str,
        tokens: Sequence[int],
        style: ResolvedStyleEmbedding,
        speed: float,
        fmt: str,
    ) -> SynthesisSession:
        session = SynthesisSession(self, session_id, tokens, style, speed, fmt)
        with self._lock:
            self._sessions[session_id] = session
            active = len(self._sessions)
        metrics.set_active_sessions(active)
        verbose(_LOG, "session_open", session=session_id, tokens=len(session._tokens), fmt=fmt)
        return session

    def get(self, session_id: str) -> Optional[SynthesisSession]:
        with self._lock:
            return self._sessions.get(session_id)

    def cancel(self, session_id: str) -> bool:
        session = self.get(session_id)
        if session is None:
            return False
        session.cancel()
        return True

    def _finish(self, session: SynthesisSession) -> None:
        with self._lock:
            if self._sessions.get(session.id) is session:
                del self._sessions[session.id]
            self._counts[session.phase.value] += 1
            active = len(self._sessions)
        metrics.set_active_sessions(active)
        metrics.record_session(session.phase.value)
        info(_LOG, "session_done", session=session.id, phase=session.phase.value, chunks=session.delivered,
             seconds=round(time.monotonic() - session.created_at, 4))

    def active_count(self) -> int:
        with self._lock:
            return len(self._sessions)

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {"active": len(self._sessions), **self._counts}
