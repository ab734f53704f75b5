"""
Tests for synthesis sessions and the SessionManager.

Tests cover:
- Phase transitions: CREATED -> GENERATING -> COMPLETED / CANCELLED / FAILED
- Terminal phases are final
- Cooperative cancellation stops inference at chunk granularity
- Closing the stream early cancels the session
- Failures after partial delivery
- Streaming and whole-utterance delivery produce the same samples
- Manager bookkeeping
"""
import numpy as np
import pytest

from conftest import FakeBackend


def _tokens(n):
    from kokoro_ms.tts.tokenizer import tokenize

    return tokenize(("həlˈoʊ wˈɜːld. " * 40)[:n])


@pytest.fixture
def manager(engine):
    from kokoro_ms.tts.encoder import AudioEncoder
    from kokoro_ms.tts.session import SessionManager

    return SessionManager(engine, AudioEncoder(sample_rate=engine.sample_rate))


class TestPhases:

    def test_stream_completes(self, manager, registry):
        from kokoro_ms.tts.session import SessionPhase

        session = manager.open("s1", _tokens(150), registry.resolve("af_sky"), 1.0, "wav")
        assert session.phase is SessionPhase.CREATED

        chunks = list(session.stream())
        assert session.phase is SessionPhase.COMPLETED
        assert [c.index for c in chunks] == list(range(len(chunks)))
        assert chunks[-1].is_last and not any(c.is_last for c in chunks[:-1])
        assert session.delivered == len(chunks)

    def test_generating_while_streaming(self, manager, registry):
        from kokoro_ms.tts.session import SessionPhase

        session = manager.open("s1", _tokens(150), registry.resolve("af_sky"), 1.0, "wav")
        gen = session.stream()
        next(gen)
        assert session.phase is SessionPhase.GENERATING
        gen.close()

    def test_terminal_phase_is_final(self, manager, registry):
        """Leaving a terminal phase is an illegal transition."""
        from kokoro_ms.tts.session import SessionPhase

        session = manager.open("s1", _tokens(10), registry.resolve("af_sky"), 1.0, "wav")
        session.collect()
        assert session.phase is SessionPhase.COMPLETED
        with pytest.raises(RuntimeError):
            session._transition(SessionPhase.GENERATING)
        with pytest.raises(RuntimeError):
            session._transition(SessionPhase.CANCELLED)

    def test_empty_tokens_complete_immediately(self, manager, registry, fake_backend):
        """Zero tokens: one terminal zero-length chunk, COMPLETED, no error."""
        from kokoro_ms.tts.encoder import streaming_wav_header
        from kokoro_ms.tts.session import SessionPhase

        session = manager.open("empty", (), registry.resolve("af_sky"), 1.0, "wav")
        chunks = list(session.stream())

        assert len(chunks) == 1
        assert chunks[0].is_last and chunks[0].samples == 0
        assert chunks[0].data == streaming_wav_header(24000)
        assert session.phase is SessionPhase.COMPLETED
        assert session.error is None
        assert fake_backend.calls == []


class TestCancellation:

    def test_cancel_before_start(self, manager, registry, fake_backend):
        from kokoro_ms.tts.session import SessionPhase

        session = manager.open("s1", _tokens(150), registry.resolve("af_sky"), 1.0, "wav")
        session.cancel()
        assert session.phase is SessionPhase.CANCELLED
        assert list(session.stream()) == []
        assert fake_backend.calls == []

    def test_cancel_mid_stream_stops_inference(self, manager, registry, fake_backend):
        """After cancel() no further chunk is produced or delivered."""
        from kokoro_ms.tts.session import SessionPhase

        session = manager.open("s1", _tokens(150), registry.resolve("af_sky"), 1.0, "wav")
        gen = session.stream()
        first = next(gen)
        assert first.index == 0

        session.cancel()
        assert list(gen) == []
        assert session.phase is SessionPhase.CANCELLED
        assert len(fake_backend.calls) == 1
        assert session.delivered == 1

    def test_closing_stream_cancels(self, manager, registry):
        """A consumer that stops pulling (client disconnect) cancels the session."""
        from kokoro_ms.tts.session import SessionPhase

        session = manager.open("s1", _tokens(150), registry.resolve("af_sky"), 1.0, "wav")
        gen = session.stream()
        next(gen)
        gen.close()

        assert session.cancelled
        assert session.phase is SessionPhase.CANCELLED
        assert manager.stats()["cancelled"] == 1
        assert manager.active_count() == 0

    def test_cancel_via_manager(self, manager, registry):
        session = manager.open("s1", _tokens(150), registry.resolve("af_sky"), 1.0, "wav")
        assert manager.cancel("s1") is True
        assert session.cancelled
        assert manager.cancel("nope") is False

    def test_collect_after_cancel_is_empty(self, manager, registry):
        session = manager.open("s1", _tokens(150), registry.resolve("af_sky"), 1.0, "wav")
        session.cancel()
        collected = session.collect()
        assert collected.data == b""
        assert collected.chunks == 0

    def test_cancel_lands_between_check_and_start(self, manager, registry, fake_backend):
        """cancel() after stream() checked the flag but before inference starts."""
        from kokoro_ms.tts.session import SessionPhase

        session = manager.open("s1", _tokens(150), registry.resolve("af_sky"), 1.0, "wav")
        start = session._start

        def cancel_then_start():
            session.cancel()
            return start()

        session._start = cancel_then_start
        assert list(session.stream()) == []
        assert session.phase is SessionPhase.CANCELLED
        assert fake_backend.calls == []
        assert manager.stats()["cancelled"] == 1

    def test_cancel_after_consumer_settled(self, manager, registry):
        """A late cancel() on a session its consumer already cancelled is a no-op."""
        from kokoro_ms.tts.session import SessionPhase

        session = manager.open("s1", _tokens(150), registry.resolve("af_sky"), 1.0, "wav")
        start = session._start

        def start_then_cancel():
            chunks = start()
            session.cancel()
            return chunks

        session._start = start_then_cancel
        assert list(session.stream()) == []
        assert session.phase is SessionPhase.CANCELLED

        session.cancel()
        assert session.phase is SessionPhase.CANCELLED
        assert manager.stats()["cancelled"] == 1

    def test_concurrent_cancel_and_stream(self, manager, registry):
        """Racing cancel() against stream() never raises and always settles."""
        import threading

        from kokoro_ms.tts.session import SessionPhase

        errors = []
        sessions = [
            manager.open(f"s{i}", _tokens(150), registry.resolve("af_sky"), 1.0, "wav")
            for i in range(20)
        ]

        def consume(session):
            try:
                list(session.stream())
            except Exception as exc:
                errors.append(exc)

        def cancel(session):
            try:
                session.cancel()
            except Exception as exc:
                errors.append(exc)

        threads = []
        for session in sessions:
            threads.append(threading.Thread(target=consume, args=(session,)))
            threads.append(threading.Thread(target=cancel, args=(session,)))
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert all(s.phase in (SessionPhase.COMPLETED, SessionPhase.CANCELLED) for s in sessions)
        assert manager.active_count() == 0


class TestFailures:

    def test_failure_after_partial_delivery(self, settings, registry):
        """Chunks before the failure are delivered, then ModelFailure; FAILED."""
        from kokoro_ms.core.errors import ModelFailure
        from kokoro_ms.tts.encoder import AudioEncoder
        from kokoro_ms.tts.engine import KokoroEngine
        from kokoro_ms.tts.session import SessionManager, SessionPhase

        engine = KokoroEngine(settings, backend=FakeBackend(fail_at=1))
        manager = SessionManager(engine, AudioEncoder())
        session = manager.open("s1", _tokens(150), registry.resolve("af_sky"), 1.0, "wav")

        received = []
        with pytest.raises(ModelFailure):
            for chunk in session.stream():
                received.append(chunk)

        assert len(received) == 1
        assert session.phase is SessionPhase.FAILED
        assert session.error is not None and session.error.code == "MODEL_FAILURE"
        assert manager.stats()["failed"] == 1

    def test_collect_failure_returns_nothing(self, settings, registry):
        from kokoro_ms.core.errors import ModelFailure
        from kokoro_ms.tts.encoder import AudioEncoder
        from kokoro_ms.tts.engine import KokoroEngine
        from kokoro_ms.tts.session import SessionManager, SessionPhase

        engine = KokoroEngine(settings, backend=FakeBackend(fail_at=0))
        session = SessionManager(engine, AudioEncoder()).open(
            "s1", _tokens(10), registry.resolve("af_sky"), 1.0, "wav")
        with pytest.raises(ModelFailure):
            session.collect()
        assert session.phase is SessionPhase.FAILED

    def test_encode_failure_fails_session(self, engine, registry):
        from kokoro_ms.core.errors import EncodeFailure
        from kokoro_ms.tts.encoder import AudioEncoder
        from kokoro_ms.tts.session import SessionManager, SessionPhase

        def broken(samples, sr):
            raise RuntimeError("lame exploded")

        manager = SessionManager(engine, AudioEncoder(mp3_routine=broken))
        session = manager.open("s1", _tokens(10), registry.resolve("af_sky"), 1.0, "mp3")
        with pytest.raises(EncodeFailure):
            list(session.stream())
        assert session.phase is SessionPhase.FAILED


class TestEquivalence:

    def test_stream_and_collect_same_samples(self, engine, registry):
        """Chunked streaming and whole-utterance synthesis yield identical audio."""
        from kokoro_ms.tts.encoder import AudioEncoder, decode
        from kokoro_ms.tts.session import SessionManager

        manager = SessionManager(engine, AudioEncoder(wav_subtype="FLOAT"))
        style = registry.resolve("af_sky.4+af_nicole.5")

        streamed = np.concatenate([c.samples for c in engine.infer(_tokens(150), style, 1.0)])
        collected = manager.open("s1", _tokens(150), style, 1.0, "wav").collect()

        np.testing.assert_array_equal(collected.samples, streamed)
        decoded, sr = decode(collected.data)
        assert sr == 24000
        np.testing.assert_allclose(decoded, streamed, atol=1e-6)


class TestManager:

    def test_sessions_unregister_when_done(self, manager, registry):
        s1 = manager.open("a", _tokens(10), registry.resolve("af_sky"), 1.0, "wav")
        manager.open("b", _tokens(10), registry.resolve("af_sky"), 1.0, "wav")
        assert manager.active_count() == 2
        assert manager.get("a") is s1

        s1.collect()
        assert manager.get("a") is None
        stats = manager.stats()
        assert stats["active"] == 1
        assert stats["completed"] == 1
