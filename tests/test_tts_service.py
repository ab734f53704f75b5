"""
Tests for TTSService - the unified synthesis pipeline.

Tests cover:
- build_request() validation
- End-to-end synthesis on the fake backend (WAV, style mix, empty text)
- Unknown voices rejected before inference
- Cache hit/miss and cache key contents
- synthesize_stream() ordering, laziness and cancellation
- Admission control errors
- is_ready(), warmup and get_health_info()
- save_output() naming
"""
import io
import threading

import numpy as np
import pytest

from conftest import SAMPLES_PER_TOKEN, FakeBackend


class TestBuildRequest:

    def test_defaults(self, service):
        req = service.build_request("Hello")
        assert req.voice == "af_sky"
        assert req.fmt == "mp3"
        assert req.speed == 1.0
        assert req.language is None

    def test_normalizes_format_and_language(self, service):
        req = service.build_request("Hello", fmt="WAV", language="EN-US")
        assert req.fmt == "wav"
        assert req.language == "en-us"

    @pytest.mark.parametrize("kwargs,code", [
        ({"speed": 0}, "INVALID_SPEED"),
        ({"speed": "fast"}, "INVALID_SPEED"),
        ({"fmt": "ogg"}, "INVALID_FORMAT"),
        ({"voice": ""}, "INVALID_VOICE"),
        ({"voice": "af_sky+"}, "INVALID_VOICE"),
    ])
    def test_rejects(self, service, kwargs, code):
        from kokoro_ms.core.errors import ValidationError

        with pytest.raises(ValidationError) as exc_info:
            service.build_request("Hello", **kwargs)
        assert exc_info.value.code == code

    def test_text_too_long(self, tmp_path, engine, registry):
        from conftest import make_raw_settings
        from kokoro_ms.core.config import Settings
        from kokoro_ms.core.errors import ValidationError
        from kokoro_ms.services.tts_service import TTSService

        svc = TTSService(Settings(raw=make_raw_settings(tmp_path, limits={"max_chars": 10})),
                         engine=engine, registry=registry)
        with pytest.raises(ValidationError) as exc_info:
            svc.build_request("x" * 11)
        assert exc_info.value.code == "TEXT_TOO_LONG"


class TestEndToEnd:
    """The three reference scenarios."""

    def test_hello_wav(self, service):
        """'Hello' with af_sky as WAV: valid container, non-zero samples, 24 kHz."""
        import soundfile as sf

        req = service.build_request("Hello", voice="af_sky", fmt="wav")
        result = service.synthesize(req, "req-1")

        info = sf.info(io.BytesIO(result.audio))
        assert info.samplerate == 24000
        assert info.channels == 1
        assert info.frames > 0
        assert result.n_samples == info.frames
        assert result.media_type == "audio/wav"
        assert result.cache_status == "miss"
        assert result.chunks == 1

    def test_style_mix_and_unknown_voice(self, service, fake_backend, embeddings):
        """A mix is the weighted sum; an unknown voice never reaches the model."""
        from kokoro_ms.core.errors import UnknownVoice

        prepared = service.prepare(service.build_request("Hello", voice="af_sky.4+af_nicole.5"))
        expected = 0.4 * embeddings["af_sky"] + 0.5 * embeddings["af_nicole"]
        np.testing.assert_allclose(prepared.style.embedding, expected, rtol=1e-5, atol=1e-6)

        calls_before = len(fake_backend.calls)
        req = service.build_request("Hello", voice="af_unknown")
        with pytest.raises(UnknownVoice):
            service.synthesize(req, "req-2")
        assert len(fake_backend.calls) == calls_before
        assert service.sessions.active_count() == 0

    def test_empty_text_completes(self, service, fake_backend):
        """Empty input: one terminal zero-length chunk, no error."""
        calls_before = len(fake_backend.calls)
        chunks = list(service.synthesize_stream(service.build_request("", fmt="wav", stream=True), "req-3"))

        assert len(chunks) == 1
        assert chunks[0].is_last and chunks[0].samples == 0
        assert len(fake_backend.calls) == calls_before
        assert service.sessions.stats()["completed"] >= 1


class TestSynthesize:

    def test_sample_count_tracks_tokens(self, service):
        prepared = service.prepare(service.build_request("Hello world", fmt="wav"))
        result = service.synthesize(prepared.request, "r")
        assert result.n_samples == len(prepared.tokens) * SAMPLES_PER_TOKEN
        assert result.duration == pytest.approx(result.n_samples / 24000)

    def test_cache_hit_on_repeat(self, service, fake_backend):
        req = service.build_request("Hello world", fmt="wav")
        first = service.synthesize(req, "r1")
        calls = len(fake_backend.calls)
        second = service.synthesize(req, "r2")

        assert first.cache_status == "miss"
        assert second.cache_status == "hit"
        assert second.audio == first.audio
        assert len(fake_backend.calls) == calls

    def test_cache_key_varies_with_output_inputs(self, service):
        base = service.prepare(service.build_request("Hello", voice="af_sky", fmt="wav"))
        key = service.cache_key(base)

        for kwargs in ({"voice": "af_nicole"}, {"speed": 1.5}, {"fmt": "mp3"}, {"language": "en-gb"}):
            params = {"voice": "af_sky", "fmt": "wav", **kwargs}
            other = service.prepare(service.build_request("Hello", **params))
            assert service.cache_key(other) != key

        # Same normalized text, same key
        same = service.prepare(service.build_request("  HELLO ", voice="af_sky", fmt="wav"))
        assert service.cache_key(same) == key

    def test_model_failure_propagates(self, settings, registry):
        from kokoro_ms.core.errors import ModelFailure
        from kokoro_ms.services.tts_service import TTSService
        from kokoro_ms.tts.engine import KokoroEngine

        svc = TTSService(settings, engine=KokoroEngine(settings, backend=FakeBackend(fail_at=0)),
                         registry=registry)
        with pytest.raises(ModelFailure):
            svc.synthesize(svc.build_request("Hello", fmt="wav"), "r")
        assert svc.sessions.stats()["failed"] == 1

    def test_unexpected_error_wrapped(self, service, monkeypatch):
        from kokoro_ms.core.errors import ErrorCode, TTSError

        def boom(*args, **kwargs):
            raise KeyError("surprise")

        monkeypatch.setattr(service.sessions, "open", boom)
        with pytest.raises(TTSError) as exc_info:
            service.synthesize(service.build_request("Hello", fmt="wav"), "r")
        assert exc_info.value.code == ErrorCode.INTERNAL_ERROR


class TestStream:

    def test_chunks_in_order(self, service):
        req = service.build_request("Hello world. " * 12, fmt="wav", stream=True)
        chunks = list(service.synthesize_stream(req, "r"))

        assert len(chunks) > 1
        assert [c.index for c in chunks] == list(range(len(chunks)))
        assert chunks[-1].is_last
        assert chunks[0].data.startswith(b"RIFF")
        assert not any(c.data.startswith(b"RIFF") for c in chunks[1:])

    def test_validation_is_eager(self, service):
        """Unknown voices raise from synthesize_stream(), before iteration."""
        from kokoro_ms.core.errors import UnknownVoice

        with pytest.raises(UnknownVoice):
            service.synthesize_stream(service.build_request("Hello", voice="af_nope", stream=True), "r")

    def test_close_cancels_session(self, service, fake_backend):
        req = service.build_request("Hello world. " * 12, fmt="wav", stream=True)
        calls_before = len(fake_backend.calls)
        gen = service.synthesize_stream(req, "r-cancel")
        next(gen)
        gen.close()

        assert service.sessions.stats()["cancelled"] == 1
        assert len(fake_backend.calls) == calls_before + 1

    def test_streams_are_not_cached(self, service):
        req = service.build_request("Hello", fmt="wav", stream=True)
        list(service.synthesize_stream(req, "r"))
        assert service.get_health_info()["cache"]["size"] == 0


class TestAdmission:

    def _service(self, tmp_path, engine, registry, **concurrency):
        from conftest import make_raw_settings
        from kokoro_ms.core.config import Settings
        from kokoro_ms.services.tts_service import TTSService

        cfg = {"enabled": True, "max_concurrent": 1, "max_queue": 0, "timeout_s": 0.05, **concurrency}
        settings = Settings(raw=make_raw_settings(tmp_path, concurrency=cfg, cache={"enabled": False}))
        return TTSService(settings, engine=engine, registry=registry)

    def test_queue_full(self, tmp_path, engine, registry):
        from kokoro_ms.core.errors import QueueFullError

        svc = self._service(tmp_path, engine, registry)
        assert svc.controller.try_acquire()
        try:
            with pytest.raises(QueueFullError):
                svc.synthesize(svc.build_request("Hello", fmt="wav"), "r")
        finally:
            svc.controller.release()

    def test_timeout(self, tmp_path, engine, registry):
        from kokoro_ms.core.errors import TimeoutError

        svc = self._service(tmp_path, engine, registry, max_queue=1)
        assert svc.controller.try_acquire()
        try:
            with pytest.raises(TimeoutError):
                svc.synthesize(svc.build_request("Hello", fmt="wav"), "r")
        finally:
            svc.controller.release()

    def test_stream_holds_slot_until_closed(self, tmp_path, engine, registry):
        svc = self._service(tmp_path, engine, registry)
        gen = svc.synthesize_stream(svc.build_request("Hello world. " * 12, fmt="wav", stream=True), "r")
        next(gen)
        assert svc.controller.active_count == 1
        gen.close()
        assert svc.controller.active_count == 0


class TestReadiness:

    def test_ready_after_warmup(self, service):
        assert service.is_ready()
        assert service.warmed_up
        health = service.get_health_info()
        assert health["ready"] is True
        assert health["loaded"] is True
        assert health["voices"] == 4
        assert health["sample_rate"] == 24000
        assert health["model_id"] == "kokoro-test"
        assert health["phonemizer"] == "rules"
        assert health["chunking"] == {"first_chunk_max": 20, "rest_chunk_max": 60}

    def test_not_ready_before_warmup(self, settings, engine, registry):
        from kokoro_ms.services.tts_service import TTSService

        assert not TTSService(settings, engine=engine, registry=registry).is_ready()

    def test_skip_warmup_env(self, settings, engine, registry, monkeypatch):
        from kokoro_ms.services.tts_service import TTSService

        monkeypatch.setenv("KOKORO_MS_SKIP_WARMUP", "1")
        svc = TTSService(settings, engine=engine, registry=registry)
        svc.warmup()
        assert svc.is_ready()
        assert not engine.is_loaded()

    def test_empty_registry_never_ready(self, settings, engine, monkeypatch):
        from kokoro_ms.services.tts_service import TTSService
        from kokoro_ms.tts.voices import VoiceRegistry

        monkeypatch.setenv("KOKORO_MS_SKIP_WARMUP", "1")
        assert not TTSService(settings, engine=engine, registry=VoiceRegistry({})).is_ready()

    def test_warmup_failure_reported(self, settings, registry):
        """A missing model file shows up in health, not as an exception."""
        from kokoro_ms.services.tts_service import TTSService
        from kokoro_ms.tts.engine import KokoroEngine

        svc = TTSService(settings, engine=KokoroEngine(settings), registry=registry)
        svc.warmup(background=False)
        health = svc.get_health_info()
        assert health["ready"] is False
        assert "not found" in health["warmup_error"]

    def test_background_warmup(self, settings, engine, registry):
        from kokoro_ms.services.tts_service import TTSService

        svc = TTSService(settings, engine=engine, registry=registry)
        svc.warmup()
        for t in threading.enumerate():
            if t.name == "kokoro-warmup":
                t.join(timeout=5)
        assert svc.is_ready()


class TestOutputFiles:

    def test_save_output_unique_names(self, service, settings):
        first = service.save_output(b"abc", "mp3")
        second = service.save_output(b"def", "mp3")

        assert first != second
        assert first.name.startswith("output_") and first.suffix == ".mp3"
        assert first.read_bytes() == b"abc"
        assert second.read_bytes() == b"def"

    def test_list_voices(self, service):
        voices = {v["name"]: v for v in service.list_voices()}
        assert voices["af_sky"]["language"] == "en-us"
        assert voices["af_sky"]["shape"] == [510, 1, 256]
        assert voices["ef_flat"]["shape"] == [256]

    def test_analyze_dry_run(self, service, fake_backend):
        calls = len(fake_backend.calls)
        out = service.analyze(service.build_request("It costs $5.", voice="af_sky.4+af_nicole.5"))

        assert out["normalized"] == "it costs five dollars."
        assert out["components"] == [{"name": "af_sky", "weight": 0.4}, {"name": "af_nicole", "weight": 0.5}]
        assert len(out["tokens"]) == len(out["phonemes"])
        assert out["chunks"][0][0] == 0 and out["chunks"][-1][1] == len(out["tokens"])
        assert len(fake_backend.calls) == calls
