"""
Tests for KokoroEngine.

Tests cover:
- Lazy, in-order chunk generation with a single terminal chunk
- Empty input: one empty terminal chunk, no model call
- Padding and per-chunk style rows passed to the backend
- Speed validation before any work
- Backend failures and invalid output mapped to ModelFailure
- Missing model file reported as ModelNotReady
"""
import numpy as np
import pytest

from conftest import SAMPLES_PER_TOKEN, FakeBackend


def _tokens(n, word=20):
    """Token ids with a space every ``word`` tokens."""
    from kokoro_ms.tts.tokenizer import Vocabulary

    vocab = Vocabulary.default()
    letter = vocab.id_of("a", 0)
    space = vocab.id_of(" ", 0)
    return tuple(space if (i + 1) % word == 0 else letter for i in range(n))


class TestChunkGeneration:
    """Chunk order, terminal flag and laziness."""

    def test_chunks_in_order_single_terminal(self, engine, registry):
        """Indices are 0..n-1 and only the final chunk is last."""
        style = registry.resolve("af_sky")
        chunks = list(engine.infer(_tokens(150), style, 1.0))

        assert len(chunks) > 1
        assert [c.index for c in chunks] == list(range(len(chunks)))
        assert [c.is_last for c in chunks] == [False] * (len(chunks) - 1) + [True]
        assert all(c.sample_rate == 24000 for c in chunks)

    def test_first_chunk_respects_limit(self, engine, fake_backend, registry):
        """The first forward pass sees at most first_chunk_max tokens."""
        style = registry.resolve("af_sky")
        list(engine.infer(_tokens(150), style, 1.0))

        first_ids = fake_backend.calls[0][0]
        assert first_ids.shape[1] - 2 <= engine.chunking.first_chunk_max
        for ids, _, _ in fake_backend.calls[1:]:
            assert ids.shape[1] - 2 <= engine.chunking.rest_chunk_max

    def test_generation_is_lazy(self, engine, fake_backend, registry):
        """No forward pass runs until a chunk is requested."""
        style = registry.resolve("af_sky")
        gen = engine.infer(_tokens(150), style, 1.0)
        assert fake_backend.calls == []

        next(gen)
        assert len(fake_backend.calls) == 1
        gen.close()
        assert len(fake_backend.calls) == 1

    def test_total_samples_cover_all_tokens(self, engine, registry):
        """Each token contributes its samples exactly once."""
        style = registry.resolve("af_sky")
        chunks = list(engine.infer(_tokens(150), style, 1.0))
        assert sum(len(c.samples) for c in chunks) == 150 * SAMPLES_PER_TOKEN

    def test_speed_scales_duration(self, engine, registry):
        """speed=2.0 halves the generated length."""
        style = registry.resolve("af_sky")
        normal = sum(len(c.samples) for c in engine.infer(_tokens(40), style, 1.0))
        fast = sum(len(c.samples) for c in engine.infer(_tokens(40), style, 2.0))
        assert fast == pytest.approx(normal / 2, abs=2)


class TestEmptyInput:

    def test_zero_tokens_yields_one_empty_terminal_chunk(self, engine, fake_backend, registry):
        """Empty input completes immediately without touching the model."""
        chunks = list(engine.infer((), registry.resolve("af_sky"), 1.0))

        assert len(chunks) == 1
        assert chunks[0].index == 0
        assert chunks[0].is_last is True
        assert len(chunks[0].samples) == 0
        assert fake_backend.calls == []


class TestBackendContract:
    """What the backend receives."""

    def test_chunk_padded_with_zero(self, engine, fake_backend, registry):
        """token_ids are int64 (1, N+2) with pad id 0 at both ends."""
        tokens = _tokens(10)
        list(engine.infer(tokens, registry.resolve("af_sky"), 1.0))

        ids = fake_backend.calls[0][0]
        assert ids.dtype == np.int64
        assert ids.shape == (1, 12)
        assert ids[0, 0] == 0 and ids[0, -1] == 0
        assert tuple(ids[0, 1:-1]) == tokens

    def test_style_row_indexed_by_chunk_length(self, engine, fake_backend, registry, embeddings):
        """A length-indexed pack contributes row N for an N-token chunk."""
        list(engine.infer(_tokens(10), registry.resolve("af_sky"), 1.0))

        style = fake_backend.calls[0][1]
        assert style.shape == (1, 256)
        np.testing.assert_allclose(style[0], embeddings["af_sky"][10, 0])

    def test_flat_style_used_as_is(self, engine, fake_backend, registry, embeddings):
        """A single (256,) vector is used for every chunk length."""
        list(engine.infer(_tokens(10), registry.resolve("ef_flat"), 1.0))
        np.testing.assert_allclose(fake_backend.calls[0][1][0], embeddings["ef_flat"])


class TestErrors:

    @pytest.mark.parametrize("speed", [0, -1.0, float("nan"), float("inf")])
    def test_invalid_speed_rejected_before_inference(self, engine, fake_backend, registry, speed):
        """Speed is checked when infer() is called, not on first pull."""
        from kokoro_ms.core.errors import ErrorCode, ValidationError

        with pytest.raises(ValidationError) as exc_info:
            engine.infer(_tokens(10), registry.resolve("af_sky"), speed)
        assert exc_info.value.code == ErrorCode.INVALID_SPEED
        assert fake_backend.calls == []

    def test_backend_exception_is_model_failure(self, settings, registry):
        """An exception inside forward() surfaces as ModelFailure."""
        from kokoro_ms.core.errors import ModelFailure
        from kokoro_ms.tts.engine import KokoroEngine

        engine = KokoroEngine(settings, backend=FakeBackend(fail_at=1))
        gen = engine.infer(_tokens(150), registry.resolve("af_sky"), 1.0)

        first = next(gen)
        assert first.index == 0
        with pytest.raises(ModelFailure):
            next(gen)

    def test_non_finite_output_is_model_failure(self, settings, registry):
        """NaN samples are never passed on."""
        from kokoro_ms.core.errors import ModelFailure
        from kokoro_ms.tts.engine import KokoroEngine

        bad = np.array([[0.1, np.nan, 0.2]], dtype=np.float32)
        engine = KokoroEngine(settings, backend=FakeBackend(output=bad))
        with pytest.raises(ModelFailure):
            list(engine.infer(_tokens(5), registry.resolve("af_sky"), 1.0))

    def test_missing_model_file_is_not_ready(self, settings, registry):
        """The ONNX backend refuses to start without its model file."""
        from kokoro_ms.core.errors import ModelNotReady
        from kokoro_ms.tts.engine import KokoroEngine

        engine = KokoroEngine(settings)
        assert engine.backend.name == "onnx"
        with pytest.raises(ModelNotReady):
            list(engine.infer(_tokens(5), registry.resolve("af_sky"), 1.0))
        assert not engine.is_loaded()


class TestWarmup:

    def test_warmup_loads_and_marks_warmed(self, engine, fake_backend):
        """warmup() loads the backend and runs one short inference."""
        assert not engine.is_warmed()
        engine.warmup()
        assert engine.is_loaded()
        assert engine.is_warmed()
        assert len(fake_backend.calls) == 1
