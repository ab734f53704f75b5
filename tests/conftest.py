"""
Shared fixtures.

Synthesis tests run against FakeBackend, a deterministic stand-in for
the ONNX model: it returns a sine burst whose length is proportional to
the number of (unpadded) tokens and inversely proportional to speed.
No model file is needed.
"""
from __future__ import annotations

import json
import threading

import numpy as np
import pytest

from kokoro_ms.core.config import Settings
from kokoro_ms.tts.engine import SAMPLE_RATE, InferenceBackend, KokoroEngine
from kokoro_ms.tts.voices import STYLE_DIM, VoiceRegistry

SAMPLES_PER_TOKEN = 240


class FakeBackend(InferenceBackend):
    """
    Deterministic model backend.

    Args:
        fail_at: Zero-based forward call that raises RuntimeError.
        output: Replaces the generated samples (e.g. NaNs) when set.
    """
    name = "fake"

    def __init__(self, fail_at=None, output=None):
        super().__init__()
        self.fail_at = fail_at
        self.output = output
        self.calls = []
        self.lock = threading.Lock()

    def load(self):
        self._loaded = True

    def forward(self, token_ids, style, speed):
        with self.lock:
            call = len(self.calls)
            self.calls.append((token_ids.copy(), style.copy(), speed))
        if self.fail_at is not None and call == self.fail_at:
            raise RuntimeError("fake forward failure")
        if self.output is not None:
            return self.output

        n_tokens = token_ids.shape[1] - 2
        length = max(1, int(n_tokens * SAMPLES_PER_TOKEN / speed))
        t = np.arange(length, dtype=np.float32)
        amp = 0.1 + 0.01 * float(np.abs(style).mean())
        return (amp * np.sin(2 * np.pi * 220.0 * t / SAMPLE_RATE)).astype(np.float32)[None, :]


def make_embeddings():
    rng = np.random.default_rng(7)
    return {
        "af_sky": rng.standard_normal((510, 1, STYLE_DIM)).astype(np.float32) * 0.1,
        "af_nicole": rng.standard_normal((510, 1, STYLE_DIM)).astype(np.float32) * 0.1,
        "bf_emma": rng.standard_normal((510, 1, STYLE_DIM)).astype(np.float32) * 0.1,
        "ef_flat": rng.standard_normal(STYLE_DIM).astype(np.float32) * 0.1,
    }


def make_raw_settings(tmp_path, **overrides):
    raw = {
        "tts": {
            "default_voice": "af_sky",
            "default_language": "en-us",
            "kokoro": {
                "model_path": str(tmp_path / "missing-model.onnx"),
                "voices_path": str(tmp_path / "voices.json"),
                "model_id": "kokoro-test",
            },
        },
        "phonemizer": {"backend": "rules"},
        "chunking": {"first_chunk_max": 20, "rest_chunk_max": 60},
        "cache": {"enabled": True, "max_items": 16, "ttl_seconds": 60},
        "concurrency": {"enabled": False},
        "limits": {"max_chars": 4000},
        "output": {"dir": str(tmp_path / "out")},
        "logging": {"level": 1, "text_preview_chars": 20},
    }
    for section, values in overrides.items():
        if isinstance(values, dict):
            raw.setdefault(section, {}).update(values)
        else:
            raw[section] = values
    return raw


def write_voices_json(path, embeddings=None):
    embeddings = embeddings or make_embeddings()
    payload = {name: np.asarray(emb).tolist() for name, emb in embeddings.items()}
    path.write_text(json.dumps(payload), encoding="utf-8")
    return path


@pytest.fixture(autouse=True)
def _isolate_singletons(monkeypatch):
    """Fresh process-wide singletons and no warmup skip for every test."""
    from kokoro_ms.services.tts_service import reset_service
    from kokoro_ms.tts.concurrency import reset_controller
    from kokoro_ms.tts.engine import reset_engine
    from kokoro_ms.tts.voices import reset_registry

    monkeypatch.delenv("KOKORO_MS_SKIP_WARMUP", raising=False)
    for name in ("KOKORO_MS_MODEL_PATH", "KOKORO_MS_VOICES_PATH", "KOKORO_MS_PHONEMIZER", "KOKORO_MS_SETTINGS"):
        monkeypatch.delenv(name, raising=False)
    yield
    reset_service()
    reset_controller()
    reset_engine()
    reset_registry()


@pytest.fixture
def embeddings():
    return make_embeddings()


@pytest.fixture
def registry(embeddings):
    return VoiceRegistry.from_mapping(embeddings)


@pytest.fixture
def settings(tmp_path):
    return Settings(raw=make_raw_settings(tmp_path))


@pytest.fixture
def fake_backend():
    return FakeBackend()


@pytest.fixture
def engine(settings, fake_backend):
    return KokoroEngine(settings, backend=fake_backend)


@pytest.fixture
def service(settings, engine, registry):
    """A warmed TTSService on the fake backend."""
    from kokoro_ms.services.tts_service import TTSService

    svc = TTSService(settings, engine=engine, registry=registry)
    svc.warmup(background=False)
    return svc


@pytest.fixture
def client(service):
    """TestClient with the service dependency overridden (no lifespan)."""
    from fastapi.testclient import TestClient

    from kokoro_ms.api.dependencies import get_tts_service
    from kokoro_ms.main import app

    app.dependency_overrides[get_tts_service] = lambda: service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
