"""Smoke tests against the real Kokoro model files."""
from pathlib import Path

import pytest

pytestmark = pytest.mark.slow


@pytest.fixture
def real_service():
    from kokoro_ms.core.config import load_settings
    from kokoro_ms.services.tts_service import TTSService

    settings = load_settings("config/settings.yaml")
    if not Path(settings.model_path).exists() or not Path(settings.voices_path).exists():
        pytest.skip("Kokoro model or voices file not present")

    svc = TTSService(settings)
    svc.warmup(background=False)
    return svc


def test_synthesize_wav(real_service):
    from kokoro_ms.core.logging import set_request_id

    set_request_id("model-smoke")
    req = real_service.build_request("Hello, this is a test.", voice="af_sky", fmt="wav")
    res = real_service.synthesize(req, request_id="model-smoke")

    assert res.audio[:4] == b"RIFF"
    assert res.audio[8:12] == b"WAVE"
    assert res.sample_rate == 24000
    assert len(res.audio) > 1000


def test_stream_chunks(real_service):
    req = real_service.build_request("First sentence here. " * 20, voice="af_sky.5+af_nicole.5", fmt="wav")
    chunks = list(real_service.synthesize_stream(req, request_id="model-smoke-stream"))

    assert len(chunks) > 1
    assert chunks[-1].is_last
    assert chunks[0].data[:4] == b"RIFF"
