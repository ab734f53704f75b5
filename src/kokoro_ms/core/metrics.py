"""
Prometheus Metrics for kokoro-ms.

All metrics live in a private CollectorRegistry so importing the package
never collides with other Prometheus users in the same process.

Metrics Exposed:
    kokoro_requests_total                 - Requests by format and status
    kokoro_request_duration_seconds       - Non-streaming request latency
    kokoro_time_to_first_chunk_seconds    - Streaming latency to first chunk
    kokoro_audio_seconds_total            - Seconds of audio generated
    kokoro_sessions_total                 - Sessions by terminal phase
    kokoro_active_sessions                - Sessions currently generating
    kokoro_cache_hits_total / misses      - Result cache effectiveness
    kokoro_encoder_lock_wait_seconds      - Time spent waiting on the MP3 lock
    kokoro_engine_loaded                  - 1 once the ONNX model is loaded

Usage:
    from kokoro_ms.core.metrics import metrics

    metrics.record_request(fmt="mp3", status="success", duration=0.42)
    metrics.record_session("completed")

    content, content_type = metrics.get_metrics_response()

See Also:
    - api/routes.py: /metrics endpoint
"""
from __future__ import annotations

from prometheus_client import (
    CONTENT_TYPE_LATEST,
    CollectorRegistry,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

_LATENCY_BUCKETS = (0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)


class KokoroMetrics:
    """
    Process-wide metrics collector.

    Prometheus metric objects are thread-safe, so one instance is shared
    by every request thread.
    """

    def __init__(self) -> None:
        self._registry = CollectorRegistry()

        self._requests_total = Counter(
            "kokoro_requests_total",
            "Total synthesis requests",
            ["format", "status"],
            registry=self._registry,
        )
        self._request_duration = Histogram(
            "kokoro_request_duration_seconds",
            "Non-streaming synthesis duration in seconds",
            ["format", "cache_status"],
            buckets=_LATENCY_BUCKETS,
            registry=self._registry,
        )
        self._ttfc = Histogram(
            "kokoro_time_to_first_chunk_seconds",
            "Time from request to first encoded chunk",
            ["format"],
            buckets=_LATENCY_BUCKETS,
            registry=self._registry,
        )
        self._audio_seconds = Counter(
            "kokoro_audio_seconds_total",
            "Seconds of audio generated",
            registry=self._registry,
        )
        self._sessions_total = Counter(
            "kokoro_sessions_total",
            "Synthesis sessions by terminal phase",
            ["phase"],
            registry=self._registry,
        )
        self._active_sessions = Gauge(
            "kokoro_active_sessions",
            "Sessions currently registered",
            registry=self._registry,
        )
        self._cache_hits = Counter(
            "kokoro_cache_hits_total",
            "Result cache hits",
            registry=self._registry,
        )
        self._cache_misses = Counter(
            "kokoro_cache_misses_total",
            "Result cache misses",
            registry=self._registry,
        )
        self._encoder_lock_wait = Histogram(
            "kokoro_encoder_lock_wait_seconds",
            "Time spent waiting for the MP3 encoder lock",
            buckets=(0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0),
            registry=self._registry,
        )
        self._engine_loaded = Gauge(
            "kokoro_engine_loaded",
            "Whether the ONNX model is loaded (1) or not (0)",
            registry=self._registry,
        )

    def record_request(self, fmt: str, status: str, duration: float = -1.0, cache_status: str = "miss") -> None:
        """
        Record a finished request.

        A negative duration (failed before timing) only bumps the counter.
        """
        self._requests_total.labels(format=fmt, status=status).inc()
        if duration >= 0:
            self._request_duration.labels(format=fmt, cache_status=cache_status).observe(duration)

    def record_first_chunk(self, fmt: str, seconds: float) -> None:
        self._ttfc.labels(format=fmt).observe(seconds)

    def add_audio_seconds(self, seconds: float) -> None:
        if seconds > 0:
            self._audio_seconds.inc(seconds)

    def record_session(self, phase: str) -> None:
        self._sessions_total.labels(phase=phase).inc()

    def set_active_sessions(self, count: int) -> None:
        self._active_sessions.set(count)

    def record_cache(self, hit: bool) -> None:
        if hit:
            self._cache_hits.inc()
        else:
            self._cache_misses.inc()

    def observe_encoder_lock_wait(self, seconds: float) -> None:
        self._encoder_lock_wait.observe(seconds)

    def set_engine_loaded(self, loaded: bool) -> None:
        self._engine_loaded.set(1 if loaded else 0)

    def get_metrics_response(self) -> tuple[bytes, str]:
        """Return (body, content_type) for the /metrics endpoint."""
        return generate_latest(self._registry), CONTENT_TYPE_LATEST


metrics = KokoroMetrics()
