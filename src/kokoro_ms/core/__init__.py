"""
Core Infrastructure for kokoro-ms.

This package provides foundational components:
    - config.py: Configuration loading and validation
    - errors.py: Error taxonomy shared by every layer
    - logging/: Structured logging with numeric levels
    - metrics.py: Prometheus metrics collection
"""
