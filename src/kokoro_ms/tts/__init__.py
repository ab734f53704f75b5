"""
Synthesis Core.

    - phonemizer.py / g2p_rules.py: text to IPA phonemes
    - tokenizer.py: phonemes to Kokoro token ids
    - voices.py: voice registry and style mixing
    - chunker.py: token chunk planning
    - engine.py: chunked ONNX inference
    - session.py: per-request state machine and delivery
    - encoder.py: WAV / MP3 encoding
    - cache.py: in-memory LRU cache with TTL
    - concurrency.py: admission control
"""
