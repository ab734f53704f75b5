"""
Utility Modules for kokoro-ms.

    - text.py: Text normalization (numbers, currency, abbreviations)
    - timeit.py: Performance measurement utilities
"""
