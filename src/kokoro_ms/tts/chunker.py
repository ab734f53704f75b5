"""
Token Chunk Planning.

Kokoro's text encoder sees at most 510 tokens per forward pass, and the
first audible chunk should arrive quickly. The planner splits a token
sequence into contiguous spans:
    - The first span holds at most ``first_chunk_max`` tokens
      (faster time-to-first-audio)
    - Later spans hold at most ``rest_chunk_max`` tokens
    - Spans end at natural pause points when one is available

Split preference (best to worst):
    1. Sentence end   . ! ? …
    2. Clause end     , ; : —
    3. Word break     space
    4. Hard split at the limit

A break point in the first third of the window is ignored for the
sentence and clause passes, so spans are not cut needlessly short.

The same plan is used for streaming and non-streaming synthesis, so
both produce identical audio.

Example:
    >>> from kokoro_ms.tts.chunker import plan_token_chunks
    >>> plan = plan_token_chunks(tokens, first_chunk_max=100, rest_chunk_max=400)
    >>> plan.spans
    [(0, 87), (87, 412)]
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, FrozenSet, List, Optional, Sequence, Tuple

from kokoro_ms.core.config import Defaults
from kokoro_ms.core.logging import get_logger, verbose
from kokoro_ms.tts.tokenizer import CLAUSE_END, SENTENCE_END, WORD_BREAK, Vocabulary
from kokoro_ms.utils.timeit import timeit

_LOG = get_logger("kokoro-ms.chunker")

Span = Tuple[int, int]


@dataclass
class ChunkPlan:
    """
    Result of chunk planning.

    Attributes:
        spans: Half-open (start, end) token index ranges covering the
            whole sequence in order.
        timings_s: Timing measurements in seconds.
    """
    spans: List[Span]
    timings_s: Dict[str, float]


@dataclass(frozen=True)
class BreakIds:
    sentence: FrozenSet[int]
    clause: FrozenSet[int]
    word: FrozenSet[int]

    @classmethod
    def for_vocab(cls, vocab: Vocabulary) -> "BreakIds":
        return cls(
            sentence=vocab.ids_of(SENTENCE_END),
            clause=vocab.ids_of(CLAUSE_END),
            word=vocab.ids_of(WORD_BREAK),
        )


def _find_break(tokens: Sequence[int], start: int, end: int, ids: FrozenSet[int], min_end: int) -> Optional[int]:
    """Largest cut in (min_end, end] that falls right after a token in ``ids``."""
    for i in range(end - 1, min_end - 1, -1):
        if tokens[i] in ids:
            return i + 1
    return None


def _cut_point(tokens: Sequence[int], start: int, limit: int, breaks: BreakIds) -> int:
    end = start + limit
    early = start + max(1, limit // 3)

    cut = _find_break(tokens, start, end, breaks.sentence, early)
    if cut is None:
        cut = _find_break(tokens, start, end, breaks.clause, early)
    if cut is None:
        cut = _find_break(tokens, start, end, breaks.word, start + 1)
    return cut if cut is not None else end


def plan_token_chunks(
    tokens: Sequence[int],
    first_chunk_max: int = Defaults.CHUNKING_FIRST_CHUNK_MAX,
    rest_chunk_max: int = Defaults.CHUNKING_REST_CHUNK_MAX,
    vocab: Optional[Vocabulary] = None,
) -> ChunkPlan:
    """
    Split ``tokens`` into spans for chunked inference.

    Args:
        tokens: Token ids (unpadded).
        first_chunk_max: Maximum tokens in the first span.
        rest_chunk_max: Maximum tokens in every later span.
        vocab: Vocabulary used to find punctuation ids.

    Returns:
        ChunkPlan whose spans concatenate back to the full sequence.
        Empty input yields no spans.
    """
    if first_chunk_max <= 0 or rest_chunk_max <= 0:
        raise ValueError("chunk limits must be positive")

    breaks = BreakIds.for_vocab(vocab or Vocabulary.default())
    timings: Dict[str, float] = {}
    spans: List[Span] = []

    with timeit("chunk_plan") as t:
        n = len(tokens)
        pos = 0
        while pos < n:
            limit = first_chunk_max if not spans else rest_chunk_max
            if n - pos <= limit:
                spans.append((pos, n))
                break
            cut = _cut_point(tokens, pos, limit, breaks)
            spans.append((pos, cut))
            pos = cut

    timings["chunk_plan"] = t.seconds
    verbose(
        _LOG, "chunk_plan",
        tokens=len(tokens),
        chunks=len(spans),
        first_max=first_chunk_max,
        rest_max=rest_chunk_max,
        seconds=round(timings["chunk_plan"], 5),
    )
    return ChunkPlan(spans=spans, timings_s=timings)
