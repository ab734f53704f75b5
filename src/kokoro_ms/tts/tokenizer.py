"""
Phoneme Tokenizer.

Maps phoneme symbols to the integer ids the Kokoro model was trained
with. The vocabulary is a fixed, ordered symbol table built once at
import and never mutated:

    $  ;:,.!?¡¿—…"«»“”<space>  A-Z a-z  IPA letters

Index 0 is the pad symbol ``$``; the model input is padded with it on
both ends and it doubles as the default fallback id for unknown
symbols.

Example:
    >>> from kokoro_ms.tts.tokenizer import Tokenizer
    >>> tok = Tokenizer()
    >>> tok.tokenize("hə")
    (50, 83)
"""
from __future__ import annotations

import json
from pathlib import Path
from typing import Dict, Iterable, Sequence, Tuple, Union

from kokoro_ms.core.config import ConfigValidationError
from kokoro_ms.tts.phonemizer import Phoneme

TokenSequence = Tuple[int, ...]

_PAD = "$"
_PUNCTUATION = ';:,.!?¡¿—…"«»“” '
_LETTERS = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz"
_LETTERS_IPA = (
    "ɑɐɒæɓʙβɔɕçɗɖðʤəɘɚɛɜɝɞɟʄɡɠɢʛɦɧħɥʜɨɪʝɭɬɫɮʟɱɯɰŋɳɲɴøɵɸθœɶʘɹɺɾɻʀʁɽʂʃʈʧʉʊʋⱱʌɣɤʍχʎʏʑʐʒʔʡʕʢǀǁǂǃˈˌːˑʼʴʰʱʲʷˠˤ˞↓↑→↗↘'̩'ᵻ"
)

PAD_ID = 0
# Ids the chunk planner treats as split points
SENTENCE_END = frozenset(".!?…")
CLAUSE_END = frozenset(";:,—")
WORD_BREAK = frozenset(" ")


class Vocabulary:
    """
    Immutable symbol table.

    ``symbols`` keeps the declared order (index == id). When a symbol
    occurs twice, the later id wins for lookups, matching how the table
    is consumed by the model's training code.
    """

    __slots__ = ("_symbols", "_ids")

    def __init__(self, symbols: Sequence[str]):
        if not symbols:
            raise ConfigValidationError("vocabulary must not be empty")
        self._symbols: Tuple[str, ...] = tuple(symbols)
        self._ids: Dict[str, int] = {s: i for i, s in enumerate(self._symbols)}

    @classmethod
    def default(cls) -> "Vocabulary":
        return _DEFAULT_VOCAB

    @classmethod
    def from_json(cls, path: Union[str, Path]) -> "Vocabulary":
        """
        Load a vocabulary from JSON.

        Accepts either a list of symbols (index == id) or a
        ``{"symbol": id}`` mapping with dense ids starting at 0.
        """
        data = json.loads(Path(path).read_text(encoding="utf-8"))
        if isinstance(data, dict):
            data = data.get("vocab", data)
        if isinstance(data, list):
            return cls(data)
        if isinstance(data, dict):
            ordered = sorted(data.items(), key=lambda kv: int(kv[1]))
            if [int(i) for _, i in ordered] != list(range(len(ordered))):
                raise ConfigValidationError(f"vocabulary ids in {path} are not dense from 0")
            return cls([s for s, _ in ordered])
        raise ConfigValidationError(f"unsupported vocabulary format in {path}")

    @property
    def symbols(self) -> Tuple[str, ...]:
        return self._symbols

    @property
    def vocab_size(self) -> int:
        return len(self._symbols)

    def id_of(self, symbol: str, default: int) -> int:
        return self._ids.get(symbol, default)

    def ids_of(self, symbols: Iterable[str]) -> frozenset:
        """Ids of those ``symbols`` present in the table."""
        return frozenset(self._ids[s] for s in symbols if s in self._ids)

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._ids

    def __len__(self) -> int:
        return len(self._symbols)


_DEFAULT_VOCAB = Vocabulary([_PAD, *_PUNCTUATION, *_LETTERS, *_LETTERS_IPA])


class Tokenizer:
    """
    Total, pure mapping from phonemes to ids.

    Args:
        vocab: Symbol table (default Kokoro vocabulary).
        unknown_id: Id used for symbols missing from the table.

    Raises:
        ConfigValidationError: If unknown_id is outside the vocabulary.
    """

    def __init__(self, vocab: Vocabulary | None = None, unknown_id: int = PAD_ID):
        self.vocab = vocab or Vocabulary.default()
        if not 0 <= unknown_id < self.vocab.vocab_size:
            raise ConfigValidationError(
                f"tokenizer.unknown_id={unknown_id} outside [0, {self.vocab.vocab_size})"
            )
        self.unknown_id = unknown_id

    @property
    def vocab_size(self) -> int:
        return self.vocab.vocab_size

    def tokenize(self, phonemes: Union[Sequence[Phoneme], str]) -> TokenSequence:
        """
        Map each phoneme (or each character of a string) to one id.

        The result always has the same length as the input.
        """
        lookup = self.vocab.id_of
        unk = self.unknown_id
        if isinstance(phonemes, str):
            return tuple(lookup(ch, unk) for ch in phonemes)
        return tuple(lookup(p.symbol, unk) for p in phonemes)

    def detokenize(self, ids: Iterable[int]) -> str:
        symbols = self.vocab.symbols
        return "".join(symbols[i] if 0 <= i < len(symbols) else "?" for i in ids)


_DEFAULT_TOKENIZER = Tokenizer()


def tokenize(phonemes: Union[Sequence[Phoneme], str]) -> TokenSequence:
    """Tokenize with the default vocabulary and fallback id."""
    return _DEFAULT_TOKENIZER.tokenize(phonemes)
