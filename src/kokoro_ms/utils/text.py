"""
Text Normalization Utilities.

Normalization turns raw input into the spoken-word form the phonemizer
expects, and makes semantically identical requests share a cache key.

Normalization Steps:
    1. Unicode NFC, strip leading/trailing whitespace
    2. Expand abbreviations (Dr. -> doctor, e.g. -> for example)
    3. Expand currency, percentages, ordinals, decimals and integers
       into English words (English languages only)
    4. Case folding
    5. Collapse whitespace, fix punctuation and bracket spacing

Version Tracking:
    NORMALIZE_VERSION is included in cache keys. When normalization
    logic changes, increment this to invalidate old cache entries.

Example:
    >>> from kokoro_ms.utils.text import normalize_text
    >>> text, timings = normalize_text("Dr. Smith paid $5 , on the 3rd.")
    >>> text
    'doctor smith paid five dollars, on the third.'

See Also:
    - tts/phonemizer.py: Consumes normalized text
    - services/tts_service.py: Uses NORMALIZE_VERSION in cache keys
"""
from __future__ import annotations

import re
import unicodedata
from typing import Dict

from kokoro_ms.core.logging import get_logger, verbose
from kokoro_ms.utils.timeit import timeit

_LOG = get_logger("kokoro-ms.text")

# Increment when normalization output changes
NORMALIZE_VERSION = "v1"

_WS_RE = re.compile(r"\s+")
_SPACE_BEFORE_PUNCT = re.compile(r"\s+([,.!?;:])")
_SPACE_AFTER_OPEN = re.compile(r'([(\[{])\s+')
_SPACE_BEFORE_CLOSE = re.compile(r'\s+([)\]}])')

_ONES = [
    "zero", "one", "two", "three", "four", "five", "six", "seven", "eight", "nine",
    "ten", "eleven", "twelve", "thirteen", "fourteen", "fifteen", "sixteen",
    "seventeen", "eighteen", "nineteen",
]
_TENS = ["", "", "twenty", "thirty", "forty", "fifty", "sixty", "seventy", "eighty", "ninety"]
_SCALES = [(10**9, "billion"), (10**6, "million"), (10**3, "thousand")]

MAX_SPOKEN_INT = 999_999_999_999

_ORDINAL_IRREGULAR = {
    "one": "first", "two": "second", "three": "third", "five": "fifth",
    "eight": "eighth", "nine": "ninth", "twelve": "twelfth",
}

_ABBREVIATIONS = {
    "dr.": "doctor",
    "mr.": "mister",
    "mrs.": "missus",
    "ms.": "miss",
    "st.": "saint",
    "prof.": "professor",
    "vs.": "versus",
    "etc.": "et cetera",
    "e.g.": "for example",
    "i.e.": "that is",
}

_CURRENCIES = {
    "$": ("dollar", "dollars", "cent", "cents"),
    "£": ("pound", "pounds", "penny", "pence"),
    "€": ("euro", "euros", "cent", "cents"),
}

_CURRENCY_RE = re.compile(r"([$£€])\s?(\d{1,3}(?:,\d{3})+|\d+)(?:\.(\d{1,2}))?\b")
_PERCENT_RE = re.compile(r"(\d+(?:\.\d+)?)\s?%")
_ORDINAL_RE = re.compile(r"\b(\d+)(st|nd|rd|th)\b", re.IGNORECASE)
_GROUPED_RE = re.compile(r"\b\d{1,3}(?:,\d{3})+\b")
_DECIMAL_RE = re.compile(r"\b(\d+)\.(\d+)\b")
_YEAR_RE = re.compile(r"\b(1[1-9]\d\d|20[1-9]\d)\b")
_NEGATIVE_RE = re.compile(r"(?<![\w-])-(\d)")
_INT_RE = re.compile(r"\d+")


# ─────────────────────────────────────────────────────────────────────────────
# Number spelling
# ─────────────────────────────────────────────────────────────────────────────

def _below_thousand(n: int) -> str:
    parts = []
    if n >= 100:
        parts.append(_ONES[n // 100] + " hundred")
        n %= 100
    if n >= 20:
        tens = _TENS[n // 10]
        parts.append(tens if n % 10 == 0 else f"{tens} {_ONES[n % 10]}")
    elif n > 0 or not parts:
        parts.append(_ONES[n])
    return " ".join(parts)


def spell_int(n: int) -> str:
    """
    Spell a non-negative integer in English words.

    Numbers above MAX_SPOKEN_INT are read digit by digit.

    Example:
        >>> spell_int(1204)
        'one thousand two hundred four'
    """
    if n < 0:
        return "minus " + spell_int(-n)
    if n > MAX_SPOKEN_INT:
        return spell_digits(str(n))
    if n < 1000:
        return _below_thousand(n)

    parts = []
    for scale, name in _SCALES:
        if n >= scale:
            parts.append(f"{_below_thousand(n // scale)} {name}")
            n %= scale
    if n:
        parts.append(_below_thousand(n))
    return " ".join(parts)


def spell_digits(digits: str) -> str:
    return " ".join(_ONES[int(d)] for d in digits if d.isdigit())


def spell_ordinal(n: int) -> str:
    words = spell_int(n).split(" ")
    last = words[-1]
    if last in _ORDINAL_IRREGULAR:
        words[-1] = _ORDINAL_IRREGULAR[last]
    elif last.endswith("y"):
        words[-1] = last[:-1] + "ieth"
    else:
        words[-1] = last + "th"
    return " ".join(words)


def spell_year(n: int) -> str:
    """Read 1100-1999 and 2010-2099 the way years are spoken."""
    hi, lo = divmod(n, 100)
    if lo == 0:
        return f"{_below_thousand(hi)} hundred"
    if lo < 10:
        return f"{_below_thousand(hi)} oh {_ONES[lo]}"
    return f"{_below_thousand(hi)} {_below_thousand(lo)}"


# ─────────────────────────────────────────────────────────────────────────────
# Expansion passes
# ─────────────────────────────────────────────────────────────────────────────

def _expand_abbreviations(text: str) -> str:
    for abbr, expanded in _ABBREVIATIONS.items():
        pattern = r"(?i)(?<![\w.])" + re.escape(abbr) + r"(?=\s|$|[,!?;:])"
        text = re.sub(pattern, expanded, text)
    return text


def _replace_currency(match: re.Match) -> str:
    one, many, sub_one, sub_many = _CURRENCIES[match.group(1)]
    whole = int(match.group(2).replace(",", ""))
    words = f"{spell_int(whole)} {one if whole == 1 else many}"
    if match.group(3):
        cents = int(match.group(3).ljust(2, "0"))
        if cents:
            words += f" and {spell_int(cents)} {sub_one if cents == 1 else sub_many}"
    return words


def _replace_percent(match: re.Match) -> str:
    value = match.group(1)
    if "." in value:
        whole, frac = value.split(".", 1)
        return f"{spell_int(int(whole))} point {spell_digits(frac)} percent"
    return f"{spell_int(int(value))} percent"


def _replace_decimal(match: re.Match) -> str:
    return f"{spell_int(int(match.group(1)))} point {spell_digits(match.group(2))}"


def _replace_int(match: re.Match) -> str:
    return spell_int(int(match.group(0)))


def expand_numbers(text: str) -> str:
    """Expand every numeral form in ``text`` into English words."""
    text = _CURRENCY_RE.sub(_replace_currency, text)
    text = _PERCENT_RE.sub(_replace_percent, text)
    text = _ORDINAL_RE.sub(lambda m: spell_ordinal(int(m.group(1))), text)
    text = _GROUPED_RE.sub(lambda m: m.group(0).replace(",", ""), text)
    text = _DECIMAL_RE.sub(_replace_decimal, text)
    text = _YEAR_RE.sub(lambda m: spell_year(int(m.group(1))), text)
    text = _NEGATIVE_RE.sub(r"minus \1", text)
    return _INT_RE.sub(_replace_int, text)


def normalize_text(text: str, language: str = "en-us") -> tuple[str, Dict[str, float]]:
    """
    Normalize text into spoken-word form.

    Numeral and abbreviation expansion only applies to English
    (``en-*``); other languages get the Unicode, case and spacing passes.

    Args:
        text: Raw input text.
        language: Language code used to choose the expansion rules.

    Returns:
        Tuple of (normalized_text, timing_dict) where timing_dict holds
        the 'normalize' duration in seconds.

    Example:
        >>> normalize_text("  It costs   $3.50 ")[0]
        'it costs three dollars and fifty cents'
    """
    timings: Dict[str, float] = {}

    with timeit("normalize") as t:
        s = unicodedata.normalize("NFC", text).strip()

        if language.lower().startswith("en"):
            s = _expand_abbreviations(s)
            s = expand_numbers(s)

        s = s.casefold()
        s = _WS_RE.sub(" ", s)
        s = _SPACE_BEFORE_PUNCT.sub(r"\1", s)
        s = _SPACE_AFTER_OPEN.sub(r"\1", s)
        s = _SPACE_BEFORE_CLOSE.sub(r"\1", s)

    timings["normalize"] = t.seconds
    verbose(_LOG, "normalized", chars_in=len(text), chars_out=len(s), seconds=round(timings["normalize"], 4))
    return s, timings
