"""
Phonemizer: text to language-tagged phoneme sequence.

Pipeline:
    1. normalize_text()          spoken-word form, case folded
    2. segment by script          Latin / Han / kana / Devanagari runs
    3. per-run G2P               espeak-ng (via ``phonemizer``) or the
                                  built-in rules in g2p_rules.py
    4. split into Phonemes        one vocabulary unit each, stress marks
                                  and word spaces included

Backends:
    auto    espeak-ng when installed, otherwise rules (warned once)
    espeak  espeak-ng only; a missing install is a configuration error
    rules   built-in tables only, no system dependency

Runs in a script nothing supports are transliterated to ASCII where a
Unicode decomposition exists; otherwise each word becomes a single
pause (space) phoneme. phonemize() never raises on input text.

Usage:
    from kokoro_ms.tts.phonemizer import Phonemizer

    ph = Phonemizer(default_language="en-us", backend="rules")
    seq = ph.phonemize("Hello world")
    "".join(p.symbol for p in seq)   # 'həlˈoʊ wˈɜːld'
"""
from __future__ import annotations

import threading
import unicodedata
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, List, Optional, Tuple

from phonemizer.backend import EspeakBackend

from kokoro_ms.core.config import ConfigValidationError
from kokoro_ms.core.logging import debug, get_logger, verbose, warn
from kokoro_ms.tts import g2p_rules
from kokoro_ms.utils.text import normalize_text
from kokoro_ms.utils.timeit import timeit

_LOG = get_logger("kokoro-ms.phonemizer")

SUPPORTED_LANGUAGES = ("en-us", "en-gb", "es", "fr-fr", "it", "pt-br", "hi", "ja", "cmn")
BACKENDS = ("auto", "espeak", "rules")

_LANGUAGE_ALIASES = {
    "en": "en-us", "a": "en-us", "b": "en-gb", "e": "es", "f": "fr-fr", "fr": "fr-fr",
    "h": "hi", "i": "it", "j": "ja", "p": "pt-br", "pt": "pt-br", "z": "cmn", "zh": "cmn",
}

_STRESS = {"ˈ": "primary", "ˌ": "secondary"}
_TONES = frozenset("↓↑→↗↘")

PAUSE = " "


@dataclass(frozen=True)
class Phoneme:
    symbol: str
    language: str
    stress: Optional[str] = None


PhonemeSequence = Tuple[Phoneme, ...]


def canonical_language(language: Optional[str]) -> Optional[str]:
    """Map aliases ("en", "zh", voice prefixes) to a supported code, or None."""
    if not language:
        return None
    code = language.strip().lower().replace("_", "-")
    code = _LANGUAGE_ALIASES.get(code, code)
    return code if code in SUPPORTED_LANGUAGES else None


def espeak_available() -> bool:
    return EspeakBackend.is_available()


# ─────────────────────────────────────────────────────────────────────────────
# Script segmentation
# ─────────────────────────────────────────────────────────────────────────────

def _script_of(ch: str) -> Optional[str]:
    """Script family of one character; None for neutral characters."""
    if ch.isspace() or ch.isdigit() or unicodedata.category(ch)[0] in "PSZ":
        return None
    name = unicodedata.name(ch, "")
    if name.startswith("LATIN"):
        return "latin"
    if name.startswith(("CJK UNIFIED", "CJK COMPATIBILITY IDEOGRAPH")):
        return "han"
    if name.startswith(("HIRAGANA", "KATAKANA")):
        return "kana"
    if name.startswith("DEVANAGARI"):
        return "deva"
    if unicodedata.category(ch) in ("Mn", "Mc", "Me"):
        return None
    return "other"


def segment(text: str, default_language: str) -> List[Tuple[Optional[str], str]]:
    """
    Split text into (language, run) pairs.

    Neutral characters (spaces, punctuation, digits, combining marks)
    join the run they occur in. A language of None marks a run in a
    script with no rule set.
    """
    has_kana = any(_script_of(ch) == "kana" for ch in text)
    script_lang = {
        "latin": default_language,
        "han": "ja" if has_kana else "cmn",
        "kana": "ja",
        "deva": "hi",
        "other": None,
    }

    runs: List[Tuple[Optional[str], List[str]]] = []
    for ch in text:
        script = _script_of(ch)
        if script is None:
            if runs:
                runs[-1][1].append(ch)
            else:
                runs.append((default_language, [ch]))
            continue
        lang = script_lang[script]
        if runs and runs[-1][0] == lang:
            runs[-1][1].append(ch)
        elif runs and not "".join(runs[-1][1]).strip():
            # leading neutral-only run takes the first real language
            runs[-1] = (lang, runs[-1][1] + [ch])
        else:
            runs.append((lang, [ch]))
    return [(lang, "".join(chars)) for lang, chars in runs]


# ─────────────────────────────────────────────────────────────────────────────
# Phonemizer
# ─────────────────────────────────────────────────────────────────────────────

class Phonemizer:
    """
    Language-aware phonemizer.

    Args:
        default_language: Language for Latin-script text without a hint.
        backend: "auto", "espeak" or "rules".
        cache_size: Entries in the per-instance memo of phonemized runs.

    Raises:
        ConfigValidationError: Unknown backend, or "espeak" without
            espeak-ng installed.
    """

    def __init__(self, default_language: str = "en-us", backend: str = "auto", cache_size: int = 1024):
        if backend not in BACKENDS:
            raise ConfigValidationError(f"phonemizer.backend must be one of {BACKENDS}, got {backend!r}")

        lang = canonical_language(default_language)
        if lang is None:
            warn(_LOG, "unknown_default_language", language=default_language, using="en-us")
            lang = "en-us"
        self.default_language = lang

        use_espeak = False
        if backend in ("auto", "espeak"):
            use_espeak = espeak_available()
            if not use_espeak and backend == "espeak":
                raise ConfigValidationError("phonemizer.backend=espeak but espeak-ng is not installed")
            if not use_espeak:
                warn(_LOG, "espeak_unavailable", fallback="rules")
        self.backend = "espeak" if use_espeak else "rules"

        self._espeak: Dict[str, EspeakBackend] = {}
        self._espeak_lock = threading.Lock()
        self._run_cached = lru_cache(maxsize=cache_size)(self._phonemize_run)

    def resolve_language(self, language_hint: Optional[str]) -> Optional[str]:
        if language_hint is None:
            return None
        lang = canonical_language(language_hint)
        if lang is None:
            warn(_LOG, "unknown_language_hint", hint=language_hint, using="en-us")
            return "en-us"
        return lang

    def phonemize(self, text: str, language_hint: Optional[str] = None) -> PhonemeSequence:
        """
        Normalize and phonemize ``text``.

        With a hint the whole text is one run in that language;
        otherwise it is segmented by script.
        """
        lang = self.resolve_language(language_hint)
        normalized, _ = normalize_text(text, lang or self.default_language)
        return self.phonemize_normalized(normalized, lang)

    def phonemize_normalized(self, text: str, language: Optional[str] = None) -> PhonemeSequence:
        """Phonemize text that already went through normalize_text()."""
        if not text.strip():
            return ()

        with timeit("phonemize") as t:
            if language is not None:
                runs = [(language, text)]
            else:
                runs = segment(text, self.default_language)

            phonemes: List[Phoneme] = []
            for lang, run in runs:
                tag = lang or self.default_language
                for symbol in self._run_cached(lang, run):
                    if symbol == PAUSE and phonemes and phonemes[-1].symbol == PAUSE:
                        continue
                    phonemes.append(Phoneme(symbol, tag, _STRESS.get(symbol, "tone" if symbol in _TONES else None)))

            # an all-pause result keeps one pause so non-empty text stays non-empty
            while len(phonemes) > 1 and phonemes[-1].symbol == PAUSE:
                phonemes.pop()
            while len(phonemes) > 1 and phonemes[0].symbol == PAUSE:
                phonemes.pop(0)

        verbose(_LOG, "phonemized", runs=len(runs), phonemes=len(phonemes), backend=self.backend,
                seconds=round(t.seconds, 4))
        debug(_LOG, "phonemes", ipa="".join(p.symbol for p in phonemes))
        return tuple(phonemes)

    # ── per run ──────────────────────────────────────────────────────────────

    def _phonemize_run(self, language: Optional[str], run: str) -> Tuple[str, ...]:
        lead = PAUSE if run[:1].isspace() else ""
        trail = PAUSE if run[-1:].isspace() else ""
        body = run.strip()
        if not body:
            return (PAUSE,) if lead else ()

        if language is None:
            ipa = self._fallback(body)
        elif self.backend == "espeak":
            ipa = self._espeak_ipa(body, language)
        elif language in g2p_rules.RULE_LANGUAGES:
            ipa = g2p_rules.g2p(body, language)
        else:
            ipa = self._fallback(body)

        if not ipa.strip():
            # symbols and letters the rules skip still need a phoneme
            ipa = self._fallback(body)

        return tuple(lead + ipa + trail)

    def _espeak_ipa(self, text: str, language: str) -> str:
        try:
            with self._espeak_lock:
                backend = self._espeak.get(language)
                if backend is None:
                    backend = EspeakBackend(
                        language,
                        preserve_punctuation=True,
                        with_stress=True,
                        language_switch="remove-flags",
                    )
                    self._espeak[language] = backend
                return backend.phonemize([text], strip=True)[0]
        except RuntimeError as exc:
            warn(_LOG, "espeak_failed", language=language, error=str(exc))
            if language in g2p_rules.RULE_LANGUAGES:
                return g2p_rules.g2p(text, language)
            return self._fallback(text)

    def _fallback(self, text: str) -> str:
        """Transliterate to ASCII when possible, otherwise one pause per word."""
        ascii_text = unicodedata.normalize("NFKD", text).encode("ascii", "ignore").decode("ascii")
        if any(ch.isalpha() for ch in ascii_text):
            debug(_LOG, "transliterated", src=text, dst=ascii_text)
            lang = self.default_language if self.default_language in g2p_rules.RULE_LANGUAGES else "en-us"
            return g2p_rules.g2p(ascii_text.lower(), lang)

        parts: List[str] = []
        for kind, value in g2p_rules.split_words(text):
            if kind == "punct":
                parts.append(value)
            elif not parts or parts[-1] != PAUSE:
                parts.append(PAUSE)
        verbose(_LOG, "unsupported_script", chars=len(text))
        return "".join(parts) or PAUSE


# ─────────────────────────────────────────────────────────────────────────────
# Module-level convenience
# ─────────────────────────────────────────────────────────────────────────────

_default: Optional[Phonemizer] = None
_default_lock = threading.Lock()


def get_phonemizer(default_language: str = "en-us", backend: str = "auto") -> Phonemizer:
    """Process-wide phonemizer; the first call's arguments win."""
    global _default
    if _default is None:
        with _default_lock:
            if _default is None:
                _default = Phonemizer(default_language=default_language, backend=backend)
    return _default


def reset_phonemizer() -> None:
    global _default
    with _default_lock:
        _default = None


def phonemize(text: str, language_hint: Optional[str] = None) -> PhonemeSequence:
    """Phonemize with the process-wide phonemizer."""
    return get_phonemizer().phonemize(text, language_hint)
