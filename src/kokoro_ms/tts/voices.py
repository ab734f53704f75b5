"""
Voice Registry and Style Mixing.

A voice is a named style embedding. Kokoro ships them as a numpy archive
(``voices-v1.0.bin``) mapping each name to a length-indexed pack of
shape (510, 1, 256): row ``n`` is the style for an utterance of ``n``
tokens. Plain (256,) vectors are accepted too.

Style-mix grammar:
    mix        := component ("+" component)*
    component  := NAME ("." DIGITS)?
    NAME       := [A-Za-z0-9_-]+

The digits after the dot are a decimal fraction: ``af_sky.4`` weighs
0.4, ``af_sky.45`` weighs 0.45, a bare name weighs 1.0.

Blending is a plain weighted sum. Weights are NOT renormalized:
``af_sky.4+af_nicole.5`` is 0.4*sky + 0.5*nicole, a total intensity of
0.9. Callers choose the absolute blend strength.

Usage:
    registry = VoiceRegistry.load("models/kokoro/voices-v1.0.bin")
    style = registry.resolve(parse_style_mix("af_sky.4+af_nicole.5"))
    style.embedding.shape   # (510, 1, 256)
"""
from __future__ import annotations

import json
import re
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterator, List, Mapping, Optional, Tuple, Union

import numpy as np

from kokoro_ms.core.config import Settings
from kokoro_ms.core.errors import ErrorCode, UnknownVoice, ValidationError
from kokoro_ms.core.logging import get_logger, info, success, verbose, warn
from kokoro_ms.utils.timeit import timeit

_LOG = get_logger("kokoro-ms.voices")

STYLE_DIM = 256

# Kokoro voice names start with a language letter: af_sky, bf_emma, jf_alpha...
VOICE_PREFIX_LANGUAGES = {
    "a": "en-us",
    "b": "en-gb",
    "e": "es",
    "f": "fr-fr",
    "h": "hi",
    "i": "it",
    "j": "ja",
    "p": "pt-br",
    "z": "cmn",
}

_COMPONENT_RE = re.compile(r"^([A-Za-z0-9_-]+)(?:\.(\d+))?$")


def language_for_voice(name: str, default: str = "en-us") -> str:
    return VOICE_PREFIX_LANGUAGES.get(name[:1].lower(), default)


@dataclass(frozen=True, eq=False)
class VoiceStyle:
    name: str
    language: str
    embedding: np.ndarray

    @classmethod
    def create(cls, name: str, embedding, language: Optional[str] = None) -> "VoiceStyle":
        """Build a voice with a read-only float32 copy of ``embedding``."""
        arr = np.array(embedding, dtype=np.float32)
        if arr.size == 0 or arr.shape[-1] != STYLE_DIM:
            raise ValueError(f"voice {name!r}: last dimension must be {STYLE_DIM}, got shape {arr.shape}")
        arr.setflags(write=False)
        return cls(name=name, language=language or language_for_voice(name), embedding=arr)


@dataclass(frozen=True)
class StyleComponent:
    name: str
    weight: float


@dataclass(frozen=True)
class StyleMixSpec:
    components: Tuple[StyleComponent, ...]
    expression: str

    @property
    def names(self) -> List[str]:
        return [c.name for c in self.components]


@dataclass(frozen=True, eq=False)
class ResolvedStyleEmbedding:
    embedding: np.ndarray
    components: Tuple[StyleComponent, ...]
    language: str

    def row_for(self, n_tokens: int) -> np.ndarray:
        """
        Style vector of shape (1, 256) for an utterance of ``n_tokens``.

        Length-indexed packs are indexed by token count, clamped to the
        last row; a single vector is used as is.
        """
        emb = self.embedding
        if emb.ndim == 1:
            return emb.reshape(1, STYLE_DIM)
        row = emb[min(max(n_tokens, 0), emb.shape[0] - 1)]
        return np.asarray(row, dtype=np.float32).reshape(1, STYLE_DIM)


def parse_style_mix(expression: str) -> StyleMixSpec:
    """
    Parse a style-mix expression.

    Raises:
        ValidationError: (INVALID_VOICE) empty expression, empty component,
            malformed name or weight, or a zero weight.

    Example:
        >>> parse_style_mix("af_sky.4+af_nicole.5").components
        (StyleComponent(name='af_sky', weight=0.4), StyleComponent(name='af_nicole', weight=0.5))
    """
    if expression is None or not str(expression).strip():
        raise ValidationError("Voice expression is empty", ErrorCode.INVALID_VOICE)

    components: List[StyleComponent] = []
    for part in str(expression).split("+"):
        part = part.strip()
        m = _COMPONENT_RE.match(part)
        if m is None:
            raise ValidationError(
                f"Malformed voice component {part!r} in {expression!r}",
                ErrorCode.INVALID_VOICE,
                {"expression": expression},
            )
        name, digits = m.group(1), m.group(2)
        weight = 1.0 if digits is None else int(digits) / 10 ** len(digits)
        if weight <= 0.0:
            raise ValidationError(
                f"Voice weight must be in (0, 1], got {part!r}",
                ErrorCode.INVALID_VOICE,
                {"expression": expression},
            )
        components.append(StyleComponent(name=name, weight=weight))

    return StyleMixSpec(components=tuple(components), expression=str(expression).strip())


class VoiceRegistry:
    """
    Immutable name -> VoiceStyle table.

    Built once, then only read; concurrent readers need no lock.
    """

    def __init__(self, voices: Mapping[str, VoiceStyle], source: str = "<memory>"):
        self._voices: Dict[str, VoiceStyle] = dict(voices)
        self.source = source

    # ── construction ─────────────────────────────────────────────────────────

    @classmethod
    def from_mapping(cls, embeddings: Mapping[str, object], languages: Optional[Mapping[str, str]] = None,
                     source: str = "<memory>") -> "VoiceRegistry":
        languages = languages or {}
        voices = {
            name: VoiceStyle.create(name, emb, languages.get(name))
            for name, emb in embeddings.items()
        }
        return cls(voices, source=source)

    @classmethod
    def load(cls, path: Union[str, Path]) -> "VoiceRegistry":
        """
        Load a voice asset.

        Supported formats:
            .bin / .npz   numpy archive, one array per voice
            .json         {"name": [...]} or {"name": {"language": ..., "embedding": [...]}}

        Raises:
            FileNotFoundError: If ``path`` does not exist.
            ValueError: If a voice has the wrong embedding width.
        """
        p = Path(path)
        with timeit("voices_load") as t:
            if p.suffix.lower() == ".json":
                data = json.loads(p.read_text(encoding="utf-8"))
                data = data.get("voices", data)
                embeddings: Dict[str, object] = {}
                languages: Dict[str, str] = {}
                for name, entry in data.items():
                    if isinstance(entry, dict):
                        embeddings[name] = entry["embedding"]
                        if entry.get("language"):
                            languages[name] = entry["language"]
                    else:
                        embeddings[name] = entry
                registry = cls.from_mapping(embeddings, languages, source=str(p))
            else:
                with np.load(p, allow_pickle=False) as archive:
                    registry = cls.from_mapping({k: archive[k] for k in archive.files}, source=str(p))

        success(_LOG, "voices_loaded", count=len(registry), path=str(p), seconds=round(t.seconds, 3))
        return registry

    # ── lookup ───────────────────────────────────────────────────────────────

    def names(self) -> List[str]:
        return sorted(self._voices)

    def get(self, name: str) -> VoiceStyle:
        try:
            return self._voices[name]
        except KeyError:
            raise UnknownVoice(name, available=len(self._voices)) from None

    def __contains__(self, name: object) -> bool:
        return name in self._voices

    def __len__(self) -> int:
        return len(self._voices)

    def __iter__(self) -> Iterator[VoiceStyle]:
        return iter(self._voices[n] for n in self.names())

    # ── mixing ───────────────────────────────────────────────────────────────

    def resolve(self, spec: Union[StyleMixSpec, str]) -> ResolvedStyleEmbedding:
        """
        Blend the components of ``spec`` into one embedding.

        Every name is checked before any arithmetic, so an unknown voice
        fails without partial work.

        Raises:
            UnknownVoice: A component names an unregistered voice.
            ValidationError: Components have different embedding shapes.
        """
        if isinstance(spec, str):
            spec = parse_style_mix(spec)

        voices = [self.get(c.name) for c in spec.components]
        shape = voices[0].embedding.shape
        for v in voices[1:]:
            if v.embedding.shape != shape:
                raise ValidationError(
                    f"Cannot mix {voices[0].name} {shape} with {v.name} {v.embedding.shape}",
                    ErrorCode.INVALID_VOICE,
                )

        blended = np.zeros(shape, dtype=np.float32)
        for comp, voice in zip(spec.components, voices):
            blended += np.float32(comp.weight) * voice.embedding

        verbose(_LOG, "style_resolved", expression=spec.expression, components=len(voices))
        return ResolvedStyleEmbedding(embedding=blended, components=spec.components, language=voices[0].language)


# ─────────────────────────────────────────────────────────────────────────────
# Process-wide registry
# ─────────────────────────────────────────────────────────────────────────────

_registry: Optional[VoiceRegistry] = None
_registry_lock = threading.Lock()


def get_registry(settings: Settings) -> VoiceRegistry:
    """
    Load the registry once per process.

    A missing voices file yields an empty registry (the service then
    reports not ready) instead of failing at import time.
    """
    global _registry
    if _registry is None:
        with _registry_lock:
            if _registry is None:
                path = Path(settings.voices_path)
                if path.exists():
                    _registry = VoiceRegistry.load(path)
                else:
                    warn(_LOG, "voices_missing", path=str(path))
                    _registry = VoiceRegistry({}, source=str(path))
                info(_LOG, "registry_ready", voices=len(_registry))
    return _registry


def reset_registry() -> None:
    """Reset the global registry (for testing)."""
    global _registry
    with _registry_lock:
        _registry = None
