"""
Rule-based grapheme-to-phoneme conversion.

Used by the phonemizer when espeak-ng is not installed (or when
``phonemizer.backend: rules``). Output is an IPA string in the same
shape espeak produces for Kokoro (``ˈ`` before the stressed vowel,
words separated by spaces, punctuation kept), so both backends feed
the tokenizer identically.

Coverage:
    en-us, en-gb   lexicon of common words, letter-to-sound fallback
    es, it, pt-br, fr-fr   grapheme tables with context rules
    ja             kana (hiragana and katakana)
    hi             Devanagari with inherent-schwa handling

All tables are module constants; nothing is mutated after import, so
output is deterministic for a given (text, language).
"""
from __future__ import annotations

import re
import unicodedata
from typing import Dict, List, Optional, Sequence, Tuple

RULE_LANGUAGES = frozenset({"en-us", "en-gb", "es", "it", "pt-br", "fr-fr", "ja", "hi"})

# Punctuation the model has tokens for
PUNCTUATION = frozenset(';:,.!?¡¿—…"«»“”')

_PUNCT_MAP = {
    "。": ".", "．": ".", "、": ",", "，": ",", "！": "!", "？": "?",
    "：": ":", "；": ";", "–": "—", "「": "“", "」": "”", "『": "“", "』": "”",
}
# Mapped to a word break
_BREAKS = frozenset("-_/()[]{}<>|~*#@&+=\\^`")

_VOWEL_SYMBOLS = frozenset("aeiouyæɑɐɒɔəɛɜɚɪʊʌɯøœɵ")


def split_words(text: str) -> List[Tuple[str, str]]:
    """
    Split text into ("word", w), ("punct", p) and ("space", " ") items.

    Everything that is not whitespace, punctuation or a break character
    belongs to a word, so combining marks stay attached to their base.
    """
    items: List[Tuple[str, str]] = []
    word: List[str] = []

    def flush() -> None:
        if word:
            items.append(("word", "".join(word)))
            word.clear()

    for ch in text:
        ch = _PUNCT_MAP.get(ch, ch)
        if ch.isspace() or ch in _BREAKS:
            flush()
            if not items or items[-1][0] != "space":
                items.append(("space", " "))
        elif ch in PUNCTUATION:
            flush()
            items.append(("punct", ch))
        else:
            word.append(ch)
    flush()
    return items


def _place_stress(ipa: str, mark: str = "ˈ") -> str:
    for i, ch in enumerate(ipa):
        if ch in _VOWEL_SYMBOLS:
            return ipa[:i] + mark + ipa[i:]
    return ipa


# ─────────────────────────────────────────────────────────────────────────────
# English
# ─────────────────────────────────────────────────────────────────────────────

# Written with ASCII "g"; converted to the IPA ɡ the vocabulary uses below.
_EN_LEXICON_SRC: Dict[str, str] = {
    "a": "ɐ", "about": "ɐbˈaʊt", "after": "ˈæftɚ", "again": "ɐgˈɛn", "air": "ˈɛɹ",
    "all": "ˈɔːl", "also": "ˈɔːlsoʊ", "an": "ɐn", "and": "ænd", "animal": "ˈænɪməl",
    "another": "ɐnˈʌðɚ", "answer": "ˈænsɚ", "any": "ˈɛni", "are": "ɑːɹ", "around": "ɐɹˈaʊnd",
    "as": "æz", "ask": "ˈæsk", "at": "æt", "audio": "ˈɔːdɪoʊ", "away": "ɐwˈeɪ",
    "back": "bˈæk", "be": "biː", "because": "bɪkˈʌz", "been": "bˌɪn", "before": "bɪfˈoːɹ",
    "big": "bˈɪg", "billion": "bˈɪljən", "boy": "bˈɔɪ", "but": "bˌʌt", "by": "baɪ",
    "call": "kˈɔːl", "came": "kˈeɪm", "can": "kæn", "cent": "sˈɛnt", "cents": "sˈɛnts",
    "change": "tʃˈeɪndʒ", "come": "kˈʌm", "could": "kʊd", "day": "dˈeɪ", "did": "dˈɪd",
    "different": "dˈɪfɹənt", "do": "dˈuː", "doctor": "dˈɑːktɚ", "does": "dˈʌz",
    "dollar": "dˈɑːlɚ", "dollars": "dˈɑːlɚz", "don't": "dˈoʊnt", "down": "dˈaʊn",
    "each": "ˈiːtʃ", "eight": "ˈeɪt", "eighteen": "eɪtˈiːn", "eighty": "ˈeɪɾi",
    "eleven": "ɪlˈɛvən", "end": "ˈɛnd", "euro": "jˈʊɹoʊ", "euros": "jˈʊɹoʊz",
    "even": "ˈiːvən", "fifteen": "fɪftˈiːn", "fifty": "fˈɪfti", "find": "fˈaɪnd",
    "first": "fˈɜːst", "five": "fˈaɪv", "follow": "fˈɑːloʊ", "for": "fɔːɹ",
    "form": "fˈɔːɹm", "forty": "fˈɔːɹɾi", "found": "fˈaʊnd", "four": "fˈoːɹ",
    "fourteen": "fɔːɹtˈiːn", "from": "fɹʌm", "get": "gɛt", "give": "gˈɪv", "go": "gˈoʊ",
    "good": "gˈʊd", "great": "gɹˈeɪt", "had": "hæd", "hand": "hˈænd", "has": "hˈæz",
    "have": "hæv", "he": "hiː", "hello": "həlˈoʊ", "help": "hˈɛlp", "her": "hɜː",
    "here": "hˈɪɹ", "him": "hˈɪm", "his": "hɪz", "home": "hˈoʊm", "house": "hˈaʊs",
    "how": "hˈaʊ", "hundred": "hˈʌndɹəd", "i": "ˈaɪ", "i'm": "ˈaɪm", "if": "ɪf",
    "in": "ɪn", "into": "ˌɪntʊ", "is": "ɪz", "it": "ɪt", "it's": "ɪts", "its": "ɪts",
    "just": "dʒˈʌst", "kind": "kˈaɪnd", "know": "nˈoʊ", "land": "lˈænd",
    "large": "lˈɑːɹdʒ", "learn": "lˈɜːn", "letter": "lˈɛɾɚ", "like": "lˈaɪk",
    "line": "lˈaɪn", "little": "lˈɪɾəl", "live": "lˈɪv", "long": "lˈɔŋ", "look": "lˈʊk",
    "made": "mˈeɪd", "make": "mˈeɪk", "man": "mˈæn", "many": "mˈɛni", "may": "mˈeɪ",
    "me": "mˌiː", "mean": "mˈiːn", "men": "mˈɛn", "million": "mˈɪljən", "minus": "mˈaɪnəs",
    "mister": "mˈɪstɚ", "missus": "mˈɪsɪz", "more": "mˈoːɹ", "most": "mˈoʊst",
    "mother": "mˈʌðɚ", "move": "mˈuːv", "much": "mˈʌtʃ", "must": "mˈʌst", "my": "maɪ",
    "name": "nˈeɪm", "need": "nˈiːd", "new": "nˈuː", "nine": "nˈaɪn",
    "nineteen": "naɪntˈiːn", "ninety": "nˈaɪnti", "no": "nˈoʊ", "not": "nˈɑːt",
    "now": "nˈaʊ", "number": "nˈʌmbɚ", "of": "ʌv", "off": "ˈɔf", "oh": "ˈoʊ",
    "old": "ˈoʊld", "on": "ɑːn", "one": "wˈʌn", "only": "ˈoʊnli", "or": "ɔːɹ",
    "other": "ˈʌðɚ", "our": "ˌaʊɚ", "out": "ˈaʊt", "over": "ˈoʊvɚ", "page": "pˈeɪdʒ",
    "part": "pˈɑːɹt", "pence": "pˈɛns", "penny": "pˈɛni", "people": "pˈiːpəl",
    "percent": "pɚsˈɛnt", "picture": "pˈɪktʃɚ", "place": "plˈeɪs", "play": "plˈeɪ",
    "please": "plˈiːz", "point": "pˈɔɪnt", "pound": "pˈaʊnd", "pounds": "pˈaʊndz",
    "professor": "pɹəfˈɛsɚ", "put": "pˈʊt", "read": "ɹˈiːd", "right": "ɹˈaɪt",
    "said": "sˈɛd", "saint": "sˈeɪnt", "same": "sˈeɪm", "say": "sˈeɪ", "see": "sˈiː",
    "sentence": "sˈɛntəns", "set": "sˈɛt", "seven": "sˈɛvən", "seventeen": "sɛvəntˈiːn",
    "seventy": "sˈɛvənti", "she": "ʃiː", "should": "ʃʊd", "show": "ʃˈoʊ", "six": "sˈɪks",
    "sixteen": "sɪkstˈiːn", "sixty": "sˈɪksti", "small": "smˈɔːl", "so": "sˈoʊ",
    "some": "sˌʌm", "sound": "sˈaʊnd", "speech": "spˈiːtʃ", "spell": "spˈɛl",
    "still": "stˈɪl", "study": "stˈʌdi", "such": "sˈʌtʃ", "take": "tˈeɪk", "tell": "tˈɛl",
    "ten": "tˈɛn", "test": "tˈɛst", "text": "tˈɛkst", "than": "ðɐn", "thank": "θˈæŋk",
    "thanks": "θˈæŋks", "that": "ðæt", "the": "ðə", "their": "ðɛɹ", "them": "ðˌɛm",
    "then": "ðˈɛn", "there": "ðɛɹ", "these": "ðiːz", "they": "ðeɪ", "thing": "θˈɪŋ",
    "think": "θˈɪŋk", "thirteen": "θɜːtˈiːn", "thirty": "θˈɜːɾi", "this": "ðɪs",
    "thousand": "θˈaʊzənd", "three": "θɹˈiː", "through": "θɹuː", "time": "tˈaɪm",
    "to": "tə", "too": "tˈuː", "try": "tɹˈaɪ", "turn": "tˈɜːn", "twelve": "twˈɛlv",
    "twenty": "twˈɛnti", "two": "tˈuː", "up": "ˈʌp", "us": "ˌʌs", "use": "jˈuːz",
    "versus": "vˈɜːsəs", "very": "vˈɛɹi", "voice": "vˈɔɪs", "want": "wˈɑːnt",
    "was": "wʌz", "water": "wˈɔːɾɚ", "way": "wˈeɪ", "we": "wiː", "well": "wˈɛl",
    "went": "wˈɛnt", "were": "wɜː", "what": "wˌʌt", "when": "wˌɛn", "where": "wˌɛɹ",
    "which": "wˌɪtʃ", "who": "hˈuː", "why": "wˈaɪ", "will": "wɪl", "with": "wɪð",
    "word": "wˈɜːd", "work": "wˈɜːk", "world": "wˈɜːld", "would": "wʊd",
    "write": "ɹˈaɪt", "year": "jˈɪɹ", "yes": "jˈɛs", "you": "juː", "your": "jʊɹ",
    "zero": "zˈiəɹoʊ",
}
EN_LEXICON: Dict[str, str] = {w: ipa.replace("g", "ɡ") for w, ipa in _EN_LEXICON_SRC.items()}

# Longest graphemes first
_EN_GRAPHEMES: Sequence[Tuple[str, str]] = (
    ("tion", "ʃən"), ("sion", "ʒən"), ("ough", "ʌf"),
    ("igh", "aɪ"), ("tch", "tʃ"), ("dge", "dʒ"), ("air", "ɛɹ"), ("ear", "ɪɹ"),
    ("ch", "tʃ"), ("sh", "ʃ"), ("th", "θ"), ("ph", "f"), ("wh", "w"), ("ng", "ŋ"),
    ("ck", "k"), ("qu", "kw"), ("kn", "n"), ("wr", "ɹ"),
    ("ee", "iː"), ("ea", "iː"), ("oo", "uː"), ("ou", "aʊ"), ("ow", "oʊ"),
    ("ai", "eɪ"), ("ay", "eɪ"), ("oa", "oʊ"), ("oi", "ɔɪ"), ("oy", "ɔɪ"),
    ("au", "ɔː"), ("aw", "ɔː"), ("ew", "uː"), ("ie", "iː"), ("ey", "iː"),
    ("er", "ɚ"), ("ar", "ɑːɹ"), ("or", "ɔːɹ"), ("ir", "ɜː"), ("ur", "ɜː"),
    ("a", "æ"), ("e", "ɛ"), ("i", "ɪ"), ("o", "ɑː"), ("u", "ʌ"),
    ("b", "b"), ("c", "k"), ("d", "d"), ("f", "f"), ("g", "ɡ"), ("h", "h"),
    ("j", "dʒ"), ("k", "k"), ("l", "l"), ("m", "m"), ("n", "n"), ("p", "p"),
    ("q", "k"), ("r", "ɹ"), ("s", "s"), ("t", "t"), ("v", "v"), ("w", "w"),
    ("x", "ks"), ("z", "z"),
)
_EN_LONG = {"a": "eɪ", "e": "iː", "i": "aɪ", "o": "oʊ", "u": "juː"}
_EN_VOWELS = "aeiouy"
_FRONT = "eiy"


def _english_rules(word: str) -> str:
    out: List[str] = []
    n = len(word)
    # "make", "note": vowel + single consonant + final e
    magic = n >= 3 and word[-1] == "e" and word[-2] not in _EN_VOWELS and word[-3] in "aeiou"
    i = 0
    while i < n:
        ch = word[i]
        if i > 0 and ch == word[i - 1] and ch not in _EN_VOWELS:
            i += 1
            continue
        if magic and i == n - 1:
            break
        if magic and i == n - 3:
            out.append(_EN_LONG[ch])
            i += 1
            continue
        if ch == "e" and i == n - 1 and n > 2:
            break
        if ch == "y":
            if i == 0:
                out.append("j")
            elif i == n - 1:
                out.append("aɪ" if n <= 3 else "i")
            else:
                out.append("ɪ")
            i += 1
            continue
        if ch in "cg" and i + 1 < n and word[i + 1] in _FRONT:
            out.append("s" if ch == "c" else "dʒ")
            i += 1
            continue
        for graph, ipa in _EN_GRAPHEMES:
            if word.startswith(graph, i):
                out.append(ipa)
                i += len(graph)
                break
        else:
            # apostrophes and letters outside a-z
            i += 1
    ipa = "".join(out)
    vowel_groups = len(re.findall(r"[aeiouy]+", word))
    return _place_stress(ipa) if vowel_groups > 1 or n > 3 else ipa


_GB_RHOTIC = re.compile(r"ɹ(?![aeiouæɑɐɒɔəɛɜɪʊʌ])")


def _to_british(ipa: str) -> str:
    ipa = ipa.replace("oʊ", "əʊ").replace("ɚ", "ə").replace("ɾ", "t").replace("ɑːɹ", "ɑː")
    return _GB_RHOTIC.sub("", ipa)


def english(word: str, british: bool = False) -> str:
    """Lexicon lookup with letter-to-sound fallback."""
    w = word.lower()
    ipa = EN_LEXICON.get(w)
    if ipa is None:
        ipa = EN_LEXICON.get(w.replace("’", "'"))
    if ipa is None and not w.isascii():
        # café -> cafe; letters without a decomposition are dropped
        w = unicodedata.normalize("NFKD", w).encode("ascii", "ignore").decode("ascii")
        ipa = EN_LEXICON.get(w)
    if ipa is None:
        ipa = _english_rules(w)
    return _to_british(ipa) if british else ipa


# ─────────────────────────────────────────────────────────────────────────────
# Romance languages
# ─────────────────────────────────────────────────────────────────────────────

# (grapheme, ipa, allowed next characters or None); "$" in the context
# string means end of word.
_Rule = Tuple[str, str, Optional[str]]

_ES_RULES: Sequence[_Rule] = (
    ("ch", "tʃ", None), ("ll", "ʝ", None), ("rr", "r", None), ("qu", "k", None),
    ("gu", "ɡ", "eéií"), ("c", "θ", "eéií"), ("g", "x", "eéií"),
    ("ñ", "ɲ", None), ("z", "θ", None), ("j", "x", None), ("h", "", None),
    ("v", "b", None), ("y", "i", "$"), ("y", "ʝ", None), ("x", "ks", None), ("r", "ɾ", None),
    ("á", "ˈa", None), ("é", "ˈe", None), ("í", "ˈi", None), ("ó", "ˈo", None),
    ("ú", "ˈu", None), ("ü", "w", None),
)

_IT_RULES: Sequence[_Rule] = (
    ("gli", "ʎi", None), ("sch", "sk", None), ("sc", "ʃ", "eèéi"), ("gn", "ɲ", None),
    ("ch", "k", None), ("gh", "ɡ", None), ("qu", "kw", None),
    ("ci", "tʃ", "aou"), ("gi", "dʒ", "aou"),
    ("c", "tʃ", "eèéi"), ("g", "dʒ", "eèéi"), ("z", "ts", None), ("h", "", None),
    ("à", "ˈa", None), ("è", "ˈɛ", None), ("é", "ˈe", None), ("ì", "ˈi", None),
    ("ò", "ˈɔ", None), ("ó", "ˈo", None), ("ù", "ˈu", None),
)

_PT_RULES: Sequence[_Rule] = (
    ("ção", "sɐw", None), ("ão", "ɐw", None), ("õe", "oj", None), ("lh", "ʎ", None),
    ("nh", "ɲ", None), ("ch", "ʃ", None), ("rr", "x", None), ("qu", "k", None),
    ("gu", "ɡ", "eéêií"), ("ti", "tʃi", None), ("di", "dʒi", None),
    ("te", "tʃi", "$"), ("de", "dʒi", "$"),
    ("c", "s", "eéêií"), ("g", "ʒ", "eéêií"), ("ç", "s", None), ("j", "ʒ", None),
    ("x", "ʃ", None), ("h", "", None), ("r", "x", "$"), ("l", "w", "$"),
    ("o", "u", "$"), ("e", "i", "$"), ("r", "ɾ", None),
    ("á", "ˈa", None), ("â", "ˈɐ", None), ("ã", "ɐ", None), ("é", "ˈɛ", None),
    ("ê", "ˈe", None), ("í", "ˈi", None), ("ó", "ˈɔ", None), ("ô", "ˈo", None),
    ("õ", "o", None), ("ú", "ˈu", None),
)

_FR_RULES: Sequence[_Rule] = (
    ("eaux", "o", "$"), ("eau", "o", None), ("aux", "o", "$"),
    ("ent", "", "$"), ("ain", "ɛ", None), ("oin", "wɛ", None),
    ("er", "e", "$"), ("ez", "e", "$"), ("et", "ɛ", "$"),
    ("ou", "u", None), ("oi", "wa", None), ("au", "o", None), ("ai", "ɛ", None),
    ("ei", "ɛ", None), ("eu", "ø", None), ("œu", "ø", None),
    ("an", "ɑ", "bcdfghjklmpqrstvwxz$"), ("am", "ɑ", "bp$"),
    ("en", "ɑ", "bcdfghjklmpqrstvwxz$"), ("em", "ɑ", "bp$"),
    ("on", "ɔ", "bcdfghjklmpqrstvwxz$"), ("om", "ɔ", "bp$"),
    ("in", "ɛ", "bcdfghjklmpqrstvwxz$"), ("un", "œ", "bcdfghjklmpqrstvwxz$"),
    ("ch", "ʃ", None), ("gn", "ɲ", None), ("qu", "k", None), ("ph", "f", None),
    ("th", "t", None), ("ll", "l", None), ("ss", "s", None),
    ("c", "s", "eéèêiy"), ("g", "ʒ", "eéèêiy"), ("ç", "s", None), ("j", "ʒ", None),
    ("h", "", None), ("r", "ʁ", None), ("u", "y", None), ("y", "i", None),
    ("s", "", "$"), ("t", "", "$"), ("d", "", "$"), ("x", "", "$"), ("z", "", "$"),
    ("e", "", "$"), ("x", "ks", None),
    ("é", "e", None), ("è", "ɛ", None), ("ê", "ɛ", None), ("ë", "ɛ", None),
    ("à", "a", None), ("â", "ɑ", None), ("î", "i", None), ("ï", "i", None),
    ("ô", "o", None), ("û", "y", None), ("ù", "y", None),
)

_ROMANCE_TABLES: Dict[str, Sequence[_Rule]] = {
    "es": _ES_RULES,
    "it": _IT_RULES,
    "pt-br": _PT_RULES,
    "fr-fr": _FR_RULES,
}

# Plain letters read as themselves (ɡ for g)
_LATIN_DEFAULT = {c: c for c in "abdefiklmnopstuvwz"}
_LATIN_DEFAULT.update({"c": "k", "g": "ɡ", "h": "h", "j": "j", "q": "k", "r": "r", "x": "ks", "y": "i"})


def _context_ok(word: str, end: int, context: Optional[str]) -> bool:
    if context is None:
        return True
    if end >= len(word):
        return "$" in context
    return word[end] in context


def romance(word: str, language: str) -> str:
    """Apply the grapheme table for ``language`` to one lowercase word."""
    rules = _ROMANCE_TABLES[language]
    w = word.lower()
    out: List[str] = []
    i = 0
    while i < len(w):
        for graph, ipa, context in rules:
            if w.startswith(graph, i) and _context_ok(w, i + len(graph), context):
                out.append(ipa)
                i += len(graph)
                break
        else:
            out.append(_LATIN_DEFAULT.get(w[i], ""))
            i += 1
    ipa = "".join(out)
    if "ˈ" not in ipa and language != "fr-fr" and len(re.findall(r"[aeiouɐɛɔ]+", ipa)) > 1:
        ipa = _place_stress(ipa)
    return ipa


# ─────────────────────────────────────────────────────────────────────────────
# Japanese kana
# ─────────────────────────────────────────────────────────────────────────────

_KANA_ROWS = {
    "あいうえお": ("a", "i", "ɯ", "e", "o"),
    "かきくけこ": ("ka", "ki", "kɯ", "ke", "ko"),
    "がぎぐげご": ("ɡa", "ɡi", "ɡɯ", "ɡe", "ɡo"),
    "さしすせそ": ("sa", "ɕi", "sɯ", "se", "so"),
    "ざじずぜぞ": ("za", "dʑi", "zɯ", "ze", "zo"),
    "たちつてと": ("ta", "tɕi", "tsɯ", "te", "to"),
    "だぢづでど": ("da", "dʑi", "zɯ", "de", "do"),
    "なにぬねの": ("na", "ɲi", "nɯ", "ne", "no"),
    "はひふへほ": ("ha", "çi", "ɸɯ", "he", "ho"),
    "ばびぶべぼ": ("ba", "bi", "bɯ", "be", "bo"),
    "ぱぴぷぺぽ": ("pa", "pi", "pɯ", "pe", "po"),
    "まみむめも": ("ma", "mi", "mɯ", "me", "mo"),
    "らりるれろ": ("ɾa", "ɾi", "ɾɯ", "ɾe", "ɾo"),
    "ぁぃぅぇぉ": ("a", "i", "ɯ", "e", "o"),
}
KANA: Dict[str, str] = {k: v for row, vals in _KANA_ROWS.items() for k, v in zip(row, vals)}
KANA.update({"や": "ja", "ゆ": "jɯ", "よ": "jo", "わ": "wa", "を": "o", "ん": "ɴ", "ゔ": "vɯ"})

_SMALL_Y = {"ゃ": "a", "ゅ": "ɯ", "ょ": "o"}
_KATAKANA_START, _KATAKANA_END = 0x30A1, 0x30F6


def _to_hiragana(ch: str) -> str:
    cp = ord(ch)
    if _KATAKANA_START <= cp <= _KATAKANA_END:
        return chr(cp - 0x60)
    return ch


def kana(word: str) -> str:
    """Kana to IPA. っ marks a glottal stop, ー lengthens the vowel."""
    out: List[str] = []
    for raw in word:
        ch = _to_hiragana(raw)
        if ch in _SMALL_Y and out:
            prev = out[-1]
            if prev.endswith(("ɕi", "tɕi", "dʑi")):
                out[-1] = prev[:-1] + _SMALL_Y[ch]
            elif prev.endswith("i"):
                out[-1] = prev[:-1] + "j" + _SMALL_Y[ch]
            else:
                out.append("j" + _SMALL_Y[ch])
        elif ch in ("っ", "ッ"):
            out.append("ʔ")
        elif ch == "ー":
            out.append("ː")
        elif ch in KANA:
            out.append(KANA[ch])
    return "".join(out)


# ─────────────────────────────────────────────────────────────────────────────
# Devanagari (Hindi)
# ─────────────────────────────────────────────────────────────────────────────

_DEVA_CONSONANTS = {
    "क": "k", "ख": "kʰ", "ग": "ɡ", "घ": "ɡʱ", "ङ": "ŋ",
    "च": "tʃ", "छ": "tʃʰ", "ज": "dʒ", "झ": "dʒʱ", "ञ": "ɲ",
    "ट": "ʈ", "ठ": "ʈʰ", "ड": "ɖ", "ढ": "ɖʱ", "ण": "ɳ",
    "त": "t", "थ": "tʰ", "द": "d", "ध": "dʱ", "न": "n",
    "प": "p", "फ": "pʰ", "ब": "b", "भ": "bʱ", "म": "m",
    "य": "j", "र": "ɾ", "ल": "l", "व": "ʋ",
    "श": "ʃ", "ष": "ʂ", "स": "s", "ह": "ɦ",
}
_DEVA_VOWELS = {
    "अ": "ə", "आ": "aː", "इ": "ɪ", "ई": "iː", "उ": "ʊ", "ऊ": "uː",
    "ऋ": "ɾɪ", "ए": "eː", "ऐ": "ɛː", "ओ": "oː", "औ": "ɔː",
}
_DEVA_MATRAS = {
    "ा": "aː", "ि": "ɪ", "ी": "iː", "ु": "ʊ", "ू": "uː",
    "ृ": "ɾɪ", "े": "eː", "ै": "ɛː", "ो": "oː", "ौ": "ɔː",
}
_VIRAMA = "्"
_NUKTA = "़"
_ANUSVARA = "ं"
_CANDRABINDU = "ँ"
_VISARGA = "ः"
_SCHWA = "ə"


def devanagari(word: str) -> str:
    """
    Devanagari to IPA.

    Consonants carry an inherent schwa that a vowel sign replaces and a
    virama removes; the word-final inherent schwa is dropped.
    """
    out: List[str] = []
    inherent = False
    for ch in word:
        if ch in _DEVA_CONSONANTS:
            out.append(_DEVA_CONSONANTS[ch])
            out.append(_SCHWA)
            inherent = True
        elif ch in _DEVA_MATRAS:
            if inherent:
                out[-1] = _DEVA_MATRAS[ch]
            else:
                out.append(_DEVA_MATRAS[ch])
            inherent = False
        elif ch == _VIRAMA:
            if inherent:
                out.pop()
            inherent = False
        elif ch in _DEVA_VOWELS:
            out.append(_DEVA_VOWELS[ch])
            inherent = False
        elif ch == _ANUSVARA:
            out.append("ŋ")
            inherent = False
        elif ch == _VISARGA:
            out.append("h")
            inherent = False
        # nukta and candrabindu carry no separate sound here
    if inherent and len(out) > 2:
        out.pop()
    return "".join(out)


# ─────────────────────────────────────────────────────────────────────────────
# Entry point
# ─────────────────────────────────────────────────────────────────────────────

def word_to_ipa(word: str, language: str) -> str:
    if language in ("en-us", "en-gb"):
        return english(word, british=language == "en-gb")
    if language in _ROMANCE_TABLES:
        return romance(word, language)
    if language == "ja":
        return kana(word)
    if language == "hi":
        return devanagari(word)
    raise KeyError(language)


def g2p(text: str, language: str) -> str:
    """
    Convert a run of text in one language to an IPA string.

    Words are separated by single spaces; punctuation the model knows
    is kept, anything else is dropped.

    Example:
        >>> g2p("hello, world", "en-us")
        'həlˈoʊ, wˈɜːld'
    """
    if language not in RULE_LANGUAGES:
        raise KeyError(language)
    parts: List[str] = []
    for kind, value in split_words(text):
        if kind == "word":
            parts.append(word_to_ipa(value, language))
        else:
            parts.append(value)
    return "".join(parts)
