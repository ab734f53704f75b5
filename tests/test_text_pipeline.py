"""
Tests for the text front end: normalization, G2P, phonemizer, tokenizer.

Tests cover:
- normalize_text() numerals, currency, abbreviations, spacing
- Rule-based G2P lexicon and punctuation handling
- Script segmentation and language hints
- Phonemizer determinism and totality on arbitrary input
- Tokenizer totality, unknown-symbol fallback, vocabulary loading
"""
import json

import pytest


class TestNormalization:

    @pytest.mark.parametrize("text,expected", [
        ("  It costs   $3.50 ", "it costs three dollars and fifty cents"),
        ("50% off", "fifty percent off"),
        ("the 21st century", "the twenty first century"),
        ("in 1999", "in nineteen ninety nine"),
        ("12,345 people", "twelve thousand three hundred forty five people"),
        ("pi is 3.14", "pi is three point one four"),
        ("Dr. Smith", "doctor smith"),
        ("it is -5 outside", "it is minus five outside"),
        ("hello , world !", "hello, world!"),
        ("£1", "one pound"),
    ])
    def test_english_expansion(self, text, expected):
        from kokoro_ms.utils.text import normalize_text

        normalized, timings = normalize_text(text)
        assert normalized == expected
        assert "normalize" in timings

    def test_non_english_keeps_digits(self):
        """Numeral expansion is English only."""
        from kokoro_ms.utils.text import normalize_text

        assert normalize_text("Tengo 5 gatos", "es")[0] == "tengo 5 gatos"

    def test_idempotent(self):
        from kokoro_ms.utils.text import normalize_text

        once = normalize_text("It's 2:30, Mr. Brown owes $12.")[0]
        assert normalize_text(once)[0] == once

    def test_spell_int_large(self):
        from kokoro_ms.utils.text import MAX_SPOKEN_INT, spell_int

        assert spell_int(0) == "zero"
        assert spell_int(2_000_000) == "two million"
        assert spell_int(MAX_SPOKEN_INT + 1).startswith("one zero")


class TestRuleG2P:

    def test_lexicon_words(self):
        from kokoro_ms.tts.g2p_rules import g2p

        assert g2p("hello, world", "en-us") == "həlˈoʊ, wˈɜːld"

    def test_british_drops_post_vocalic_r(self):
        from kokoro_ms.tts.g2p_rules import english

        assert english("their") == "ðɛɹ"
        assert english("their", british=True) == "ðɛ"

    def test_accented_letters_fold_to_ascii_rules(self):
        from kokoro_ms.tts.g2p_rules import english

        assert english("café") == english("cafe")
        assert english("naïve")

    def test_break_characters_become_spaces(self):
        from kokoro_ms.tts.g2p_rules import split_words

        items = split_words("rock-and/roll")
        assert [k for k, _ in items] == ["word", "space", "word", "space", "word"]

    def test_unsupported_language_raises_key_error(self):
        from kokoro_ms.tts.g2p_rules import g2p

        with pytest.raises(KeyError):
            g2p("ni hao", "cmn")

    def test_spanish_rules(self):
        from kokoro_ms.tts.g2p_rules import g2p

        assert "tʃ" in g2p("chico", "es")


class TestSegmentation:

    def test_latin_and_devanagari_runs(self):
        from kokoro_ms.tts.phonemizer import segment

        runs = segment("hello नमस्ते", "en-us")
        assert [lang for lang, _ in runs] == ["en-us", "hi"]
        assert "".join(run for _, run in runs) == "hello नमस्ते"

    def test_han_with_kana_is_japanese(self):
        from kokoro_ms.tts.phonemizer import segment

        assert {lang for lang, _ in segment("東京へいく", "en-us")} == {"ja"}
        assert [lang for lang, _ in segment("你好", "en-us")] == ["cmn"]

    def test_canonical_language(self):
        from kokoro_ms.tts.phonemizer import canonical_language

        assert canonical_language("EN") == "en-us"
        assert canonical_language("zh") == "cmn"
        assert canonical_language("pt_BR") == "pt-br"
        assert canonical_language("xx") is None
        assert canonical_language(None) is None


class TestPhonemizer:

    @pytest.fixture
    def ph(self):
        from kokoro_ms.tts.phonemizer import Phonemizer

        return Phonemizer(default_language="en-us", backend="rules")

    def test_hello_world(self, ph):
        ipa = "".join(p.symbol for p in ph.phonemize("Hello world"))
        assert ipa == "həlˈoʊ wˈɜːld"

    def test_deterministic(self, ph):
        """Same text, same phonemes, across calls and instances."""
        from kokoro_ms.tts.phonemizer import Phonemizer

        text = "Hello there, it costs $5. नमस्ते!"
        first = ph.phonemize(text)
        assert ph.phonemize(text) == first
        assert Phonemizer(backend="rules").phonemize(text) == first

    def test_empty_text(self, ph):
        assert ph.phonemize("") == ()
        assert ph.phonemize("   ") == ()

    @pytest.mark.parametrize("text", ["☃☃", "🙂 ok", "\u0000​", "Ωμέγα", "?!", "東京"])
    def test_never_raises(self, ph, text):
        seq = ph.phonemize(text)
        assert isinstance(seq, tuple)

    @pytest.mark.parametrize("text", ["©", "😀", "ñ", "æ", "™", "☃☃", "Ωμέγα", "東京"])
    def test_symbols_and_accents_yield_phonemes(self, ph, text):
        """Non-blank text never phonemizes to an empty sequence."""
        assert len(ph.phonemize(text)) > 0

    def test_stress_marks_tagged(self, ph):
        seq = ph.phonemize("hello")
        stressed = [p for p in seq if p.symbol == "ˈ"]
        assert stressed and stressed[0].stress == "primary"
        assert all(p.language == "en-us" for p in seq)

    def test_language_hint_applies_to_whole_text(self, ph):
        seq = ph.phonemize("hola amigo", language_hint="es")
        assert {p.language for p in seq} == {"es"}

    def test_unknown_hint_falls_back_to_english(self, ph):
        assert ph.resolve_language("klingon") == "en-us"

    def test_no_doubled_pauses(self, ph):
        ipa = "".join(p.symbol for p in ph.phonemize("hello   ☃   world"))
        assert "  " not in ipa
        assert not ipa.startswith(" ") and not ipa.endswith(" ")

    def test_espeak_backend_requires_install(self, monkeypatch):
        """backend=espeak without espeak-ng is a configuration error; auto falls back."""
        from kokoro_ms.core.config import ConfigValidationError
        from kokoro_ms.tts import phonemizer as ph_module

        monkeypatch.setattr(ph_module, "espeak_available", lambda: False)
        with pytest.raises(ConfigValidationError):
            ph_module.Phonemizer(backend="espeak")
        assert ph_module.Phonemizer(backend="auto").backend == "rules"

    def test_unknown_backend(self):
        from kokoro_ms.core.config import ConfigValidationError
        from kokoro_ms.tts.phonemizer import Phonemizer

        with pytest.raises(ConfigValidationError):
            Phonemizer(backend="festival")


class TestTokenizer:

    def test_total_and_length_preserving(self):
        """Every phoneme maps to exactly one id, unknown ones to the fallback."""
        from kokoro_ms.tts.tokenizer import PAD_ID, Tokenizer

        tok = Tokenizer()
        ids = tok.tokenize("həlˈoʊ ☃")
        assert len(ids) == len("həlˈoʊ ☃")
        assert ids[-1] == PAD_ID
        assert all(0 <= i < tok.vocab_size for i in ids)

    def test_phoneme_sequence_input(self):
        from kokoro_ms.tts.phonemizer import Phonemizer
        from kokoro_ms.tts.tokenizer import Tokenizer

        seq = Phonemizer(backend="rules").phonemize("hello world")
        ids = Tokenizer().tokenize(seq)
        assert len(ids) == len(seq)
        assert Tokenizer().detokenize(ids) == "".join(p.symbol for p in seq)

    def test_custom_unknown_id(self):
        from kokoro_ms.tts.tokenizer import Tokenizer, Vocabulary

        space = Vocabulary.default().id_of(" ", -1)
        assert Tokenizer(unknown_id=space).tokenize("☃") == (space,)

    def test_unknown_id_out_of_range(self):
        from kokoro_ms.core.config import ConfigValidationError
        from kokoro_ms.tts.tokenizer import Tokenizer

        with pytest.raises(ConfigValidationError):
            Tokenizer(unknown_id=100_000)

    def test_vocab_from_json_list_and_mapping(self, tmp_path):
        from kokoro_ms.tts.tokenizer import Vocabulary

        as_list = tmp_path / "list.json"
        as_list.write_text(json.dumps(["$", "a", "b"]), encoding="utf-8")
        as_map = tmp_path / "map.json"
        as_map.write_text(json.dumps({"vocab": {"$": 0, "b": 2, "a": 1}}), encoding="utf-8")

        for path in (as_list, as_map):
            vocab = Vocabulary.from_json(path)
            assert vocab.symbols == ("$", "a", "b")
            assert vocab.id_of("b", 0) == 2

    def test_vocab_sparse_ids_rejected(self, tmp_path):
        from kokoro_ms.core.config import ConfigValidationError
        from kokoro_ms.tts.tokenizer import Vocabulary

        path = tmp_path / "sparse.json"
        path.write_text(json.dumps({"$": 0, "a": 5}), encoding="utf-8")
        with pytest.raises(ConfigValidationError):
            Vocabulary.from_json(path)


class TestChunkPlanner:

    def _ids(self, text):
        from kokoro_ms.tts.tokenizer import tokenize

        return tokenize(text)

    def test_spans_cover_sequence(self):
        from kokoro_ms.tts.chunker import plan_token_chunks

        tokens = self._ids("həlˈoʊ wˈɜːld. " * 30)
        plan = plan_token_chunks(tokens, first_chunk_max=20, rest_chunk_max=60)

        assert plan.spans[0][0] == 0
        assert plan.spans[-1][1] == len(tokens)
        for (_, end), (start, _) in zip(plan.spans, plan.spans[1:]):
            assert end == start
        assert plan.spans[0][1] <= 20
        assert all(end - start <= 60 for start, end in plan.spans[1:])

    def test_prefers_sentence_end(self):
        """A span ends right after '.' when one is in reach."""
        from kokoro_ms.tts.chunker import plan_token_chunks

        text = "həlˈoʊ. " + "wˈɜːld " * 10
        tokens = self._ids(text)
        plan = plan_token_chunks(tokens, first_chunk_max=12, rest_chunk_max=200)
        first_end = plan.spans[0][1]
        assert text[first_end - 1] in ". "

    def test_hard_split_without_breaks(self):
        from kokoro_ms.tts.chunker import plan_token_chunks

        plan = plan_token_chunks(self._ids("a" * 50), first_chunk_max=10, rest_chunk_max=15)
        assert plan.spans == [(0, 10), (10, 25), (25, 40), (40, 50)]

    def test_empty_and_invalid(self):
        from kokoro_ms.tts.chunker import plan_token_chunks

        assert plan_token_chunks(()).spans == []
        with pytest.raises(ValueError):
            plan_token_chunks((1, 2), first_chunk_max=0)
