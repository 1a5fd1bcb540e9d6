"""Unit tests for transcript text utilities."""

from __future__ import annotations

import pytest

from src.utils.text_normalizer import (
    content_words,
    estimate_tokens,
    format_timestamp,
    fuzzy_match,
    jaccard,
    parse_timestamp,
    parse_transcript_lines,
    split_paragraphs,
    split_sentences,
    strip_noise_markers,
)


# ======================================================================
# Transcript line parsing
# ======================================================================


class TestParseTranscriptLines:
    def test_speaker_and_timestamp(self) -> None:
        lines = parse_transcript_lines("[01:30] Alice Johnson: Hello there")
        assert len(lines) == 1
        assert lines[0].speaker == "Alice Johnson"
        assert lines[0].timestamp == 90.0
        assert lines[0].text == "Hello there"

    def test_speaker_without_timestamp(self) -> None:
        lines = parse_transcript_lines("Bob: quick update")
        assert lines[0].speaker == "Bob"
        assert lines[0].timestamp is None

    def test_reserved_label_is_not_a_speaker(self) -> None:
        lines = parse_transcript_lines("Decision: ship it on Monday")
        assert lines[0].speaker is None
        assert lines[0].text == "Decision: ship it on Monday"

    def test_timestamp_without_speaker(self) -> None:
        lines = parse_transcript_lines("[02:00] (silence)")
        assert lines[0].speaker is None
        assert lines[0].timestamp == 120.0

    def test_blank_lines_skipped_but_indices_kept(self) -> None:
        lines = parse_transcript_lines("Alice: one\n\n\nBob: two")
        assert [ln.index for ln in lines] == [0, 3]

    def test_malformed_timestamp_ignored(self) -> None:
        lines = parse_transcript_lines("[99:99] Alice: still parsed")
        assert lines[0].speaker == "Alice"
        assert lines[0].timestamp is None


class TestTimestamps:
    @pytest.mark.parametrize(
        "value,expected",
        [("00:00", 0.0), ("05:30", 330.0), ("1:02:03", 3723.0), ("5:75", None), ("ab:cd", None)],
    )
    def test_parse_timestamp(self, value: str, expected: float | None) -> None:
        assert parse_timestamp(value) == expected

    def test_format_timestamp(self) -> None:
        assert format_timestamp(330) == "05:30"
        assert format_timestamp(3723) == "1:02:03"


# ======================================================================
# Token and sentence helpers
# ======================================================================


class TestTokenAndSentenceHelpers:
    def test_estimate_tokens_rounds_up(self) -> None:
        assert estimate_tokens("") == 0
        assert estimate_tokens("abcd") == 1
        assert estimate_tokens("abcde") == 2

    def test_split_sentences_respects_abbreviations(self) -> None:
        sentences = split_sentences("Dr. Smith joined late. We started anyway! Any questions?")
        assert sentences == ["Dr. Smith joined late.", "We started anyway!", "Any questions?"]

    def test_split_sentences_without_terminator(self) -> None:
        assert split_sentences("no punctuation here") == ["no punctuation here"]

    def test_split_paragraphs(self) -> None:
        assert split_paragraphs("first\n\n  \nsecond\n") == ["first", "second"]

    def test_strip_noise_markers(self) -> None:
        assert strip_noise_markers("we [CROSSTALK] agreed") == "we  agreed"


# ======================================================================
# Keyword helpers
# ======================================================================


class TestKeywordHelpers:
    def test_content_words_filters_short_and_stopwords(self) -> None:
        words = content_words("The budget should cover the new hiring plan")
        assert words == ["budget", "cover", "hiring", "plan"]

    def test_jaccard(self) -> None:
        assert jaccard({"a", "b"}, {"b", "c"}) == pytest.approx(1 / 3)
        assert jaccard(set(), {"a"}) == 0.0

    def test_fuzzy_match_word_order(self) -> None:
        result = fuzzy_match("plan A proceed", ["proceed plan A", "something else"])
        assert result is not None
        assert result[0] == "proceed plan A"

    def test_fuzzy_match_below_threshold(self) -> None:
        assert fuzzy_match("budget", ["migration"], threshold=0.9) is None
