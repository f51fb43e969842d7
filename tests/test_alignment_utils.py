import pytest

from alignment_utils import (
    compare_transcripts,
    find_similar_word,
    levenshtein_distance,
    normalize_words,
)


def test_normalize_strips_punctuation_and_case():
    assert normalize_words("  Hello,  WORLD! ¿Qué? ") == ["hello", "world", "qué"]
    assert normalize_words("-- ... !") == []


@pytest.mark.parametrize(
    "a,b,expected",
    [("kitten", "sitting", 3), ("", "abc", 3), ("abc", "", 3), ("same", "same", 0), ("cat", "cet", 1)],
)
def test_levenshtein(a, b, expected):
    assert levenshtein_distance(a, b) == expected


def test_identical_text_is_fully_correct():
    result = compare_transcripts("The quick brown fox.", "the quick brown fox")
    assert result.accuracy == 1.0
    assert all(m.is_correct and m.spoken_as is None for m in result.matched_words)
    assert not result.missed_words
    assert not result.extra_words
    assert result.word_error_rate == 0.0


def test_missing_word_is_reported():
    result = compare_transcripts("The quick brown fox", "the quick brown")
    assert result.accuracy == 0.75
    assert result.missed_words == {"fox"}
    assert result.matched_words[-1].word == "fox"
    assert not result.matched_words[-1].is_correct


def test_one_letter_off_short_word_is_not_fuzzy():
    # 1/3 is not strictly below the threshold
    result = compare_transcripts("cat", "cet")
    assert result.matched_words[0].spoken_as is None
    assert result.missed_words == {"cat"}
    assert result.extra_words == {"cet"}


def test_fuzzy_substitution_recorded_as_spoken_as():
    result = compare_transcripts("beautiful morning", "beautifull morning")
    first = result.matched_words[0]
    assert not first.is_correct
    assert first.spoken_as == "beautifull"
    assert result.accuracy == 0.5
    assert not result.missed_words
    assert not result.extra_words


def test_duplicates_are_consumed_one_at_a_time():
    result = compare_transcripts("the cat saw the dog", "the cat saw dog")
    assert [m.is_correct for m in result.matched_words] == [True, True, True, False, True]
    assert result.missed_words == {"the"}


def test_matching_ignores_word_order():
    result = compare_transcripts("red blue", "blue red")
    assert result.accuracy == 1.0


def test_extra_words_are_leftovers():
    result = compare_transcripts("hello", "well hello there")
    assert result.extra_words == {"well", "there"}


def test_one_match_per_original_word_and_bounded_accuracy():
    cases = [("", ""), ("", "noise"), ("a b c", ""), ("one two", "one one two two")]
    for original, spoken in cases:
        result = compare_transcripts(original, spoken)
        assert len(result.matched_words) == len(normalize_words(original))
        assert 0.0 <= result.accuracy <= 1.0
    assert compare_transcripts("", "").accuracy == 0.0


def test_find_similar_word_takes_first_close_candidate():
    assert find_similar_word("practice", ["apple", "practise", "practic"]) == "practise"
    assert find_similar_word("x", ["", "y"]) is None


@pytest.mark.parametrize(
    "original,spoken",
    [
        ("the cat saw the dog", "the cat saw dog"),
        ("beautiful morning", "beautifull morning well"),
        ("one two", "one one two two"),
    ],
)
def test_comparison_is_repeatable(original, spoken):
    first = compare_transcripts(original, spoken)
    assert compare_transcripts(original, spoken) == first
    assert hash(compare_transcripts(original, spoken)) == hash(first)
