"""Tests for token-set similarity."""

import pytest

from paralens_core.similarity import jaccard, similarity, tokenize


def test_tokenize_is_case_insensitive_and_ignores_punctuation():
    assert tokenize("Para one, TEXT.") == frozenset({"para", "one", "text"})


def test_tokenize_collapses_repeated_tokens():
    assert tokenize("the the the") == frozenset({"the"})


def test_identical_text_scores_one():
    assert similarity("Para one text.", "Para one text.") == 1.0


def test_text_against_empty_scores_zero():
    assert similarity("Para one text.", "") == 0.0
    assert similarity("", "Para one text.") == 0.0


def test_two_empty_texts_are_identical():
    assert similarity("", "") == 1.0


def test_symmetric():
    a, b = "the quick brown fox", "the lazy brown dog"
    assert similarity(a, b) == similarity(b, a)


def test_partial_overlap():
    # {para, one, text, low_a} vs {para, one, revised, text, mid_a}: 3 shared of 6
    assert similarity("Para one text. LOW_A", "Para one revised text. MID_A") == pytest.approx(0.5)


def test_jaccard_on_token_sets():
    assert jaccard(frozenset({"a", "b"}), frozenset({"b", "c"})) == pytest.approx(1 / 3)


def test_disjoint_text_scores_zero():
    assert similarity("alpha beta", "gamma delta") == 0.0
