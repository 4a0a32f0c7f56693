"""Tests for the budget module."""

import random

import pytest

from rag_assistant.budget import (
    estimate_tokens,
    fill_budget,
    fill_context_block,
    fill_memory_block,
    trim_to_sentence_boundary,
)


class TestEstimateTokens:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [("", 1), ("abc", 1), ("abcd", 1), ("abcdefgh", 2), ("x" * 401, 100)],
    )
    def test_four_chars_per_token(self, text: str, expected: int) -> None:
        assert estimate_tokens(text) == expected


class TestTrimToSentenceBoundary:
    def test_cuts_after_last_terminator(self) -> None:
        assert trim_to_sentence_boundary("One. Two! Thr") == "One. Two!"

    def test_newline_counts_as_boundary(self) -> None:
        assert trim_to_sentence_boundary("line one\nline tw") == "line one\n"

    def test_no_terminator_unchanged(self) -> None:
        assert trim_to_sentence_boundary("no boundary here") == "no boundary here"

    def test_already_ends_on_boundary(self) -> None:
        assert trim_to_sentence_boundary("Done.") == "Done."


class TestFillBudget:
    def test_accepts_items_in_order(self) -> None:
        block = fill_budget(["first item", "second item"], budget=100)
        assert block.text == "first item\nsecond item"
        assert block.included == 2
        assert block

    def test_stops_at_first_overflow(self) -> None:
        # the third item would fit on its own but follows an overflow
        items = ["a" * 20, "b" * 200, "c"]
        block = fill_budget(items, budget=10)
        assert block.text == "a" * 20
        assert block.included == 1

    def test_empty_input(self) -> None:
        block = fill_budget([], budget=10)
        assert block.text == ""
        assert block.tokens_used == 0
        assert not block

    def test_skips_blank_items(self) -> None:
        block = fill_budget(["  ", "kept"], budget=10)
        assert block.text == "kept"

    def test_nothing_fits(self) -> None:
        block = fill_budget(["x" * 100], budget=5)
        assert block.text == ""
        assert block.tokens_used == 0

    def test_never_exceeds_budget(self) -> None:
        rng = random.Random(1234)
        words = "alpha beta gamma delta. epsilon zeta! eta theta? iota\nkappa".split(" ")
        for _ in range(300):
            items = [
                " ".join(rng.choice(words) for _ in range(rng.randint(1, 40)))
                for _ in range(rng.randint(0, 8))
            ]
            budget = rng.randint(1, 120)
            for truncate in (False, True):
                block = fill_budget(items, budget, truncate_last=truncate)
                assert block.tokens_used <= budget
                if block.text:
                    assert estimate_tokens(block.text) <= budget

    def test_truncates_overflowing_item_to_sentence(self) -> None:
        text = "Alpha beta gamma. Delta epsilon zeta eta theta iota kappa."
        block = fill_budget([text], budget=10, truncate_last=True)
        assert block.text == "Alpha beta gamma."

    def test_custom_estimator(self) -> None:
        block = fill_budget(["one two", "three"], budget=2, estimate=lambda s: len(s.split()))
        assert block.text == "one two"


class TestFillMemoryBlock:
    def test_renders_bullets(self) -> None:
        block = fill_memory_block(["i like hiking", "i use kotlin"], budget=80)
        assert block.text == "- i like hiking\n- i use kotlin"

    def test_respects_budget(self) -> None:
        memories = [f"memory number {i} with some padding text" for i in range(20)]
        block = fill_memory_block(memories, budget=20)
        assert block.tokens_used <= 20
        assert 0 < block.included < 20


class TestFillContextBlock:
    def test_includes_short_chunk_verbatim(self) -> None:
        block = fill_context_block(["The capital of France is Paris."], budget=220)
        assert block.text == "The capital of France is Paris."

    def test_truncates_long_chunk(self) -> None:
        chunk = "First sentence. " + "word " * 400
        block = fill_context_block([chunk], budget=20)
        assert block.text == "First sentence."
