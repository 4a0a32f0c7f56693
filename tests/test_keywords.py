"""Tests for the keywords module."""

from rag_assistant.keywords import extract_keywords, extract_personal_keywords


class TestExtractKeywords:
    def test_most_frequent_first(self) -> None:
        text = "Kotlin is great. I write Kotlin daily, and Kotlin tests too. Tests matter."
        keywords = extract_keywords(text)
        assert keywords[0] == "kotlin"
        assert keywords[1] == "tests"

    def test_drops_stop_words_and_short_words(self) -> None:
        keywords = extract_keywords("I am on it and the cat is at my mat")
        assert keywords == ["cat", "mat"]

    def test_limit(self) -> None:
        text = "alpha beta gamma delta epsilon zeta eta theta"
        assert len(extract_keywords(text, limit=3)) == 3

    def test_empty(self) -> None:
        assert extract_keywords("") == []


class TestExtractPersonalKeywords:
    def test_hobbies_list(self) -> None:
        keywords = extract_personal_keywords(
            "My hobbies are playing video games and reading webnovels."
        )
        assert "playing video games" in keywords
        assert "reading webnovels" in keywords

    def test_preferences(self) -> None:
        keywords = extract_personal_keywords("I prefer Android development over iOS.")
        assert keywords == ["android development over ios"]

    def test_deduplicates(self) -> None:
        keywords = extract_personal_keywords("I like hiking. I love hiking.")
        assert keywords == ["hiking"]

    def test_no_matches(self) -> None:
        assert extract_personal_keywords("The weather is nice today.") == []
