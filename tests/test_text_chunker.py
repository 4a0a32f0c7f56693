"""Tests for the text chunker module."""

from rag_assistant.config import ChunkConfig
from rag_assistant.text_chunker import chunk_document, chunk_text


def _covers(text: str, chunks: list[str]) -> bool:
    """Every non-whitespace character of *text* falls inside some chunk span."""
    covered = [ch.isspace() for ch in text]
    pos = -1
    for chunk in chunks:
        pos = text.find(chunk, pos + 1)
        if pos < 0:
            return False
        for i in range(pos, pos + len(chunk)):
            covered[i] = True
    return all(covered)


class TestChunkText:
    def test_short_text_single_chunk(self) -> None:
        assert chunk_text("Hello world.", chunk_size=100) == ["Hello world."]

    def test_text_at_exact_size_single_chunk(self) -> None:
        text = "a" * 50
        assert chunk_text(text, chunk_size=50, chunk_overlap=10) == [text]

    def test_short_text_is_stripped(self) -> None:
        assert chunk_text("  padded  ", chunk_size=100) == ["padded"]

    def test_blank_text_yields_one_empty_chunk(self) -> None:
        assert chunk_text("   ", chunk_size=100) == [""]

    def test_long_text_multiple_chunks(self) -> None:
        text = "This is a sentence. " * 50
        chunks = chunk_text(text, chunk_size=100, chunk_overlap=20)
        assert len(chunks) > 1
        assert all(len(c) <= 100 for c in chunks)

    def test_cuts_after_sentence_end(self) -> None:
        text = "First sentence here. " * 10
        chunks = chunk_text(text, chunk_size=100, chunk_overlap=10)
        assert chunks[0].endswith(".")

    def test_prefers_space_over_mid_word_cut(self) -> None:
        text = " ".join(["word"] * 60)
        chunks = chunk_text(text, chunk_size=50, chunk_overlap=5)
        assert all(part == "word" for c in chunks for part in c.split(" "))

    def test_hard_cut_without_break_chars(self) -> None:
        text = "x" * 250
        chunks = chunk_text(text, chunk_size=100, chunk_overlap=0)
        assert chunks == ["x" * 100, "x" * 100, "x" * 50]

    def test_covers_every_character(self, sample_text: str) -> None:
        text = sample_text * 8
        chunks = chunk_text(text, chunk_size=120, chunk_overlap=40)
        assert _covers(text, chunks)

    def test_terminates_with_overlap_close_to_size(self) -> None:
        text = "abc. " * 200
        chunks = chunk_text(text, chunk_size=20, chunk_overlap=19)
        assert chunks
        assert chunks[-1].endswith("abc.")

    def test_default_parameters(self) -> None:
        text = "A sentence of moderate length. " * 60
        chunks = chunk_text(text)
        assert len(chunks) > 1
        assert all(len(c) <= 700 for c in chunks)


class TestChunkDocument:
    def test_sets_document_fields(self) -> None:
        chunks = chunk_document("Some content.", document_id="d1", title="notes.txt")
        assert len(chunks) == 1
        assert chunks[0].document_id == "d1"
        assert chunks[0].document_title == "notes.txt"
        assert chunks[0].index == 0

    def test_sequential_indexes(self) -> None:
        text = "Sentence number one. " * 40
        chunks = chunk_document(text, config=ChunkConfig(size=100, overlap=20))
        assert [c.index for c in chunks] == list(range(len(chunks)))
