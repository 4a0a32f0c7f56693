"""Text chunker — splits documents into overlapping, sentence-aligned chunks."""

from rag_assistant.config import ChunkConfig
from rag_assistant.models import Chunk

# Cut points searched backwards from the window edge, in priority order.
_BREAK_CHARS = (".", "\n", " ")


def _find_cut(text: str, start: int, end: int, chunk_size: int) -> int:
    """Return where the window ``text[start:end]`` should be cut.

    Looks for the last sentence terminator inside the window that lies
    past the window midpoint and cuts just after it. Falls back to
    ``end`` when no such terminator exists.
    """
    midpoint = start + chunk_size // 2
    for char in _BREAK_CHARS:
        pos = text.rfind(char, start, end)
        if pos > midpoint:
            return pos + 1
    return end


def chunk_text(text: str, chunk_size: int = 700, chunk_overlap: int = 420) -> list[str]:
    """Split text into chunks of at most *chunk_size* characters.

    Windows are cut at the last ``.``, newline or space past their
    midpoint (in that priority) so words are not split. Each following
    window starts *chunk_overlap* characters before the previous cut,
    but always strictly after the previous window's start, so the loop
    terminates for any overlap.

    Args:
        text: The source text to split.
        chunk_size: Maximum number of characters per window.
        chunk_overlap: Number of characters shared by adjacent windows.

    Returns:
        Ordered list of trimmed chunks. Text no longer than
        *chunk_size* always yields exactly one chunk.
    """
    if len(text) <= chunk_size:
        return [text.strip()]

    chunks: list[str] = []
    start = 0

    while start < len(text):
        end = min(start + chunk_size, len(text))
        if end < len(text):
            end = _find_cut(text, start, end, chunk_size)

        segment = text[start:end].strip()
        if segment:
            chunks.append(segment)

        if end >= len(text):
            break
        start = max(end - chunk_overlap, start + 1)

    return chunks


def chunk_document(
    content: str,
    document_id: str = "",
    title: str = "",
    config: ChunkConfig | None = None,
) -> list[Chunk]:
    """Chunk a document's content into indexed Chunk objects.

    Args:
        content: The full document text.
        document_id: Id of the owning document.
        title: Title of the owning document.
        config: Chunking parameters. Uses defaults if not provided.

    Returns:
        Chunks with sequential ``index`` values starting at 0.
    """
    cfg = config or ChunkConfig()
    return [
        Chunk(text=text, index=idx, document_id=document_id, document_title=title)
        for idx, text in enumerate(chunk_text(content, cfg.size, cfg.overlap))
    ]
