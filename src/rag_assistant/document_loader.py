"""Document loader — reads PDF, TXT and Markdown files for ingestion."""

import logging
import re
from pathlib import Path
from typing import Callable

import markdown
from pypdf import PdfReader

from rag_assistant.models import SourceText

logger = logging.getLogger(__name__)


def _load_txt(file_path: Path) -> str:
    return file_path.read_text(encoding="utf-8")


def _load_pdf(file_path: Path) -> str:
    """Extract text from every page of a PDF, one page per line block.

    Pages without extractable text (scans, blank pages) contribute an
    empty string.
    """
    reader = PdfReader(str(file_path))
    return "\n".join(page.extract_text() or "" for page in reader.pages)


def _load_markdown(file_path: Path) -> str:
    """Render Markdown to HTML and strip the tags, leaving plain text."""
    html = markdown.markdown(file_path.read_text(encoding="utf-8"))
    return re.sub(r"<[^>]+>", "", html)


# Supported extensions mapped to (loader, content type).
LOADERS: dict[str, tuple[Callable[[Path], str], str]] = {
    ".txt": (_load_txt, "text/plain"),
    ".md": (_load_markdown, "text/markdown"),
    ".pdf": (_load_pdf, "application/pdf"),
}


def load_file(file_path: str | Path) -> SourceText | None:
    """Load one supported file; None for unsupported or empty files."""
    path = Path(file_path)
    entry = LOADERS.get(path.suffix.lower())
    if entry is None:
        return None
    loader, content_type = entry
    content = loader(path)
    if not content.strip():
        logger.warning("Skipping empty file: %s", path.name)
        return None
    return SourceText(title=path.name, content=content, content_type=content_type)


def load_documents(folder_path: str | Path) -> list[SourceText]:
    """Load every supported file in a folder, sorted by file name.

    Files that fail to load are logged and skipped.

    Raises:
        FileNotFoundError: If the folder does not exist.
        NotADirectoryError: If the path is not a directory.
    """
    folder = Path(folder_path)
    if not folder.exists():
        raise FileNotFoundError(f"Folder not found: {folder_path}")
    if not folder.is_dir():
        raise NotADirectoryError(f"Not a directory: {folder_path}")

    sources: list[SourceText] = []
    for file_path in sorted(folder.iterdir()):
        if not file_path.is_file():
            continue
        try:
            source = load_file(file_path)
        except Exception:
            logger.exception("Failed to load %s", file_path.name)
            continue
        if source is not None:
            sources.append(source)
            logger.info("Loaded: %s", file_path.name)
    return sources
