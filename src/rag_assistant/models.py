"""Domain models for the assistant."""

import uuid
from dataclasses import astuple, dataclass, field, fields
from datetime import datetime, timezone
from enum import Enum

import numpy as np


def new_id() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Role(str, Enum):
    """Speaker of a conversation turn."""

    USER = "user"
    ASSISTANT = "assistant"


@dataclass(frozen=True)
class Turn:
    """One entry of the in-memory conversation history."""

    role: Role
    content: str


@dataclass(frozen=True)
class Chunk:
    """A sentence-aligned slice of a document, the unit of retrieval."""

    text: str
    index: int
    document_id: str = ""
    document_title: str = ""


@dataclass(frozen=True)
class Document:
    """A stored document with its chunks and their embeddings.

    ``chunks`` and ``embeddings`` are parallel sequences derived from
    ``content`` when the document is added; they are never edited.
    """

    id: str
    title: str
    content: str
    chunks: tuple[Chunk, ...]
    embeddings: tuple[np.ndarray, ...] = field(compare=False, repr=False)
    content_type: str = "text/plain"
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        if len(self.chunks) != len(self.embeddings):
            msg = (
                f"document {self.id!r} has {len(self.chunks)} chunks "
                f"but {len(self.embeddings)} embeddings"
            )
            raise ValueError(msg)


@dataclass(frozen=True)
class MemoryItem:
    """A short personal fact.

    ``content`` is stored normalized (lower-cased, whitespace collapsed).
    ``keywords`` and ``tags`` are comma-joined strings.
    """

    content: str
    id: str = field(default_factory=new_id)
    title: str | None = None
    keywords: str = ""
    tags: str = "personal"
    importance: int = 3
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    expires_at: datetime | None = None

    def __post_init__(self) -> None:
        if not 1 <= self.importance <= 5:
            msg = f"importance must be between 1 and 5, got {self.importance}"
            raise ValueError(msg)


@dataclass(frozen=True)
class RetrievalResult:
    """A retrieved chunk or memory with its similarity to the query."""

    item: Chunk | MemoryItem
    similarity: float
    embedding: np.ndarray | None = field(default=None, compare=False, repr=False)

    @property
    def text(self) -> str:
        if isinstance(self.item, Chunk):
            return self.item.text
        return self.item.content


@dataclass(frozen=True)
class Conversation:
    """Conversation header as persisted by storage."""

    id: str
    title: str
    last_message: str = ""
    updated_at: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class Message:
    """A persisted conversation message."""

    conversation_id: str
    text: str
    is_user: bool
    timestamp: datetime = field(default_factory=utcnow)


@dataclass(frozen=True)
class SourceText:
    """Raw text read from a file, ready to be added as a document."""

    title: str
    content: str
    content_type: str = "text/plain"


@dataclass(frozen=True)
class FeatureFlags:
    """Per-turn snapshot of the user-facing toggles."""

    rag_enabled: bool = True
    memory_enabled: bool = True
    n_threads: int | None = None
    max_tokens_override: int | None = None
    selected_model: str | None = None


@dataclass(frozen=True)
class GenerationMetrics:
    """Performance telemetry captured for one generated reply."""

    timestamp: float
    prefill_ms: float
    first_token_ms: float
    decode_tokens_per_s: float
    prompt_chars: int
    prompt_tokens: int
    history_tokens: int
    context_tokens: int
    memory_tokens: int
    output_tokens: int
    n_threads: int
    rag_enabled: bool
    memory_enabled: bool
    model: str

    @classmethod
    def field_names(cls) -> list[str]:
        return [f.name for f in fields(cls)]

    def as_row(self) -> list:
        return list(astuple(self))
