"""Storage — the persistence contract the core depends on, plus an in-memory store."""

import logging
import threading
from typing import Protocol

from rag_assistant.models import Conversation, Document, MemoryItem, Message

logger = logging.getLogger(__name__)


class Storage(Protocol):
    """CRUD access to documents, memories and conversations.

    Writes are upserts keyed by id, deletes are by id, and each call is
    atomic on its own.
    """

    def upsert_document(self, document: Document) -> None: ...
    def get_document(self, document_id: str) -> Document | None: ...
    def delete_document(self, document_id: str) -> None: ...
    def list_documents(self) -> list[Document]: ...

    def upsert_memory(self, memory: MemoryItem) -> None: ...
    def get_memory(self, memory_id: str) -> MemoryItem | None: ...
    def delete_memory(self, memory_id: str) -> None: ...
    def list_memories(self) -> list[MemoryItem]: ...

    def upsert_conversation(self, conversation: Conversation) -> None: ...
    def delete_conversation(self, conversation_id: str) -> None: ...
    def list_conversations(self) -> list[Conversation]: ...

    def insert_message(self, message: Message) -> None: ...
    def list_messages(self, conversation_id: str) -> list[Message]: ...


class InMemoryStorage:
    """Process-local :class:`Storage` implementation guarded by a lock."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._documents: dict[str, Document] = {}
        self._memories: dict[str, MemoryItem] = {}
        self._conversations: dict[str, Conversation] = {}
        self._messages: dict[str, list[Message]] = {}

    # --- documents ---

    def upsert_document(self, document: Document) -> None:
        with self._lock:
            self._documents[document.id] = document

    def get_document(self, document_id: str) -> Document | None:
        with self._lock:
            return self._documents.get(document_id)

    def delete_document(self, document_id: str) -> None:
        with self._lock:
            self._documents.pop(document_id, None)

    def list_documents(self) -> list[Document]:
        """Snapshot of all documents, most recently updated first."""
        with self._lock:
            docs = list(self._documents.values())
        return sorted(docs, key=lambda d: d.updated_at, reverse=True)

    def count_documents(self) -> int:
        with self._lock:
            return len(self._documents)

    # --- memories ---

    def upsert_memory(self, memory: MemoryItem) -> None:
        with self._lock:
            self._memories[memory.id] = memory

    def get_memory(self, memory_id: str) -> MemoryItem | None:
        with self._lock:
            return self._memories.get(memory_id)

    def delete_memory(self, memory_id: str) -> None:
        with self._lock:
            self._memories.pop(memory_id, None)

    def list_memories(self) -> list[MemoryItem]:
        """Snapshot of all memories, most recently updated first."""
        with self._lock:
            memories = list(self._memories.values())
        return sorted(memories, key=lambda m: m.updated_at, reverse=True)

    def count_memories(self) -> int:
        with self._lock:
            return len(self._memories)

    # --- conversations ---

    def upsert_conversation(self, conversation: Conversation) -> None:
        with self._lock:
            self._conversations[conversation.id] = conversation
            self._messages.setdefault(conversation.id, [])

    def get_conversation(self, conversation_id: str) -> Conversation | None:
        with self._lock:
            return self._conversations.get(conversation_id)

    def delete_conversation(self, conversation_id: str) -> None:
        """Delete a conversation together with its messages."""
        with self._lock:
            self._conversations.pop(conversation_id, None)
            dropped = self._messages.pop(conversation_id, [])
        logger.debug(
            "Deleted conversation %s (%d messages)", conversation_id, len(dropped)
        )

    def list_conversations(self) -> list[Conversation]:
        with self._lock:
            conversations = list(self._conversations.values())
        return sorted(conversations, key=lambda c: c.updated_at, reverse=True)

    def insert_message(self, message: Message) -> None:
        with self._lock:
            self._messages.setdefault(message.conversation_id, []).append(message)

    def list_messages(self, conversation_id: str) -> list[Message]:
        with self._lock:
            return list(self._messages.get(conversation_id, []))
