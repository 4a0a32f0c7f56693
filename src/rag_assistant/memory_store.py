"""Memory store — short personal facts with cached embeddings and MMR search."""

import logging
import re
import threading
from dataclasses import dataclass, field
from typing import Iterable

import numpy as np

from rag_assistant.config import RetrievalConfig
from rag_assistant.embeddings import EmbeddingCache, EmbeddingProvider
from rag_assistant.errors import RetrievalFailure
from rag_assistant.models import MemoryItem
from rag_assistant.storage import Storage

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_content(text: str) -> str:
    """Lower-case, collapse whitespace runs and trim."""
    return _WHITESPACE_RE.sub(" ", text.lower()).strip()


@dataclass(frozen=True)
class MemoryMatch:
    """A memory scored against a query.

    ``embedding`` is unit length, so dot products are cosines.
    """

    memory: MemoryItem
    similarity: float
    embedding: np.ndarray = field(compare=False, repr=False)


def apply_mmr(
    candidates: list[MemoryMatch], k: int, lambda_: float = 0.7
) -> list[MemoryMatch]:
    """Re-rank candidates with Maximal Marginal Relevance.

    Starts from the most relevant candidate, then repeatedly picks the
    candidate maximizing ``lambda_ * relevance - (1 - lambda_) * redundancy``
    where redundancy is its highest cosine to anything already selected.

    Args:
        candidates: Scored memories with unit-length embeddings.
        k: Number of items to select.
        lambda_: Weight of relevance against diversity, in ``[0, 1]``.

    Returns:
        Up to *k* matches in selection order.
    """
    if not candidates or k <= 0:
        return []

    remaining = sorted(candidates, key=lambda m: m.similarity, reverse=True)
    selected = [remaining.pop(0)]

    while len(selected) < k and remaining:
        best_idx = 0
        best_score = float("-inf")
        for idx, cand in enumerate(remaining):
            redundancy = max(float(np.dot(cand.embedding, s.embedding)) for s in selected)
            score = lambda_ * cand.similarity - (1.0 - lambda_) * redundancy
            if score > best_score:
                best_score = score
                best_idx = idx
        selected.append(remaining.pop(best_idx))

    return selected


class MemoryStore:
    """Personal memory facts backed by storage, searched by embedding.

    Embeddings are cached per memory id and computed lazily; an entry is
    only invalidated when its memory is deleted. Adds and deletes are
    serialized so the duplicate check and the insert act as one step.
    """

    def __init__(
        self,
        storage: Storage,
        embedder: EmbeddingProvider,
        config: RetrievalConfig | None = None,
        cache: EmbeddingCache | None = None,
    ) -> None:
        self.storage = storage
        self.embedder = embedder
        self.config = config or RetrievalConfig()
        self.cache = cache if cache is not None else EmbeddingCache()
        self._lock = threading.Lock()

    def add(
        self,
        content: str,
        title: str | None = None,
        tags: Iterable[str] = ("personal",),
        keywords: Iterable[str] = (),
        importance: int = 3,
    ) -> str:
        """Store a memory unless an identical one (after normalization) exists.

        Args:
            content: The fact to remember.
            title: Optional short label.
            tags: Tags joined with commas.
            keywords: Keywords joined with commas.
            importance: 1 (low) to 5 (high).

        Returns:
            The id of the new memory, or of the existing duplicate.
        """
        normalized = normalize_content(content)

        with self._lock:
            for existing in self.storage.list_memories():
                if normalize_content(existing.content) == normalized:
                    logger.debug(
                        "Duplicate memory detected, skipping insert: %s", existing.id
                    )
                    self._ensure_cached(existing)
                    return existing.id

            memory = MemoryItem(
                content=normalized,
                title=title,
                keywords=",".join(keywords),
                tags=",".join(tags),
                importance=importance,
            )
            self.storage.upsert_memory(memory)

            try:
                self.cache.put(memory.id, self.embedder.embed_normalized(memory.content))
            except Exception:
                logger.warning("Failed to embed new memory %s", memory.id, exc_info=True)

        logger.info("Memory added: %s", memory.id)
        return memory.id

    def search(self, query: str, top_k: int | None = None) -> list[MemoryItem]:
        """Return up to *top_k* relevant and mutually diverse memories.

        Memories below the similarity floor are dropped, except that the
        single best one is kept when nothing clears it. The survivors are
        re-ranked with MMR.
        """
        top_k = self.config.memory_top_k if top_k is None else top_k
        if top_k <= 0:
            return []

        try:
            query_vec = self.embedder.embed_normalized(query)
            memories = self.storage.list_memories()
        except Exception as exc:
            raise RetrievalFailure("memory", str(exc)) from exc
        if not memories:
            logger.debug("No memories stored")
            return []

        scored: list[MemoryMatch] = []
        for memory in memories:
            emb = self._ensure_cached(memory)
            if emb is None:
                continue
            scored.append(
                MemoryMatch(memory, float(np.dot(query_vec, emb)), emb)
            )
        if not scored:
            return []

        scored.sort(key=lambda m: m.similarity, reverse=True)
        floor = self.config.memory_min_similarity
        base = [m for m in scored if m.similarity >= floor] or scored[:1]

        k = min(top_k, len(base))
        ranked = apply_mmr(base, k=k, lambda_=self.config.mmr_lambda)
        logger.debug("Found %d memories after MMR (k=%d)", len(ranked), k)
        return [m.memory for m in ranked]

    def delete(self, memory_id: str) -> bool:
        """Delete a memory and its cached embedding; returns whether it existed."""
        with self._lock:
            if self.storage.get_memory(memory_id) is None:
                return False
            logger.info("Deleting memory: %s", memory_id)
            self.storage.delete_memory(memory_id)
            self.cache.remove(memory_id)
        return True

    def all(self) -> list[MemoryItem]:
        return self.storage.list_memories()

    def count(self) -> int:
        return len(self.storage.list_memories())

    def warm_cache(self) -> int:
        """Embed every stored memory missing from the cache.

        Returns:
            The cache size afterwards.
        """
        for memory in self.storage.list_memories():
            self._ensure_cached(memory)
        logger.debug("Embedding cache warmed: %d items", len(self.cache))
        return len(self.cache)

    def _ensure_cached(self, memory: MemoryItem) -> np.ndarray | None:
        try:
            return self.cache.get_or_compute(
                memory.id, lambda: self.embedder.embed_normalized(memory.content)
            )
        except Exception:
            logger.warning("Failed to embed memory %s", memory.id, exc_info=True)
            return None
