"""Document index — chunk storage and top-K cosine search over documents."""

import logging
import re

import numpy as np

from rag_assistant.config import ChunkConfig, RetrievalConfig
from rag_assistant.embeddings import EmbeddingProvider, cosine_similarity
from rag_assistant.errors import RetrievalFailure
from rag_assistant.models import Chunk, Document, RetrievalResult, new_id, utcnow
from rag_assistant.storage import Storage
from rag_assistant.text_chunker import chunk_document

logger = logging.getLogger(__name__)

# Similarity reported for chunks found by the keyword fallback.
KEYWORD_HIT_SIMILARITY = 1.0

_QUERY_SPLIT_RE = re.compile(r"\W+")


def _query_terms(query: str) -> list[str]:
    return [t for t in _QUERY_SPLIT_RE.split(query.lower()) if len(t) > 2]


def suppress_near_duplicates(
    candidates: list[RetrievalResult],
    top_k: int,
    threshold: float = 0.8,
) -> list[RetrievalResult]:
    """Keep candidates whose embedding is not too close to an accepted one.

    Walks *candidates* in order and accepts one only if its cosine
    similarity to every already accepted embedding is ``<= threshold``.

    Args:
        candidates: Results sorted by descending similarity.
        top_k: Maximum number of results to accept.
        threshold: Similarity above which two results count as duplicates.

    Returns:
        At most *top_k* accepted results, in input order.
    """
    accepted: list[RetrievalResult] = []
    for cand in candidates:
        if len(accepted) >= top_k:
            break
        if cand.embedding is None or all(
            acc.embedding is None
            or cosine_similarity(cand.embedding, acc.embedding) <= threshold
            for acc in accepted
        ):
            accepted.append(cand)
    return accepted


class DocumentIndex:
    """Chunks, embeds and searches documents held by a storage collaborator."""

    def __init__(
        self,
        storage: Storage,
        embedder: EmbeddingProvider,
        chunk_config: ChunkConfig | None = None,
        retrieval_config: RetrievalConfig | None = None,
    ) -> None:
        self.storage = storage
        self.embedder = embedder
        self.chunk_config = chunk_config or ChunkConfig()
        self.retrieval_config = retrieval_config or RetrievalConfig()

    def add_document(
        self, title: str, content: str, content_type: str = "text/plain"
    ) -> str:
        """Chunk, embed and store a document.

        Args:
            title: Display title (usually the file name).
            content: Full text of the document.
            content_type: MIME type of the original content.

        Returns:
            The id of the new document.

        Raises:
            ValueError: If *content* is blank.
        """
        if not content.strip():
            raise ValueError(f"Document {title!r} has no content")

        doc_id = new_id()
        chunks = chunk_document(content, doc_id, title, self.chunk_config)
        embeddings = tuple(self.embedder.embed(c.text) for c in chunks)
        now = utcnow()
        document = Document(
            id=doc_id,
            title=title,
            content=content,
            chunks=tuple(chunks),
            embeddings=embeddings,
            content_type=content_type,
            created_at=now,
            updated_at=now,
        )
        self.storage.upsert_document(document)
        logger.info("Added document %r (%d chunks): %s", title, len(chunks), doc_id)
        return doc_id

    def delete_document(self, document_id: str) -> None:
        logger.info("Deleting document: %s", document_id)
        self.storage.delete_document(document_id)

    def search(
        self,
        query: str,
        top_k: int | None = None,
        min_similarity: float | None = None,
    ) -> list[RetrievalResult]:
        """Return the chunks most similar to *query*, best first.

        Every chunk scoring at least *min_similarity* is a candidate;
        near-duplicates of better candidates are dropped. When nothing
        survives, falls back to chunks containing any query word longer
        than two characters, reported with similarity 1.0.

        Args:
            query: Natural-language query.
            top_k: Maximum number of results.
            min_similarity: Similarity floor for embedding matches.

        Returns:
            At most *top_k* results.

        Raises:
            RetrievalFailure: If the query cannot be embedded or the
                documents cannot be read.
        """
        cfg = self.retrieval_config
        top_k = cfg.document_top_k if top_k is None else top_k
        if min_similarity is None:
            min_similarity = cfg.document_min_similarity
        if top_k <= 0:
            return []

        try:
            query_vec = self.embedder.embed(query)
            documents = self.storage.list_documents()
        except Exception as exc:
            raise RetrievalFailure("document", str(exc)) from exc

        candidates: list[RetrievalResult] = []
        for doc in documents:
            for chunk, emb in zip(doc.chunks, doc.embeddings):
                score = cosine_similarity(query_vec, emb)
                if score >= min_similarity:
                    candidates.append(
                        RetrievalResult(item=chunk, similarity=score, embedding=emb)
                    )
        candidates.sort(key=lambda r: r.similarity, reverse=True)

        results = suppress_near_duplicates(candidates, top_k, cfg.duplicate_threshold)
        logger.debug(
            "Document search: %d documents, %d candidates >= %.2f, %d returned",
            len(documents),
            len(candidates),
            min_similarity,
            len(results),
        )
        if results:
            return results

        logger.debug("No similar chunks found, falling back to keyword search")
        return self.keyword_search(query, top_k, documents)

    def keyword_search(
        self,
        query: str,
        top_k: int,
        documents: list[Document] | None = None,
    ) -> list[RetrievalResult]:
        """Return chunks containing at least one query word (case-insensitive)."""
        terms = _query_terms(query)
        if not terms:
            return []
        if documents is None:
            documents = self.storage.list_documents()

        hits: list[RetrievalResult] = []
        for doc in documents:
            for chunk, emb in zip(doc.chunks, doc.embeddings):
                lower = chunk.text.lower()
                if any(term in lower for term in terms):
                    hits.append(
                        RetrievalResult(
                            item=chunk,
                            similarity=KEYWORD_HIT_SIMILARITY,
                            embedding=np.asarray(emb),
                        )
                    )
                    if len(hits) >= top_k:
                        return hits
        return hits

    def chunks(self) -> list[Chunk]:
        return [c for doc in self.storage.list_documents() for c in doc.chunks]

    def count(self) -> int:
        return len(self.storage.list_documents())
