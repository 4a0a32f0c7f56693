"""Embeddings — sentence vectors with a deterministic hashing fallback."""

import hashlib
import logging
import re
import threading
from typing import Callable

import numpy as np
from chromadb.utils import embedding_functions

from rag_assistant.config import EmbeddingConfig

logger = logging.getLogger(__name__)

EMBEDDING_DIM = 512

# Contribution of each of the three hashed positions of a word.
_FEATURE_WEIGHTS = (1.0, 0.5, 0.25)

_WORD_SPLIT_RE = re.compile(r"\W+")

# Module-level cache to avoid re-loading the same model.
_embedding_fn_cache: dict[str, object] = {}


def get_embedding_function(
    model_name: str,
) -> embedding_functions.SentenceTransformerEmbeddingFunction:
    """Return a cached SentenceTransformer embedding function.

    The model is loaded only once per model name, regardless of how
    many providers ask for it.
    """
    if model_name not in _embedding_fn_cache:
        _embedding_fn_cache[model_name] = (
            embedding_functions.SentenceTransformerEmbeddingFunction(
                model_name=model_name,
            )
        )
    return _embedding_fn_cache[model_name]  # type: ignore[return-value]


def l2_normalize(vec: np.ndarray) -> np.ndarray:
    """Return a unit-length copy of *vec* (zero vectors are returned as-is)."""
    arr = np.asarray(vec, dtype=np.float32)
    norm = float(np.linalg.norm(arr))
    if norm == 0.0:
        return arr
    return arr / norm


def cosine_similarity(vec_a: np.ndarray, vec_b: np.ndarray) -> float:
    """Cosine similarity; 0.0 for zero-norm or mismatched vectors."""
    a = np.asarray(vec_a, dtype=np.float32)
    b = np.asarray(vec_b, dtype=np.float32)
    if a.shape != b.shape:
        return 0.0
    norm_a = np.linalg.norm(a)
    norm_b = np.linalg.norm(b)
    if norm_a == 0 or norm_b == 0:
        return 0.0
    return float(np.dot(a, b) / (norm_a * norm_b))


def _word_indices(word: str, dimension: int) -> tuple[int, int, int]:
    digest = hashlib.md5(word.encode("utf-8")).digest()
    return tuple(  # type: ignore[return-value]
        int.from_bytes(digest[i : i + 4], "big") % dimension for i in (0, 4, 8)
    )


def fallback_embedding(text: str, dimension: int = EMBEDDING_DIM) -> np.ndarray:
    """Hash-based bag-of-words embedding.

    Every word adds weights 1.0, 0.5 and 0.25 at three positions derived
    from its MD5 digest, and the result is L2-normalized. The output
    depends only on *text* and *dimension*.

    Args:
        text: Text to embed.
        dimension: Vector length.

    Returns:
        A float32 vector; all zeros when *text* contains no words.
    """
    vec = np.zeros(dimension, dtype=np.float32)
    for word in _WORD_SPLIT_RE.split(text.lower()):
        if not word:
            continue
        for idx, weight in zip(_word_indices(word, dimension), _FEATURE_WEIGHTS):
            vec[idx] += weight
    return l2_normalize(vec)


class EmbeddingProvider:
    """Turns text into fixed-dimension vectors.

    Uses a sentence-transformers model once :meth:`initialize` has loaded
    it, and the hashing fallback otherwise or whenever the model fails.
    """

    def __init__(self, config: EmbeddingConfig | None = None) -> None:
        self.config = config or EmbeddingConfig()
        self._model_fn: Callable | None = None

    @property
    def dimension(self) -> int:
        return self.config.dimension

    @property
    def uses_model(self) -> bool:
        return self._model_fn is not None

    def initialize(self) -> bool:
        """Try to load the embedding model; returns whether it is in use."""
        if not self.config.use_model:
            logger.info("Embedding model disabled, using hashing embeddings")
            return False
        try:
            self._model_fn = get_embedding_function(self.config.model_name)
        except Exception:
            logger.warning(
                "Embedding model %s unavailable, using hashing embeddings",
                self.config.model_name,
            )
            self._model_fn = None
            return False
        logger.info("Embedding model loaded: %s", self.config.model_name)
        return True

    def embed(self, text: str) -> np.ndarray:
        if self._model_fn is not None:
            try:
                vec = np.asarray(self._model_fn([text])[0], dtype=np.float32)
            except Exception:
                logger.exception("Model embedding failed, using fallback")
            else:
                if vec.shape == (self.dimension,):
                    return vec
                logger.warning(
                    "Model returned %d dimensions, expected %d; using fallback",
                    vec.size,
                    self.dimension,
                )
        return fallback_embedding(text, self.dimension)

    def embed_normalized(self, text: str) -> np.ndarray:
        return l2_normalize(self.embed(text))


class EmbeddingCache:
    """Thread-safe ``id -> unit vector`` cache.

    Reads go straight to the dict; inserts and removals take a lock.
    Entries are only dropped by :meth:`remove` or :meth:`clear`, never on
    read. A vector computed while its key was being removed is returned
    but not stored.
    """

    def __init__(self) -> None:
        self._vectors: dict[str, np.ndarray] = {}
        self._lock = threading.Lock()
        # Bumped by every removal; lazy fills started before it are discarded.
        self._generation = 0

    def get(self, key: str) -> np.ndarray | None:
        return self._vectors.get(key)

    def put(self, key: str, vector: np.ndarray) -> None:
        with self._lock:
            self._vectors[key] = vector

    def get_or_compute(self, key: str, compute: Callable[[], np.ndarray]) -> np.ndarray:
        """Return the cached vector for *key*, computing it once if missing."""
        cached = self._vectors.get(key)
        if cached is not None:
            return cached
        generation = self._generation
        vector = compute()
        with self._lock:
            if self._generation != generation:
                return vector
            # Another thread may have filled the entry meanwhile.
            return self._vectors.setdefault(key, vector)

    def remove(self, key: str) -> None:
        with self._lock:
            self._generation += 1
            self._vectors.pop(key, None)

    def clear(self) -> None:
        with self._lock:
            self._generation += 1
            self._vectors.clear()

    def __contains__(self, key: object) -> bool:
        return key in self._vectors

    def __len__(self) -> int:
        return len(self._vectors)
