"""Shared fixtures for the test suite."""

import tempfile
from pathlib import Path

import pytest

from rag_assistant.config import AppConfig, EmbeddingConfig, MetricsConfig
from rag_assistant.document_index import DocumentIndex
from rag_assistant.embeddings import EmbeddingProvider
from rag_assistant.errors import ModelUnavailable
from rag_assistant.inference import InferenceSession
from rag_assistant.memory_store import MemoryStore
from rag_assistant.orchestrator import GenerationOrchestrator
from rag_assistant.settings_store import InMemorySettingsStore
from rag_assistant.storage import InMemoryStorage

TEST_MODEL = "gemma3:1b"


class FakeEngine:
    """Scripted InferenceEngine: replays ``pieces`` for every generation."""

    def __init__(self, pieces: list[str] | None = None, fail_with: Exception | None = None):
        self.pieces = pieces if pieces is not None else ["Hello", " there", "."]
        self.fail_with = fail_with
        self.prompts: list[str] = []
        self.max_tokens: list[int] = []
        self.created: list[tuple[str, int]] = []
        self.destroyed: list[object] = []
        self.cache_clears = 0

    def create(self, model_path: str, n_threads: int) -> tuple[str, int]:
        self.created.append((model_path, n_threads))
        return (model_path, n_threads)

    def generate_stream(self, handle, prompt, max_tokens, on_token) -> None:
        self.prompts.append(prompt)
        self.max_tokens.append(max_tokens)
        for piece in self.pieces:
            on_token(piece)
        if self.fail_with is not None:
            raise self.fail_with

    def clear_cache(self, handle) -> None:
        self.cache_clears += 1

    def destroy(self, handle) -> None:
        self.destroyed.append(handle)


class FakeModelStorage:
    """ModelStorage that knows a fixed set of models."""

    def __init__(self, available: tuple[str, ...] = (TEST_MODEL,)) -> None:
        self.available = set(available)

    def model_path(self, model: str) -> str | None:
        return model if model in self.available else None


class FailingEngine(FakeEngine):
    def create(self, model_path: str, n_threads: int):
        raise ModelUnavailable(model_path)


@pytest.fixture
def sample_text() -> str:
    return (
        "Python is a high-level programming language. "
        "It was created by Guido van Rossum. "
        "Python supports multiple paradigms. "
        "It is widely used in data science and web development."
    )


@pytest.fixture
def embedder() -> EmbeddingProvider:
    """Provider that always uses the hashing fallback."""
    return EmbeddingProvider(EmbeddingConfig(use_model=False))


@pytest.fixture
def storage() -> InMemoryStorage:
    return InMemoryStorage()


@pytest.fixture
def app_config() -> AppConfig:
    return AppConfig(
        embedding=EmbeddingConfig(use_model=False),
        metrics=MetricsConfig(enabled=False),
    )


@pytest.fixture
def document_index(storage, embedder, app_config) -> DocumentIndex:
    return DocumentIndex(storage, embedder, app_config.chunk, app_config.retrieval)


@pytest.fixture
def memory_store(storage, embedder, app_config) -> MemoryStore:
    return MemoryStore(storage, embedder, app_config.retrieval)


@pytest.fixture
def engine() -> FakeEngine:
    return FakeEngine()


@pytest.fixture
def model_storage() -> FakeModelStorage:
    return FakeModelStorage()


@pytest.fixture
def settings() -> InMemorySettingsStore:
    return InMemorySettingsStore()


@pytest.fixture
def orchestrator(
    storage, document_index, memory_store, engine, model_storage, settings, app_config
) -> GenerationOrchestrator:
    orch = GenerationOrchestrator(
        storage=storage,
        documents=document_index,
        memories=memory_store,
        inference=InferenceSession(engine, model_storage),
        settings=settings,
        config=app_config,
    )
    yield orch
    orch.close()


@pytest.fixture
def tmp_docs_dir() -> Path:
    """Create a temporary directory with sample documents."""
    with tempfile.TemporaryDirectory() as tmpdir:
        d = Path(tmpdir)

        (d / "sample.txt").write_text(
            "This is a sample text document for testing the assistant.",
            encoding="utf-8",
        )
        (d / "notes.md").write_text(
            "# Notes\n\nThis is a **markdown** document with some content.",
            encoding="utf-8",
        )
        # Unsupported file — should be skipped.
        (d / "image.png").write_bytes(b"\x89PNG\r\n")

        yield d


@pytest.fixture
def empty_docs_dir() -> Path:
    """Create an empty temporary directory."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)
