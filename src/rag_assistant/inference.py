"""Inference — the streaming-generation contract and its Ollama implementation."""

import logging
import os
import threading
from dataclasses import dataclass
from typing import Any, Callable, Protocol

import ollama

from rag_assistant.config import LLMConfig
from rag_assistant.errors import GenerationFailure, ModelUnavailable

logger = logging.getLogger(__name__)

TokenCallback = Callable[[str], None]


def default_thread_count() -> int:
    """Half the CPUs, clamped to 6-8 threads."""
    return min(8, max(6, (os.cpu_count() or 1) // 2))


class InferenceEngine(Protocol):
    """Narrow contract over a local inference runtime."""

    def create(self, model_path: str, n_threads: int) -> Any: ...
    def generate_stream(
        self, handle: Any, prompt: str, max_tokens: int, on_token: TokenCallback
    ) -> None: ...
    def clear_cache(self, handle: Any) -> None: ...
    def destroy(self, handle: Any) -> None: ...


class ModelStorage(Protocol):
    """Tells whether a model is present locally and where."""

    def model_path(self, model: str) -> str | None: ...


@dataclass(frozen=True)
class OllamaHandle:
    model: str
    n_threads: int


class OllamaModelStorage:
    """Models already pulled into the local Ollama server.

    Only checks presence; never pulls.
    """

    def __init__(self, client: ollama.Client) -> None:
        self.client = client

    def model_path(self, model: str) -> str | None:
        try:
            self.client.show(model)
        except Exception:
            logger.debug("Model %s not present in Ollama", model)
            return None
        return model

    def is_available(self, model: str) -> bool:
        return self.model_path(model) is not None


class OllamaEngine:
    """InferenceEngine backed by a local Ollama server.

    Prompts are sent raw because they are already rendered in the
    model's chat format. No ``context`` is passed between requests, so
    each generation starts from an empty KV-cache.
    """

    def __init__(self, config: LLMConfig | None = None, client: ollama.Client | None = None):
        self.config = config or LLMConfig()
        self.client = client or ollama.Client(host=self.config.ollama_host)

    def create(self, model_path: str, n_threads: int) -> OllamaHandle:
        try:
            self.client.show(model_path)
        except Exception as exc:
            raise ModelUnavailable(model_path) from exc
        logger.info("Model ready: %s (%d threads)", model_path, n_threads)
        return OllamaHandle(model=model_path, n_threads=n_threads)

    def generate_stream(
        self,
        handle: OllamaHandle,
        prompt: str,
        max_tokens: int,
        on_token: TokenCallback,
    ) -> None:
        try:
            stream = self.client.generate(
                model=handle.model,
                prompt=prompt,
                raw=True,
                stream=True,
                options={
                    "num_predict": max_tokens,
                    "num_thread": handle.n_threads,
                    "temperature": self.config.temperature,
                },
            )
            for part in stream:
                piece = part["response"]
                if piece:
                    on_token(piece)
        except ollama.ResponseError as exc:
            raise GenerationFailure(str(exc)) from exc

    def clear_cache(self, handle: OllamaHandle) -> None:
        logger.debug("KV-cache reset for %s", handle.model)

    def destroy(self, handle: OllamaHandle) -> None:
        try:
            # keep_alive=0 unloads the model from the server.
            self.client.generate(model=handle.model, keep_alive=0)
        except Exception:
            logger.warning("Failed to unload %s", handle.model, exc_info=True)


class InferenceSession:
    """Serialized access to the single inference handle.

    The handle is created on first use, recreated when the model or
    thread count changes, and its cache is cleared before each turn.
    """

    def __init__(self, engine: InferenceEngine, model_storage: ModelStorage) -> None:
        self.engine = engine
        self.model_storage = model_storage
        self._lock = threading.Lock()
        self._handle: Any = None
        self._model: str | None = None
        self._n_threads: int | None = None

    @property
    def active_model(self) -> str | None:
        return self._model

    def is_model_ready(self, model: str) -> bool:
        return self.model_storage.model_path(model) is not None

    def generate(
        self,
        model: str,
        prompt: str,
        max_tokens: int,
        on_token: TokenCallback,
        n_threads: int | None = None,
    ) -> None:
        """Run one generation, holding the session lock throughout.

        Raises:
            ModelUnavailable: If the model is missing or cannot be loaded.
            GenerationFailure: If the engine fails mid-generation.
        """
        with self._lock:
            handle = self._ensure_handle(model, n_threads or default_thread_count())
            self.engine.clear_cache(handle)
            try:
                self.engine.generate_stream(handle, prompt, max_tokens, on_token)
            except GenerationFailure:
                raise
            except Exception as exc:
                raise GenerationFailure(str(exc) or type(exc).__name__) from exc

    def close(self) -> None:
        with self._lock:
            self._release()

    def _ensure_handle(self, model: str, n_threads: int) -> Any:
        if self._handle is not None and model == self._model and n_threads == self._n_threads:
            return self._handle

        self._release()
        path = self.model_storage.model_path(model)
        if path is None:
            raise ModelUnavailable(model)
        self._handle = self.engine.create(path, n_threads)
        self._model = model
        self._n_threads = n_threads
        logger.info("Inference handle created for %s", model)
        return self._handle

    def _release(self) -> None:
        if self._handle is None:
            return
        try:
            self.engine.destroy(self._handle)
        except Exception:
            logger.exception("Failed to destroy inference handle")
        logger.debug("Destroyed inference handle for %s", self._model)
        self._handle = None
        self._model = None
        self._n_threads = None
