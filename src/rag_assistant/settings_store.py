"""Feature flags — user toggles consulted once at the start of every turn."""

import threading
from typing import Any, Protocol

from rag_assistant.models import FeatureFlags


class SettingsKeys:
    RAG_ENABLED = "rag_enabled"
    MEMORY_ENABLED = "memory_enabled"
    N_THREADS = "n_threads"
    MAX_TOKENS_OVERRIDE = "max_tokens_override"
    SELECTED_MODEL = "selected_model"


class SettingsStore(Protocol):
    def get(self, key: str, default: Any = None) -> Any: ...
    def set(self, key: str, value: Any) -> None: ...
    def snapshot(self) -> FeatureFlags: ...


class InMemorySettingsStore:
    """Key-value flag store kept in process memory."""

    def __init__(self, initial: dict[str, Any] | None = None) -> None:
        self._values: dict[str, Any] = dict(initial or {})
        self._lock = threading.Lock()

    def get(self, key: str, default: Any = None) -> Any:
        with self._lock:
            return self._values.get(key, default)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._values[key] = value

    def snapshot(self) -> FeatureFlags:
        """Read every flag under a single lock acquisition."""
        with self._lock:
            values = dict(self._values)
        return FeatureFlags(
            rag_enabled=bool(values.get(SettingsKeys.RAG_ENABLED, True)),
            memory_enabled=bool(values.get(SettingsKeys.MEMORY_ENABLED, True)),
            n_threads=values.get(SettingsKeys.N_THREADS),
            max_tokens_override=values.get(SettingsKeys.MAX_TOKENS_OVERRIDE),
            selected_model=values.get(SettingsKeys.SELECTED_MODEL),
        )
