"""Tests for the settings store module."""

from rag_assistant.models import FeatureFlags
from rag_assistant.settings_store import InMemorySettingsStore, SettingsKeys


class TestInMemorySettingsStore:
    def test_defaults_snapshot(self) -> None:
        assert InMemorySettingsStore().snapshot() == FeatureFlags()

    def test_get_default(self) -> None:
        assert InMemorySettingsStore().get("missing", 7) == 7

    def test_set_and_snapshot(self) -> None:
        store = InMemorySettingsStore()
        store.set(SettingsKeys.RAG_ENABLED, False)
        store.set(SettingsKeys.N_THREADS, 4)
        store.set(SettingsKeys.MAX_TOKENS_OVERRIDE, 128)
        store.set(SettingsKeys.SELECTED_MODEL, "qwen2.5:0.5b")

        flags = store.snapshot()

        assert flags.rag_enabled is False
        assert flags.memory_enabled is True
        assert flags.n_threads == 4
        assert flags.max_tokens_override == 128
        assert flags.selected_model == "qwen2.5:0.5b"

    def test_initial_values(self) -> None:
        store = InMemorySettingsStore({SettingsKeys.MEMORY_ENABLED: False})
        assert store.snapshot().memory_enabled is False

    def test_snapshot_is_detached(self) -> None:
        store = InMemorySettingsStore()
        flags = store.snapshot()
        store.set(SettingsKeys.RAG_ENABLED, False)
        assert flags.rag_enabled is True
