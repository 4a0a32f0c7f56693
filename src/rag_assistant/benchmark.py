"""Benchmark runner — sweeps models and feature flags over a prompt set.

Setup entries (``memory_setup`` and ``rag_setup``) seed memories and
documents once. Every other prompt then runs in its own conversation for
each combination of model, thread count, RAG, memory and token budget;
generation metrics are recorded by the orchestrator as usual.
"""

import itertools
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Sequence

from pydantic import BaseModel, ConfigDict, TypeAdapter

from rag_assistant.errors import ModelUnavailable
from rag_assistant.models import GenerationMetrics
from rag_assistant.orchestrator import GenerationOrchestrator
from rag_assistant.prompts import model_file_name
from rag_assistant.settings_store import SettingsKeys

logger = logging.getLogger(__name__)

SETUP_CATEGORIES = ("memory_setup", "rag_setup")

DEFAULT_THREAD_OPTIONS = (6, 8)
DEFAULT_TOKEN_OPTIONS = (64, 128)


class BenchmarkPrompt(BaseModel):
    """One entry of a benchmark prompt file."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    id: str
    category: str
    text: str | None = None
    expected_regex: str | None = None
    max_tokens: int | None = None
    insert_memory: str | None = None
    doc_id: str | None = None
    doc_text: str | None = None

    @property
    def is_setup(self) -> bool:
        return self.category in SETUP_CATEGORIES


_PROMPT_LIST = TypeAdapter(list[BenchmarkPrompt])


def load_prompts(path: str | Path) -> list[BenchmarkPrompt]:
    """Read a JSON array of benchmark prompts.

    Raises:
        FileNotFoundError: If *path* does not exist.
        pydantic.ValidationError: If an entry lacks ``id`` or ``category``.
    """
    return _PROMPT_LIST.validate_json(Path(path).read_bytes())


@dataclass(frozen=True)
class BenchmarkResult:
    """Outcome of one prompt under one flag combination."""

    conversation_id: str
    prompt_id: str
    model: str
    n_threads: int
    rag_enabled: bool
    memory_enabled: bool
    max_tokens: int
    output: str
    passed: bool | None
    metrics: GenerationMetrics | None


class BenchmarkRunner:
    """Runs a prompt set against every flag combination.

    The sweep drives the orchestrator through its settings store, so each
    turn takes exactly the path a chat turn would. Settings touched by the
    sweep are restored afterwards.
    """

    def __init__(
        self,
        orchestrator: GenerationOrchestrator,
        models: Sequence[str] | None = None,
        thread_options: Sequence[int] = DEFAULT_THREAD_OPTIONS,
        token_options: Sequence[int] = DEFAULT_TOKEN_OPTIONS,
    ) -> None:
        self.orchestrator = orchestrator
        self.models = list(models or [orchestrator.config.llm.model])
        self.thread_options = list(thread_options)
        self.token_options = list(token_options)

    def setup(self, prompts: Sequence[BenchmarkPrompt]) -> int:
        """Seed memories and documents from setup entries; returns how many."""
        seeded = 0
        for prompt in prompts:
            if prompt.category == "memory_setup" and prompt.insert_memory:
                self.orchestrator.add_memory(prompt.insert_memory)
                seeded += 1
            elif prompt.category == "rag_setup" and prompt.doc_id and prompt.doc_text:
                self.orchestrator.add_document(prompt.doc_id, prompt.doc_text)
                seeded += 1
        logger.info("Benchmark setup seeded %d item(s)", seeded)
        return seeded

    def run(self, prompts: Sequence[BenchmarkPrompt]) -> list[BenchmarkResult]:
        """Seed, then run every test prompt under every combination.

        A model that is not available locally is logged and skipped.
        """
        self.setup(prompts)
        tests = [p for p in prompts if not p.is_setup]
        settings = self.orchestrator.settings
        saved = settings.snapshot()
        results: list[BenchmarkResult] = []
        try:
            for model in self.models:
                try:
                    results.extend(self._run_model(model, tests))
                except ModelUnavailable:
                    logger.error("Skipping unavailable model: %s", model)
        finally:
            settings.set(SettingsKeys.SELECTED_MODEL, saved.selected_model)
            settings.set(SettingsKeys.N_THREADS, saved.n_threads)
            settings.set(SettingsKeys.RAG_ENABLED, saved.rag_enabled)
            settings.set(SettingsKeys.MEMORY_ENABLED, saved.memory_enabled)
            settings.set(SettingsKeys.MAX_TOKENS_OVERRIDE, saved.max_tokens_override)

        checked = [r for r in results if r.passed is not None]
        logger.info(
            "Benchmark finished: %d run(s), %d/%d checks passed",
            len(results),
            sum(r.passed for r in checked),
            len(checked),
        )
        return results

    def _run_model(
        self, model: str, tests: Sequence[BenchmarkPrompt]
    ) -> list[BenchmarkResult]:
        settings = self.orchestrator.settings
        settings.set(SettingsKeys.SELECTED_MODEL, model)
        results = []
        combos = itertools.product(
            self.thread_options, (False, True), (False, True), self.token_options
        )
        for threads, rag, memory, max_tokens in combos:
            settings.set(SettingsKeys.N_THREADS, threads)
            settings.set(SettingsKeys.RAG_ENABLED, rag)
            settings.set(SettingsKeys.MEMORY_ENABLED, memory)
            for prompt in tests:
                tokens = prompt.max_tokens or max_tokens
                settings.set(SettingsKeys.MAX_TOKENS_OVERRIDE, tokens)
                conversation_id = (
                    f"bench-{prompt.id}-{model_file_name(model)}"
                    f"-t{threads}-rag{rag}-mem{memory}-tok{max_tokens}"
                )
                results.append(
                    self._run_prompt(
                        conversation_id, prompt, model, threads, rag, memory, tokens
                    )
                )
        return results

    def _run_prompt(
        self,
        conversation_id: str,
        prompt: BenchmarkPrompt,
        model: str,
        threads: int,
        rag: bool,
        memory: bool,
        max_tokens: int,
    ) -> BenchmarkResult:
        text = prompt.text or ""
        self.orchestrator.create_conversation(conversation_id, conversation_id)
        stream = self.orchestrator.send_message(conversation_id, text)
        output = stream.collect().strip()

        passed = None
        if prompt.expected_regex:
            passed = re.search(prompt.expected_regex, output, re.IGNORECASE) is not None
            logger.info("%s => %s : %s", prompt.id, passed, output)

        return BenchmarkResult(
            conversation_id=conversation_id,
            prompt_id=prompt.id,
            model=model,
            n_threads=threads,
            rag_enabled=rag,
            memory_enabled=memory,
            max_tokens=max_tokens,
            output=output,
            passed=passed,
            metrics=stream.metrics,
        )
