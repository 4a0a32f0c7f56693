"""Generation orchestrator — one user turn from retrieval to streamed reply.

For every message the orchestrator persists the user turn, retrieves
personal memories and document context, renders the prompt for the
active model, streams the reply from the inference session, then
persists the reply and records generation metrics.
"""

import logging
import queue
import re
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, TypeVar

from rag_assistant.budget import (
    BudgetedBlock,
    estimate_tokens,
    fill_context_block,
    fill_memory_block,
)
from rag_assistant.config import AppConfig
from rag_assistant.conversation import ConversationManager, ConversationSessions
from rag_assistant.document_index import DocumentIndex
from rag_assistant.errors import (
    GenerationFailure,
    ModelUnavailable,
    RetrievalFailure,
    StorageError,
)
from rag_assistant.inference import InferenceSession, default_thread_count
from rag_assistant.keywords import extract_keywords, extract_personal_keywords
from rag_assistant.memory_store import MemoryStore
from rag_assistant.metrics import MetricsLogger
from rag_assistant.models import (
    Conversation,
    FeatureFlags,
    GenerationMetrics,
    MemoryItem,
    Message,
    RetrievalResult,
    Turn,
    utcnow,
)
from rag_assistant.prompts import ALL_STOP_MARKERS, resolve_template
from rag_assistant.settings_store import InMemorySettingsStore, SettingsStore
from rag_assistant.storage import Storage

logger = logging.getLogger(__name__)

T = TypeVar("T")

GENERATION_ERROR_PIECE = "Error: Failed to generate response"

# Tokenizer whitespace artefacts: SentencePiece space, BPE space and
# newline, Qwen space.
_PIECE_REPLACEMENTS = (
    ("▁", " "),
    ("Ġ", " "),
    ("Ċ", "\n"),
    ("Äł", " "),
)

_SENTENCE_RANGE_RE = re.compile(r"(\d+)\s*-\s*(\d+)\s*sentences", re.IGNORECASE)
_SENTENCE_COUNT_RE = re.compile(r"(\d+)\s*sentences?", re.IGNORECASE)

_DEMO_MEMORIES = (
    {
        "content": "My hobbies are playing video games and reading webnovels",
        "title": "Personal Hobbies",
        "tags": ["personal", "hobbies"],
        "keywords": ["video games", "webnovels", "reading", "gaming"],
        "importance": 4,
    },
    {
        "content": "I prefer Android development over iOS development",
        "title": "Development Preferences",
        "tags": ["personal", "preferences", "programming"],
        "keywords": ["android", "development", "programming"],
        "importance": 3,
    },
    {
        "content": "I usually code in Kotlin and sometimes Java",
        "title": "Programming Languages",
        "tags": ["personal", "programming"],
        "keywords": ["kotlin", "java", "programming"],
        "importance": 3,
    },
)


def normalize_piece(piece: str) -> str:
    """Replace tokenizer whitespace markers with the characters they stand for."""
    for marker, replacement in _PIECE_REPLACEMENTS:
        piece = piece.replace(marker, replacement)
    return piece


def strip_stop_markers(piece: str, markers: Iterable[str] = ALL_STOP_MARKERS) -> str:
    """Remove end-of-turn markers that leaked into a token piece."""
    for marker in markers:
        if marker in piece:
            piece = piece.replace(marker, "")
    return piece


def guess_max_tokens(
    text: str, default: int = 96, lower: int = 64, upper: int = 256
) -> int:
    """Generation budget inferred from requests like "answer in 3 sentences".

    A range ("2-3 sentences") uses its midpoint; both forms allow about
    20 tokens per sentence, clamped to ``[lower, upper]``.
    """
    range_match = _SENTENCE_RANGE_RE.search(text)
    count_match = _SENTENCE_COUNT_RE.search(text)
    if range_match:
        sentences = (int(range_match.group(1)) + int(range_match.group(2))) // 2
    elif count_match:
        sentences = int(count_match.group(1))
    else:
        return default
    return min(upper, max(lower, sentences * 20))


def build_current_turn(memory_block: str, context_block: str, question: str) -> str:
    """Assemble memory, context and question into the current user turn."""
    parts: list[str] = []
    if memory_block:
        parts.append(f"PERSONAL MEMORY\n{memory_block}\n---")
    if context_block:
        parts.append(f"CONTEXT\n{context_block}\n---")
    parts.append(f"Question:\n{question.strip()}")
    return "\n".join(parts)


@dataclass(frozen=True)
class PreparedTurn:
    """Everything needed to generate and record one reply."""

    conversation_id: str
    text: str
    prompt: str
    model: str
    max_tokens: int
    n_threads: int
    flags: FeatureFlags
    manager: ConversationManager
    memory_block: BudgetedBlock
    context_block: BudgetedBlock
    history_tokens: int


_END = object()


class TokenStream:
    """Single-use iterator over the pieces of one reply.

    Generation starts on first iteration and runs on a background
    thread. Pieces are handed over through a queue holding at most
    ``buffer_size`` undelivered pieces; a piece that finds the buffer
    full, or arrives after :meth:`close`, is not forwarded and not part
    of the reply. Closing never aborts the engine call: the generation
    runs to its end and the accepted pieces are persisted.
    """

    def __init__(
        self,
        orchestrator: "GenerationOrchestrator",
        turn: PreparedTurn,
        buffer_size: int = 64,
    ) -> None:
        self._orchestrator = orchestrator
        self.turn = turn
        self._buffer_size = buffer_size
        self._queue: queue.Queue = queue.Queue()
        self._cancelled = threading.Event()
        self._started = False
        self._thread: threading.Thread | None = None
        self._error: BaseException | None = None
        self.reply: str | None = None
        self.metrics: GenerationMetrics | None = None
        self.failed = False

    def __iter__(self) -> Iterator[str]:
        if self._started:
            raise RuntimeError("TokenStream can only be iterated once")
        self._start()
        try:
            while True:
                item = self._queue.get()
                if item is _END:
                    break
                yield item
        finally:
            self.close()
        if self._error is not None:
            raise self._error

    def __enter__(self) -> "TokenStream":
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()

    def collect(self) -> str:
        """Consume the stream and return the concatenated pieces."""
        return "".join(self)

    def close(self) -> None:
        """Stop accepting pieces and wait for the generation to finish."""
        self._cancelled.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join()

    @property
    def done(self) -> bool:
        return self._started and (self._thread is None or not self._thread.is_alive())

    def _start(self) -> None:
        self._started = True
        self._thread = threading.Thread(
            target=self._run,
            name=f"generation-{self.turn.conversation_id}",
            daemon=True,
        )
        self._thread.start()

    def _offer(self, piece: str) -> bool:
        if self._cancelled.is_set() or self._queue.qsize() >= self._buffer_size:
            return False
        self._queue.put(piece)
        return True

    def _run(self) -> None:
        try:
            self._orchestrator._generate(self)
        except Exception as exc:  # re-raised on the consumer side
            self._error = exc
        finally:
            self._queue.put(_END)


class GenerationOrchestrator:
    """Runs user turns against the retrieval sources and the inference session."""

    def __init__(
        self,
        storage: Storage,
        documents: DocumentIndex,
        memories: MemoryStore,
        inference: InferenceSession,
        settings: SettingsStore | None = None,
        config: AppConfig | None = None,
        metrics_logger: MetricsLogger | None = None,
    ) -> None:
        self.storage = storage
        self.documents = documents
        self.memories = memories
        self.inference = inference
        self.settings = settings if settings is not None else InMemorySettingsStore()
        self.config = config or AppConfig()
        self.metrics_logger = metrics_logger
        self.sessions = ConversationSessions(self.config.conversation)
        self._retrieval_pool = ThreadPoolExecutor(
            max_workers=2, thread_name_prefix="retrieval"
        )

    # ===== chat =====

    def send_message(self, conversation_id: str, text: str) -> TokenStream:
        """Start a turn and return the stream of reply pieces.

        Raises:
            ModelUnavailable: Before anything is persisted, if the
                selected model is not available locally.
            StorageError: If the user message cannot be persisted.
        """
        flags = self.settings.snapshot()
        model = flags.selected_model or self.config.llm.model
        if not self.inference.is_model_ready(model):
            logger.error("Model not available when sending message: %s", model)
            raise ModelUnavailable(model)

        self._store_message(conversation_id, text, is_user=True)

        memory_future = self._retrieval_pool.submit(
            self._safe_retrieve,
            "memory",
            flags.memory_enabled,
            lambda: self.memories.search(text, self.config.retrieval.memory_top_k),
        )
        context_future = self._retrieval_pool.submit(
            self._safe_retrieve,
            "document",
            flags.rag_enabled,
            lambda: self.documents.search(text, self.config.retrieval.document_top_k),
        )
        memory_hits: list[MemoryItem] = memory_future.result()
        context_hits: list[RetrievalResult] = context_future.result()
        logger.debug(
            "Retrieved %d memories and %d context chunks",
            len(memory_hits),
            len(context_hits),
        )

        template = resolve_template(model)
        manager = self.sessions.resolve(conversation_id, template)

        budget = self.config.budget
        memory_block = fill_memory_block((m.content for m in memory_hits), budget.memory_tokens)
        context_block = fill_context_block((r.text for r in context_hits), budget.context_tokens)
        current = build_current_turn(memory_block.text, context_block.text, text)

        started = time.perf_counter()
        prompt = manager.build_prompt(current)
        logger.debug(
            "Prompt built in %.1fms, ~%d tokens",
            (time.perf_counter() - started) * 1000,
            estimate_tokens(prompt),
        )
        logger.debug("Prompt sent to model:\n%s", prompt)

        llm = self.config.llm
        max_tokens = flags.max_tokens_override or guess_max_tokens(
            text, llm.default_max_tokens, llm.min_max_tokens, llm.max_max_tokens
        )
        turn = PreparedTurn(
            conversation_id=conversation_id,
            text=text,
            prompt=prompt,
            model=model,
            max_tokens=max_tokens,
            n_threads=flags.n_threads or llm.n_threads or default_thread_count(),
            flags=flags,
            manager=manager,
            memory_block=memory_block,
            context_block=context_block,
            history_tokens=manager.history_tokens(),
        )
        return TokenStream(self, turn, llm.stream_buffer)

    def _generate(self, stream: TokenStream) -> None:
        turn = stream.turn
        accepted: list[str] = []
        first_token_at: float | None = None
        received = 0
        started = time.perf_counter()

        def on_token(piece: str) -> None:
            nonlocal first_token_at, received
            if first_token_at is None:
                first_token_at = time.perf_counter()
                logger.debug(
                    "First token after %.0fms (prefill)", (first_token_at - started) * 1000
                )
            received += 1
            out = normalize_piece(strip_stop_markers(piece))
            if not accepted:
                out = out.lstrip()
            if out and stream._offer(out):
                accepted.append(out)

        try:
            self.inference.generate(
                turn.model, turn.prompt, turn.max_tokens, on_token, turn.n_threads
            )
        except GenerationFailure:
            logger.exception("Generation failed for conversation %s", turn.conversation_id)
            stream.failed = True
            stream._queue.put(GENERATION_ERROR_PIECE)
            return
        finished = time.perf_counter()

        reply = "".join(accepted).rstrip()
        stream.reply = reply
        turn.manager.append_user(turn.text)
        turn.manager.append_assistant(reply)
        self._store_message(turn.conversation_id, reply, is_user=False)
        logger.info("Assistant reply saved for %s", turn.conversation_id)

        stream.metrics = self._record_metrics(turn, started, first_token_at, finished, received)

    def _record_metrics(
        self,
        turn: PreparedTurn,
        started: float,
        first_token_at: float | None,
        finished: float,
        output_tokens: int,
    ) -> GenerationMetrics:
        first = first_token_at if first_token_at is not None else finished
        prefill_ms = (first - started) * 1000
        decode_s = finished - first
        metrics = GenerationMetrics(
            timestamp=time.time(),
            prefill_ms=prefill_ms,
            first_token_ms=prefill_ms,
            decode_tokens_per_s=output_tokens / decode_s if decode_s > 0 else 0.0,
            prompt_chars=len(turn.prompt),
            prompt_tokens=estimate_tokens(turn.prompt),
            history_tokens=turn.history_tokens,
            context_tokens=turn.context_block.tokens_used,
            memory_tokens=turn.memory_block.tokens_used,
            output_tokens=output_tokens,
            n_threads=turn.n_threads,
            rag_enabled=turn.flags.rag_enabled,
            memory_enabled=turn.flags.memory_enabled,
            model=turn.model,
        )
        if self.metrics_logger is not None:
            try:
                self.metrics_logger.log(metrics)
            except OSError:
                logger.exception("Failed to write generation metrics")
        return metrics

    @staticmethod
    def _safe_retrieve(source: str, enabled: bool, search: Callable[[], list[T]]) -> list[T]:
        if not enabled:
            return []
        try:
            return search()
        except RetrievalFailure as exc:
            logger.warning("%s", exc, exc_info=True)
            return []
        except Exception:
            logger.exception("Error retrieving %s context", source)
            return []

    def _store_message(self, conversation_id: str, text: str, is_user: bool) -> None:
        now = utcnow()
        try:
            self.storage.insert_message(
                Message(conversation_id=conversation_id, text=text, is_user=is_user, timestamp=now)
            )
            self.storage.upsert_conversation(
                Conversation(conversation_id, conversation_id, text, now)
            )
        except Exception as exc:
            raise StorageError(f"Failed to save message for {conversation_id}") from exc

    # ===== conversations =====

    def create_conversation(self, conversation_id: str, title: str | None = None) -> None:
        try:
            self.storage.upsert_conversation(
                Conversation(conversation_id, title or conversation_id)
            )
        except Exception as exc:
            raise StorageError(f"Failed to create conversation {conversation_id}") from exc

    def delete_conversation(self, conversation_id: str) -> None:
        logger.info("Deleting conversation: %s", conversation_id)
        self.storage.delete_conversation(conversation_id)
        self.sessions.evict(conversation_id)

    def messages(self, conversation_id: str) -> list[Message]:
        return self.storage.list_messages(conversation_id)

    def history(self, conversation_id: str) -> list[Turn]:
        """Turns currently held in the prompt window of *conversation_id*."""
        manager = self.sessions.get(conversation_id)
        return manager.history if manager is not None else []

    def is_model_ready(self) -> bool:
        model = self.settings.snapshot().selected_model or self.config.llm.model
        return self.inference.is_model_ready(model)

    # ===== documents & memories =====

    def add_document(self, title: str, content: str, content_type: str = "text/plain") -> str:
        try:
            return self.documents.add_document(title, content, content_type)
        except ValueError:
            raise
        except Exception as exc:
            raise StorageError(f"Failed to add document {title!r}") from exc

    def delete_document(self, document_id: str) -> None:
        self.documents.delete_document(document_id)

    def add_memory(
        self,
        content: str,
        title: str | None = None,
        tags: Iterable[str] = ("personal",),
        keywords: Iterable[str] = (),
        importance: int = 3,
    ) -> str:
        try:
            return self.memories.add(content, title, tags, keywords, importance)
        except ValueError:
            raise
        except Exception as exc:
            raise StorageError("Failed to add memory") from exc

    def add_memory_from_message(self, text: str, importance: int = 3) -> str:
        """Remember a chat message, tagging it with its stated interests and top words."""
        keywords = dict.fromkeys(extract_personal_keywords(text) + extract_keywords(text))
        return self.add_memory(text, keywords=keywords, importance=importance)

    def delete_memory(self, memory_id: str) -> bool:
        return self.memories.delete(memory_id)

    def seed_demo_memories(self) -> int:
        """Add a few example memories when none exist; returns how many were added."""
        if self.memories.count():
            return 0
        for memory in _DEMO_MEMORIES:
            self.add_memory(**memory)
        logger.info("Seeded %d demo memories", len(_DEMO_MEMORIES))
        return len(_DEMO_MEMORIES)

    def warm_up(self) -> threading.Thread:
        """Fill the memory embedding cache on a background thread."""

        def _warm() -> None:
            try:
                self.memories.warm_cache()
            except Exception:
                logger.warning("Memory cache warm-up skipped", exc_info=True)

        thread = threading.Thread(target=_warm, name="memory-warm-up", daemon=True)
        thread.start()
        return thread

    def close(self) -> None:
        self._retrieval_pool.shutdown(wait=True)
        self.inference.close()
        self.sessions.clear()
        self.memories.cache.clear()
