"""CLI interface for the assistant."""

import argparse
import logging
import sys
import uuid

from rag_assistant.benchmark import (
    DEFAULT_THREAD_OPTIONS,
    DEFAULT_TOKEN_OPTIONS,
    BenchmarkRunner,
    load_prompts,
)
from rag_assistant.config import AppConfig, LLMConfig
from rag_assistant.document_index import DocumentIndex
from rag_assistant.document_loader import load_documents
from rag_assistant.embeddings import EmbeddingProvider
from rag_assistant.errors import ModelUnavailable, RagAssistantError
from rag_assistant.inference import InferenceSession, OllamaEngine, OllamaModelStorage
from rag_assistant.memory_store import MemoryStore
from rag_assistant.metrics import MetricsLogger
from rag_assistant.orchestrator import GenerationOrchestrator
from rag_assistant.settings_store import InMemorySettingsStore, SettingsKeys
from rag_assistant.storage import InMemoryStorage

logger = logging.getLogger(__name__)

_EXIT_WORDS = ("quit", "exit", "q")


def _setup_logging(verbose: bool = False) -> None:
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def build_orchestrator(
    config: AppConfig | None = None,
    settings: InMemorySettingsStore | None = None,
) -> GenerationOrchestrator:
    """Wire the default on-device stack: in-memory storage and a local Ollama."""
    cfg = config or AppConfig()
    storage = InMemoryStorage()
    embedder = EmbeddingProvider(cfg.embedding)
    embedder.initialize()
    engine = OllamaEngine(cfg.llm)
    return GenerationOrchestrator(
        storage=storage,
        documents=DocumentIndex(storage, embedder, cfg.chunk, cfg.retrieval),
        memories=MemoryStore(storage, embedder, cfg.retrieval),
        inference=InferenceSession(engine, OllamaModelStorage(engine.client)),
        settings=settings,
        config=cfg,
        metrics_logger=MetricsLogger(cfg.metrics.path) if cfg.metrics.enabled else None,
    )


def ingest(orchestrator: GenerationOrchestrator, folder_path: str) -> int:
    """Add every supported file in *folder_path*; returns the number added."""
    print(f"\n📂 Loading documents from: {folder_path}")
    sources = load_documents(folder_path)
    if not sources:
        print("No supported documents found (.txt, .pdf, .md)")
        return 0

    for source in sources:
        orchestrator.add_document(source.title, source.content, source.content_type)
    print(f"✅ Indexed {len(sources)} document(s)")
    return len(sources)


def _handle_command(
    orchestrator: GenerationOrchestrator, conversation_id: str, line: str
) -> None:
    command, _, arg = line.partition(" ")
    arg = arg.strip()
    if command == "/remember" and arg:
        memory_id = orchestrator.add_memory_from_message(arg)
        print(f"🧠 Remembered ({memory_id})")
    elif command == "/forget" and arg:
        if orchestrator.delete_memory(arg):
            print("🗑️  Forgotten")
        else:
            print(f"No memory with id {arg}")
    elif command == "/memories":
        for memory in orchestrator.memories.all():
            print(f"  {memory.id}  {memory.content}")
    elif command == "/history":
        for turn in orchestrator.history(conversation_id):
            print(f"  {turn.role.value}: {turn.content}")
    else:
        print("Commands: /remember <fact>, /forget <id>, /memories, /history")


def chat(orchestrator: GenerationOrchestrator, conversation_id: str | None = None) -> None:
    """Interactive chat loop.

    Streams each reply as it is generated. Exits on 'quit', 'exit',
    'q', EOF or KeyboardInterrupt.
    """
    conversation_id = conversation_id or str(uuid.uuid4())
    orchestrator.create_conversation(conversation_id)

    print(f"\n📚 Chat ({orchestrator.documents.count()} documents indexed)")
    print(f"🤖 Using model: {orchestrator.config.llm.model}")
    print("\nType your message (or 'quit' to exit):\n")

    while True:
        try:
            text = input("You: ").strip()
        except (EOFError, KeyboardInterrupt):
            print("\nGoodbye!")
            break

        if not text:
            continue
        if text.lower() in _EXIT_WORDS:
            print("Goodbye!")
            break
        if text.startswith("/"):
            _handle_command(orchestrator, conversation_id, text)
            continue

        try:
            print("\nAssistant: ", end="", flush=True)
            with orchestrator.send_message(conversation_id, text) as stream:
                for piece in stream:
                    print(piece, end="", flush=True)
            print("\n")
        except ModelUnavailable as exc:
            print(f"\n{exc}\n")
            break
        except RagAssistantError:
            logger.exception("Turn failed")
            print("\nUnable to complete the request.\n")


def bench(orchestrator: GenerationOrchestrator, prompts_path: str, **options) -> int:
    """Run the benchmark sweep and print one line per run; returns failed checks."""
    prompts = load_prompts(prompts_path)
    print(f"\n⏱️  Benchmark: {len(prompts)} prompt(s) from {prompts_path}")
    results = BenchmarkRunner(orchestrator, **options).run(prompts)

    failed = 0
    for result in results:
        status = {True: "PASS", False: "FAIL", None: "----"}[result.passed]
        print(f"  [{status}] {result.conversation_id}")
        if result.passed is False:
            failed += 1
    print(f"✅ {len(results)} run(s), {failed} failed check(s)")
    return failed


def main() -> None:
    """CLI entry point: parse arguments and run a chat or benchmark session."""
    parser = argparse.ArgumentParser(
        description="On-device RAG assistant — local LLM via Ollama",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    chat_p = subparsers.add_parser("chat", help="Start interactive chat")
    chat_p.add_argument("--docs", type=str, default=None, help="Documents folder to index")
    chat_p.add_argument("--model", type=str, default=None, help="Ollama model name")
    chat_p.add_argument("--no-rag", action="store_true", help="Disable document context")
    chat_p.add_argument("--no-memory", action="store_true", help="Disable personal memory")
    chat_p.add_argument(
        "--seed-memories", action="store_true", help="Add demo memories when empty"
    )

    bench_p = subparsers.add_parser("bench", help="Run the benchmark sweep")
    bench_p.add_argument("--prompts", type=str, required=True, help="JSON prompt set")
    bench_p.add_argument("--docs", type=str, default=None, help="Documents folder to index")
    bench_p.add_argument(
        "--models", nargs="+", default=None, help="Ollama model names to sweep"
    )
    bench_p.add_argument(
        "--threads", nargs="+", type=int, default=list(DEFAULT_THREAD_OPTIONS),
        help="Thread counts to sweep",
    )
    bench_p.add_argument(
        "--max-tokens", nargs="+", type=int, default=list(DEFAULT_TOKEN_OPTIONS),
        help="Token budgets to sweep",
    )

    args = parser.parse_args()
    _setup_logging(args.verbose)

    if args.command not in ("chat", "bench"):
        parser.print_help()
        sys.exit(1)

    model = getattr(args, "model", None)
    cfg = AppConfig(llm=LLMConfig(model=model)) if model else AppConfig()
    settings = InMemorySettingsStore(
        {
            SettingsKeys.RAG_ENABLED: not getattr(args, "no_rag", False),
            SettingsKeys.MEMORY_ENABLED: not getattr(args, "no_memory", False),
        }
    )
    orchestrator = build_orchestrator(cfg, settings)
    try:
        if args.docs:
            ingest(orchestrator, args.docs)
        if args.command == "bench":
            failed = bench(
                orchestrator,
                args.prompts,
                models=args.models,
                thread_options=args.threads,
                token_options=args.max_tokens,
            )
            if failed:
                sys.exit(1)
            return
        if args.seed_memories:
            orchestrator.seed_demo_memories()
        orchestrator.warm_up()
        chat(orchestrator)
    except ModelUnavailable as exc:
        print(f"\n{exc}\n")
        sys.exit(1)
    except RagAssistantError:
        logger.exception("Command failed")
        print("\nUnable to complete the request.\n")
        sys.exit(1)
    finally:
        orchestrator.close()


if __name__ == "__main__":
    main()
