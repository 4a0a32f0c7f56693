"""Prompt templates — model-family chat formats and system prompts."""

from dataclasses import dataclass
from enum import Enum
from functools import lru_cache
from typing import Callable, Sequence

from rag_assistant.models import Role, Turn


class TemplateKind(str, Enum):
    """Chat formats understood by the supported model families."""

    CHATML = "chatml"  # Qwen
    GEMMA = "gemma"  # <start_of_turn> / <end_of_turn>
    LLAMA3 = "llama3"  # <|start_header_id|> headers
    GENERIC = "generic"  # "User: ..." / "Assistant: ..."


SYSTEM_PROMPT_NORMAL = (
    "You are a helpful, concise AI assistant.\n"
    "Respond naturally and directly to the user's messages.\n"
    "Keep responses focused and avoid generating lengthy or fictional "
    "conversations.\n"
    "Only respond as the Assistant - do not continue the conversation or "
    "create additional exchanges."
)

SYSTEM_PROMPT_HYBRID = (
    "You are a concise assistant. Use PERSONAL MEMORY / CONTEXT only for "
    "user-specific facts; otherwise answer from your own knowledge. Be concise."
)

# End-of-turn markers that can leak into generated token text.
STOP_MARKERS: dict[TemplateKind, tuple[str, ...]] = {
    TemplateKind.CHATML: ("<|im_end|>", "<|endoftext|>"),
    TemplateKind.GEMMA: ("<end_of_turn>", "<eos>"),
    TemplateKind.LLAMA3: ("<|eot_id|>", "<|end_of_text|>"),
    TemplateKind.GENERIC: (),
}

ALL_STOP_MARKERS: tuple[str, ...] = tuple(
    marker for markers in STOP_MARKERS.values() for marker in markers
)


def model_file_name(model: str) -> str:
    """Last path segment of a model URL or path, lower-cased."""
    name = model.rsplit("/", 1)[-1].rsplit("\\", 1)[-1]
    return name.split("?", 1)[0].lower()


def template_kind_for_model(model: str) -> TemplateKind:
    """Pick the chat format from the model's file name."""
    name = model_file_name(model)
    if "qwen" in name:
        return TemplateKind.CHATML
    if "gemma" in name:
        return TemplateKind.GEMMA
    if "llama" in name or "meta" in name:
        return TemplateKind.LLAMA3
    return TemplateKind.GENERIC


def _render_chatml(system: str, history: Sequence[Turn], current: str) -> str:
    parts = [f"<|im_start|>system\n{system}\n<|im_end|>\n"]
    for turn in history:
        parts.append(f"<|im_start|>{turn.role.value}\n{turn.content}\n<|im_end|>\n")
    parts.append(f"<|im_start|>user\n{current}\n<|im_end|>\n<|im_start|>assistant\n")
    return "".join(parts)


def _render_gemma(system: str, history: Sequence[Turn], current: str) -> str:
    parts = [f"<start_of_turn>system\n{system.strip()}\n<end_of_turn>\n"]
    for turn in history:
        speaker = "user" if turn.role is Role.USER else "model"
        parts.append(f"<start_of_turn>{speaker}\n{turn.content.strip()}\n<end_of_turn>\n")
    parts.append(f"<start_of_turn>user\n{current.strip()}\n<end_of_turn>\n")
    parts.append("<start_of_turn>model\n")
    return "".join(parts)


def _render_llama3(system: str, history: Sequence[Turn], current: str) -> str:
    parts = [
        "<|begin_of_text|><|start_header_id|>system<|end_header_id|>\n",
        f"{system}\n<|eot_id|>",
    ]
    for turn in history:
        parts.append(
            f"<|start_header_id|>{turn.role.value}<|end_header_id|>\n"
            f"{turn.content}\n<|eot_id|>"
        )
    parts.append(
        f"<|start_header_id|>user<|end_header_id|>\n{current}\n<|eot_id|>"
        "<|start_header_id|>assistant<|end_header_id|>\n"
    )
    return "".join(parts)


def _render_generic(system: str, history: Sequence[Turn], current: str) -> str:
    parts = [f"{system}\n\n"]
    for turn in history:
        prefix = "User" if turn.role is Role.USER else "Assistant"
        parts.append(f"{prefix}: {turn.content}\n")
    parts.append(f"User: {current}\nAssistant:")
    return "".join(parts)


_RENDERERS: dict[TemplateKind, Callable[[str, Sequence[Turn], str], str]] = {
    TemplateKind.CHATML: _render_chatml,
    TemplateKind.GEMMA: _render_gemma,
    TemplateKind.LLAMA3: _render_llama3,
    TemplateKind.GENERIC: _render_generic,
}


@dataclass(frozen=True)
class PromptTemplate:
    """A resolved chat format together with its system prompt."""

    kind: TemplateKind
    system_prompt: str

    @property
    def stop_markers(self) -> tuple[str, ...]:
        return STOP_MARKERS[self.kind]

    def render(self, history: Sequence[Turn], current: str) -> str:
        """Render system prompt, prior turns and the current turn.

        The result ends with the open assistant delimiter of the format.
        """
        return _RENDERERS[self.kind](self.system_prompt, history, current)


@lru_cache(maxsize=16)
def resolve_template(model: str) -> PromptTemplate:
    """Template and system prompt for a model URL or path.

    Gemma models get the hybrid prompt, everything else the normal one.
    """
    kind = template_kind_for_model(model)
    system = SYSTEM_PROMPT_HYBRID if kind is TemplateKind.GEMMA else SYSTEM_PROMPT_NORMAL
    return PromptTemplate(kind=kind, system_prompt=system)
