"""Budget allocation — fit retrieved text into fixed token budgets."""

import logging
from dataclasses import dataclass
from typing import Callable, Iterable

logger = logging.getLogger(__name__)

_SENTENCE_ENDS = ".!?\n"


def estimate_tokens(text: str) -> int:
    """Rough token estimate: one token per four characters, at least one."""
    return max(1, len(text) // 4)


def trim_to_sentence_boundary(text: str) -> str:
    """Cut *text* after its last ``.``, ``!``, ``?`` or newline.

    Returns *text* unchanged when it has no such character or already
    ends with one.
    """
    idx = max(text.rfind(ch) for ch in _SENTENCE_ENDS)
    if 0 <= idx < len(text) - 1:
        return text[: idx + 1]
    return text


@dataclass(frozen=True)
class BudgetedBlock:
    """Lines accepted into a budget, rendered newline-joined."""

    text: str
    tokens_used: int
    included: int

    def __bool__(self) -> bool:
        return bool(self.text)


def fill_budget(
    items: Iterable[str],
    budget: int,
    estimate: Callable[[str], int] = estimate_tokens,
    truncate_last: bool = False,
) -> BudgetedBlock:
    """Greedily accept lines, in order, while the rendered block fits *budget*.

    Stops at the first line that does not fit instead of skipping ahead.
    With *truncate_last*, that line is cut to a sentence boundary inside
    the remaining budget and kept if the cut version fits.

    Args:
        items: Formatted lines in priority order.
        budget: Maximum estimated tokens of the rendered block.
        estimate: Token estimator applied to the rendered block.
        truncate_last: Whether to try truncating the first overflowing line.

    Returns:
        The rendered block; its ``tokens_used`` never exceeds *budget*.
    """
    lines: list[str] = []
    used = 0

    def _render(extra: str) -> str:
        return "\n".join([*lines, extra])

    for item in items:
        text = item.strip()
        if not text:
            continue
        cost = estimate(_render(text))
        if cost <= budget:
            lines.append(text)
            used = cost
            continue

        if truncate_last:
            remaining_chars = max(0, (budget - used) * 4)
            trimmed = trim_to_sentence_boundary(text[:remaining_chars]).strip()
            if trimmed:
                cost = estimate(_render(trimmed))
                if cost <= budget:
                    lines.append(trimmed)
                    used = cost
        break

    block = "\n".join(lines)
    logger.debug("Budget filled: %d lines, %d/%d tokens", len(lines), used, budget)
    return BudgetedBlock(text=block, tokens_used=used if lines else 0, included=len(lines))


def fill_memory_block(memories: Iterable[str], budget: int) -> BudgetedBlock:
    """Render memory facts as ``- fact`` lines within *budget*."""
    return fill_budget(
        ("- " + trim_to_sentence_boundary(m.strip()) for m in memories), budget
    )


def fill_context_block(chunks: Iterable[str], budget: int) -> BudgetedBlock:
    """Render document chunks within *budget*, truncating the overflowing one."""
    return fill_budget(chunks, budget, truncate_last=True)
