"""Conversation state — bounded per-conversation history and prompt rendering."""

import logging
import threading
from collections import deque
from typing import Sequence

from rag_assistant.budget import estimate_tokens
from rag_assistant.config import ConversationConfig
from rag_assistant.models import Role, Turn
from rag_assistant.prompts import PromptTemplate

logger = logging.getLogger(__name__)


class ConversationManager:
    """History of one conversation rendered through one prompt template.

    After every append, while more than one user+assistant pair is held
    and the rendered prompt is estimated above ``max_prompt_tokens``, the
    oldest pair is dropped as a unit.
    """

    def __init__(self, template: PromptTemplate, max_prompt_tokens: int = 2048) -> None:
        self.template = template
        self.max_prompt_tokens = max_prompt_tokens
        self._history: deque[Turn] = deque()

    @property
    def system_prompt(self) -> str:
        return self.template.system_prompt

    @property
    def history(self) -> list[Turn]:
        return list(self._history)

    def append_user(self, text: str) -> None:
        self._history.append(Turn(Role.USER, text))
        self._trim()

    def append_assistant(self, text: str) -> None:
        self._history.append(Turn(Role.ASSISTANT, text))
        self._trim()

    def build_prompt(self, current: str, history: Sequence[Turn] | None = None) -> str:
        """Render the prompt for *current* on top of *history*.

        Args:
            current: The assembled current turn (memory, context, question).
            history: Prior turns; defaults to this manager's history.
        """
        turns = self._history if history is None else history
        return self.template.render(list(turns), current)

    def history_tokens(self) -> int:
        if not self._history:
            return 0
        return estimate_tokens("\n".join(t.content for t in self._history))

    def _trim(self) -> None:
        while (
            len(self._history) > 2
            and estimate_tokens(self.build_prompt("")) > self.max_prompt_tokens
        ):
            self._drop_oldest_pair()

    def _drop_oldest_pair(self) -> None:
        oldest = self._history.popleft()
        if (
            oldest.role is Role.USER
            and self._history
            and self._history[0].role is Role.ASSISTANT
        ):
            self._history.popleft()
        logger.debug("Trimmed oldest exchange, %d turns left", len(self._history))


class ConversationSessions:
    """Owns the ConversationManager of every live conversation.

    Managers are created lazily, replaced when the template changes and
    evicted when their conversation is deleted.
    """

    def __init__(self, config: ConversationConfig | None = None) -> None:
        self.config = config or ConversationConfig()
        self._managers: dict[str, ConversationManager] = {}
        self._lock = threading.Lock()

    def get(self, conversation_id: str) -> ConversationManager | None:
        with self._lock:
            return self._managers.get(conversation_id)

    def resolve(self, conversation_id: str, template: PromptTemplate) -> ConversationManager:
        """Return the manager for *conversation_id* using *template*.

        An existing manager with another template is replaced by a new one
        seeded with the last ``replay_turns`` turns of its history.
        """
        with self._lock:
            current = self._managers.get(conversation_id)
            if current is not None and current.template == template:
                return current

            manager = ConversationManager(template, self.config.max_prompt_tokens)
            if current is not None:
                turns = self.config.replay_turns
                replay = current.history[-turns:] if turns else []
                for turn in replay:
                    if turn.role is Role.USER:
                        manager.append_user(turn.content)
                    else:
                        manager.append_assistant(turn.content)
                logger.debug(
                    "Rebuilt conversation %s for %s template (%d turns replayed)",
                    conversation_id,
                    template.kind.value,
                    len(replay),
                )
            self._managers[conversation_id] = manager
            return manager

    def evict(self, conversation_id: str) -> None:
        with self._lock:
            self._managers.pop(conversation_id, None)

    def clear(self) -> None:
        with self._lock:
            self._managers.clear()

    def __contains__(self, conversation_id: object) -> bool:
        with self._lock:
            return conversation_id in self._managers

    def __len__(self) -> int:
        with self._lock:
            return len(self._managers)
