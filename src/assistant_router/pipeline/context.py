"""Bounded conversation log with oldest-first eviction."""

from __future__ import annotations

import math
from typing import Callable, Optional

from src.assistant_router.errors import ConfigurationError
from src.utils.logger import get_logger

from .models import Message, Role

CostFunction = Callable[[Message], int]

# Flat per-message overhead for role markers and separators
_MESSAGE_OVERHEAD_TOKENS = 4


def length_cost(chars_per_token: int = 4) -> CostFunction:
    """Token estimate proportional to content length."""
    if chars_per_token <= 0:
        raise ConfigurationError("chars_per_token must be positive")

    def cost(message: Message) -> int:
        return math.ceil(len(message.content) / chars_per_token) + _MESSAGE_OVERHEAD_TOKENS

    return cost


class ConversationContext:
    """Ordered messages headed by exactly one system preamble.

    The preamble is never evicted. After every append, the oldest non-system
    messages are dropped in insertion order until the estimated cost fits the
    budget. One context belongs to one session; it is not safe to share.
    """

    def __init__(
        self,
        preamble: str,
        budget: int,
        cost_fn: Optional[CostFunction] = None,
    ) -> None:
        self.budget = budget
        self.cost_fn = cost_fn or length_cost()
        self.logger = get_logger("ConversationContext")
        self._system = Message(role="system", content=preamble)
        self._messages: list[Message] = []

        preamble_cost = self.cost_fn(self._system)
        if preamble_cost > budget:
            raise ConfigurationError(
                f"Context budget {budget} is smaller than the system preamble cost {preamble_cost}"
            )

    def __len__(self) -> int:
        return len(self._messages) + 1

    @property
    def system(self) -> Message:
        return self._system

    def total_cost(self) -> int:
        return self.cost_fn(self._system) + sum(self.cost_fn(m) for m in self._messages)

    def append(self, message: Message) -> list[Message]:
        """Append a message, then evict as needed. Returns the evicted messages."""
        if message.role == "system":
            raise ValueError("The system preamble is fixed; system messages cannot be appended")
        self._messages.append(message)
        return self.evict_if_over_budget()

    def add(self, role: Role, content: str) -> list[Message]:
        return self.append(Message(role=role, content=content))

    def evict_if_over_budget(self) -> list[Message]:
        """Drop oldest non-system messages until within budget. No-op when already within."""
        evicted: list[Message] = []
        total = self.total_cost()
        while total > self.budget and self._messages:
            oldest = self._messages.pop(0)
            total -= self.cost_fn(oldest)
            evicted.append(oldest)

        if evicted:
            self.logger.debug(
                f"Evicted {len(evicted)} message(s); cost now {total}/{self.budget}"
            )
        return evicted

    def snapshot(self) -> list[Message]:
        """Ordered copy of the whole log, preamble first."""
        return [self._system, *self._messages]

    def to_chat(self) -> list[dict[str, str]]:
        return [m.to_chat() for m in self.snapshot()]

    def last_user_message(self) -> Optional[Message]:
        for message in reversed(self._messages):
            if message.role == "user":
                return message
        return None
