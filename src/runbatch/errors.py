"""Exceptions raised by runbatch."""

from __future__ import annotations

from typing import Any


class QueueError(Exception):
    """Base class for runbatch errors."""


class InvalidWorkItem(QueueError, TypeError):
    """Raised when something that is neither a factory nor an awaitable is enqueued."""

    def __init__(self, item: Any) -> None:
        self.item = item
        super().__init__(
            f"Invalid work item: {item!r}. "
            "Use a zero-argument callable, an awaitable, or a sequence of them."
        )


class QueueClosed(QueueError, RuntimeError):
    """Raised when a queue that already completed or failed is used again."""

    def __init__(self, state: Any) -> None:
        self.state = state
        value = getattr(state, "value", state)
        super().__init__(f"Queue is {value}; create a new BatchQueue for another run.")
