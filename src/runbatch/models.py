"""Core data models for runbatch."""

from __future__ import annotations

import inspect
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable

from runbatch.errors import InvalidWorkItem


class QueueState(str, Enum):
    """Possible states for a batch queue."""

    IDLE = "idle"
    BATCH_IN_FLIGHT = "batch_in_flight"
    AWAITING_RETRY = "awaiting_retry"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass(frozen=True)
class QueueConfig:
    """How a queue batches its work. Durations are in seconds."""

    concurrency: int = 4  # Max units per batch
    delay: float = 0.0  # Pause after each batch settles
    interval: float = 5.0  # Re-check period while waiting for the queue to go idle

    def __post_init__(self) -> None:
        if isinstance(self.concurrency, bool) or not isinstance(self.concurrency, int):
            raise ValueError(f"Invalid concurrency: {self.concurrency!r}. Use a positive integer.")
        if self.concurrency <= 0:
            raise ValueError(f"Invalid concurrency: {self.concurrency}. Use a positive integer.")
        if self.delay < 0:
            raise ValueError(f"Invalid delay: {self.delay}. Must be >= 0.")
        if self.interval < 0:
            raise ValueError(f"Invalid interval: {self.interval}. Must be >= 0.")


class WorkItem(ABC):
    """
    A unit of deferred work.

    Either a ``Factory`` (zero-argument callable producing an awaitable) or a
    ``Pending`` awaitable that is already in flight. Use ``WorkItem.coerce``
    to build the right variant from whatever the caller handed over.
    """

    __slots__ = ()

    @staticmethod
    def coerce(obj: Any) -> WorkItem:
        """Wrap ``obj`` as a WorkItem, raising InvalidWorkItem if it's neither shape."""
        if isinstance(obj, WorkItem):
            return obj
        if callable(obj):
            return Factory(obj)
        if inspect.isawaitable(obj):
            return Pending(obj)
        raise InvalidWorkItem(obj)

    @abstractmethod
    def resolve(self) -> Any:
        """Return the awaitable (or plain value) this item produces."""
        ...


@dataclass(frozen=True, eq=False)
class Factory(WorkItem):
    """Work that starts when the queue invokes it."""

    func: Callable[[], Awaitable[Any] | Any]

    def __post_init__(self) -> None:
        if not callable(self.func):
            raise InvalidWorkItem(self.func)

    def resolve(self) -> Any:
        return self.func()


@dataclass(frozen=True, eq=False)
class Pending(WorkItem):
    """Work that is already running (or will run when awaited)."""

    awaitable: Awaitable[Any]

    def __post_init__(self) -> None:
        if not inspect.isawaitable(self.awaitable):
            raise InvalidWorkItem(self.awaitable)

    def resolve(self) -> Any:
        return self.awaitable
