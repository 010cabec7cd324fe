"""
OBSERVABLE STATE CONTRACT

A state flow holds exactly one current value.

- Only the owner (the object that created the MutableStateFlow) emits.
- Any number of observers may subscribe; every new subscriber first receives
  the current value, then each subsequent emission, in order.
- Observers see the read-only StateFlow view returned by ``read_only()``.

Listener callbacks run synchronously inside ``emit``. A failing listener is
logged and skipped; it never breaks the writer or other listeners.
"""

import asyncio
import logging
from typing import AsyncIterator, Callable, Generic, List, Optional, Set, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")

Listener = Callable[[T], None]


class MutableStateFlow(Generic[T]):
    def __init__(self, initial: T, name: str = "state"):
        self.name = name
        self._value = initial
        self._listeners: List[Listener] = []
        self._queues: Set[asyncio.Queue] = set()

    @property
    def value(self) -> T:
        return self._value

    def emit(self, value: T) -> None:
        self._value = value
        log.debug(f"{self.name} -> {value!r}")
        for listener in list(self._listeners):
            try:
                listener(value)
            except Exception as e:
                log.error(f"Listener on {self.name} failed: {e}", exc_info=True)
        for queue in list(self._queues):
            queue.put_nowait(value)

    def add_listener(self, listener: Listener, replay: bool = True) -> Callable[[], None]:
        """Register a callback. Returns a function that unregisters it."""
        self._listeners.append(listener)
        if replay:
            listener(self._value)

        def remove() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return remove

    async def updates(self) -> AsyncIterator[T]:
        queue: asyncio.Queue = asyncio.Queue()
        queue.put_nowait(self._value)
        self._queues.add(queue)
        try:
            while True:
                yield await queue.get()
        finally:
            self._queues.discard(queue)

    async def wait_for(self, predicate: Callable[[T], bool], timeout: Optional[float] = None) -> T:
        """Wait until the current value satisfies ``predicate`` and return it."""
        if predicate(self._value):
            return self._value

        future = asyncio.get_running_loop().create_future()

        def check(value: T) -> None:
            if not future.done() and predicate(value):
                future.set_result(value)

        remove = self.add_listener(check, replay=False)
        try:
            return await asyncio.wait_for(future, timeout)
        finally:
            remove()

    @property
    def subscriber_count(self) -> int:
        return len(self._listeners) + len(self._queues)

    def read_only(self) -> "StateFlow[T]":
        return StateFlow(self)


class StateFlow(Generic[T]):
    """Read-only view over a MutableStateFlow."""

    def __init__(self, source: MutableStateFlow[T]):
        self._source = source

    @property
    def name(self) -> str:
        return self._source.name

    @property
    def value(self) -> T:
        return self._source.value

    def add_listener(self, listener: Listener, replay: bool = True) -> Callable[[], None]:
        return self._source.add_listener(listener, replay=replay)

    def updates(self) -> AsyncIterator[T]:
        return self._source.updates()

    async def wait_for(self, predicate: Callable[[T], bool], timeout: Optional[float] = None) -> T:
        return await self._source.wait_for(predicate, timeout)
