import asyncio
import inspect
from collections import defaultdict
from typing import Any, Callable

from freshbite_cart.utils.logging import get_logger

logger = get_logger(__name__)

CART_UPDATED = "cartUpdated"


class CartEvents:
    """
    Broadcast between views of the same client (cart page, badge...).
    Owned by whoever creates the views, there is no global registry.
    Async callbacks are scheduled on the running loop.
    """

    def __init__(self):
        self._subscribers: dict[str, list[Callable]] = defaultdict(list)
        self._tasks: set[asyncio.Task] = set()

    def subscribe(self, callback: Callable, event: str = CART_UPDATED) -> None:
        self._subscribers[event].append(callback)

    def unsubscribe(self, callback: Callable, event: str = CART_UPDATED) -> None:
        if callback in self._subscribers[event]:
            self._subscribers[event].remove(callback)

    def emit(self, event: str = CART_UPDATED, payload: Any = None) -> None:
        for callback in list(self._subscribers[event]):
            result = callback(payload)
            if inspect.isawaitable(result):
                task = asyncio.ensure_future(result)
                self._tasks.add(task)
                task.add_done_callback(self._tasks.discard)

    async def drain(self) -> None:
        """Wait for callbacks scheduled by emit()."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)
