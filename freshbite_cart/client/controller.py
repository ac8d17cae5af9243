# freshbite_cart/client/controller.py
import asyncio
import contextlib
import copy
import itertools
from decimal import Decimal
from functools import partial
from typing import Any, Awaitable, Callable, Mapping

import httpx

from freshbite_cart.client.api_client import CartApiClient, CartApiError
from freshbite_cart.client.events import CART_UPDATED, CartEvents
from freshbite_cart.utils.logging import get_logger

logger = get_logger(__name__)

#failures after which local state is rolled back and re-fetched
CLIENT_ERRORS = (CartApiError, httpx.HTTPError)

_optimistic_ids = itertools.count(1)


def _optimistic_add(items: list[dict], draft: Mapping[str, Any]) -> list[dict]:
    items = copy.deepcopy(items)
    for item in items:
        if item.get("dishId") == draft.get("dishId") and item.get("variantId") == draft.get("variantId"):
            item["quantity"] += int(draft.get("quantity", 1))
            return items
    new_item = {key: value for key, value in draft.items() if value is not None}
    new_item["id"] = f"optimistic-{next(_optimistic_ids)}"
    items.append(new_item)
    return items


class CartController:
    """
    Client side of the cart (cart page).

    Every mutation is applied to local state first and then sent to the API.
    On failure the state from before the mutation is restored and the cart is
    re-fetched. Quantity changes are debounced: the UI changes at once, the
    API gets one PUT per item after `debounce_seconds` without further changes.

    The controller owns its pending updates and its timer, close() cancels
    the timer and drops what was not sent yet. Requests already in flight
    are not aborted.
    """

    def __init__(
        self,
        api: CartApiClient,
        events: CartEvents | None = None,
        debounce_seconds: float = 0.5,
    ):
        self.api = api
        self.events = events or CartEvents()
        self.debounce_seconds = debounce_seconds
        self.loading = True

        self._items: list[dict] = []
        self._pending: dict[str, int] = {}
        self._pending_snapshot: list[dict] | None = None
        self._timer: asyncio.TimerHandle | None = None
        self._flush_task: asyncio.Task | None = None
        self._closed = False

    @property
    def items(self) -> list[dict]:
        return copy.deepcopy(self._items)

    @property
    def item_count(self) -> int:
        return sum(int(item.get("quantity", 0)) for item in self._items)

    @property
    def subtotal(self) -> Decimal:
        total = sum(
            (Decimal(str(item.get("price", 0))) * int(item.get("quantity", 0)) for item in self._items),
            Decimal("0"),
        )
        return total.quantize(Decimal("0.01"))

    @property
    def has_pending(self) -> bool:
        return bool(self._pending)

    async def load(self) -> None:
        await self.refresh()

    async def refresh(self) -> None:
        try:
            self._items = await self.api.fetch_cart()
        except CLIENT_ERRORS as e:
            logger.warning(f"Fetching cart failed: {e}")
        finally:
            self.loading = False

    async def add_item(self, draft: Mapping[str, Any]) -> bool:
        snapshot = self.items
        self._items = _optimistic_add(self._items, draft)
        return await self._send(partial(self.api.add_item, draft), snapshot)

    async def change_quantity(self, item_id: str, quantity: int) -> None:
        if quantity <= 0:
            await self.remove_item(item_id)
            return

        item = self._find(item_id)
        if item is None:
            return

        if not self._pending:
            self._pending_snapshot = self.items
        item["quantity"] = quantity
        self._pending[item_id] = quantity
        self._schedule_flush()

    async def remove_item(self, item_id: str) -> bool:
        self._pending.pop(item_id, None)
        snapshot = self.items
        self._items = [item for item in self._items if item.get("id") != item_id]
        return await self._send(partial(self.api.remove_item, item_id), snapshot)

    async def clear(self) -> bool:
        self._cancel_timer()
        self._pending.clear()
        self._pending_snapshot = None
        snapshot = self.items
        self._items = []
        return await self._send(self.api.clear, snapshot)

    async def flush(self) -> bool:
        """Send all pending quantity updates now."""
        self._cancel_timer()
        if not self._pending:
            return True

        pending, self._pending = self._pending, {}
        snapshot, self._pending_snapshot = self._pending_snapshot, None

        cart = None
        try:
            for item_id, quantity in pending.items():
                cart = await self.api.update_quantity(item_id, quantity)
        except CLIENT_ERRORS as e:
            logger.warning(f"Sending quantity updates failed, rolling back: {e}")
            if snapshot is not None:
                self._items = snapshot
            await self.refresh()
            self._reapply_pending()
            return False

        # changes made while we were sending stay optimistic until their own flush
        if cart is not None and not self._pending:
            self._items = cart
        self.events.emit(CART_UPDATED)
        return True

    async def close(self) -> None:
        self._closed = True
        self._cancel_timer()
        self._pending.clear()
        self._pending_snapshot = None

    async def _send(self, call: Callable[[], Awaitable[list[dict]]], snapshot: list[dict]) -> bool:
        try:
            cart = await call()
        except CLIENT_ERRORS as e:
            logger.warning(f"Cart update failed, rolling back: {e}")
            self._items = snapshot
            await self.refresh()
            return False

        if not self._pending:
            self._items = cart
        self.events.emit(CART_UPDATED)
        return True

    def _find(self, item_id: str) -> dict | None:
        for item in self._items:
            if item.get("id") == item_id:
                return item
        return None

    def _reapply_pending(self) -> None:
        """
        Only the failed batch is rolled back. Changes made while it was in
        flight stay pending on top of the re-fetched cart, their timer is
        still armed and sends them.
        """
        if not self._pending:
            self._cancel_timer()
            self._pending_snapshot = None
            return

        self._pending_snapshot = self.items
        for item_id in list(self._pending):
            item = self._find(item_id)
            if item is None:
                del self._pending[item_id]
            else:
                item["quantity"] = self._pending[item_id]

        if not self._pending:
            self._cancel_timer()
            self._pending_snapshot = None

    def _schedule_flush(self) -> None:
        if self._closed:
            return
        self._cancel_timer()
        loop = asyncio.get_running_loop()
        self._timer = loop.call_later(self.debounce_seconds, self._start_flush)

    def _start_flush(self) -> None:
        self._timer = None
        self._flush_task = asyncio.ensure_future(self.flush())

    def _cancel_timer(self) -> None:
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None


class CartCountWatcher:
    """Cart badge: re-fetches the count on cartUpdated and polls as a fallback."""

    def __init__(self, api: CartApiClient, events: CartEvents, poll_interval: float = 5.0):
        self.api = api
        self.events = events
        self.poll_interval = poll_interval
        self.count = 0
        self._poll_task: asyncio.Task | None = None

    @property
    def badge(self) -> str:
        if self.count <= 0:
            return ""
        return "9+" if self.count > 9 else str(self.count)

    async def start(self) -> None:
        await self.refresh()
        self.events.subscribe(self._on_cart_updated, CART_UPDATED)
        self._poll_task = asyncio.create_task(self._poll())

    async def refresh(self) -> None:
        try:
            self.count = await self.api.fetch_count()
        except CLIENT_ERRORS as e:
            logger.debug(f"Fetching cart count failed: {e}")

    async def close(self) -> None:
        self.events.unsubscribe(self._on_cart_updated, CART_UPDATED)
        if self._poll_task is not None:
            self._poll_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._poll_task
            self._poll_task = None

    async def _on_cart_updated(self, payload: Any = None) -> None:
        await self.refresh()

    async def _poll(self) -> None:
        while True:
            await asyncio.sleep(self.poll_interval)
            await self.refresh()
