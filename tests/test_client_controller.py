import asyncio

import httpx
import pytest

from cart_helpers import samosas
from freshbite_cart.client.api_client import CartApiClient, CartApiError
from freshbite_cart.client.controller import CartController, CartCountWatcher
from freshbite_cart.client.events import CART_UPDATED, CartEvents
from freshbite_cart.main import app

NAAN = {"dishId": "D2", "name": "Naan", "price": 3, "quantity": 1}


class RecordingApi(CartApiClient):
    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.puts = []
        self.put_tasks = []

    async def update_quantity(self, item_id, quantity):
        self.puts.append((item_id, quantity))
        self.put_tasks.append(asyncio.current_task())
        return await super().update_quantity(item_id, quantity)


class FailingPutApi(CartApiClient):
    async def update_quantity(self, item_id, quantity):
        raise CartApiError("Could not update the cart, please try again", "CART_WRITE_FAILED", 500)


class GatedPutApi(CartApiClient):
    """PUT of `failing_id` waits for `release`, then fails. Other PUTs go through."""

    def __init__(self, failing_id=None, **kwargs):
        super().__init__(**kwargs)
        self.failing_id = failing_id
        self.started = asyncio.Event()
        self.release = asyncio.Event()

    async def update_quantity(self, item_id, quantity):
        if item_id == self.failing_id:
            self.started.set()
            await self.release.wait()
            raise CartApiError("Could not update the cart, please try again", "CART_WRITE_FAILED", 500)
        return await super().update_quantity(item_id, quantity)


class FailingPostApi(CartApiClient):
    async def add_item(self, draft):
        raise httpx.ConnectError("connection refused")


def make_api(cls=CartApiClient):
    return cls(base_url="http://testserver", transport=httpx.ASGITransport(app=app))


@pytest.fixture(autouse=True)
def _db(override_db):
    yield


def test_load_and_add_update_badge():
    async def scenario():
        api = make_api()
        events = CartEvents()
        controller = CartController(api, events)
        watcher = CartCountWatcher(api, events)

        await controller.load()
        await watcher.start()
        assert controller.loading is False
        assert controller.items == []
        assert watcher.badge == ""

        assert await controller.add_item(samosas(2)) is True
        assert await controller.add_item(NAAN) is True
        await events.drain()

        items = controller.items
        assert [item["dishId"] for item in items] == ["D1", "D2"]
        assert not any(item["id"].startswith("optimistic-") for item in items)
        assert controller.item_count == 3
        assert str(controller.subtotal) == "20.00"
        assert watcher.count == 3
        assert watcher.badge == "3"

        await watcher.close()
        await api.aclose()

    asyncio.run(scenario())


def test_quantity_changes_are_debounced_into_one_put():
    async def scenario():
        api = make_api(RecordingApi)
        controller = CartController(api, debounce_seconds=0.05)
        await controller.add_item(samosas(1))
        item_id = controller.items[0]["id"]

        await controller.change_quantity(item_id, 2)
        await controller.change_quantity(item_id, 3)
        await controller.change_quantity(item_id, 4)

        # local state moves at once
        assert controller.items[0]["quantity"] == 4
        assert controller.has_pending
        assert api.puts == []

        await asyncio.sleep(0.1)
        assert await controller._flush_task is True

        assert api.puts == [(item_id, 4)]
        assert not controller.has_pending
        assert (await api.fetch_cart())[0]["quantity"] == 4
        await api.aclose()

    asyncio.run(scenario())


def test_changes_to_several_items_are_flushed_together():
    async def scenario():
        api = make_api(RecordingApi)
        controller = CartController(api, debounce_seconds=0.2)
        await controller.add_item(samosas(1))
        await controller.add_item(NAAN)
        samosa_id, naan_id = [item["id"] for item in controller.items]

        await controller.change_quantity(samosa_id, 3)
        await asyncio.sleep(0.1)
        await controller.change_quantity(naan_id, 2)

        # past the samosa's own window, the naan change pushed the timer back
        await asyncio.sleep(0.15)
        assert api.puts == []
        assert controller._flush_task is None

        await asyncio.sleep(0.15)
        assert await controller._flush_task is True

        assert api.puts == [(samosa_id, 3), (naan_id, 2)]
        assert api.put_tasks[0] is api.put_tasks[1] is controller._flush_task
        cart = await api.fetch_cart()
        assert [(item["dishId"], item["quantity"]) for item in cart] == [("D1", 3), ("D2", 2)]
        await api.aclose()

    asyncio.run(scenario())


def test_failed_flush_keeps_changes_made_while_in_flight():
    async def scenario():
        api = make_api(GatedPutApi)
        controller = CartController(api, debounce_seconds=10)
        await controller.add_item(samosas(1))
        await controller.add_item(NAAN)
        samosa_id, naan_id = [item["id"] for item in controller.items]
        api.failing_id = samosa_id

        await controller.change_quantity(samosa_id, 4)
        flushing = asyncio.create_task(controller.flush())
        await api.started.wait()
        await controller.change_quantity(naan_id, 7)
        api.release.set()

        assert await flushing is False

        # the failed samosa update is rolled back, the naan change is still pending
        assert {item["dishId"]: item["quantity"] for item in controller.items} == {"D1": 1, "D2": 7}
        assert controller.has_pending
        assert controller._timer is not None

        assert await controller.flush() is True

        assert controller._timer is None
        cart = await api.fetch_cart()
        assert {item["dishId"]: item["quantity"] for item in cart} == {"D1": 1, "D2": 7}
        await controller.close()
        await api.aclose()

    asyncio.run(scenario())


def test_failed_flush_rolls_back_to_server_state():
    async def scenario():
        api = make_api(FailingPutApi)
        events = CartEvents()
        seen = []
        events.subscribe(seen.append, CART_UPDATED)
        controller = CartController(api, events, debounce_seconds=10)
        await controller.add_item(samosas(1))
        item_id = controller.items[0]["id"]
        seen.clear()

        await controller.change_quantity(item_id, 6)
        assert controller.items[0]["quantity"] == 6

        assert await controller.flush() is False

        assert controller.items[0]["quantity"] == 1
        assert not controller.has_pending
        assert seen == []
        await api.aclose()

    asyncio.run(scenario())


def test_failed_add_restores_previous_items():
    async def scenario():
        api = make_api(FailingPostApi)
        controller = CartController(api)
        await controller.load()

        assert await controller.add_item(samosas(2)) is False

        assert controller.items == []
        assert controller.item_count == 0
        await api.aclose()

    asyncio.run(scenario())


def test_zero_quantity_removes_item():
    async def scenario():
        api = make_api()
        controller = CartController(api)
        await controller.add_item(samosas(1))
        await controller.add_item(NAAN)
        samosa_id = controller.items[0]["id"]

        await controller.change_quantity(samosa_id, 0)

        assert [item["dishId"] for item in controller.items] == ["D2"]
        assert [item["dishId"] for item in await api.fetch_cart()] == ["D2"]
        await api.aclose()

    asyncio.run(scenario())


def test_clear_empties_cart():
    async def scenario():
        api = make_api()
        controller = CartController(api)
        await controller.add_item(samosas(3))

        assert await controller.clear() is True

        assert controller.items == []
        assert await api.fetch_count() == 0
        await api.aclose()

    asyncio.run(scenario())


def test_close_drops_pending_updates():
    async def scenario():
        api = make_api(RecordingApi)
        controller = CartController(api, debounce_seconds=0.05)
        await controller.add_item(samosas(1))
        item_id = controller.items[0]["id"]

        await controller.change_quantity(item_id, 5)
        await controller.close()
        await asyncio.sleep(0.1)

        assert api.puts == []
        assert controller._flush_task is None
        assert (await api.fetch_cart())[0]["quantity"] == 1
        await api.aclose()

    asyncio.run(scenario())


def test_watcher_polls_without_events():
    async def scenario():
        api = make_api()
        # the controller talks on its own bus, the watcher only sees the polls
        controller = CartController(api, CartEvents())
        watcher = CartCountWatcher(api, CartEvents(), poll_interval=0.05)
        await watcher.start()
        assert watcher.count == 0

        await controller.add_item(samosas(2))

        await asyncio.sleep(0.2)
        assert watcher.count == 2

        await watcher.close()
        await api.aclose()

    asyncio.run(scenario())


def test_badge_caps_at_nine():
    watcher = CartCountWatcher(api=None, events=CartEvents())

    watcher.count = 9
    assert watcher.badge == "9"
    watcher.count = 12
    assert watcher.badge == "9+"
