# freshbite_cart/client/api_client.py
from typing import Any, Mapping

import httpx

from freshbite_cart.utils.logging import get_logger

logger = get_logger(__name__)


class CartApiError(Exception):
    def __init__(self, message: str, code: str, status_code: int):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status_code = status_code


class CartApiClient:
    """
    Async client of the /cart endpoints.
    The httpx cookie jar keeps the session cookie issued on the first response.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        transport: httpx.AsyncBaseTransport | None = None,
        timeout: float = 5.0,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url,
            transport=transport,
            timeout=timeout,
            headers={"Cache-Control": "no-cache"},
        )

    async def fetch_cart(self) -> list[dict]:
        data = await self._request("GET", "/cart")
        return data.get("cart") or []

    async def fetch_count(self) -> int:
        data = await self._request("GET", "/cart/count")
        return int(data.get("count", 0))

    async def add_item(self, draft: Mapping[str, Any]) -> list[dict]:
        data = await self._request("POST", "/cart", json=dict(draft))
        return data.get("cart") or []

    async def update_quantity(self, item_id: str, quantity: int) -> list[dict]:
        data = await self._request("PUT", "/cart", json={"itemId": item_id, "quantity": quantity})
        return data.get("cart") or []

    async def remove_item(self, item_id: str) -> list[dict]:
        data = await self._request("DELETE", "/cart", params={"itemId": item_id})
        return data.get("cart") or []

    async def clear(self) -> list[dict]:
        data = await self._request("DELETE", "/cart", params={"clear": "true"})
        return data.get("cart") or []

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> dict:
        resp = await self._client.request(method, url, **kwargs)
        if resp.is_error:
            try:
                body = resp.json()
            except ValueError:
                body = {}
            logger.info(f"{method} {url} -> {resp.status_code} {body.get('code')}")
            raise CartApiError(
                body.get("error") or resp.reason_phrase,
                body.get("code") or "HTTP_ERROR",
                resp.status_code,
            )
        return resp.json()
