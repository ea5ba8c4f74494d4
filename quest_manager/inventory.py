"""Inventory client: the external system that owns reward items and actors.

Reward distribution injects an inventory matching the protocol:

    async def resolve_item_ref(self, ref: str) -> ItemDescriptor | None: ...
    async def grant_item_copy(self, actor_ref, item, quantity) -> GrantedItem: ...

Two implementations are provided:

    HttpInventory   : real HTTP client for an inventory service.
    MemoryInventory : an in-process item catalogue; grants are recorded per
                       actor. Useful for demos and for hosts with no
                       inventory service.
"""

from __future__ import annotations

import logging
import uuid
from typing import Any, Protocol

import httpx
from pydantic import BaseModel, Field

from quest_manager.errors import InventoryError

logger = logging.getLogger(__name__)


class ItemDescriptor(BaseModel):
    ref: str
    name: str
    type: str = "item"
    data: dict[str, Any] = Field(default_factory=dict)


class GrantedItem(BaseModel):
    id: str
    name: str
    actor_ref: str
    quantity: int = 1


# ---------------------------------------------------------------------------
# Protocol: every inventory implementation must match this signature
# ---------------------------------------------------------------------------

class Inventory(Protocol):
    async def resolve_item_ref(self, ref: str) -> ItemDescriptor | None: ...

    async def grant_item_copy(
        self, actor_ref: str, item: ItemDescriptor, quantity: int
    ) -> GrantedItem: ...


# ---------------------------------------------------------------------------
# HttpInventory: talks to an inventory service
# ---------------------------------------------------------------------------

class HttpInventory:
    """Async HTTP client for an inventory service.

    Endpoints:
      GET  /items/{ref}                 → ItemDescriptor, 404 when unknown
      POST /actors/{actor_ref}/items    {"item": ..., "quantity": n} → GrantedItem

    Args:
        base_url: Base URL of the service, e.g. "http://localhost:30000/api".
        api_key:  Bearer token, or empty string if not required.
        timeout:  HTTP timeout in seconds. Defaults to 10.
    """

    def __init__(self, base_url: str, api_key: str = "", timeout: float = 10.0) -> None:
        self._base_url = base_url.rstrip("/")
        self._api_key = api_key
        self._timeout = timeout

    def _headers(self) -> dict[str, str]:
        headers: dict[str, str] = {"Content-Type": "application/json"}
        if self._api_key:
            headers["Authorization"] = f"Bearer {self._api_key}"
        return headers

    async def resolve_item_ref(self, ref: str) -> ItemDescriptor | None:
        url = f"{self._base_url}/items/{ref}"
        logger.debug("inventory resolve ref=%s", ref)
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.get(url, headers=self._headers())
                if resp.status_code == 404:
                    return None
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise InventoryError(f"Cannot connect to inventory at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise InventoryError(f"Inventory returned HTTP {e.response.status_code}") from e
        except httpx.TimeoutException as e:
            raise InventoryError(f"Inventory timed out after {self._timeout}s") from e
        return ItemDescriptor.model_validate(resp.json())

    async def grant_item_copy(
        self, actor_ref: str, item: ItemDescriptor, quantity: int
    ) -> GrantedItem:
        url = f"{self._base_url}/actors/{actor_ref}/items"
        body = {"item": item.model_dump(), "quantity": quantity}
        logger.debug("inventory grant actor=%s ref=%s qty=%d", actor_ref, item.ref, quantity)
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                resp = await client.post(url, json=body, headers=self._headers())
                resp.raise_for_status()
        except httpx.ConnectError as e:
            raise InventoryError(f"Cannot connect to inventory at {self._base_url}") from e
        except httpx.HTTPStatusError as e:
            raise InventoryError(f"Inventory returned HTTP {e.response.status_code}") from e
        except httpx.TimeoutException as e:
            raise InventoryError(f"Inventory timed out after {self._timeout}s") from e
        return GrantedItem.model_validate(resp.json())


# ---------------------------------------------------------------------------
# MemoryInventory: in-process catalogue, no network
# ---------------------------------------------------------------------------

class MemoryInventory:
    def __init__(self, items: list[ItemDescriptor] | None = None) -> None:
        self.items: dict[str, ItemDescriptor] = {i.ref: i for i in items or []}
        self.granted: dict[str, list[GrantedItem]] = {}

    async def resolve_item_ref(self, ref: str) -> ItemDescriptor | None:
        return self.items.get(ref)

    async def grant_item_copy(
        self, actor_ref: str, item: ItemDescriptor, quantity: int
    ) -> GrantedItem:
        granted = GrantedItem(
            id=uuid.uuid4().hex[:16], name=item.name,
            actor_ref=actor_ref, quantity=quantity,
        )
        self.granted.setdefault(actor_ref, []).append(granted)
        return granted
