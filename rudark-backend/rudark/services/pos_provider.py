from typing import Any, Iterator, Protocol

import requests

from rudark.core.config import settings
from rudark.services.payment_provider import ProviderError

PAGE_LIMIT = 250


class PosClient(Protocol):
    name: str

    def iter_items(self) -> Iterator[dict[str, Any]]:
        ...

    def iter_inventory(self, *, store_id: str | None = None) -> Iterator[dict[str, Any]]:
        ...

    def get_stores(self) -> list[dict[str, Any]]:
        ...

    def create_receipt(self, payload: dict[str, Any]) -> dict[str, Any]:
        ...

    def update_inventory(self, levels: list[dict[str, Any]]) -> dict[str, Any]:
        ...


class LoyverseClient:
    name = "loyverse"

    def __init__(self, http: requests.Session | None = None):
        self.http = http or requests.Session()

    def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        if not settings.loyverse_api_token:
            raise ProviderError("Loyverse API token is not configured")
        try:
            response = self.http.request(
                method,
                f"{settings.loyverse_base_url}{path}",
                params=params,
                json=payload,
                headers={"Authorization": f"Bearer {settings.loyverse_api_token}"},
                timeout=settings.http_timeout_seconds,
            )
        except requests.RequestException as exc:
            raise ProviderError(f"Loyverse request failed: {exc}") from exc
        if response.status_code >= 400:
            raise ProviderError(f"Loyverse API Error [{response.status_code}]: {response.text[:300]}")
        try:
            data = response.json()
        except ValueError as exc:
            raise ProviderError(f"Loyverse returned invalid JSON for {method} {path}") from exc
        if not isinstance(data, dict):
            raise ProviderError(f"Loyverse returned an unexpected payload for {method} {path}")
        return data

    def _paged(self, path: str, key: str, params: dict[str, Any]) -> Iterator[dict[str, Any]]:
        cursor = None
        while True:
            page_params = {**params, "limit": PAGE_LIMIT}
            if cursor:
                page_params["cursor"] = cursor
            data = self._request("GET", path, params=page_params)
            yield from (row for row in data.get(key) or [] if isinstance(row, dict))
            cursor = data.get("cursor")
            if not cursor:
                break

    def iter_items(self) -> Iterator[dict[str, Any]]:
        return self._paged("/items", "items", {})

    def iter_inventory(self, *, store_id: str | None = None) -> Iterator[dict[str, Any]]:
        params = {"store_id": store_id} if store_id else {}
        return self._paged("/inventory", "inventory_levels", params)

    def get_stores(self) -> list[dict[str, Any]]:
        return list(self._request("GET", "/stores").get("stores") or [])

    def create_receipt(self, payload: dict[str, Any]) -> dict[str, Any]:
        return self._request("POST", "/receipts", payload=payload)

    def update_inventory(self, levels: list[dict[str, Any]]) -> dict[str, Any]:
        return self._request("POST", "/inventory", payload={"inventory_levels": levels})


_POS_CLIENTS: dict[str, PosClient] = {
    "loyverse": LoyverseClient(),
}


def get_pos_client(name: str = "loyverse") -> PosClient:
    normalized = (name or "").strip().lower()
    client = _POS_CLIENTS.get(normalized)
    if not client:
        available = ", ".join(sorted(_POS_CLIENTS))
        raise ValueError(f"Unknown POS client '{name}'. Available: {available}")
    return client
