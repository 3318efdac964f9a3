from __future__ import annotations
from typing import Any, Dict, List, Optional
import httpx
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential
from .config import Settings, get_settings
from .errors import CommerceApiError, ConfigError
from .models import RemoteCollection, RemoteProduct
from .utils import RateLimiter, get_logger

logger = get_logger("surecart")

PAGE_LIMIT = 100


def _is_retryable(exc: BaseException) -> bool:
    # transport failures are wrapped as 500
    return isinstance(exc, CommerceApiError) and (exc.status == 429 or exc.status >= 500)


class SureCartClient:
    def __init__(
        self,
        base_url: str,
        api_key: str,
        timeout: int = 30,
        limiter: Optional[RateLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.limiter = limiter
        self._client = httpx.AsyncClient(
            base_url=f"{self.base_url}/v1/",
            headers={"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"},
            timeout=timeout,
            transport=transport,
        )

    @classmethod
    def from_settings(cls, s: Settings | None = None, transport: Optional[httpx.AsyncBaseTransport] = None) -> "SureCartClient":
        s = s or get_settings()
        if not s.surecart_api_url or not s.surecart_api_key:
            raise ConfigError("SURECART_API_URL and SURECART_API_KEY are required")
        limiter = RateLimiter(rate=s.rate_limit_rps, capacity=max(s.rate_limit_rps, 1.0)) if s.rate_limit_rps > 0 else None
        return cls(base_url=s.surecart_api_url, api_key=s.surecart_api_key, timeout=s.requests_timeout, limiter=limiter, transport=transport)

    async def __aenter__(self) -> "SureCartClient":
        return self

    async def __aexit__(self, *exc: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    @retry(
        retry=retry_if_exception(_is_retryable),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    async def _request(self, method: str, endpoint: str, *, json: Optional[dict] = None, params: Optional[Any] = None) -> Any:
        if self.limiter is not None:
            await self.limiter.acquire()
        try:
            resp = await self._client.request(method, endpoint.lstrip("/"), json=json, params=params)
        except httpx.HTTPError as e:
            raise CommerceApiError(str(e) or type(e).__name__, 500, details="transport") from e
        if resp.status_code >= 400:
            logger.error("HTTP %s %s -> %s %s", method, endpoint, resp.status_code, resp.text[:200])
            try:
                details = resp.json()
            except ValueError:
                details = None
            message = (details or {}).get("message") if isinstance(details, dict) else None
            raise CommerceApiError(message or f"SureCart API error: {resp.status_code} {resp.reason_phrase}", resp.status_code, details)
        if not resp.content:
            return {}
        return resp.json()

    async def _list_page(self, endpoint: str, page: int, limit: int = PAGE_LIMIT, **query: Any) -> tuple[list[dict], Optional[dict]]:
        params = {"limit": limit, "page": page, **{k: v for k, v in query.items() if v is not None}}
        res = await self._request("GET", endpoint, params=params)
        data = res.get("data") if isinstance(res, dict) else None
        return (data if isinstance(data, list) else []), (res.get("pagination") if isinstance(res, dict) else None)

    async def _list_all(self, endpoint: str, limit: int = PAGE_LIMIT, **query: Any) -> list[dict]:
        items: list[dict] = []
        page = 1
        while True:
            data, pagination = await self._list_page(endpoint, page, limit, **query)
            if not data:
                break
            items.extend(data)
            logger.info("Fetched %s %s from page %s", len(data), endpoint, page)
            if pagination and pagination.get("count") is not None:
                if pagination.get("page", page) * limit >= pagination["count"]:
                    break
            elif len(data) < limit:
                break
            page += 1
        return items

    # Products
    async def list_all_products(self) -> List[RemoteProduct]:
        return [RemoteProduct.model_validate(p) for p in await self._list_all("products")]

    async def create_product(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        logger.info("Creating product: %s", payload.get("name"))
        return await self._request("POST", "products", json={"product": payload}, params={"expand[]": "variants"})

    async def update_product(self, product_id: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        return await self._request("PATCH", f"products/{product_id}", json={"product": payload}, params={"expand[]": "variants"})

    async def delete_product(self, product_id: str) -> Dict[str, Any]:
        return await self._request("DELETE", f"products/{product_id}")

    # Variants
    async def list_all_variant_ids(self) -> List[str]:
        return [v["id"] for v in await self._list_all("variants") if v.get("id")]

    async def delete_variant(self, variant_id: str) -> Dict[str, Any]:
        return await self._request("DELETE", f"variants/{variant_id}")

    # Prices
    async def create_price(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        logger.info("Creating price for product %s with amount %s cents", payload.get("product"), payload.get("amount"))
        return await self._request("POST", "prices", json={"price": payload})

    # Collections
    async def list_all_collections(self) -> List[RemoteCollection]:
        return [RemoteCollection.model_validate(c) for c in await self._list_all("product_collections")]

    async def get_collection(self, collection_id: str) -> Optional[RemoteCollection]:
        try:
            res = await self._request("GET", f"product_collections/{collection_id}")
        except CommerceApiError as e:
            if e.status == 404:
                return None
            raise
        return RemoteCollection.model_validate(res) if res else None

    async def search_collections(self, name: str) -> List[RemoteCollection]:
        data, _ = await self._list_page("product_collections", page=1, query=name)
        return [RemoteCollection.model_validate(c) for c in data]

    async def create_collection(self, payload: Dict[str, Any]) -> RemoteCollection:
        logger.info("Creating product collection: %s", payload.get("name"))
        res = await self._request("POST", "product_collections", json={"product_collection": payload})
        return RemoteCollection.model_validate(res)

    async def update_collection(self, collection_id: str, payload: Dict[str, Any]) -> RemoteCollection:
        logger.info("Updating product collection: %s", payload.get("name") or collection_id)
        res = await self._request("PATCH", f"product_collections/{collection_id}", json={"product_collection": payload})
        return RemoteCollection.model_validate(res)

    async def delete_collection(self, collection_id: str) -> Dict[str, Any]:
        logger.info("Deleting product collection: %s", collection_id)
        return await self._request("DELETE", f"product_collections/{collection_id}")
