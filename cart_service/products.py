import logging
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Dict, Iterable, Optional
from urllib.parse import quote

import httpx

from cart_service.errors import StoreUnavailable
from cart_service.models import Product
from shared.logging_config import current_request_id

logger = logging.getLogger("cart-service.products")


class ProductLookup(ABC):
    @abstractmethod
    async def get(self, product_id: str) -> Optional[Product]:
        """Current catalog entry for ``product_id``, or None if it does not exist."""

    async def ping(self) -> bool:
        return True

    async def close(self):
        pass


class MemoryProductLookup(ProductLookup):
    def __init__(self, products: Iterable[Product] = ()):
        self._products: Dict[str, Product] = {p.id: p for p in products}

    def add(self, product: Product):
        self._products[product.id] = product

    def remove(self, product_id: str):
        self._products.pop(product_id, None)

    async def get(self, product_id: str) -> Optional[Product]:
        return self._products.get(product_id)


def product_from_payload(data: dict) -> Product:
    return Product(
        id=str(data["id"]),
        name=data["name"],
        price=Decimal(str(data["price"])),
        description=data.get("description") or "",
        image_url=data.get("image_url"),
    )


def product_path(product_id: str) -> str:
    """Path of one product with the id escaped as a single segment."""
    segment = quote(product_id, safe="")
    if segment in (".", ".."):
        segment = segment.replace(".", "%2E")
    return f"/products/{segment}"


class HttpProductLookup(ProductLookup):
    """Reads products from the products service (``GET /products/{id}``).

    A 404 means the product is gone (deleted, deactivated or a malformed id).
    Transport errors and any other non-2xx status become ``StoreUnavailable``.
    """

    def __init__(self, base_url: str, timeout: float = 5.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    def _headers(self) -> dict:
        headers = {}
        request_id = current_request_id.get()
        if request_id:
            headers["X-Request-ID"] = request_id
        return headers

    async def get(self, product_id: str) -> Optional[Product]:
        try:
            response = await self.client.get(product_path(product_id), headers=self._headers())
            if response.status_code == 404:
                return None
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            logger.error(
                "Products service returned an error",
                extra={"product_id": product_id, "status_code": exc.response.status_code},
            )
            raise StoreUnavailable("Products service unavailable") from exc
        except httpx.RequestError as exc:
            logger.error("Products service unreachable", extra={"product_id": product_id, "target": self.base_url})
            raise StoreUnavailable("Products service unavailable") from exc
        try:
            return product_from_payload(response.json()["data"])
        except (KeyError, TypeError, ValueError, InvalidOperation) as exc:
            logger.error("Products service sent a malformed product", extra={"product_id": product_id})
            raise StoreUnavailable("Products service unavailable") from exc

    async def ping(self) -> bool:
        try:
            response = await self.client.get("/health", timeout=2.0)
        except httpx.RequestError:
            return False
        return response.status_code == 200

    async def close(self):
        await self.client.aclose()
