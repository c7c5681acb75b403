import httpx
import logging
from decimal import Decimal
from typing import Optional

from marketplace.domain.models import Product
from marketplace.domain.exceptions import (
    CatalogServiceError, PaymentServiceError, PaymentGatewayTimeout
)
from marketplace.application.interfaces import CatalogService, PaymentGateway

logger = logging.getLogger(__name__)


class HTTPCatalogClient(CatalogService):
    def __init__(self, base_url: str, api_token: str, timeout: float = 10.0):
        self._base_url = base_url.rstrip("/")
        self._headers = {"X-API-Key": api_token}
        self._timeout = timeout

    async def get_product(self, product_id: str) -> Optional[Product]:
        """Товар с актуальной ценой и остатком, None если товара нет"""
        url = f"{self._base_url}/api/catalog/items/{product_id}"
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.get(url, headers=self._headers)
        except httpx.RequestError as e:
            logger.error(f"Каталог недоступен ({url}): {e!r}")
            raise CatalogServiceError(f"Каталог недоступен: {e!r}")

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise CatalogServiceError(f"Каталог вернул {response.status_code} для товара {product_id}")

        data = response.json()
        return Product(
            id=str(data["id"]),
            name=data["name"],
            price=Decimal(str(data["price"])),
            available_qty=data.get("available_qty", data.get("stock", 0))
        )


class HTTPPaymentGatewayClient(PaymentGateway):
    def __init__(self, base_url: str, api_token: str, timeout: float = 15.0):
        self._base_url = base_url.rstrip("/")
        self._api_token = api_token
        self._timeout = timeout

    async def create_payment(self, order_id: str, amount: str, callback_url: str, idempotency_key: str) -> dict:
        """Инициирует платеж, возвращает {"id": <transaction_ref>, "payment_url": ...}"""
        body = {
            "order_id": order_id,
            "amount": amount,
            "callback_url": callback_url
        }
        headers = {"X-API-Key": self._api_token, "Idempotency-Key": idempotency_key}
        try:
            async with httpx.AsyncClient(timeout=self._timeout) as client:
                response = await client.post(f"{self._base_url}/api/payments", json=body, headers=headers)
        except httpx.TimeoutException:
            logger.warning(f"Платежный шлюз не ответил за {self._timeout}с, заказ {order_id}")
            raise PaymentGatewayTimeout(f"Таймаут платежного шлюза для заказа {order_id}")
        except httpx.RequestError as e:
            logger.error(f"Платежный шлюз недоступен: {e!r}")
            raise PaymentServiceError(f"Платежный шлюз недоступен: {e!r}")

        if response.status_code not in (200, 201):
            raise PaymentServiceError(f"Платежный шлюз вернул {response.status_code} для заказа {order_id}")
        return response.json()
