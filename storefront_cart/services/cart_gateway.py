import httpx
import logging
from decimal import Decimal
from typing import Optional, Dict, Any

from ..config import Settings, settings as default_settings
from ..exceptions import TransportError, ValidationError
from ..schemas.cart import Cart

logger = logging.getLogger(__name__)


class CartGateway:
    """Клиент для удаленного сервиса корзины и купонов.

    Все ответы приходят в обертке {success, data, message}. Ответ с
    success=false или 4xx превращается в ValidationError, сетевые ошибки,
    таймауты и 5xx в TransportError.
    """

    def __init__(self, settings: Settings = None, client: Optional[httpx.AsyncClient] = None):
        self.settings = settings or default_settings
        self.base_url = self.settings.api_base_url
        self.timeout = self.settings.request_timeout
        # Один клиент на сессию: в нем живут cookie авторизации
        self.client = client or httpx.AsyncClient(base_url=self.base_url, timeout=self.timeout)

    async def aclose(self):
        await self.client.aclose()

    async def get_cart(self) -> Cart:
        """Получить корзину пользователя"""
        data = await self._request("GET", "/cart")
        return Cart.model_validate(data or {})

    async def add_to_cart(self, variant_id: str, quantity: int) -> Dict[str, Any]:
        """Добавить товар в корзину"""
        return await self._request(
            "POST", "/cart/add", json={"productVariantId": variant_id, "quantity": quantity}
        )

    async def update_cart_item(self, item_id: str, quantity: int) -> Dict[str, Any]:
        """Обновить количество товара в корзине"""
        return await self._request("PATCH", f"/cart/update/{item_id}", json={"quantity": quantity})

    async def remove_from_cart(self, item_id: str) -> Dict[str, Any]:
        """Удалить товар из корзины"""
        return await self._request("DELETE", f"/cart/remove/{item_id}")

    async def clear_cart(self) -> Dict[str, Any]:
        """Очистить корзину"""
        return await self._request("DELETE", "/cart/clear")

    async def verify_coupon(self, code: str, cart_total: Decimal) -> Dict[str, Any]:
        """Проверить купон и рассчитать скидку"""
        data = await self._request(
            "POST", "/coupons/verify", json={"code": code, "cartTotal": f"{cart_total:.2f}"}
        )
        coupon = (data or {}).get("coupon")
        if not coupon:
            raise ValidationError("Coupon verification returned no coupon")
        return coupon

    async def apply_coupon(self, code: str) -> Dict[str, Any]:
        """Закрепить купон за серверной корзиной"""
        return await self._request("POST", "/coupons/apply", json={"code": code})

    async def _request(self, method: str, path: str, json: Optional[Dict[str, Any]] = None) -> Any:
        try:
            response = await self.client.request(method, path, json=json, timeout=self.timeout)
        except httpx.TimeoutException as e:
            logger.error(f"Timeout on {method} {path}: {e}")
            raise TransportError(f"Request timed out: {method} {path}") from e
        except httpx.HTTPError as e:
            logger.error(f"Transport error on {method} {path}: {e}")
            raise TransportError(f"Network error: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = None

        message = body.get("message") if isinstance(body, dict) else None

        if response.status_code >= 500:
            logger.error(f"Error on {method} {path}: {response.status_code} {message}")
            raise TransportError(message or f"Server error {response.status_code}")

        if response.status_code >= 400:
            logger.warning(f"Rejected {method} {path}: {response.status_code} {message}")
            raise ValidationError(message or f"Request failed with {response.status_code}",
                                  status_code=response.status_code)

        if not isinstance(body, dict):
            raise TransportError(f"Unexpected response body from {method} {path}")

        if not body.get("success", False):
            logger.warning(f"Unsuccessful {method} {path}: {message}")
            raise ValidationError(message or "Request was not successful",
                                  status_code=response.status_code)

        return body.get("data")
