import asyncio
import logging
from decimal import Decimal
from typing import Optional

from ..config import Settings, settings as default_settings
from ..exceptions import CartError, ValidationError
from ..schemas.cart import to_money
from ..schemas.coupon import Coupon, DiscountType
from .cart_gateway import CartGateway

logger = logging.getLogger(__name__)


class CouponService:
    """Двухфазное применение купона.

    1. verify: сервер проверяет купон и считает скидку, клиент ограничивает
       ее долей от суммы корзины. Результат сразу показывается пользователю.
    2. apply: фоновое закрепление купона за серверной корзиной. Ошибка только
       логируется; расхождение закрывается в ensure_applied() перед оформлением.
    """

    def __init__(self, gateway: CartGateway, settings: Settings = None):
        self.gateway = gateway
        self.settings = settings or default_settings
        self.max_discount_ratio = Decimal(str(self.settings.max_discount_ratio))
        self.pending_apply: Optional[asyncio.Task] = None
        self.pending_code: Optional[str] = None

    async def verify(self, code: str, subtotal: Decimal) -> Coupon:
        """Проверить купон для текущей суммы корзины"""
        code = (code or "").strip()
        if not code:
            raise ValidationError("Coupon code is required")

        subtotal = to_money(subtotal)
        if subtotal <= 0:
            raise ValidationError("Your cart is empty")

        logger.info(f"Verifying coupon {code} with cart total {subtotal}")
        data = await self.gateway.verify_coupon(code, subtotal)
        coupon = Coupon.model_validate(data)
        return self.cap_discount(coupon, subtotal, "discount_amount" in coupon.model_fields_set)

    def cap_discount(self, coupon: Coupon, subtotal: Decimal, amount_known: bool = True) -> Coupon:
        """Ограничить скидку долей от суммы корзины"""
        subtotal = to_money(subtotal)
        max_discount = to_money(subtotal * self.max_discount_ratio)

        if amount_known:
            amount = Decimal(coupon.discount_amount)
        elif coupon.discount_type == DiscountType.PERCENTAGE:
            percent = min(Decimal(coupon.discount_value), self.max_discount_ratio * 100)
            amount = subtotal * percent / 100
        else:
            amount = Decimal(coupon.discount_value)

        is_capped = coupon.discount_type == DiscountType.FIXED_AMOUNT and amount >= max_discount
        amount = to_money(min(amount, max_discount))

        if is_capped:
            logger.info(f"Discount for coupon {coupon.code} capped at {max_discount}")

        return coupon.model_copy(update={
            "discount_amount": amount,
            "final_amount": subtotal - amount,
            "is_discount_capped": is_capped,
        })

    def apply_in_background(self, code: str) -> asyncio.Task:
        """Закрепить купон на сервере, не блокируя вызывающий код"""
        self.pending_code = code
        self.pending_apply = asyncio.create_task(self._apply(code))
        return self.pending_apply

    async def ensure_applied(self, code: str):
        """Убедиться перед оформлением, что купон закреплен на сервере"""
        pending = self.pending_apply
        if pending is not None and self.pending_code == code:
            # Отмененная задача (например, при shutdown) считается неуспешной
            if not pending.cancelled():
                try:
                    if await pending:
                        return
                except asyncio.CancelledError:
                    if not pending.cancelled():
                        raise
            logger.info(f"Retrying coupon {code} apply before checkout")

        await self.gateway.apply_coupon(code)
        logger.info(f"✅ Coupon {code} applied to cart")

    async def _apply(self, code: str) -> bool:
        try:
            await self.gateway.apply_coupon(code)
            logger.info(f"✅ Coupon {code} applied in background")
            return True
        except CartError as e:
            logger.warning(f"Background coupon application error for {code}: {e}")
            return False
