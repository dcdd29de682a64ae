import logging
import uuid
from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from ..config import Settings, settings as default_settings
from ..exceptions import ValidationError
from ..schemas.cart import Cart
from ..schemas.cart_item import CartItem
from .local_storage import LocalStorage

logger = logging.getLogger(__name__)


class LocalCartStore:
    """Гостевая корзина в хранилище устройства.

    Тот же набор операций, что и у удаленной корзины: get, add, update_item,
    remove, clear, item_count. Все операции синхронные и возвращают новый
    снимок корзины. Идентификаторы позиций начинаются с зарезервированного
    префикса, поэтому их нельзя спутать с серверными.
    """

    def __init__(self, storage: LocalStorage, settings: Settings = None):
        self.storage = storage
        self.settings = settings or default_settings
        self.key = self.settings.guest_cart_key
        self.prefix = self.settings.guest_item_prefix

    def is_local_item_id(self, item_id: Optional[str]) -> bool:
        return bool(item_id) and item_id.startswith(self.prefix)

    def get(self) -> Cart:
        """Получить гостевую корзину"""
        raw = self.storage.get_item(self.key)
        if not raw:
            return Cart.empty()

        try:
            cart = Cart.model_validate_json(raw)
        except PydanticValidationError as e:
            logger.warning(f"Corrupted guest cart in local storage, resetting: {e}")
            self.storage.remove_item(self.key)
            return Cart.empty()

        # Пересчитываем итоги: храним только то, что можно проверить
        return Cart.from_items(cart.items)

    def add(
            self,
            variant_id: str,
            quantity: int,
            price: Decimal,
            product: Optional[Dict[str, Any]] = None,
            variant: Optional[Dict[str, Any]] = None
    ) -> Cart:
        """Добавить товар в гостевую корзину"""
        self._check_quantity(quantity)
        if price is None:
            raise ValidationError("Price is required to add an item to the guest cart")

        cart = self.get()
        existing_item = cart.find_variant(variant_id)

        if existing_item:
            cart = cart.with_item_quantity(existing_item.id, existing_item.quantity + quantity)
        else:
            item = CartItem(
                id=f"{self.prefix}{uuid.uuid4().hex}",
                variant_id=variant_id,
                price=Decimal(str(price)),
                quantity=quantity,
                product=product,
                variant=variant,
            )
            cart = Cart.from_items(cart.items + [item])

        logger.info(f"Added variant {variant_id} x{quantity} to guest cart")
        return self._save(cart)

    def update_item(self, item_id: str, quantity: int) -> Cart:
        """Изменить количество позиции"""
        self._check_quantity(quantity)
        cart = self.get()
        if not cart.find_item(item_id):
            raise ValidationError(f"Cart item {item_id} not found", status_code=404)
        return self._save(cart.with_item_quantity(item_id, quantity))

    def remove(self, item_id: str) -> Cart:
        """Удалить позицию"""
        cart = self.get()
        if not cart.find_item(item_id):
            raise ValidationError(f"Cart item {item_id} not found", status_code=404)
        return self._save(cart.without_item(item_id))

    def remove_many(self, item_ids) -> Cart:
        """Удалить несколько позиций (используется после частичного слияния)"""
        ids = set(item_ids)
        cart = self.get()
        return self._save(Cart.from_items([item for item in cart.items if item.id not in ids]))

    def clear(self) -> Cart:
        """Очистить гостевую корзину"""
        self.storage.remove_item(self.key)
        return Cart.empty()

    def item_count(self) -> int:
        return self.get().total_quantity

    def has_items(self) -> bool:
        return not self.get().is_empty

    def _save(self, cart: Cart) -> Cart:
        cart.check_invariants()
        if cart.is_empty:
            self.storage.remove_item(self.key)
        else:
            self.storage.set_item(self.key, cart.model_dump_json(by_alias=True))
        return cart

    @staticmethod
    def _check_quantity(quantity: int) -> None:
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError("Quantity must be a positive integer")
