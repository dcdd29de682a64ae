from decimal import Decimal, ROUND_HALF_UP
from typing import List, Optional

from pydantic import BaseModel, model_validator
from pydantic.alias_generators import to_camel

from ..exceptions import StateInvariantViolation
from .cart_item import CartItem

CENTS = Decimal("0.01")


def to_money(value) -> Decimal:
    """Округление до копеек"""
    return Decimal(str(value)).quantize(CENTS, rounding=ROUND_HALF_UP)


class Cart(BaseModel):
    items: List[CartItem] = []
    subtotal: Decimal = Decimal("0")
    item_count: int = 0
    total_quantity: int = 0

    class Config:
        alias_generator = to_camel
        populate_by_name = True

    @model_validator(mode="after")
    def fill_missing_totals(self) -> "Cart":
        # Итоги, которых нет во входных данных, считаем по позициям
        if "subtotal" not in self.model_fields_set:
            self.subtotal = sum((item.subtotal for item in self.items), Decimal("0"))
        if "item_count" not in self.model_fields_set:
            self.item_count = len(self.items)
        if "total_quantity" not in self.model_fields_set:
            self.total_quantity = sum(item.quantity for item in self.items)
        return self

    @classmethod
    def empty(cls) -> "Cart":
        return cls()

    @classmethod
    def from_items(cls, items: List[CartItem]) -> "Cart":
        """Собрать корзину с пересчитанными итогами"""
        return cls(
            items=list(items),
            subtotal=sum((item.subtotal for item in items), Decimal("0")),
            item_count=len(items),
            total_quantity=sum(item.quantity for item in items),
        )

    @property
    def is_empty(self) -> bool:
        return not self.items

    def find_item(self, item_id: str) -> Optional[CartItem]:
        return next((item for item in self.items if item.id == item_id), None)

    def find_variant(self, variant_id: str) -> Optional[CartItem]:
        return next((item for item in self.items if item.variant_id == variant_id), None)

    def with_item_quantity(self, item_id: str, quantity: int) -> "Cart":
        """Новая корзина с измененным количеством одной позиции"""
        items = [
            item.model_copy(update={"quantity": quantity}) if item.id == item_id else item
            for item in self.items
        ]
        return Cart.from_items(items)

    def without_item(self, item_id: str) -> "Cart":
        return Cart.from_items([item for item in self.items if item.id != item_id])

    def check_invariants(self) -> None:
        """Проверка согласованности итогов с позициями"""
        expected_subtotal = sum((item.subtotal for item in self.items), Decimal("0"))
        expected_quantity = sum(item.quantity for item in self.items)

        if to_money(self.subtotal) != to_money(expected_subtotal):
            raise StateInvariantViolation(
                f"Cart subtotal {self.subtotal} does not match items sum {expected_subtotal}"
            )
        if self.total_quantity != expected_quantity:
            raise StateInvariantViolation(
                f"Cart totalQuantity {self.total_quantity} does not match items sum {expected_quantity}"
            )
        if self.item_count != len(self.items):
            raise StateInvariantViolation(
                f"Cart itemCount {self.item_count} does not match {len(self.items)} lines"
            )


class CartTotals(BaseModel):
    subtotal: Decimal
    discount: Decimal = Decimal("0")
    shipping: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    total: Decimal
