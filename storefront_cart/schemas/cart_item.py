from decimal import Decimal
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, computed_field, model_validator
from pydantic.alias_generators import to_camel


class CartItem(BaseModel):
    id: str
    variant_id: str
    price: Decimal
    quantity: int = Field(gt=0)
    product: Optional[Dict[str, Any]] = None
    variant: Optional[Dict[str, Any]] = None

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        coerce_numbers_to_str = True

    @model_validator(mode="before")
    @classmethod
    def variant_id_from_variant(cls, data: Any) -> Any:
        # Сервер отдает вариант вложенным объектом
        if isinstance(data, dict) and "variantId" not in data and "variant_id" not in data:
            variant = data.get("variant") or {}
            if "id" in variant:
                data = {**data, "variantId": str(variant["id"])}
        return data

    @computed_field
    @property
    def subtotal(self) -> Decimal:
        return self.price * self.quantity
