from decimal import Decimal
from enum import Enum as PyEnum
from typing import Optional

from pydantic import BaseModel
from pydantic.alias_generators import to_camel


class DiscountType(str, PyEnum):
    PERCENTAGE = "PERCENTAGE"
    FIXED_AMOUNT = "FIXED_AMOUNT"


class Coupon(BaseModel):
    id: Optional[str] = None
    code: str
    discount_type: DiscountType
    discount_value: Decimal
    discount_amount: Decimal = Decimal("0")
    final_amount: Decimal = Decimal("0")
    is_discount_capped: bool = False

    class Config:
        alias_generator = to_camel
        populate_by_name = True
        coerce_numbers_to_str = True
