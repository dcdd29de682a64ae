from typing import List

from pydantic import BaseModel

from .cart_item import CartItem


class MergeResult(BaseModel):
    merged: List[CartItem] = []
    skipped: bool = False

    @property
    def merged_count(self) -> int:
        return len(self.merged)
