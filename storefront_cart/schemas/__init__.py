from .cart_item import CartItem
from .cart import Cart, CartTotals, to_money
from .coupon import Coupon, DiscountType
from .merge import MergeResult

__all__ = ["CartItem", "Cart", "CartTotals", "to_money", "Coupon", "DiscountType", "MergeResult"]
