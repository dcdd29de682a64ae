from .auth_signal import AuthSignal
from .cart_gateway import CartGateway
from .cart_state import CartState
from .coupon_service import CouponService
from .local_cart_store import LocalCartStore
from .local_storage import LocalStorage
from .merge_coordinator import MergeCoordinator, MergePhase

__all__ = [
    "AuthSignal",
    "CartGateway",
    "CartState",
    "CouponService",
    "LocalCartStore",
    "LocalStorage",
    "MergeCoordinator",
    "MergePhase",
]
