from .config import Settings, settings
from .exceptions import (
    CartError,
    MergeError,
    StateInvariantViolation,
    TransportError,
    ValidationError,
)
from .main import configure_logging, lifespan
from .services import (
    AuthSignal,
    CartGateway,
    CartState,
    CouponService,
    LocalCartStore,
    LocalStorage,
    MergeCoordinator,
    MergePhase,
)

__all__ = [
    "Settings",
    "settings",
    "CartError",
    "MergeError",
    "StateInvariantViolation",
    "TransportError",
    "ValidationError",
    "configure_logging",
    "lifespan",
    "AuthSignal",
    "CartGateway",
    "CartState",
    "CouponService",
    "LocalCartStore",
    "LocalStorage",
    "MergeCoordinator",
    "MergePhase",
]
