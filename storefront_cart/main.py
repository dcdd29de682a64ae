import logging
from contextlib import asynccontextmanager
from typing import Optional

import httpx

from .config import Settings, settings as default_settings
from .database import create_storage_engine, create_session_factory
from .services.auth_signal import AuthSignal
from .services.cart_gateway import CartGateway
from .services.cart_state import CartState
from .services.coupon_service import CouponService
from .services.local_cart_store import LocalCartStore
from .services.local_storage import LocalStorage

logger = logging.getLogger(__name__)


def configure_logging(settings: Settings = None):
    """Настройка логирования"""
    settings = settings or default_settings
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    )


@asynccontextmanager
async def lifespan(
        auth: AuthSignal,
        settings: Settings = None,
        client: Optional[httpx.AsyncClient] = None
):
    """Собирает корзину витрины и управляет ее жизненным циклом"""
    settings = settings or default_settings

    # Startup
    logger.info(f"Starting {settings.app_name}...")
    engine = create_storage_engine(settings.local_storage_url)
    session_factory = create_session_factory(engine)

    gateway = CartGateway(settings, client=client)
    local_store = LocalCartStore(LocalStorage(session_factory), settings)
    cart_state = CartState(
        gateway,
        local_store,
        auth,
        coupon_service=CouponService(gateway, settings),
        settings=settings,
    )

    try:
        await cart_state.mount()
        logger.info(f"✅ {settings.app_name} started")

        yield cart_state  # Корзина работает

    finally:
        # Shutdown
        logger.info(f"Shutting down {settings.app_name}...")
        await cart_state.shutdown()
        await gateway.aclose()
        engine.dispose()
        logger.info(f"✅ {settings.app_name} shut down")
