from decimal import Decimal
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Настройки корзины витрины"""

    # Основные настройки приложения
    app_name: str = "Storefront Cart"
    debug: bool = False
    log_level: str = "INFO"

    # Удалённый сервис корзины
    api_base_url: str = "http://localhost:8000/api"
    request_timeout: float = 10.0

    # Локальное хранилище гостевой корзины
    local_storage_url: str = "sqlite:///./storefront_cart.db"
    guest_cart_key: str = "guestCart"
    guest_item_prefix: str = "guest_"

    # Купоны
    max_discount_ratio: Decimal = Decimal("0.9")

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"


# Создаем экземпляр настроек
settings = Settings()
