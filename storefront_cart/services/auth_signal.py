import logging
from typing import Awaitable, Callable, List

logger = logging.getLogger(__name__)

AuthHandler = Callable[[bool], Awaitable[None]]


class AuthSignal:
    """Сигнал авторизации сессии.

    Принадлежит внешнему провайдеру сессии: корзина только подписывается на
    переходы и никогда не меняет значение сама.
    """

    def __init__(self, is_authenticated: bool = False, is_loading: bool = False):
        self.is_authenticated = is_authenticated
        self.is_loading = is_loading
        self.handlers: List[AuthHandler] = []

    def subscribe(self, handler: AuthHandler):
        """Регистрирует обработчик перехода login/logout"""
        self.handlers.append(handler)
        logger.info(f"Registered auth handler: {getattr(handler, '__qualname__', handler)}")

    def unsubscribe(self, handler: AuthHandler):
        if handler in self.handlers:
            self.handlers.remove(handler)

    async def set_authenticated(self, value: bool):
        """Вызывается провайдером сессии при входе и выходе"""
        self.is_loading = False
        if value == self.is_authenticated:
            return

        self.is_authenticated = value
        logger.info(f"Session {'authenticated' if value else 'signed out'}")

        for handler in list(self.handlers):
            try:
                await handler(value)
            except Exception as e:
                logger.error(f"❌ Auth transition handler failed: {e}")
