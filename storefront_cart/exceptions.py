from typing import List, Optional, Tuple


class CartError(Exception):
    """Базовая ошибка корзины"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class TransportError(CartError):
    """Сеть недоступна, таймаут или ошибка сервера (5xx)"""


class ValidationError(CartError):
    """Запрос отклонен сервером или локальной проверкой"""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MergeError(CartError):
    """Не удалось перенести гостевую корзину (полностью или частично)"""

    def __init__(self, message: str, failures: List[Tuple] = None, merged: List = None):
        super().__init__(message)
        self.failures = failures or []
        self.merged = merged or []


class StateInvariantViolation(CartError):
    """Итоги корзины не совпадают с суммой позиций"""
