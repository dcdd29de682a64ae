import logging
from enum import Enum as PyEnum
from typing import Awaitable, Callable, Optional

from ..exceptions import CartError, MergeError
from ..schemas.cart import Cart
from ..schemas.merge import MergeResult
from .cart_gateway import CartGateway
from .local_cart_store import LocalCartStore

logger = logging.getLogger(__name__)


class MergePhase(PyEnum):
    IDLE = "idle"
    DETECTING = "detecting"  # Загрузка актуальной серверной корзины
    MERGING = "merging"  # Перенос гостевых позиций
    RECONCILING = "reconciling"  # Очистка гостевой корзины и обновление снимка
    DONE = "done"
    FAILED = "failed"


class MergeCoordinator:
    """Однократный перенос гостевой корзины в корзину пользователя.

    Создается на одну авторизованную сессию и выбрасывается при выходе.
    Флаг `started` не дает запустить слияние повторно; он сбрасывается,
    только если слияние не смогло начаться или часть позиций не перенеслась.
    Вызывающий код обязан держать блокировку корзины на время `run()`.
    Если сессия закончилась посреди переноса, не перенесенные позиции остаются
    в гостевой корзине.
    """

    def __init__(
            self,
            gateway: CartGateway,
            local_store: LocalCartStore,
            refresh: Callable[[], Awaitable[Cart]],
            is_active: Optional[Callable[[], bool]] = None
    ):
        self.gateway = gateway
        self.local_store = local_store
        self.refresh = refresh
        self.is_active = is_active or (lambda: True)
        self.phase = MergePhase.IDLE
        self.progress: Optional[str] = None
        self.started = False

    @property
    def in_progress(self) -> bool:
        return self.phase in (MergePhase.DETECTING, MergePhase.MERGING, MergePhase.RECONCILING)

    def should_run(self) -> bool:
        return not self.started and self.local_store.has_items()

    async def run(self) -> MergeResult:
        if not self.should_run():
            return MergeResult(skipped=True)

        self.started = True
        try:
            return await self._merge()
        finally:
            self.progress = None

    async def _merge(self) -> MergeResult:
        self._enter(MergePhase.DETECTING, "Loading your existing cart...")
        try:
            await self.refresh()
        except CartError as e:
            self._fail()
            raise MergeError(f"Failed to merge cart items: {e.message}") from e

        self._enter(MergePhase.MERGING, "Adding guest items to your cart...")
        guest_items = self.local_store.get().items
        merged = []
        failures = []

        for item in guest_items:
            if not self.is_active():
                break
            try:
                await self.gateway.add_to_cart(item.variant_id, item.quantity)
                merged.append(item)
            except CartError as e:
                logger.error(f"❌ Failed to merge guest item {item.id} (variant {item.variant_id}): {e}")
                failures.append((item, e))

        interrupted = not self.is_active()

        self._enter(MergePhase.RECONCILING, "Updating cart display...")
        if failures or interrupted:
            # Оставляем в гостевой корзине только то, что не перенеслось
            self.local_store.remove_many(item.id for item in merged)
        else:
            self.local_store.clear()

        if interrupted:
            self._fail()
            raise MergeError(
                f"Signed out during cart merge: {len(merged)} of {len(guest_items)} cart items were merged",
                failures=failures,
                merged=merged,
            )

        try:
            await self.refresh()
        except CartError as e:
            self._fail()
            raise MergeError(
                f"Cart items were merged but the cart could not be refreshed: {e.message}",
                failures=failures,
                merged=merged,
            ) from e

        if failures:
            self._fail()
            raise MergeError(
                f"{len(failures)} of {len(guest_items)} cart items could not be merged",
                failures=failures,
                merged=merged,
            )

        self._enter(MergePhase.DONE, None)
        logger.info(f"✅ Merged {len(merged)} guest items into user cart")
        return MergeResult(merged=merged)

    def _enter(self, phase: MergePhase, progress: Optional[str]):
        logger.info(f"Cart merge: {self.phase.value} -> {phase.value}")
        self.phase = phase
        self.progress = progress

    def _fail(self):
        # failed -> idle: разрешаем повторную попытку
        self._enter(MergePhase.FAILED, None)
        self.started = False
