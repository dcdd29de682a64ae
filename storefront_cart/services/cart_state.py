import asyncio
import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Set

from ..config import Settings, settings as default_settings
from ..exceptions import CartError, MergeError, ValidationError
from ..schemas.cart import Cart, CartTotals, to_money
from ..schemas.coupon import Coupon
from ..schemas.merge import MergeResult
from .auth_signal import AuthSignal
from .cart_gateway import CartGateway
from .coupon_service import CouponService
from .local_cart_store import LocalCartStore
from .merge_coordinator import MergeCoordinator

logger = logging.getLogger(__name__)


class CartState:
    """Единое состояние корзины поверх гостевого и серверного хранилищ.

    Каждая операция выбирает хранилище по сигналу авторизации. Все вызовы,
    которые трогают серверную корзину, проходят через одну блокировку, поэтому
    слияние (fetch -> add -> fetch) не перемешивается с посторонним fetch.

    Оптимистичные правки увеличивают локальную версию снимка. Фоновая сверка
    запоминает версию на момент запуска и не применяется, если после нее уже
    была более новая правка.
    """

    def __init__(
            self,
            gateway: CartGateway,
            local_store: LocalCartStore,
            auth: AuthSignal,
            coupon_service: Optional[CouponService] = None,
            settings: Settings = None
    ):
        self.gateway = gateway
        self.local_store = local_store
        self.auth = auth
        self.settings = settings or default_settings
        self.coupon_service = coupon_service or CouponService(gateway, self.settings)

        self.cart: Cart = Cart.empty()
        self.coupon: Optional[Coupon] = None
        self.loading = False
        self.items_loading: Dict[str, bool] = {}
        self.coupon_loading = False
        self.error: Optional[str] = None
        self.mounted = False
        self.merge_coordinator: Optional[MergeCoordinator] = None

        self._lock = asyncio.Lock()
        self._edit_version = 0
        self._session = 0
        self._background: Set[asyncio.Task] = set()

    @property
    def is_authenticated(self) -> bool:
        return self.auth.is_authenticated

    @property
    def merge_progress(self) -> Optional[str]:
        return self.merge_coordinator.progress if self.merge_coordinator else None

    # Жизненный цикл

    async def mount(self):
        """Первичная загрузка корзины и подписка на вход/выход"""
        if self.mounted:
            return
        self.mounted = True
        self.auth.subscribe(self.on_auth_change)

        if self.is_authenticated:
            await self._on_login()
        else:
            self.cart = self.local_store.get()

    async def on_auth_change(self, is_authenticated: bool):
        if not self.mounted:
            return
        if is_authenticated:
            await self._on_login()
        else:
            self._on_logout()

    async def wait_idle(self):
        """Дождаться фоновых задач (сверка, закрепление купона)"""
        while True:
            pending = [task for task in self._background if not task.done()]
            if not pending:
                return
            await asyncio.gather(*pending, return_exceptions=True)

    async def shutdown(self):
        self.auth.unsubscribe(self.on_auth_change)
        for task in list(self._background):
            task.cancel()
        await asyncio.gather(*self._background, return_exceptions=True)
        self._background.clear()
        self.mounted = False

    # Операции с корзиной

    async def fetch_cart(self) -> Optional[Cart]:
        """Получить актуальную корзину с сервера (только после входа)"""
        if not self.is_authenticated:
            return None

        self.loading = True
        try:
            async with self._lock:
                return await self._fetch_unlocked()
        finally:
            self.loading = False

    async def add_to_cart(
            self,
            variant_id: str,
            quantity: int = 1,
            price: Optional[Decimal] = None,
            product: Optional[Dict[str, Any]] = None,
            variant: Optional[Dict[str, Any]] = None
    ) -> Cart:
        """Добавить товар в корзину"""
        self._check_quantity(quantity)

        self.loading = True
        try:
            if self.is_authenticated:
                async with self._lock:
                    await self.gateway.add_to_cart(variant_id, quantity)
                    # Сервер может пересчитать цены, поэтому берем корзину целиком
                    await self._fetch_unlocked()
            else:
                self.cart = self.local_store.add(variant_id, quantity, price, product, variant)
            return self.cart
        except CartError as e:
            self.error = e.message
            logger.error(f"❌ Failed to add variant {variant_id} to cart: {e}")
            raise
        finally:
            self.loading = False

    async def update_cart_item(self, item_id: str, quantity: int) -> Cart:
        """Изменить количество позиции"""
        self._check_quantity(quantity)

        self.items_loading[item_id] = True
        try:
            if self.is_authenticated:
                async with self._lock:
                    previous, version = self.cart, self._edit_version
                    if previous.find_item(item_id):
                        self._apply_optimistic(previous.with_item_quantity(item_id, quantity))
                    try:
                        await self.gateway.update_cart_item(item_id, quantity)
                    except CartError:
                        self._rollback(previous, version)
                        raise
                self._schedule_reconcile()
            else:
                self.cart = self.local_store.update_item(item_id, quantity)
            return self.cart
        except CartError as e:
            self.error = e.message
            logger.error(f"❌ Failed to update cart item {item_id}: {e}")
            raise
        finally:
            self.items_loading.pop(item_id, None)

    async def remove_from_cart(self, item_id: str) -> Cart:
        """Удалить позицию из корзины"""
        self.items_loading[item_id] = True
        try:
            if self.is_authenticated:
                async with self._lock:
                    previous, version = self.cart, self._edit_version
                    if previous.find_item(item_id):
                        self._apply_optimistic(previous.without_item(item_id))
                    try:
                        await self.gateway.remove_from_cart(item_id)
                    except CartError:
                        self._rollback(previous, version)
                        raise
                self._schedule_reconcile()
            else:
                self.cart = self.local_store.remove(item_id)
            return self.cart
        except CartError as e:
            self.error = e.message
            logger.error(f"❌ Failed to remove cart item {item_id}: {e}")
            raise
        finally:
            self.items_loading.pop(item_id, None)

    async def clear_cart(self) -> Cart:
        """Очистить корзину"""
        self.loading = True
        try:
            if self.is_authenticated:
                async with self._lock:
                    await self.gateway.clear_cart()
                    self._edit_version += 1
                    self.cart = Cart.empty()
            else:
                self.cart = self.local_store.clear()
            self.coupon = None
            logger.info("🧹 Cart cleared")
            return self.cart
        except CartError as e:
            self.error = e.message
            logger.error(f"❌ Error clearing cart: {e}")
            raise
        finally:
            self.loading = False

    # Купоны

    async def apply_coupon(self, code: str) -> Coupon:
        """Проверить купон, показать скидку и закрепить его в фоне"""
        if not self.is_authenticated:
            raise ValidationError("Please log in to apply coupons")

        self.coupon_loading = True
        self.error = None
        try:
            coupon = await self.coupon_service.verify(code, self.cart.subtotal)
            self.coupon = coupon
            self._track(self.coupon_service.apply_in_background(coupon.code))
            return coupon
        except CartError as e:
            self.error = e.message
            logger.error(f"❌ Coupon error: {e}")
            raise
        finally:
            self.coupon_loading = False

    def remove_coupon(self):
        self.coupon = None

    async def prepare_checkout(self) -> CartTotals:
        """Сверить корзину и купон с сервером перед оформлением заказа"""
        if not self.is_authenticated:
            raise ValidationError("Please log in to checkout")

        await self.fetch_cart()

        if self.coupon is not None:
            code = self.coupon.code
            try:
                await self.coupon_service.ensure_applied(code)
                # Скидку пересчитываем от актуальной суммы корзины
                self.coupon = self.coupon_service.cap_discount(self.coupon, self.cart.subtotal)
            except CartError as e:
                self.coupon = None
                self.error = e.message
                logger.error(f"❌ Coupon {code} could not be applied before checkout: {e}")
                raise ValidationError(f"Coupon {code} could not be applied: {e.message}") from e

        return self.get_cart_totals()

    # Производные значения

    def get_cart_totals(self) -> CartTotals:
        subtotal = to_money(self.cart.subtotal)
        discount = Decimal("0")
        shipping = Decimal("0")  # Бесплатная доставка
        tax = Decimal("0")

        if self.coupon is not None:
            max_discount = to_money(subtotal * Decimal(str(self.settings.max_discount_ratio)))
            discount = min(to_money(self.coupon.discount_amount), max_discount)

        return CartTotals(
            subtotal=subtotal,
            discount=discount,
            shipping=shipping,
            tax=tax,
            total=subtotal - discount + shipping + tax,
        )

    def get_cart_item_count(self) -> int:
        # До инициализации всегда 0
        if not self.mounted or self.auth.is_loading:
            return 0
        if self.is_authenticated:
            return self.cart.total_quantity
        return self.local_store.item_count()

    # Слияние гостевой корзины

    async def retry_merge(self) -> MergeResult:
        """Повторить перенос позиций, которые не перенеслись"""
        if not self.is_authenticated:
            raise ValidationError("Please log in to merge your cart")
        return await self._run_merge(self._session_coordinator())

    def _session_coordinator(self) -> MergeCoordinator:
        if self.merge_coordinator is None:
            session = self._session
            self.merge_coordinator = MergeCoordinator(
                self.gateway,
                self.local_store,
                self._fetch_unlocked,
                is_active=lambda: not self._session_ended(session),
            )
        return self.merge_coordinator

    async def _on_login(self):
        coordinator = self._session_coordinator()
        if coordinator.should_run():
            await self._run_merge(coordinator)
        else:
            await self.fetch_cart()

    def _on_logout(self):
        # Координатор живет одну сессию: следующий вход сможет слить корзину снова
        self.merge_coordinator = None
        # Незавершенные запросы старой сессии не должны менять снимок
        self._session += 1
        self._edit_version += 1
        self.items_loading = {}
        self.coupon = None
        self.cart = self.local_store.get()
        logger.info("Signed out: showing guest cart")

    async def _run_merge(self, coordinator: MergeCoordinator) -> MergeResult:
        self.loading = True
        try:
            async with self._lock:
                result = await coordinator.run()
            return result
        except MergeError as e:
            if coordinator is self.merge_coordinator:
                self.error = e.message
            elif not self.is_authenticated:
                # Вышли во время слияния: показываем то, что осталось в гостевой корзине
                self.cart = self.local_store.get()
            logger.error(f"❌ Error merging cart: {e}")
            raise
        finally:
            self.loading = False

    # Внутреннее

    async def _fetch_unlocked(self) -> Cart:
        session = self._session
        if not self.is_authenticated:
            return self.cart

        try:
            cart = await self.gateway.get_cart()
            cart.check_invariants()
        except CartError as e:
            if self._session_ended(session):
                raise
            # Не оставляем устаревший снимок, который выглядит как успех
            self.error = e.message
            self.cart = Cart.empty()
            raise

        if self._session_ended(session):
            logger.info("Discarding server cart fetched for an ended session")
            return self.cart
        self.cart = cart
        return cart

    def _session_ended(self, session: int) -> bool:
        return session != self._session or not self.is_authenticated

    def _apply_optimistic(self, cart: Cart):
        cart.check_invariants()
        self._edit_version += 1
        self.cart = cart

    def _rollback(self, previous: Cart, version: int):
        # Откатываем только собственную оптимистичную правку
        if self._edit_version == version + 1:
            self.cart = previous
            self._edit_version = version

    def _schedule_reconcile(self):
        self._track(asyncio.create_task(self._reconcile(self._edit_version)))

    async def _reconcile(self, version: int) -> bool:
        async with self._lock:
            if version < self._edit_version:
                logger.info(f"Skipping stale cart reconciliation (v{version} < v{self._edit_version})")
                return False
            if not self.is_authenticated:
                return False
            try:
                await self._fetch_unlocked()
            except CartError as e:
                logger.error(f"❌ Background cart reconciliation failed: {e}")
                return False
            return True

    def _track(self, task: asyncio.Task):
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    @staticmethod
    def _check_quantity(quantity: int):
        if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
            raise ValidationError("Quantity must be a positive integer")
