"""
Tests for the two-phase coupon flow: verify (shown immediately),
apply (persisted in the background) and the checkout reconciliation.
"""
import logging
from decimal import Decimal

import pytest

from storefront_cart.exceptions import ValidationError
from storefront_cart.schemas import Coupon, DiscountType
from storefront_cart.services.coupon_service import CouponService


async def signed_in_with(cart_state, auth, backend, *lines):
    for variant_id, quantity in lines:
        backend.seed(variant_id, quantity)
    await auth.set_authenticated(True)
    await cart_state.wait_idle()


class TestDiscountCapping:
    """Discounts never exceed 90% of the subtotal."""

    def test_fixed_amount_over_cap_is_capped_and_flagged(self, test_settings):
        service = CouponService(None, test_settings)
        coupon = Coupon(
            code="FLAT1000",
            discount_type=DiscountType.FIXED_AMOUNT,
            discount_value=Decimal("1000"),
            discount_amount=Decimal("1000"),
            final_amount=Decimal("0"),
        )

        capped = service.cap_discount(coupon, Decimal("1000"))

        assert capped.discount_amount == Decimal("900")
        assert capped.final_amount == Decimal("100")
        assert capped.is_discount_capped is True

    def test_fixed_amount_below_cap_is_untouched(self, test_settings):
        service = CouponService(None, test_settings)
        coupon = Coupon(
            code="FLAT100",
            discount_type=DiscountType.FIXED_AMOUNT,
            discount_value=Decimal("100"),
            discount_amount=Decimal("100"),
        )

        result = service.cap_discount(coupon, Decimal("1000"))

        assert result.discount_amount == Decimal("100.00")
        assert result.final_amount == Decimal("900.00")
        assert result.is_discount_capped is False

    def test_percentage_is_clamped_but_not_flagged(self, test_settings):
        service = CouponService(None, test_settings)
        coupon = Coupon(
            code="ALMOSTFREE",
            discount_type=DiscountType.PERCENTAGE,
            discount_value=Decimal("95"),
        )

        # No amount from the server: computed locally from the percentage
        result = service.cap_discount(coupon, Decimal("1000"), amount_known=False)

        assert result.discount_amount == Decimal("900.00")
        assert result.is_discount_capped is False

    @pytest.mark.asyncio
    async def test_verified_fixed_coupon_on_equal_subtotal(self, cart_state, auth, backend):
        # Arrange: subtotal 1000
        await signed_in_with(cart_state, auth, backend, ("V1", 2))

        # Act
        coupon = await cart_state.apply_coupon("FLAT1000")

        # Assert
        assert coupon.discount_type == DiscountType.FIXED_AMOUNT
        assert coupon.discount_amount == Decimal("900")
        assert coupon.is_discount_capped is True
        assert cart_state.coupon == coupon

        totals = cart_state.get_cart_totals()
        assert totals.discount == Decimal("900.00")
        assert totals.total == Decimal("100.00")


class TestVerifyAndApply:
    """Verify is awaited; apply runs in the background and never surfaces errors."""

    @pytest.mark.asyncio
    async def test_percentage_coupon_is_shown_and_applied(self, cart_state, auth, backend):
        await signed_in_with(cart_state, auth, backend, ("V1", 2))

        coupon = await cart_state.apply_coupon("SAVE10")
        assert coupon.discount_amount == Decimal("100.00")
        assert coupon.final_amount == Decimal("900.00")
        assert coupon.is_discount_capped is False
        assert cart_state.coupon_loading is False

        await cart_state.wait_idle()
        assert backend.applied_coupon == "SAVE10"

    @pytest.mark.asyncio
    async def test_background_apply_failure_is_logged_not_raised(
            self, cart_state, auth, backend, caplog
    ):
        await signed_in_with(cart_state, auth, backend, ("V1", 2))
        backend.fail_apply = True

        with caplog.at_level(logging.WARNING):
            coupon = await cart_state.apply_coupon("FLAT100")
            await cart_state.wait_idle()

        assert cart_state.coupon == coupon
        assert cart_state.error is None
        assert backend.applied_coupon is None
        assert "Background coupon application error" in caplog.text

    @pytest.mark.asyncio
    async def test_invalid_code_surfaces_error(self, cart_state, auth, backend):
        await signed_in_with(cart_state, auth, backend, ("V1", 1))

        with pytest.raises(ValidationError, match="Invalid coupon code"):
            await cart_state.apply_coupon("NOPE")

        assert cart_state.coupon is None
        assert cart_state.error == "Invalid coupon code"
        assert backend.count("POST", "/coupons/apply") == 0

    @pytest.mark.asyncio
    async def test_anonymous_session_cannot_apply_coupons(self, cart_state, backend):
        with pytest.raises(ValidationError, match="log in"):
            await cart_state.apply_coupon("SAVE10")

        assert backend.calls == []

    @pytest.mark.asyncio
    async def test_empty_cart_or_code_is_rejected_locally(self, cart_state, auth, backend):
        await signed_in_with(cart_state, auth, backend)

        with pytest.raises(ValidationError):
            await cart_state.apply_coupon("SAVE10")
        with pytest.raises(ValidationError):
            await cart_state.apply_coupon("   ")

        assert backend.count("POST", "/coupons/verify") == 0

    @pytest.mark.asyncio
    async def test_remove_coupon_is_local_only(self, cart_state, auth, backend):
        await signed_in_with(cart_state, auth, backend, ("V1", 2))
        await cart_state.apply_coupon("FLAT100")
        await cart_state.wait_idle()
        calls = len(backend.calls)

        cart_state.remove_coupon()

        assert cart_state.coupon is None
        assert cart_state.get_cart_totals().discount == Decimal("0")
        assert len(backend.calls) == calls


class TestCheckoutReconciliation:
    """Before checkout the displayed coupon must be persisted server-side."""

    @pytest.mark.asyncio
    async def test_failed_background_apply_is_retried_at_checkout(self, cart_state, auth, backend):
        await signed_in_with(cart_state, auth, backend, ("V1", 2))
        backend.fail_apply = True
        await cart_state.apply_coupon("FLAT100")
        await cart_state.wait_idle()
        assert backend.applied_coupon is None

        backend.fail_apply = False
        totals = await cart_state.prepare_checkout()

        assert backend.applied_coupon == "FLAT100"
        assert backend.count("POST", "/coupons/apply") == 2
        assert totals.discount == Decimal("100.00")
        assert totals.total == Decimal("900.00")

    @pytest.mark.asyncio
    async def test_successful_background_apply_is_not_repeated(self, cart_state, auth, backend):
        await signed_in_with(cart_state, auth, backend, ("V1", 2))
        await cart_state.apply_coupon("FLAT100")

        await cart_state.prepare_checkout()

        assert backend.count("POST", "/coupons/apply") == 1

    @pytest.mark.asyncio
    async def test_unapplicable_coupon_is_dropped_at_checkout(self, cart_state, auth, backend):
        await signed_in_with(cart_state, auth, backend, ("V1", 2))
        backend.fail_apply = True
        await cart_state.apply_coupon("FLAT100")

        with pytest.raises(ValidationError, match="FLAT100"):
            await cart_state.prepare_checkout()

        assert cart_state.coupon is None
        assert cart_state.get_cart_totals().discount == Decimal("0")

    @pytest.mark.asyncio
    async def test_cancelled_background_apply_is_reissued_at_checkout(self, cart_state, auth, backend):
        await signed_in_with(cart_state, auth, backend, ("V1", 2))
        await cart_state.apply_coupon("FLAT100")
        cart_state.coupon_service.pending_apply.cancel()

        totals = await cart_state.prepare_checkout()

        assert cart_state.coupon_service.pending_apply.cancelled()
        assert backend.applied_coupon == "FLAT100"
        assert backend.count("POST", "/coupons/apply") == 1
        assert totals.discount == Decimal("100.00")
