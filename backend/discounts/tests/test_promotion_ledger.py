"""
Promotion Ledger Tests

Tests for applying and removing promotions on orders:
- Discount applied to order totals (percentage, fixed price, gift)
- Single-promotion policy
- Usage cap enforcement against the ledger
- Apply / unapply round trip
- Release on cancel and recalculation after edits
"""
import pytest
from decimal import Decimal
from django.db import OperationalError

from core_backend.exceptions import (
    ConflictError,
    NotFoundError,
    PromotionIneligibleError,
    StateError,
    ValidationError,
)
from discounts.models import Promotion, PromotionUsage
from discounts.services import PromotionLedgerService
from orders.models import Order, OrderItem


def assert_totals_consistent(order):
    order.refresh_from_db()
    assert order.total_amount == order.subtotal - order.discount_amount
    assert order.total_amount >= 0


@pytest.mark.django_db
class TestApplyPromotion:
    """Test applying promotions through the ledger"""

    def test_percentage_promotion(self, services, open_order, percent_promotion):
        """2 x 50.000 with 10% off: discount 10.000, total 90.000"""
        applied = services.ledger.apply(percent_promotion.id, open_order.id)

        open_order.refresh_from_db()
        assert applied.discount_amount == Decimal("10000")
        assert open_order.subtotal == Decimal("100000")
        assert open_order.discount_amount == Decimal("10000")
        assert open_order.total_amount == Decimal("90000")
        assert open_order.applied_promotion_id == percent_promotion.id

        usage = PromotionUsage.objects.get(promotion=percent_promotion, order=open_order)
        assert usage.discount_amount == Decimal("10000")
        percent_promotion.refresh_from_db()
        assert percent_promotion.current_total_usage == 1

    def test_fixed_price_promotion(self, services, table_2, product_coffee, make_promotion):
        """Qualifying lines of 150.000 at a fixed price of 99.000: discount 51.000"""
        order = services.orders.create_order(
            items=[{"product_id": product_coffee.id, "quantity": 3}],
            order_type=Order.OrderType.DINE_IN,
            table_id=table_2.id,
        )
        promotion = make_promotion(
            promotion_type=Promotion.PromotionType.FIXED_PRICE,
            discount_value=Decimal("99000"),
            items=[product_coffee],
        )

        services.ledger.apply(promotion.id, order.id)

        order.refresh_from_db()
        assert order.discount_amount == Decimal("51000")
        assert order.total_amount == Decimal("99000")

    def test_gift_promotion_adds_gift_lines(self, services, table_2, product_coffee, gift_cookie, make_promotion):
        order = services.orders.create_order(
            items=[{"product_id": product_coffee.id, "quantity": 5}],
            order_type=Order.OrderType.DINE_IN,
            table_id=table_2.id,
        )
        promotion = make_promotion(
            promotion_type=Promotion.PromotionType.GIFT,
            discount_value=Decimal("0"),
            buy_quantity=2,
            get_quantity=1,
            items=[product_coffee],
            gifts=[gift_cookie],
        )

        services.ledger.apply(promotion.id, order.id, [{"item_id": gift_cookie.id, "quantity": 2}])

        gift_line = order.items.get(is_gift=True)
        assert gift_line.product_id == gift_cookie.id
        assert gift_line.quantity == 2
        assert gift_line.name == "Bánh quy (Tặng)"
        assert gift_line.line_total == Decimal("30000")

        order.refresh_from_db()
        assert order.subtotal == Decimal("280000")
        assert order.discount_amount == Decimal("30000")
        assert order.total_amount == Decimal("250000")

    def test_gift_selection_over_entitlement_is_rejected(
        self, services, table_2, product_coffee, gift_cookie, make_promotion
    ):
        """Buy 2 get 1 with 5 qualifying units allows 2 gifts; 3 is rejected"""
        order = services.orders.create_order(
            items=[{"product_id": product_coffee.id, "quantity": 5}],
            order_type=Order.OrderType.DINE_IN,
            table_id=table_2.id,
        )
        promotion = make_promotion(
            promotion_type=Promotion.PromotionType.GIFT,
            discount_value=Decimal("0"),
            buy_quantity=2,
            get_quantity=1,
            items=[product_coffee],
            gifts=[gift_cookie],
        )

        with pytest.raises(ValidationError) as exc_info:
            services.ledger.apply(promotion.id, order.id, [{"item_id": gift_cookie.id, "quantity": 3}])

        assert exc_info.value.message == "Số lượng món tặng tối đa là 2, đã chọn 3"
        assert not order.items.filter(is_gift=True).exists()
        assert not PromotionUsage.objects.filter(order=order).exists()
        order.refresh_from_db()
        assert order.applied_promotion_id is None

    def test_ineligible_promotion(self, services, open_order, make_promotion):
        promotion = make_promotion(apply_to_all_items=True, min_order_value=Decimal("500000"))

        with pytest.raises(PromotionIneligibleError) as exc_info:
            services.ledger.apply(promotion.id, open_order.id)

        assert exc_info.value.code == "min_order_value"
        assert exc_info.value.message == "Đơn hàng tối thiểu 500.000đ"
        assert isinstance(exc_info.value, ConflictError)

    def test_unknown_promotion(self, services, open_order):
        with pytest.raises(NotFoundError) as exc_info:
            services.ledger.apply(999999, open_order.id)
        assert exc_info.value.message == "Mã khuyến mãi không tồn tại"

    def test_deleted_promotion_is_not_found(self, services, open_order, percent_promotion):
        percent_promotion.delete()
        with pytest.raises(NotFoundError):
            services.ledger.apply(percent_promotion.id, open_order.id)

    def test_same_promotion_twice(self, services, open_order, percent_promotion):
        services.ledger.apply(percent_promotion.id, open_order.id)

        with pytest.raises(ConflictError) as exc_info:
            services.ledger.apply(percent_promotion.id, open_order.id)

        assert exc_info.value.message == "Khuyến mãi này đã được áp dụng cho đơn hàng"
        assert PromotionUsage.objects.filter(order=open_order).count() == 1

    def test_second_promotion_rejected(self, services, open_order, percent_promotion, make_promotion):
        other = make_promotion(apply_to_all_items=True, discount_value=Decimal("5"))
        services.ledger.apply(percent_promotion.id, open_order.id)

        with pytest.raises(ConflictError) as exc_info:
            services.ledger.apply(other.id, open_order.id)

        assert "Vui lòng hủy khuyến mãi cũ" in exc_info.value.message

    def test_terminal_order(self, services, open_order, percent_promotion):
        services.orders.cancel_order(open_order.id, "Khách về")
        with pytest.raises(StateError):
            services.ledger.apply(percent_promotion.id, open_order.id)


@pytest.mark.django_db
class TestUsageCap:
    def test_cap_of_one_allows_exactly_one_application(
        self, services, open_order, takeaway_order, make_promotion
    ):
        promotion = make_promotion(apply_to_all_items=True, max_total_usage=1)

        services.ledger.apply(promotion.id, open_order.id)
        with pytest.raises(PromotionIneligibleError) as exc_info:
            services.ledger.apply(promotion.id, takeaway_order.id)

        assert exc_info.value.code == "usage_cap_reached"
        assert PromotionUsage.objects.filter(promotion=promotion).count() == 1
        takeaway_order.refresh_from_db()
        assert takeaway_order.discount_amount == Decimal("0")

    def test_unapply_frees_the_slot(self, services, open_order, takeaway_order, make_promotion):
        promotion = make_promotion(apply_to_all_items=True, max_total_usage=1)

        services.ledger.apply(promotion.id, open_order.id)
        services.ledger.unapply(promotion.id, open_order.id)
        services.ledger.apply(promotion.id, takeaway_order.id)

        assert PromotionUsage.objects.get(promotion=promotion).order_id == takeaway_order.id


@pytest.mark.django_db
class TestUnapplyPromotion:
    def test_round_trip_restores_discount(self, services, open_order, percent_promotion):
        services.ledger.apply(percent_promotion.id, open_order.id)
        services.ledger.unapply(percent_promotion.id, open_order.id)

        open_order.refresh_from_db()
        assert open_order.discount_amount == Decimal("0")
        assert open_order.total_amount == open_order.subtotal == Decimal("100000")
        assert open_order.applied_promotion_id is None
        assert not PromotionUsage.objects.filter(order=open_order).exists()
        percent_promotion.refresh_from_db()
        assert percent_promotion.current_total_usage == 0

    def test_round_trip_removes_gift_lines(self, services, open_order, product_coffee, gift_cookie, make_promotion):
        promotion = make_promotion(
            promotion_type=Promotion.PromotionType.GIFT,
            discount_value=Decimal("0"),
            buy_quantity=2,
            get_quantity=1,
            items=[product_coffee],
            gifts=[gift_cookie],
        )
        services.ledger.apply(promotion.id, open_order.id)
        assert open_order.items.filter(is_gift=True).count() == 1

        services.ledger.unapply(promotion.id, open_order.id)

        assert not open_order.items.filter(is_gift=True).exists()
        open_order.refresh_from_db()
        assert open_order.subtotal == Decimal("100000")
        assert open_order.discount_amount == Decimal("0")

    def test_not_applied(self, services, open_order, percent_promotion):
        with pytest.raises(ConflictError) as exc_info:
            services.ledger.unapply(percent_promotion.id, open_order.id)
        assert exc_info.value.message == "Khuyến mãi này chưa được áp dụng cho đơn hàng"

    def test_completed_order(self, services, open_order, percent_promotion):
        services.ledger.apply(percent_promotion.id, open_order.id)
        services.kitchen.send_to_kitchen(open_order.id)
        services.orders.checkout(open_order.id, Order.PaymentMethod.CASH, Decimal("90000"))

        with pytest.raises(StateError) as exc_info:
            services.ledger.unapply(percent_promotion.id, open_order.id)
        assert exc_info.value.message == "Không thể hủy khuyến mãi của đơn hàng đã hoàn thành"

    def test_cancel_releases_promotion(self, services, open_order, percent_promotion):
        services.ledger.apply(percent_promotion.id, open_order.id)
        services.orders.cancel_order(open_order.id, "Khách đổi ý")

        open_order.refresh_from_db()
        assert open_order.applied_promotion_id is None
        assert not PromotionUsage.objects.filter(order=open_order).exists()


@pytest.mark.django_db
class TestRecalculation:
    def test_discount_follows_item_changes(self, services, open_order, percent_promotion, product_tea):
        services.ledger.apply(percent_promotion.id, open_order.id)
        services.items.add_item(open_order.id, {"product_id": product_tea.id, "quantity": 1})

        open_order.refresh_from_db()
        assert open_order.subtotal == Decimal("130000")
        assert open_order.discount_amount == Decimal("13000")
        assert_totals_consistent(open_order)
        usage = PromotionUsage.objects.get(order=open_order)
        assert usage.discount_amount == Decimal("13000")

    def test_discount_drops_when_order_no_longer_qualifies(self, services, open_order, make_promotion):
        promotion = make_promotion(apply_to_all_items=True, min_order_value=Decimal("100000"))
        services.ledger.apply(promotion.id, open_order.id)

        line = open_order.items.get()
        services.items.reduce_item(open_order.id, line.id, "Khách trả 1 ly", quantity=1)

        open_order.refresh_from_db()
        assert open_order.subtotal == Decimal("50000")
        assert open_order.discount_amount == Decimal("0")
        assert open_order.total_amount == Decimal("50000")

    def test_gift_stops_being_free_when_buy_lines_shrink(
        self, services, open_order, product_coffee, gift_cookie, make_promotion
    ):
        """Buy 2 coffee get 1 cookie; returning a coffee leaves the cookie at its price"""
        promotion = make_promotion(
            promotion_type=Promotion.PromotionType.GIFT,
            discount_value=Decimal("0"),
            buy_quantity=2,
            get_quantity=1,
            items=[product_coffee],
            gifts=[gift_cookie],
        )
        services.ledger.apply(promotion.id, open_order.id)
        open_order.refresh_from_db()
        assert open_order.discount_amount == Decimal("15000")

        coffee = open_order.items.get(is_gift=False)
        services.items.reduce_item(open_order.id, coffee.id, "Khách trả 1 ly", quantity=1)

        open_order.refresh_from_db()
        assert open_order.subtotal == Decimal("65000")
        assert open_order.discount_amount == Decimal("0")
        assert open_order.total_amount == Decimal("65000")
        assert PromotionUsage.objects.get(order=open_order).discount_amount == Decimal("0")
        assert_totals_consistent(open_order)

    def test_gift_is_free_again_when_buy_lines_return(
        self, services, open_order, product_coffee, gift_cookie, make_promotion
    ):
        promotion = make_promotion(
            promotion_type=Promotion.PromotionType.GIFT,
            discount_value=Decimal("0"),
            buy_quantity=2,
            get_quantity=1,
            items=[product_coffee],
            gifts=[gift_cookie],
        )
        services.ledger.apply(promotion.id, open_order.id)
        coffee = open_order.items.get(is_gift=False)
        services.items.reduce_item(open_order.id, coffee.id, "Khách trả 1 ly", quantity=1)

        services.items.add_item(open_order.id, {"product_id": product_coffee.id, "quantity": 1})

        open_order.refresh_from_db()
        assert open_order.discount_amount == Decimal("15000")
        assert_totals_consistent(open_order)


class LockedDatabaseUnitOfWork:
    """Unit of work whose transaction never gets the database lock."""

    def __enter__(self):
        raise OperationalError("database is locked")

    def __exit__(self, exc_type, exc, tb):
        return False


@pytest.mark.django_db
class TestLockContention:
    def test_lock_timeout_is_reported_as_conflict(self, services, open_order, percent_promotion):
        ledger = PromotionLedgerService(
            services.evaluator, services.calculation, unit_of_work=LockedDatabaseUnitOfWork
        )

        with pytest.raises(ConflictError) as exc_info:
            ledger.apply(percent_promotion.id, open_order.id)

        assert exc_info.value.message == "Mã khuyến mãi đã hết lượt sử dụng"
        assert exc_info.value.details == {"promotion_id": percent_promotion.id, "order_id": open_order.id}
        assert not PromotionUsage.objects.filter(order=open_order).exists()


@pytest.mark.django_db
class TestPromotionReads:
    def test_can_use(self, services, percent_promotion, make_promotion, customer_regular):
        assert services.ledger.can_use(percent_promotion.id).eligible

        members_only = make_promotion(apply_to_all_items=True, apply_to_walk_in=False)
        result = services.ledger.can_use(members_only.id, customer_id=None)
        assert not result.eligible
        assert result.reason == "Khuyến mãi chỉ dành cho khách hàng thành viên"
        assert services.ledger.can_use(members_only.id, customer_id=customer_regular.id).eligible

    def test_can_use_unknown(self, services):
        result = services.ledger.can_use(999999)
        assert not result.eligible
        assert result.code == "not_found"

    def test_available_promotions(self, services, open_order, percent_promotion, make_promotion):
        big_spender = make_promotion(apply_to_all_items=True, min_order_value=Decimal("1000000"))
        deactivated = make_promotion(apply_to_all_items=True, is_active=False)

        available = {entry.promotion.id: entry.result for entry in services.ledger.get_available_promotions(open_order.id)}

        assert available[percent_promotion.id].eligible
        assert available[percent_promotion.id].discount_amount == Decimal("10000")
        assert not available[big_spender.id].eligible
        assert deactivated.id not in available

    def test_promotion_detail(self, services, open_order, takeaway_order, customer_vip, make_promotion):
        promotion = make_promotion(apply_to_all_items=True, max_total_usage=5)
        Order.objects.filter(pk=open_order.pk).update(customer=customer_vip)
        services.ledger.apply(promotion.id, open_order.id)
        services.ledger.apply(promotion.id, takeaway_order.id)

        detail = services.ledger.get_promotion_detail(promotion.id)

        assert detail["promotion"] == promotion
        assert detail["stats"]["total_usages"] == 2
        assert detail["stats"]["unique_customers"] == 1
        assert detail["stats"]["total_discount"] == Decimal("13000")
        assert detail["stats"]["remaining_usages"] == 3


@pytest.mark.django_db
class TestGiftLineStatus:
    def test_gift_lines_start_pending(self, services, open_order, product_coffee, gift_cookie, make_promotion):
        promotion = make_promotion(
            promotion_type=Promotion.PromotionType.GIFT,
            discount_value=Decimal("0"),
            buy_quantity=2,
            get_quantity=1,
            items=[product_coffee],
            gifts=[gift_cookie],
        )
        services.ledger.apply(promotion.id, open_order.id)
        assert open_order.items.get(is_gift=True).status == OrderItem.ItemStatus.PENDING
        assert_totals_consistent(open_order)
