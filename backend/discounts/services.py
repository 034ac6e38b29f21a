from dataclasses import dataclass
from decimal import Decimal
from django.db import OperationalError
from django.utils import timezone
import logging

from core_backend.exceptions import (
    ConflictError,
    PromotionIneligibleError,
    StateError,
    ValidationError,
)
from core_backend.unit_of_work import UnitOfWork
from .evaluator import GIFT_SELECTION_CODES, EligibilityResult, OrderSnapshot
from .models import Promotion
from orders.models import OrderItem

logger = logging.getLogger(__name__)


@dataclass
class AppliedPromotion:
    order: object
    promotion: Promotion
    discount_amount: Decimal
    result: EligibilityResult


@dataclass
class AvailablePromotion:
    promotion: Promotion
    result: EligibilityResult


class PromotionLedgerService:
    """
    Applies and removes promotions on orders and keeps the usage ledger.

    Every apply re-runs the full evaluation inside the transaction that writes
    the usage row, with the promotion row locked, so concurrent applies can
    never push a promotion past its usage cap.
    """

    def __init__(self, evaluator, calculation_service, unit_of_work=UnitOfWork, clock=timezone.now):
        self.evaluator = evaluator
        self.calculation_service = calculation_service
        self.unit_of_work = unit_of_work
        self.clock = clock

    # --- Apply ---

    def apply(self, promotion_id, order_id, selected_gifts=None) -> AppliedPromotion:
        try:
            with self.unit_of_work() as uow:
                order = uow.orders.get_for_update(order_id)
                return self.apply_to_locked_order(uow, promotion_id, order, selected_gifts)
        except OperationalError as exc:
            # Lost the race for the promotion row (or the ledger table)
            logger.warning(f"Promotion {promotion_id} apply to order {order_id} hit lock contention: {exc}")
            raise ConflictError(
                "Mã khuyến mãi đã hết lượt sử dụng",
                details={"promotion_id": promotion_id, "order_id": order_id},
            ) from exc

    def apply_to_locked_order(self, uow, promotion_id, order, selected_gifts=None,
                              gift_status=None) -> AppliedPromotion:
        """
        Applies a promotion to an order already locked by ``uow``. Gift lines
        are created with ``gift_status`` (pending by default).
        """
        if order.is_terminal:
            raise StateError("Không thể áp dụng khuyến mãi cho đơn hàng đã hoàn thành hoặc đã hủy")

        if order.applied_promotion_id is not None:
            if order.applied_promotion_id == promotion_id:
                raise ConflictError("Khuyến mãi này đã được áp dụng cho đơn hàng")
            raise ConflictError(
                "Đơn hàng đã áp dụng khuyến mãi. Vui lòng hủy khuyến mãi cũ trước khi áp dụng khuyến mãi mới."
            )

        promotion = uow.promotions.get_for_update(promotion_id)

        snapshot = OrderSnapshot.from_order(order)
        result = self.evaluator.evaluate(
            promotion, snapshot, selected_gifts=selected_gifts, now=self.clock()
        )
        if not result.eligible:
            logger.warning(
                f"Promotion {promotion.id} rejected for order {order.order_code}: {result.code} - {result.reason}"
            )
            if result.code in GIFT_SELECTION_CODES:
                raise ValidationError(result.reason, details={"code": result.code})
            raise PromotionIneligibleError(result.reason, result.code)

        for product, quantity in result.granted_gifts:
            uow.orders.add_item(
                order,
                product=product,
                name=f"{product.name} (Tặng)",
                quantity=quantity,
                unit_price=product.selling_price,
                is_gift=True,
                status=gift_status or OrderItem.ItemStatus.PENDING,
                notes=f"Quà tặng từ KM #{promotion.id}",
            )

        uow.promotions.record_usage(promotion, order, result.discount_amount)
        order.applied_promotion = promotion
        order.save(update_fields=["applied_promotion", "updated_at"])
        self.calculation_service.recalculate_order_totals(order)

        logger.info(
            f"Promotion {promotion.id} applied to order {order.order_code}: discount {order.discount_amount}"
        )
        return AppliedPromotion(
            order=order,
            promotion=promotion,
            discount_amount=order.discount_amount,
            result=result,
        )

    # --- Unapply / release ---

    def unapply(self, promotion_id, order_id):
        with self.unit_of_work() as uow:
            order = uow.orders.get_for_update(order_id)
            if order.status == order.OrderStatus.COMPLETED:
                raise StateError("Không thể hủy khuyến mãi của đơn hàng đã hoàn thành")
            if order.applied_promotion_id != promotion_id:
                raise ConflictError("Khuyến mãi này chưa được áp dụng cho đơn hàng")

            promotion = uow.promotions.get_for_update(promotion_id, include_archived=True)
            self._release(uow, order, promotion)
            logger.info(f"Promotion {promotion.id} removed from order {order.order_code}")
            return order

    def release(self, uow, order):
        """
        Removes whatever promotion an order carries. Used when an order is
        cancelled or merged away; a no-op for orders without a promotion.
        """
        if order.applied_promotion_id is None:
            return order
        promotion = uow.promotions.get_for_update(order.applied_promotion_id, include_archived=True)
        self._release(uow, order, promotion)
        logger.info(f"Promotion {promotion.id} released from order {order.order_code}")
        return order

    def _release(self, uow, order, promotion):
        order.items.filter(is_gift=True).delete()
        uow.promotions.remove_usage(promotion, order)
        order.applied_promotion = None
        order.save(update_fields=["applied_promotion", "updated_at"])
        self.calculation_service.recalculate_order_totals(order)

    # --- Reads ---

    def can_use(self, promotion_id, customer_id=None) -> EligibilityResult:
        with self.unit_of_work() as uow:
            promotion = uow.promotions.find(promotion_id)
        if promotion is None:
            return EligibilityResult.rejected("Mã khuyến mãi không tồn tại", "not_found")
        return self.evaluator.check_usage(promotion, customer_id, now=self.clock())

    def get_available_promotions(self, order_id, customer_id=None):
        """
        Annotates every active promotion with its eligibility for the order.
        ``customer_id`` overrides the order's own customer when given.
        """
        with self.unit_of_work() as uow:
            order = uow.orders.get(order_id)
            snapshot = OrderSnapshot.from_order(order)
            if customer_id is not None:
                snapshot = snapshot.for_customer(customer_id)

            now = self.clock()
            return [
                AvailablePromotion(promotion, self.evaluator.evaluate(promotion, snapshot, now=now))
                for promotion in uow.promotions.list_active()
            ]

    def get_promotion_detail(self, promotion_id) -> dict:
        with self.unit_of_work() as uow:
            promotion = uow.promotions.get(promotion_id)
            stats = uow.promotions.usage_stats(promotion)

        remaining = None
        if promotion.max_total_usage is not None:
            remaining = max(0, promotion.max_total_usage - stats["total_usages"])
        stats["remaining_usages"] = remaining
        return {"promotion": promotion, "stats": stats}
