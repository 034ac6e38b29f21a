from decimal import Decimal
import logging

from core_backend.money import ZERO, clamp, sum_money
from discounts.evaluator import OrderSnapshot
from discounts.repositories import PromotionRepository
from orders.models import Order, OrderItem

logger = logging.getLogger(__name__)


class OrderCalculationService:
    """Keeps an order's subtotal, discount and total consistent with its items."""

    def __init__(self, evaluator, currency="VND", promotions=None):
        self.evaluator = evaluator
        self.currency = currency
        self.promotions = promotions or PromotionRepository()

    def recalculate_order_totals(self, order: Order) -> Order:
        """
        Recalculates subtotal, discount and total for an order.

        Cancelled items keep their quantity and line total but contribute
        nothing. The applied promotion's discount is recomputed from the
        current lines and clamped so the total never goes negative; the usage
        ledger row follows the new amount.
        """
        items = list(
            order.items.exclude(status=OrderItem.ItemStatus.CANCELLED)
            .select_related("product")
            .order_by("id")
        )

        subtotal = sum_money(self.currency, (item.line_total for item in items))

        discount_amount = ZERO
        promotion = order.applied_promotion if order.applied_promotion_id else None
        if promotion is not None:
            snapshot = OrderSnapshot.from_items(order, items)
            discount_amount = self.evaluator.compute_discount(promotion, snapshot)
        discount_amount = clamp(discount_amount, ZERO, subtotal)

        order.subtotal = subtotal
        order.discount_amount = discount_amount
        order.total_amount = subtotal - discount_amount
        order.save(update_fields=["subtotal", "discount_amount", "total_amount", "updated_at"])

        if promotion is not None:
            self.promotions.update_usage_amount(promotion.id, order, discount_amount)

        logger.debug(
            f"Order {order.order_code} totals: subtotal={subtotal}, "
            f"discount={discount_amount}, total={order.total_amount}"
        )
        return order

    def calculate_change(self, order: Order, paid_amount: Decimal) -> Decimal:
        return clamp(paid_amount - order.total_amount, ZERO)
