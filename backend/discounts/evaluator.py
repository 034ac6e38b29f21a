"""
Promotion eligibility evaluation.

``PromotionEvaluator.evaluate`` runs the checks below in order and stops at
the first failure, returning a specific (Vietnamese) reason:

1. validity window (start/end date, open bounds are unbounded)
2. active and not deleted
3. customer scope (walk-in flag, customers, customer groups)
4. usage caps counted from the usage ledger
5. minimum order value
6. scope of application (qualifying lines, gift entitlement)
7. discount amount via the promotion type's strategy

The evaluator never writes; the ledger re-runs it inside the transaction that
records the usage.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional, Tuple
from django.utils import timezone
import logging

from core_backend.money import ZERO, format_money, sum_money
from .factories import DiscountStrategyFactory
from .models import Promotion
from .repositories import PromotionRepository

logger = logging.getLogger(__name__)

# Reason codes caused by the caller's gift selection rather than by the order
GIFT_SELECTION_CODES = frozenset({"gift_not_in_list", "gift_exceeds_entitlement", "gift_invalid_quantity"})


@dataclass(frozen=True)
class SnapshotLine:
    item_id: int
    product_id: Optional[int]
    category_id: Optional[int]
    combo_id: Optional[int]
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    is_gift: bool = False
    is_topping: bool = False


@dataclass(frozen=True)
class OrderSnapshot:
    """Immutable view of an order's active lines used for evaluation."""

    order_id: Optional[int]
    customer_id: Optional[int]
    lines: Tuple[SnapshotLine, ...] = ()

    @property
    def subtotal(self) -> Decimal:
        """Value of the purchased lines. Gift lines do not count towards it."""
        total = ZERO
        for line in self.lines:
            if not line.is_gift:
                total += line.line_total
        return total

    @property
    def gift_lines(self):
        return tuple(line for line in self.lines if line.is_gift)

    def for_customer(self, customer_id) -> "OrderSnapshot":
        return OrderSnapshot(order_id=self.order_id, customer_id=customer_id, lines=self.lines)

    @classmethod
    def from_items(cls, order, items) -> "OrderSnapshot":
        lines = []
        for item in items:
            if item.status == item.ItemStatus.CANCELLED:
                continue
            lines.append(
                SnapshotLine(
                    item_id=item.id,
                    product_id=item.product_id,
                    category_id=item.product.category_id if item.product_id else None,
                    combo_id=item.combo_id,
                    quantity=item.quantity,
                    unit_price=item.unit_price,
                    line_total=item.line_total,
                    is_gift=item.is_gift,
                    is_topping=item.parent_item_id is not None,
                )
            )
        return cls(order_id=order.id, customer_id=order.customer_id, lines=tuple(lines))

    @classmethod
    def from_order(cls, order) -> "OrderSnapshot":
        items = order.items.select_related("product").order_by("id")
        return cls.from_items(order, items)


@dataclass
class EligibilityResult:
    eligible: bool
    reason: Optional[str] = None
    code: Optional[str] = None
    discount_amount: Decimal = ZERO
    qualifying_subtotal: Decimal = ZERO
    gift_entitlement: int = 0
    granted_gifts: list = field(default_factory=list)  # [(Product, quantity), ...]

    @classmethod
    def rejected(cls, reason, code):
        return cls(eligible=False, reason=reason, code=code)

    def to_dict(self):
        return {
            "eligible": self.eligible,
            "reason": self.reason,
            "code": self.code,
            "discount_amount": self.discount_amount,
            "qualifying_subtotal": self.qualifying_subtotal,
            "gift_entitlement": self.gift_entitlement,
            "granted_gifts": [
                {"item_id": product.id, "name": product.name, "quantity": quantity}
                for product, quantity in self.granted_gifts
            ],
        }


class PromotionScope:
    """The id sets of one promotion, loaded once per evaluation."""

    def __init__(self, promotion: Promotion):
        self.promotion = promotion
        self.item_ids = set(promotion.applicable_items.values_list("id", flat=True))
        self.category_ids = set(promotion.applicable_categories.values_list("id", flat=True))
        self.combo_ids = set(promotion.applicable_combos.values_list("id", flat=True))

    @property
    def is_combo_only(self):
        p = self.promotion
        has_combo_scope = p.apply_to_all_combos or bool(self.combo_ids)
        has_item_scope = (
            p.apply_to_all_items or p.apply_to_all_categories or bool(self.item_ids) or bool(self.category_ids)
        )
        return has_combo_scope and not has_item_scope

    def matches(self, line: SnapshotLine) -> bool:
        if line.is_gift:
            return False
        p = self.promotion
        if line.combo_id is not None:
            return p.apply_to_all_combos or line.combo_id in self.combo_ids
        if p.apply_to_all_items or line.product_id in self.item_ids:
            return True
        if p.apply_to_all_categories:
            return True
        return line.category_id is not None and line.category_id in self.category_ids

    def qualifying_lines(self, snapshot: OrderSnapshot):
        return [line for line in snapshot.lines if self.matches(line)]


class PromotionEvaluator:
    def __init__(self, customer_service, currency="VND", promotions=None, clock=timezone.now):
        self.customer_service = customer_service
        self.currency = currency
        self.promotions = promotions or PromotionRepository()
        self.clock = clock

    # --- Checks 1-4: no order needed ---

    def check_usage(self, promotion: Promotion, customer_id=None, now=None) -> EligibilityResult:
        now = now or self.clock()

        if promotion.start_date and now < promotion.start_date:
            return EligibilityResult.rejected("Mã khuyến mãi chưa bắt đầu", "not_started")
        if promotion.end_date and now > promotion.end_date:
            return EligibilityResult.rejected("Mã khuyến mãi đã hết hạn", "expired")

        if not promotion.is_active or promotion.archived_at is not None:
            return EligibilityResult.rejected("Mã khuyến mãi đã bị vô hiệu hóa", "inactive")

        scope_result = self._check_customer_scope(promotion, customer_id)
        if scope_result is not None:
            return scope_result

        if promotion.max_total_usage is not None:
            total_used = self.promotions.usage_count(promotion)
            if total_used >= promotion.max_total_usage:
                return EligibilityResult.rejected("Mã khuyến mãi đã hết lượt sử dụng", "usage_cap_reached")

        # Walk-in orders are not counted per customer
        if promotion.max_usage_per_customer is not None and customer_id is not None:
            customer_used = self.promotions.customer_usage_count(promotion, customer_id)
            if customer_used >= promotion.max_usage_per_customer:
                return EligibilityResult.rejected(
                    "Bạn đã hết lượt sử dụng khuyến mãi này", "customer_usage_cap_reached"
                )

        return EligibilityResult(eligible=True)

    def _check_customer_scope(self, promotion, customer_id):
        if customer_id is None:
            if promotion.apply_to_walk_in:
                return None
            return EligibilityResult.rejected("Khuyến mãi chỉ dành cho khách hàng thành viên", "members_only")

        if promotion.apply_to_all_customers or promotion.apply_to_all_customer_groups:
            return None

        customer_ids = {c.id for c in promotion.applicable_customers.all()}
        group_ids = {g.id for g in promotion.applicable_customer_groups.all()}
        if not customer_ids and not group_ids:
            # No customer restriction configured: every member qualifies
            return None
        if customer_id in customer_ids:
            return None

        group_id = self.customer_service.get_group_id(customer_id)
        if group_id is not None and group_id in group_ids:
            return None

        return EligibilityResult.rejected(
            "Bạn không thuộc đối tượng áp dụng khuyến mãi này", "customer_not_applicable"
        )

    # --- Full evaluation ---

    def evaluate(self, promotion: Promotion, snapshot: OrderSnapshot, customer_id=None,
                 selected_gifts=None, now=None) -> EligibilityResult:
        """
        Decides whether ``promotion`` applies to ``snapshot`` and computes the
        discount. ``customer_id`` defaults to the snapshot's customer.
        """
        if customer_id is None:
            customer_id = snapshot.customer_id

        result = self.check_usage(promotion, customer_id, now)
        if not result.eligible:
            return result

        subtotal = snapshot.subtotal
        min_order_value = promotion.min_order_value or ZERO
        if subtotal < min_order_value:
            return EligibilityResult.rejected(
                f"Đơn hàng tối thiểu {format_money(self.currency, min_order_value)}", "min_order_value"
            )

        scope = PromotionScope(promotion)
        qualifying = scope.qualifying_lines(snapshot)
        qualifying_subtotal = sum_money(self.currency, (line.line_total for line in qualifying))
        strategy = DiscountStrategyFactory.get_strategy(promotion)

        if promotion.promotion_type == Promotion.PromotionType.GIFT:
            return self._evaluate_gift(promotion, strategy, qualifying, qualifying_subtotal, selected_gifts)

        if not qualifying:
            if scope.is_combo_only:
                return EligibilityResult.rejected(
                    "Đơn hàng không có combo nào thuộc phạm vi khuyến mãi", "no_qualifying_lines"
                )
            return EligibilityResult.rejected(
                "Không có sản phẩm nào thuộc phạm vi áp dụng khuyến mãi", "no_qualifying_lines"
            )

        discount_amount = strategy.calculate(promotion, qualifying, self.currency)
        return EligibilityResult(
            eligible=True,
            discount_amount=discount_amount,
            qualifying_subtotal=qualifying_subtotal,
        )

    def _evaluate_gift(self, promotion, strategy, qualifying, qualifying_subtotal, selected_gifts):
        if promotion.buy_quantity and not qualifying:
            return EligibilityResult.rejected("Chưa đủ điều kiện để nhận quà tặng", "gift_not_qualified")

        entitlement = strategy.entitlement(promotion, qualifying)
        if entitlement <= 0:
            return EligibilityResult.rejected("Chưa đủ điều kiện để nhận quà tặng", "gift_not_qualified")

        gift_products = {p.id: p for p in promotion.gift_items.order_by("id")}
        if not gift_products:
            return EligibilityResult.rejected("Khuyến mãi chưa có món quà tặng", "no_gift_items")

        if selected_gifts:
            requested = {}
            for gift in selected_gifts:
                item_id, quantity = gift["item_id"], gift["quantity"]
                if quantity <= 0:
                    return EligibilityResult.rejected("Số lượng món tặng phải lớn hơn 0", "gift_invalid_quantity")
                if item_id not in gift_products:
                    return EligibilityResult.rejected(
                        f"Món #{item_id} không nằm trong danh sách quà tặng của KM này", "gift_not_in_list"
                    )
                requested[item_id] = requested.get(item_id, 0) + quantity

            total_selected = sum(requested.values())
            if total_selected > entitlement:
                return EligibilityResult.rejected(
                    f"Số lượng món tặng tối đa là {entitlement}, đã chọn {total_selected}",
                    "gift_exceeds_entitlement",
                )
            granted = [(gift_products[item_id], quantity) for item_id, quantity in requested.items()]
        else:
            first_gift = next(iter(gift_products.values()))
            granted = [(first_gift, entitlement)]

        discount_amount = strategy.gift_value(granted, self.currency)
        logger.debug(f"Gift promotion {promotion.id}: entitlement {entitlement}, granted {granted}")
        return EligibilityResult(
            eligible=True,
            discount_amount=discount_amount,
            qualifying_subtotal=qualifying_subtotal,
            gift_entitlement=entitlement,
            granted_gifts=granted,
        )

    # --- Recalculation after order edits ---

    def compute_discount(self, promotion: Promotion, snapshot: OrderSnapshot) -> Decimal:
        """
        Recomputes the discount of an already applied promotion. Eligibility
        is not re-checked; an order that no longer qualifies gets 0. Gift
        lines are free only up to the entitlement the current lines earn.
        """
        strategy = DiscountStrategyFactory.get_strategy(promotion)

        if snapshot.subtotal < (promotion.min_order_value or ZERO):
            return ZERO

        qualifying = PromotionScope(promotion).qualifying_lines(snapshot)

        if promotion.promotion_type == Promotion.PromotionType.GIFT:
            if promotion.buy_quantity and not qualifying:
                return ZERO
            entitlement = strategy.entitlement(promotion, qualifying)
            return strategy.entitled_value(snapshot.gift_lines, entitlement, self.currency)

        if not qualifying:
            return ZERO
        return strategy.calculate(promotion, qualifying, self.currency)
