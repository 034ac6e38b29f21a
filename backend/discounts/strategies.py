from abc import ABC, abstractmethod
from decimal import Decimal
from core_backend.money import ZERO, calculate_percentage, clamp, quantize, sum_money
import logging

logger = logging.getLogger(__name__)


class DiscountStrategy(ABC):
    """The interface for a promotion discount strategy."""

    @abstractmethod
    def calculate(self, promotion, lines, currency) -> Decimal:
        """
        Returns the discount granted on ``lines`` (the qualifying snapshot
        lines of the order), never more than their subtotal.
        """


class PercentageDiscountStrategy(DiscountStrategy):
    """Takes a percentage off the qualifying subtotal, capped at max_discount."""

    def calculate(self, promotion, lines, currency) -> Decimal:
        qualifying_subtotal = sum_money(currency, (line.line_total for line in lines))
        if qualifying_subtotal <= 0 or not promotion.discount_value:
            return ZERO

        discount_amount = calculate_percentage(currency, qualifying_subtotal, promotion.discount_value)
        if promotion.max_discount is not None:
            discount_amount = min(discount_amount, quantize(currency, promotion.max_discount))

        logger.debug(
            f"Percentage promotion {promotion.id}: {promotion.discount_value}% of {qualifying_subtotal} = {discount_amount}"
        )
        return clamp(discount_amount, ZERO, qualifying_subtotal)


class FixedAmountDiscountStrategy(DiscountStrategy):
    """Takes a fixed amount off, never more than the qualifying subtotal."""

    def calculate(self, promotion, lines, currency) -> Decimal:
        qualifying_subtotal = sum_money(currency, (line.line_total for line in lines))
        if qualifying_subtotal <= 0 or not promotion.discount_value:
            return ZERO
        return min(quantize(currency, promotion.discount_value), qualifying_subtotal)


class FixedPriceDiscountStrategy(DiscountStrategy):
    """
    Đồng giá: the qualifying lines are collectively priced at discount_value,
    so the discount is whatever they cost above it.
    """

    def calculate(self, promotion, lines, currency) -> Decimal:
        qualifying_subtotal = sum_money(currency, (line.line_total for line in lines))
        fixed_price = quantize(currency, promotion.discount_value or ZERO)
        return clamp(qualifying_subtotal - fixed_price, ZERO, qualifying_subtotal)


class GiftDiscountStrategy(DiscountStrategy):
    """
    Buy X get Y. Existing lines are not discounted; granted gift units are
    added to the order at their selling price and discounted in full.
    """

    def calculate(self, promotion, lines, currency) -> Decimal:
        # ``lines`` are the gift lines already on the order
        return sum_money(currency, (line.line_total for line in lines))

    def entitlement(self, promotion, qualifying_lines) -> int:
        get_quantity = promotion.get_quantity or 1
        if not promotion.buy_quantity:
            # Gift unlocked by minimum order value alone
            return get_quantity

        if promotion.require_same_item:
            per_item = {}
            for line in qualifying_lines:
                key = (line.product_id, line.combo_id)
                per_item[key] = per_item.get(key, 0) + line.quantity
            return sum((qty // promotion.buy_quantity) * get_quantity for qty in per_item.values())

        total_quantity = sum(line.quantity for line in qualifying_lines)
        return (total_quantity // promotion.buy_quantity) * get_quantity

    def entitled_value(self, gift_lines, entitlement, currency) -> Decimal:
        """Value of the gift units still covered by ``entitlement``, oldest lines first."""
        remaining = max(entitlement, 0)
        covered = []
        for line in sorted(gift_lines, key=lambda line: line.item_id):
            if remaining <= 0:
                break
            units = min(line.quantity, remaining)
            covered.append(line.unit_price * units)
            remaining -= units
        return sum_money(currency, covered)

    def gift_value(self, granted_gifts, currency) -> Decimal:
        return sum_money(
            currency,
            (product.selling_price * quantity for product, quantity in granted_gifts),
        )
