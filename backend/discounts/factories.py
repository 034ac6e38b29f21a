from .models import Promotion
from .strategies import (
    DiscountStrategy,
    PercentageDiscountStrategy,
    FixedAmountDiscountStrategy,
    FixedPriceDiscountStrategy,
    GiftDiscountStrategy,
)


class DiscountStrategyFactory:
    """
    Factory for creating a discount strategy based on the promotion type.
    """

    _strategies = {
        Promotion.PromotionType.PERCENTAGE: PercentageDiscountStrategy,
        Promotion.PromotionType.FIXED_AMOUNT: FixedAmountDiscountStrategy,
        Promotion.PromotionType.FIXED_PRICE: FixedPriceDiscountStrategy,
        Promotion.PromotionType.GIFT: GiftDiscountStrategy,
    }

    @staticmethod
    def get_strategy(promotion: Promotion) -> DiscountStrategy:
        """
        Selects and returns the appropriate strategy instance.
        """
        strategy_class = DiscountStrategyFactory._strategies.get(promotion.promotion_type)

        if strategy_class:
            return strategy_class()

        raise NotImplementedError(
            f"No strategy implemented for promotion type '{promotion.promotion_type}'"
        )
