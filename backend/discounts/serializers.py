from rest_framework import serializers

from .models import Promotion, PromotionUsage
from orders.serializers import SelectedGiftSerializer


# --- Input serializers ---


class ApplyPromotionSerializer(serializers.Serializer):
    """
    Serializer for applying a promotion to an order. Gift promotions may
    carry the gifts the customer picked; without them the whole entitlement
    goes to the first gift item.
    """

    promotion_id = serializers.IntegerField(min_value=1)
    order_id = serializers.IntegerField(min_value=1)
    selected_gifts = SelectedGiftSerializer(many=True, required=False, default=list)


class UnapplyPromotionSerializer(serializers.Serializer):
    promotion_id = serializers.IntegerField(min_value=1)
    order_id = serializers.IntegerField(min_value=1)


class CanUsePromotionSerializer(serializers.Serializer):
    promotion_id = serializers.IntegerField(min_value=1)
    customer_id = serializers.IntegerField(min_value=1, required=False, allow_null=True, default=None)


class AvailablePromotionsSerializer(serializers.Serializer):
    order_id = serializers.IntegerField(min_value=1)
    customer_id = serializers.IntegerField(min_value=1, required=False, allow_null=True, default=None)


# --- Output serializers ---


class PromotionSerializer(serializers.ModelSerializer):
    """
    Read representation of a promotion; scope sets are returned as id lists.
    """

    promotion_type_display = serializers.CharField(source="get_promotion_type_display", read_only=True)
    applicable_item_ids = serializers.PrimaryKeyRelatedField(source="applicable_items", many=True, read_only=True)
    applicable_category_ids = serializers.PrimaryKeyRelatedField(
        source="applicable_categories", many=True, read_only=True
    )
    applicable_combo_ids = serializers.PrimaryKeyRelatedField(source="applicable_combos", many=True, read_only=True)
    applicable_customer_ids = serializers.PrimaryKeyRelatedField(
        source="applicable_customers", many=True, read_only=True
    )
    applicable_customer_group_ids = serializers.PrimaryKeyRelatedField(
        source="applicable_customer_groups", many=True, read_only=True
    )
    gift_item_ids = serializers.PrimaryKeyRelatedField(source="gift_items", many=True, read_only=True)

    class Meta:
        model = Promotion
        fields = [
            "id",
            "name",
            "code",
            "description",
            "promotion_type",
            "promotion_type_display",
            "discount_value",
            "min_order_value",
            "max_discount",
            "buy_quantity",
            "get_quantity",
            "require_same_item",
            "start_date",
            "end_date",
            "max_total_usage",
            "max_usage_per_customer",
            "current_total_usage",
            "apply_to_all_items",
            "apply_to_all_categories",
            "apply_to_all_combos",
            "apply_to_all_customers",
            "apply_to_all_customer_groups",
            "apply_to_walk_in",
            "applicable_item_ids",
            "applicable_category_ids",
            "applicable_combo_ids",
            "applicable_customer_ids",
            "applicable_customer_group_ids",
            "gift_item_ids",
            "is_active",
        ]
        read_only_fields = fields


class PromotionUsageSerializer(serializers.ModelSerializer):
    class Meta:
        model = PromotionUsage
        fields = ["id", "promotion", "order", "customer", "discount_amount", "applied_at"]
        read_only_fields = fields


class EligibilitySerializer(serializers.Serializer):
    eligible = serializers.BooleanField()
    reason = serializers.CharField(allow_null=True)
    code = serializers.CharField(allow_null=True)
    discount_amount = serializers.DecimalField(max_digits=14, decimal_places=2)
    qualifying_subtotal = serializers.DecimalField(max_digits=14, decimal_places=2)
    gift_entitlement = serializers.IntegerField()
    granted_gifts = serializers.ListField(child=serializers.DictField())


class PromotionStatsSerializer(serializers.Serializer):
    total_usages = serializers.IntegerField()
    unique_customers = serializers.IntegerField()
    total_discount = serializers.DecimalField(max_digits=14, decimal_places=2)
    remaining_usages = serializers.IntegerField(allow_null=True)
