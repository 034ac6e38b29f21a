from rest_framework import serializers

from orders.models import Order, OrderItem, OrderItemComboSelection


# --- Input serializers ---


class ToppingInputSerializer(serializers.Serializer):
    product_id = serializers.IntegerField(min_value=1)
    quantity = serializers.IntegerField(
        min_value=1, default=1, error_messages={"min_value": "Số lượng topping phải lớn hơn 0"}
    )


class ComboSelectionInputSerializer(serializers.Serializer):
    combo_item_id = serializers.IntegerField(min_value=1)
    quantity = serializers.IntegerField(min_value=1, default=1)


class OrderItemInputSerializer(serializers.Serializer):
    """
    One order line: a product or a combo, with optional toppings and, for
    combos, the chosen combo items.
    """

    product_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    combo_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)
    quantity = serializers.IntegerField(
        min_value=1, default=1, error_messages={"min_value": "Số lượng phải lớn hơn 0"}
    )
    notes = serializers.CharField(required=False, allow_blank=True, default="", max_length=500)
    customization = serializers.JSONField(required=False, allow_null=True, default=None)
    toppings = ToppingInputSerializer(many=True, required=False, default=list)
    selections = ComboSelectionInputSerializer(many=True, required=False, default=list)

    def validate(self, data):
        has_product = data.get("product_id") is not None
        has_combo = data.get("combo_id") is not None
        if has_product == has_combo:
            raise serializers.ValidationError("Mỗi món phải chọn đúng một sản phẩm hoặc một combo")
        if has_product and data.get("selections"):
            raise serializers.ValidationError({"selections": "Chỉ combo mới có lựa chọn món"})
        return data


class CreateOrderSerializer(serializers.Serializer):
    items = OrderItemInputSerializer(many=True, allow_empty=False)
    order_type = serializers.ChoiceField(choices=Order.OrderType.choices, default=Order.OrderType.DINE_IN)
    table_id = serializers.IntegerField(min_value=1, required=False, allow_null=True, default=None)
    notes = serializers.CharField(required=False, allow_blank=True, default="")
    customer_id = serializers.IntegerField(min_value=1, required=False, allow_null=True, default=None)

    def validate(self, data):
        if data["order_type"] == Order.OrderType.DINE_IN and data.get("table_id") is None:
            raise serializers.ValidationError({"table_id": "Vui lòng chọn bàn cho đơn hàng tại chỗ"})
        if data["order_type"] == Order.OrderType.TAKEAWAY and data.get("table_id") is not None:
            raise serializers.ValidationError({"table_id": "Đơn hàng mang về không được chọn bàn"})
        return data


class UpdateOrderSerializer(serializers.Serializer):
    notes = serializers.CharField(required=False, allow_blank=True, max_length=500)
    customer_id = serializers.IntegerField(min_value=1, required=False, allow_null=True)

    def validate(self, data):
        if not data:
            raise serializers.ValidationError("Vui lòng nhập thông tin cần cập nhật")
        return data


class UpdateItemSerializer(serializers.Serializer):
    """
    Partial edit of an order line. Only the fields present are changed;
    ``toppings`` replaces the line's toppings (an empty list removes them).
    """

    quantity = serializers.IntegerField(
        min_value=1, required=False, error_messages={"min_value": "Số lượng phải lớn hơn 0"}
    )
    notes = serializers.CharField(required=False, allow_blank=True, max_length=500)
    customization = serializers.JSONField(required=False, allow_null=True)
    toppings = ToppingInputSerializer(many=True, required=False)

    def validate(self, data):
        if not data:
            raise serializers.ValidationError("Vui lòng nhập thông tin cần cập nhật")
        return data


class ReduceItemSerializer(serializers.Serializer):
    """
    Serializer for reducing (or cancelling) an order line. Omitting
    ``quantity`` cancels everything that remains on the line.
    """

    quantity = serializers.IntegerField(
        min_value=1, required=False, allow_null=True, default=None,
        error_messages={"min_value": "Số lượng giảm phải lớn hơn 0"},
    )
    reason = serializers.CharField(
        max_length=500, error_messages={"blank": "Vui lòng nhập lý do giảm món", "required": "Vui lòng nhập lý do giảm món"}
    )


class UpdateItemStatusSerializer(serializers.Serializer):
    """
    Serializer specifically for validating a kitchen item status change.
    """

    status = serializers.ChoiceField(
        choices=[
            (value, label)
            for value, label in OrderItem.ItemStatus.choices
            if value in OrderItem.STATUS_FLOW[1:]
        ]
    )
    all = serializers.BooleanField(required=False, default=False)


class TransferTableSerializer(serializers.Serializer):
    new_table_id = serializers.IntegerField(min_value=1)


class MergeOrdersSerializer(serializers.Serializer):
    target_order_id = serializers.IntegerField(min_value=1)
    source_order_id = serializers.IntegerField(min_value=1)

    def validate(self, data):
        if data["target_order_id"] == data["source_order_id"]:
            raise serializers.ValidationError("Không thể gộp đơn hàng với chính nó")
        return data


class SplitItemSerializer(serializers.Serializer):
    item_id = serializers.IntegerField(min_value=1)
    quantity = serializers.IntegerField(min_value=1, error_messages={"min_value": "Số lượng tách phải lớn hơn 0"})


class SplitOrderSerializer(serializers.Serializer):
    new_table_id = serializers.IntegerField(min_value=1)
    items = SplitItemSerializer(many=True, allow_empty=False)


class SelectedGiftSerializer(serializers.Serializer):
    item_id = serializers.IntegerField(min_value=1)
    quantity = serializers.IntegerField(min_value=1)


class CheckoutSerializer(serializers.Serializer):
    """
    Serializer for the checkout payload. Paying less than the total is
    accepted when partial payment is enabled.
    """

    payment_method = serializers.ChoiceField(choices=Order.PaymentMethod.choices)
    paid_amount = serializers.DecimalField(
        max_digits=14, decimal_places=2, min_value=0,
        error_messages={"min_value": "Số tiền thanh toán không được âm"},
    )
    promotion_id = serializers.IntegerField(min_value=1, required=False, allow_null=True, default=None)
    selected_gifts = SelectedGiftSerializer(many=True, required=False, default=list)


class CancelOrderSerializer(serializers.Serializer):
    reason = serializers.CharField(
        max_length=500,
        error_messages={"blank": "Vui lòng nhập lý do hủy đơn hàng", "required": "Vui lòng nhập lý do hủy đơn hàng"},
    )


class TableHistorySerializer(serializers.Serializer):
    limit = serializers.IntegerField(min_value=1, max_value=100, required=False, allow_null=True, default=None)


class KitchenItemsSerializer(serializers.Serializer):
    status = serializers.ChoiceField(
        choices=[
            (value, label)
            for value, label in OrderItem.ItemStatus.choices
            if value in OrderItem.STATUS_FLOW[1:]
        ],
        required=False,
        allow_null=True,
        default=None,
    )


# --- Output serializers ---


class OrderItemComboSelectionSerializer(serializers.ModelSerializer):
    product_name = serializers.CharField(source="product.name", read_only=True)

    class Meta:
        model = OrderItemComboSelection
        fields = ["id", "combo_item", "product", "product_name", "quantity", "extra_price"]
        read_only_fields = fields


class OrderItemSerializer(serializers.ModelSerializer):
    combo_selections = OrderItemComboSelectionSerializer(many=True, read_only=True)
    status_display = serializers.CharField(source="get_status_display", read_only=True)

    class Meta:
        model = OrderItem
        fields = [
            "id",
            "order",
            "product",
            "combo",
            "parent_item",
            "name",
            "quantity",
            "unit_price",
            "line_total",
            "customization",
            "notes",
            "status",
            "status_display",
            "is_gift",
            "cancel_reason",
            "combo_selections",
            "created_at",
        ]
        read_only_fields = fields


class KitchenItemSerializer(OrderItemSerializer):
    order_code = serializers.CharField(source="order.order_code", read_only=True)
    table_name = serializers.CharField(source="order.table.name", read_only=True, default=None)

    class Meta(OrderItemSerializer.Meta):
        fields = OrderItemSerializer.Meta.fields + ["order_code", "table_name"]
        read_only_fields = fields


class RecipeIngredientSerializer(serializers.Serializer):
    product_id = serializers.IntegerField()
    name = serializers.CharField()
    quantity = serializers.DecimalField(max_digits=14, decimal_places=4)
    unit = serializers.CharField()


class RecipeComponentSerializer(serializers.Serializer):
    product_id = serializers.IntegerField()
    name = serializers.CharField()
    quantity = serializers.IntegerField()
    ingredients = RecipeIngredientSerializer(many=True)


class ItemRecipeSerializer(serializers.Serializer):
    item_id = serializers.IntegerField()
    name = serializers.CharField()
    quantity = serializers.IntegerField()
    components = RecipeComponentSerializer(many=True)


class OrderSerializer(serializers.ModelSerializer):
    items = serializers.SerializerMethodField()
    table_name = serializers.CharField(source="table.name", read_only=True, default=None)
    customer_name = serializers.CharField(source="customer.name", read_only=True, default=None)
    applied_promotion_name = serializers.CharField(source="applied_promotion.name", read_only=True, default=None)

    class Meta:
        model = Order
        fields = [
            "id",
            "order_code",
            "table",
            "table_name",
            "order_type",
            "status",
            "payment_status",
            "payment_method",
            "customer",
            "customer_name",
            "applied_promotion",
            "applied_promotion_name",
            "merged_into",
            "subtotal",
            "discount_amount",
            "total_amount",
            "paid_amount",
            "change_amount",
            "notes",
            "cancel_reason",
            "items",
            "created_at",
            "updated_at",
            "sent_to_kitchen_at",
            "completed_at",
            "cancelled_at",
        ]
        read_only_fields = fields

    def get_items(self, obj):
        items = obj.items.select_related("product", "combo").prefetch_related("combo_selections__product")
        return OrderItemSerializer(items.order_by("id"), many=True).data
