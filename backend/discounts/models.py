from django.db import models
from django.core.exceptions import ValidationError
from products.models import Product, Category, Combo
from customers.models import Customer, CustomerGroup
from core_backend.utils.archiving import SoftDeleteMixin


class Promotion(SoftDeleteMixin):
    class PromotionType(models.TextChoices):
        PERCENTAGE = "percentage", "Theo phần trăm"
        FIXED_AMOUNT = "fixed_amount", "Theo số tiền"
        FIXED_PRICE = "fixed_price", "Đồng giá"
        GIFT = "gift", "Tặng món"

    name = models.CharField(max_length=255)
    code = models.CharField(
        max_length=50, unique=True, null=True, blank=True, help_text="Optional code for manual entry"
    )
    description = models.TextField(blank=True)
    promotion_type = models.CharField(max_length=20, choices=PromotionType.choices)

    discount_value = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Percentage, amount off, or the fixed price. Not used for gift promotions.",
    )
    min_order_value = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="The minimum order subtotal required for the promotion to apply.",
    )
    max_discount = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Upper bound of a percentage discount.",
    )

    buy_quantity = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="For gift promotions, the quantity of qualifying items the customer must buy (X).",
    )
    get_quantity = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="For gift promotions, the quantity of gift items granted per X bought (Y).",
    )
    require_same_item = models.BooleanField(
        default=False,
        help_text="For gift promotions, count the bought quantity per single item.",
    )

    start_date = models.DateTimeField(
        null=True,
        blank=True,
        help_text="The date and time when the promotion becomes active.",
    )
    end_date = models.DateTimeField(
        null=True, blank=True, help_text="The date and time when the promotion expires."
    )

    max_total_usage = models.PositiveIntegerField(null=True, blank=True)
    max_usage_per_customer = models.PositiveIntegerField(null=True, blank=True)
    current_total_usage = models.PositiveIntegerField(
        default=0, help_text="Display counter; caps are enforced against the usage ledger."
    )

    # Scope of application. "All" flags override the explicit sets.
    apply_to_all_items = models.BooleanField(default=False)
    apply_to_all_categories = models.BooleanField(default=False)
    apply_to_all_combos = models.BooleanField(default=False)
    apply_to_all_customers = models.BooleanField(default=False)
    apply_to_all_customer_groups = models.BooleanField(default=False)
    apply_to_walk_in = models.BooleanField(default=True)

    applicable_items = models.ManyToManyField(Product, blank=True, related_name="promotions")
    applicable_categories = models.ManyToManyField(Category, blank=True, related_name="promotions")
    applicable_combos = models.ManyToManyField(Combo, blank=True, related_name="promotions")
    applicable_customers = models.ManyToManyField(Customer, blank=True, related_name="promotions")
    applicable_customer_groups = models.ManyToManyField(
        CustomerGroup, blank=True, related_name="promotions"
    )
    gift_items = models.ManyToManyField(Product, blank=True, related_name="gift_promotions")

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    def clean(self):
        """Validate promotion parameters based on type."""
        super().clean()

        if self.start_date and self.end_date and self.start_date > self.end_date:
            raise ValidationError({"end_date": "Ngày kết thúc phải sau ngày bắt đầu"})

        if self.promotion_type == self.PromotionType.GIFT:
            if not self.buy_quantity and not self.min_order_value:
                raise ValidationError(
                    {"buy_quantity": "Khuyến mãi tặng món cần số lượng mua hoặc giá trị đơn hàng tối thiểu"}
                )
            return

        if self.discount_value is None or self.discount_value < 0:
            raise ValidationError({"discount_value": "Giá trị giảm không được âm"})

        if self.promotion_type == self.PromotionType.PERCENTAGE and self.discount_value > 100:
            raise ValidationError({"discount_value": "Giảm theo phần trăm không được vượt quá 100%"})

    def __str__(self):
        return f"{self.name} ({self.get_promotion_type_display()})"

    class Meta:
        ordering = ["name"]
        indexes = [
            models.Index(fields=["is_active", "start_date", "end_date"]),
            models.Index(fields=["promotion_type"]),
        ]


class PromotionUsage(models.Model):
    """
    Usage ledger row: one redemption of a promotion by one order.
    """

    promotion = models.ForeignKey(Promotion, on_delete=models.PROTECT, related_name="usages")
    order = models.ForeignKey("orders.Order", on_delete=models.CASCADE, related_name="promotion_usages")
    customer = models.ForeignKey(
        Customer, on_delete=models.SET_NULL, null=True, blank=True, related_name="promotion_usages"
    )
    discount_amount = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    applied_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["-applied_at"]
        constraints = [
            models.UniqueConstraint(fields=["promotion", "order"], name="unique_promotion_per_order"),
        ]
        indexes = [
            models.Index(fields=["promotion", "customer"]),
        ]

    def __str__(self):
        return f"{self.promotion.name} on order {self.order_id}"
