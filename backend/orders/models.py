from decimal import Decimal
from django.db import models
from django.utils.translation import gettext_lazy as _
from django.utils import timezone
from products.models import Product, Combo
from customers.models import Customer
from core_backend.utils.archiving import SoftDeleteMixin


class Table(SoftDeleteMixin):
    """
    A dining table. A table is occupied while a non-terminal order references
    it; occupancy is derived from orders and never stored here.
    """

    name = models.CharField(max_length=50)
    area = models.CharField(max_length=100, blank=True)
    capacity = models.PositiveIntegerField(default=4)

    class Meta:
        verbose_name = _("Table")
        verbose_name_plural = _("Tables")
        ordering = ["area", "name"]

    def __str__(self):
        return f"{self.area} / {self.name}" if self.area else self.name


class Order(models.Model):
    # --- Status Fields ---
    class OrderStatus(models.TextChoices):
        PENDING = "pending", _("Pending")  # Being built, nothing sent to the kitchen yet
        CONFIRMED = "confirmed", _("Confirmed")
        PREPARING = "preparing", _("Preparing")
        READY = "ready", _("Ready")
        COMPLETED = "completed", _("Completed")  # Checked out
        CANCELLED = "cancelled", _("Cancelled")

    class OrderType(models.TextChoices):
        DINE_IN = "dine_in", _("Dine In")
        TAKEAWAY = "takeaway", _("Takeaway")

    class PaymentStatus(models.TextChoices):
        UNPAID = "unpaid", _("Unpaid")
        PARTIAL = "partial", _("Partially Paid")
        PAID = "paid", _("Paid")
        REFUNDED = "refunded", _("Refunded")

    class PaymentMethod(models.TextChoices):
        CASH = "cash", _("Cash")
        CARD = "card", _("Card")
        TRANSFER = "transfer", _("Bank Transfer")

    TERMINAL_STATUSES = (OrderStatus.COMPLETED, OrderStatus.CANCELLED)

    order_code = models.CharField(max_length=20, unique=True, null=True, blank=True)
    table = models.ForeignKey(
        Table,
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="orders",
    )
    order_type = models.CharField(
        max_length=10, choices=OrderType.choices, default=OrderType.DINE_IN
    )
    status = models.CharField(
        max_length=10, choices=OrderStatus.choices, default=OrderStatus.PENDING
    )
    payment_status = models.CharField(
        max_length=10, choices=PaymentStatus.choices, default=PaymentStatus.UNPAID
    )
    payment_method = models.CharField(
        max_length=10, choices=PaymentMethod.choices, null=True, blank=True
    )

    # --- Relationships ---
    customer = models.ForeignKey(
        Customer,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="orders",
        help_text=_("Empty for walk-in customers."),
    )
    applied_promotion = models.ForeignKey(
        "discounts.Promotion",
        on_delete=models.PROTECT,
        null=True,
        blank=True,
        related_name="orders",
    )
    merged_into = models.ForeignKey(
        "self",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="merged_orders",
    )

    # --- Financial Fields ---
    subtotal = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    discount_amount = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    total_amount = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    paid_amount = models.DecimalField(max_digits=14, decimal_places=2, default=0)
    change_amount = models.DecimalField(max_digits=14, decimal_places=2, default=0)

    notes = models.TextField(blank=True)
    cancel_reason = models.TextField(blank=True)

    created_at = models.DateTimeField(default=timezone.now, editable=False)
    updated_at = models.DateTimeField(auto_now=True)
    sent_to_kitchen_at = models.DateTimeField(null=True, blank=True)
    completed_at = models.DateTimeField(null=True, blank=True)
    cancelled_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["-created_at", "-id"]
        verbose_name = _("Order")
        verbose_name_plural = _("Orders")
        indexes = [
            models.Index(fields=["status"], name="order_status_idx"),
            models.Index(fields=["table", "status"], name="order_table_status_idx"),
            models.Index(fields=["customer", "status"], name="order_cust_status_idx"),
            models.Index(fields=["created_at"], name="order_created_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(total_amount__gte=0),
                name="order_total_non_negative",
            ),
        ]

    def __str__(self):
        return f"Order {self.order_code or self.pk} ({self.order_type}) - {self.status}"

    @property
    def is_terminal(self):
        return self.status in self.TERMINAL_STATUSES

    def assign_order_code(self, prefix="HD"):
        """
        Order codes are derived from the primary key (HD000001, HD000002, ...),
        so they are unique without a separate sequence.
        """
        self.order_code = f"{prefix}{self.pk:06d}"
        Order.objects.filter(pk=self.pk).update(order_code=self.order_code)


class OrderItem(models.Model):
    class ItemStatus(models.TextChoices):
        PENDING = "pending", _("Pending")
        PREPARING = "preparing", _("Preparing")
        READY = "ready", _("Ready")
        SERVED = "served", _("Served")
        CANCELLED = "cancelled", _("Cancelled")

    # Forward progression of kitchen statuses
    STATUS_FLOW = [
        ItemStatus.PENDING,
        ItemStatus.PREPARING,
        ItemStatus.READY,
        ItemStatus.SERVED,
    ]

    order = models.ForeignKey(Order, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name="order_items",
        null=True,
        blank=True,
    )
    combo = models.ForeignKey(
        Combo,
        on_delete=models.PROTECT,
        related_name="order_items",
        null=True,
        blank=True,
    )
    parent_item = models.ForeignKey(
        "self",
        on_delete=models.CASCADE,
        null=True,
        blank=True,
        related_name="toppings",
        help_text=_("Host item when this line is a topping."),
    )
    name = models.CharField(max_length=255, help_text=_("Name snapshot at the time of sale."))
    quantity = models.PositiveIntegerField(default=1)

    # Price snapshot
    unit_price = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        help_text=_("Price of the item at the time it was added to the order."),
    )
    line_total = models.DecimalField(max_digits=14, decimal_places=2, default=0)

    customization = models.JSONField(null=True, blank=True)
    notes = models.TextField(blank=True, help_text=_("Customer notes, e.g., 'ít đá'"))
    status = models.CharField(
        max_length=10, choices=ItemStatus.choices, default=ItemStatus.PENDING
    )
    is_gift = models.BooleanField(
        default=False,
        help_text=_("Line granted by a gift promotion."),
    )
    cancel_reason = models.TextField(blank=True)
    created_at = models.DateTimeField(default=timezone.now, editable=False)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Order Item")
        verbose_name_plural = _("Order Items")
        ordering = ["created_at", "id"]
        indexes = [
            models.Index(fields=["order", "status"], name="item_order_status_idx"),
            models.Index(fields=["status"], name="item_status_idx"),
        ]
        constraints = [
            models.CheckConstraint(
                condition=(
                    models.Q(product__isnull=False, combo__isnull=True)
                    | models.Q(product__isnull=True, combo__isnull=False)
                ),
                name="order_item_product_xor_combo",
            ),
            models.CheckConstraint(
                condition=models.Q(quantity__gte=1),
                name="order_item_quantity_positive",
            ),
        ]

    def __str__(self):
        return f"{self.quantity} x {self.name} in Order {self.order.order_code}"

    def save(self, *args, **kwargs):
        self.line_total = Decimal(self.unit_price) * self.quantity
        update_fields = kwargs.get("update_fields")
        if update_fields is not None and "quantity" in update_fields:
            kwargs["update_fields"] = set(update_fields) | {"line_total"}
        super().save(*args, **kwargs)

    @property
    def is_cancelled(self):
        return self.status == self.ItemStatus.CANCELLED

    @property
    def is_topping(self):
        return self.parent_item_id is not None

    def status_rank(self, status=None):
        return self.STATUS_FLOW.index(status or self.status)


class OrderItemComboSelection(models.Model):
    """
    A product chosen for one combo line, per unit of the combo.
    """

    order_item = models.ForeignKey(
        OrderItem, on_delete=models.CASCADE, related_name="combo_selections"
    )
    combo_item = models.ForeignKey(
        "products.ComboItem", on_delete=models.PROTECT, related_name="selections"
    )
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="combo_selections")
    quantity = models.PositiveIntegerField(default=1)
    extra_price = models.DecimalField(max_digits=14, decimal_places=2, default=0)

    def __str__(self):
        return f"{self.quantity} x {self.product.name} for {self.order_item}"
