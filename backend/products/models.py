from django.db import models
from django.utils.translation import gettext_lazy as _
from core_backend.utils.archiving import SoftDeleteMixin


class Category(SoftDeleteMixin):
    name = models.CharField(
        max_length=100, unique=True, help_text=_("Name of the product category.")
    )
    description = models.TextField(
        blank=True, help_text=_("Description of the category.")
    )
    order = models.IntegerField(
        default=0,
        help_text=_("Display order for this category. Lower numbers appear first."),
    )

    class Meta:
        verbose_name = _("Category")
        verbose_name_plural = _("Categories")
        ordering = ["order", "name"]

    def __str__(self):
        return self.name


class Product(SoftDeleteMixin):
    """
    A catalogue item. Sellable items are what order lines reference; ingredients
    only appear in recipes and are decremented at checkout.
    """

    class ItemType(models.TextChoices):
        READY_MADE = "ready_made", _("Ready-made")  # sold as stocked (bottled drinks, cakes)
        COMPOSITE = "composite", _("Composite")  # prepared from a recipe
        INGREDIENT = "ingredient", _("Ingredient")

    code = models.CharField(max_length=50, unique=True, null=True, blank=True)
    name = models.CharField(max_length=200, help_text=_("Name of the product."))
    description = models.TextField(
        blank=True, help_text=_("Detailed description of the product.")
    )
    selling_price = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=0,
        help_text=_("The current selling price of the product."),
    )
    category = models.ForeignKey(
        Category,
        related_name="products",
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        help_text=_("Product category. Leave blank for uncategorized products."),
    )
    item_type = models.CharField(
        max_length=20, choices=ItemType.choices, default=ItemType.READY_MADE
    )
    is_sellable = models.BooleanField(
        default=True,
        help_text=_("Whether the product can be added to an order."),
    )
    is_topping = models.BooleanField(
        default=False,
        help_text=_("Whether the product can be attached to another order line as a topping."),
    )
    track_inventory = models.BooleanField(
        default=False,
        help_text=_(
            "Whether to track inventory levels for this product. When enabled, stock is decremented at checkout."
        ),
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Product")
        verbose_name_plural = _("Products")
        ordering = ["name"]
        indexes = [
            models.Index(fields=['category', 'is_active'], name='product_category_active_idx'),
            models.Index(fields=['item_type']),
        ]

    def __str__(self):
        return self.name

    @property
    def is_composite(self):
        return self.item_type == self.ItemType.COMPOSITE


class Combo(SoftDeleteMixin):
    """
    A single purchasable unit composed of must-choose / may-choose groups,
    priced as one item.
    """

    code = models.CharField(max_length=50, unique=True, null=True, blank=True)
    name = models.CharField(max_length=200)
    combo_price = models.DecimalField(max_digits=14, decimal_places=2)
    original_price = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=0,
        help_text=_("Sum of the component prices, for display only."),
    )
    start_date = models.DateTimeField(null=True, blank=True)
    end_date = models.DateTimeField(null=True, blank=True)

    class Meta:
        verbose_name = _("Combo")
        verbose_name_plural = _("Combos")
        ordering = ["name"]

    def __str__(self):
        return self.name


class ComboGroup(models.Model):
    combo = models.ForeignKey(Combo, on_delete=models.CASCADE, related_name="groups")
    name = models.CharField(max_length=100)
    min_select = models.PositiveIntegerField(
        default=1,
        help_text=_("Minimum units to choose from this group. 0 makes the group optional."),
    )
    max_select = models.PositiveIntegerField(default=1)
    display_order = models.IntegerField(default=0)

    class Meta:
        ordering = ["display_order", "id"]

    def __str__(self):
        return f"{self.combo.name} / {self.name}"


class ComboItem(models.Model):
    group = models.ForeignKey(ComboGroup, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(Product, on_delete=models.PROTECT, related_name="combo_items")
    extra_price = models.DecimalField(
        max_digits=14,
        decimal_places=2,
        default=0,
        help_text=_("Surcharge added to the combo price when this option is chosen."),
    )

    class Meta:
        unique_together = ("group", "product")

    def __str__(self):
        return f"{self.product.name} in {self.group}"
