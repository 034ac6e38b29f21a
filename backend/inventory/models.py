from django.db import models
from django.utils.translation import gettext_lazy as _
from core_backend.utils.archiving import SoftDeleteMixin
from products.models import Product


class InventoryStock(models.Model):
    """
    Tracks the quantity on hand of a single product.
    """

    product = models.OneToOneField(
        Product, on_delete=models.PROTECT, related_name="stock"
    )
    quantity = models.DecimalField(
        max_digits=14,
        decimal_places=4,
        default=0,
        help_text=_("Quantity of stock on hand."),
    )
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        verbose_name = _("Inventory Stock")
        verbose_name_plural = _("Inventory Stocks")

    def __str__(self):
        return f"{self.product.name}: {self.quantity}"


class Recipe(SoftDeleteMixin):
    """
    Defines the ingredients consumed by one unit of a composite product.
    """

    menu_item = models.OneToOneField(
        Product,
        on_delete=models.PROTECT,
        related_name="recipe",
        help_text=_("The composite product this recipe is for."),
        limit_choices_to={"item_type": Product.ItemType.COMPOSITE},
    )
    name = models.CharField(max_length=200, blank=True)
    ingredients = models.ManyToManyField(
        Product, through="RecipeItem", related_name="used_in_recipes"
    )

    class Meta:
        verbose_name = _("Recipe")
        verbose_name_plural = _("Recipes")

    def __str__(self):
        return self.name or f"Recipe for {self.menu_item.name}"


class RecipeItem(models.Model):
    recipe = models.ForeignKey(Recipe, on_delete=models.CASCADE, related_name="items")
    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        help_text=_("The product used as an ingredient."),
    )
    quantity = models.DecimalField(
        max_digits=10,
        decimal_places=4,
        help_text=_("Quantity of the ingredient needed for one unit of the item."),
    )
    unit = models.CharField(
        max_length=50,
        blank=True,
        help_text=_("Unit of measure, e.g., 'g', 'ml', 'each'."),
    )

    class Meta:
        verbose_name = _("Recipe Item")
        verbose_name_plural = _("Recipe Items")
        unique_together = ("recipe", "product")

    def __str__(self):
        return f"{self.quantity} {self.unit} of {self.product.name} for {self.recipe}"


class StockHistoryEntry(models.Model):
    """
    Audit trail row written for every stock mutation.
    """

    class Operation(models.TextChoices):
        ADDED = "ADDED", _("Stock Added")
        ORDER_DEDUCTION = "ORDER_DEDUCTION", _("Order Deduction")

    product = models.ForeignKey(
        Product,
        on_delete=models.PROTECT,
        related_name="stock_history",
    )
    operation_type = models.CharField(max_length=20, choices=Operation.choices)
    quantity_change = models.DecimalField(
        max_digits=14,
        decimal_places=4,
        help_text=_("Change in quantity (positive for additions, negative for subtractions)"),
    )
    previous_quantity = models.DecimalField(max_digits=14, decimal_places=4)
    new_quantity = models.DecimalField(max_digits=14, decimal_places=4)
    reason = models.CharField(max_length=255, blank=True)
    reference_id = models.CharField(
        max_length=100,
        blank=True,
        help_text=_("Reference to the operation that caused the change (e.g. order_12)"),
    )
    timestamp = models.DateTimeField(auto_now_add=True)

    class Meta:
        verbose_name = _("Stock History Entry")
        verbose_name_plural = _("Stock History Entries")
        ordering = ["-timestamp", "-id"]
        indexes = [
            models.Index(fields=["product", "timestamp"], name="stock_hist_prod_time_idx"),
            models.Index(fields=["reference_id"], name="stock_hist_reference_idx"),
        ]

    def __str__(self):
        return f"{self.operation_type}: {self.product.name} ({self.quantity_change:+})"
