from django.db import transaction
from django.db.models import F
from .models import InventoryStock, Recipe, StockHistoryEntry
from products.models import Product
from core_backend.exceptions import ConflictError, NotFoundError, ValidationError
from core_backend.money import ZERO, quantize_quantity, to_decimal
from decimal import Decimal
import logging

logger = logging.getLogger(__name__)


class InventoryService:
    """
    Read access to item pricing, recipes and stock, plus the stock decrement
    performed when an order is checked out.
    """

    def get_sellable_product(self, product_id) -> Product:
        try:
            product = Product.objects.get(pk=product_id)
        except Product.DoesNotExist:
            raise NotFoundError(f"Sản phẩm #{product_id} không tồn tại")

        if not product.is_sellable:
            raise ValidationError(f"Sản phẩm {product.name} không được phép bán")
        return product

    def get_sellable_price(self, product_id) -> Decimal:
        return self.get_sellable_product(product_id).selling_price

    def get_recipe(self, product: Product):
        """
        Returns the ingredient list of a composite product as
        ``[(ingredient, quantity_per_unit), ...]``. Empty for anything else.
        """
        return [(ri.product, ri.quantity) for ri in self.get_recipe_items(product)]

    def get_recipe_items(self, product: Product):
        if not product.is_composite:
            return []
        try:
            recipe = Recipe.objects.get(menu_item=product)
        except Recipe.DoesNotExist:
            return []
        return list(recipe.items.select_related("product").order_by("id"))

    def get_stock_level(self, product: Product) -> Decimal:
        stock = InventoryStock.objects.filter(product=product).first()
        return stock.quantity if stock else ZERO

    def _log_stock_operation(self, product, operation_type, quantity_change, previous_quantity, new_quantity,
                             reason="", reference_id=""):
        StockHistoryEntry.objects.create(
            product=product,
            operation_type=operation_type,
            quantity_change=quantity_change,
            previous_quantity=previous_quantity,
            new_quantity=new_quantity,
            reason=reason,
            reference_id=reference_id or "",
        )

    @transaction.atomic
    def add_stock(self, product: Product, quantity, reason="", reference_id=""):
        """
        Adds stock for a product, creating its stock record on first use.
        """
        quantity_decimal = quantize_quantity(to_decimal(quantity))
        if quantity_decimal < 0:
            raise ValidationError("Số lượng nhập kho không được âm")

        stock, _ = InventoryStock.objects.select_for_update().get_or_create(
            product=product, defaults={"quantity": ZERO}
        )
        previous_quantity = stock.quantity

        InventoryStock.objects.filter(pk=stock.pk).update(quantity=F("quantity") + quantity_decimal)
        stock.refresh_from_db()

        self._log_stock_operation(
            product,
            StockHistoryEntry.Operation.ADDED,
            quantity_decimal,
            previous_quantity,
            stock.quantity,
            reason=reason,
            reference_id=reference_id,
        )
        return stock

    @transaction.atomic
    def decrement_stock(self, product: Product, quantity, reason="", reference_id=""):
        """
        Decrements stock for a tracked product under a row lock.
        Raises ConflictError if the stock would go negative.
        """
        if not product.track_inventory:
            logger.debug(f"Product {product.id} is not inventory-tracked, skipping decrement")
            return None

        quantity_decimal = quantize_quantity(to_decimal(quantity))
        try:
            stock = InventoryStock.objects.select_for_update().get(product=product)
        except InventoryStock.DoesNotExist:
            raise ConflictError(
                f"Không đủ tồn kho cho {product.name}. Cần: {quantity_decimal}, còn: 0",
                details={"product_id": product.id, "required": str(quantity_decimal), "available": "0"},
            )

        if stock.quantity < quantity_decimal:
            raise ConflictError(
                f"Không đủ tồn kho cho {product.name}. Cần: {quantity_decimal}, còn: {stock.quantity}",
                details={
                    "product_id": product.id,
                    "required": str(quantity_decimal),
                    "available": str(stock.quantity),
                },
            )

        previous_quantity = stock.quantity
        stock.quantity -= quantity_decimal
        stock.save(update_fields=["quantity", "updated_at"])

        self._log_stock_operation(
            product,
            StockHistoryEntry.Operation.ORDER_DEDUCTION,
            -quantity_decimal,
            previous_quantity,
            stock.quantity,
            reason=reason,
            reference_id=reference_id,
        )
        return stock

    def _deduct_product(self, product: Product, quantity, reference_id):
        recipe = self.get_recipe(product)
        if recipe:
            for ingredient, per_unit in recipe:
                self.decrement_stock(
                    ingredient,
                    per_unit * quantity,
                    reason=f"Nguyên liệu cho {product.name}",
                    reference_id=reference_id,
                )
        elif product.is_composite:
            logger.info(f"Composite product {product.id} has no recipe - nothing to deduct")
        else:
            self.decrement_stock(product, quantity, reason="Bán hàng", reference_id=reference_id)

    def deduct_for_order_item(self, item, reference_id=""):
        """
        Deducts stock consumed by one order line. Combo lines deduct each
        selected product; composite products deduct their recipe ingredients.
        """
        quantity = Decimal(item.quantity)
        if item.combo_id:
            for selection in item.combo_selections.select_related("product"):
                self._deduct_product(selection.product, Decimal(selection.quantity) * quantity, reference_id)
        else:
            self._deduct_product(item.product, quantity, reference_id)

    @transaction.atomic
    def process_order_completion(self, order, items):
        """
        Deducts inventory for every active line of a completed order.
        Any shortage aborts the surrounding transaction.
        """
        reference_id = f"order_{order.id}"
        for item in items:
            self.deduct_for_order_item(item, reference_id=reference_id)
        logger.info(f"Inventory deducted for order {order.order_code}")
