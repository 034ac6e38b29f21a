from decimal import Decimal
from django.utils import timezone
import logging

from core_backend.exceptions import NotFoundError, StateError, ValidationError
from core_backend.money import quantize
from core_backend.unit_of_work import UnitOfWork
from orders.models import Order, OrderItem
from products.models import Combo, ComboItem

logger = logging.getLogger(__name__)


class OrderItemService:
    """Service for managing order items - adding, updating, removing, reducing."""

    def __init__(self, inventory, calculation_service, currency="VND", unit_of_work=UnitOfWork, clock=timezone.now):
        self.inventory = inventory
        self.calculation_service = calculation_service
        self.currency = currency
        self.unit_of_work = unit_of_work
        self.clock = clock

    # --- Line construction ---

    def create_line(self, uow, order: Order, spec: dict) -> OrderItem:
        """
        Creates one order line (product or combo) with its toppings.

        ``spec`` is a normalized item payload: product_id or combo_id,
        quantity, notes, customization, toppings and combo selections.
        Prices are snapshotted now and never change afterwards.
        """
        if spec.get("combo_id"):
            item = self._create_combo_line(uow, order, spec)
        else:
            product = self.inventory.get_sellable_product(spec["product_id"])
            item = uow.orders.add_item(
                order,
                product=product,
                name=product.name,
                quantity=spec["quantity"],
                unit_price=product.selling_price,
                notes=spec.get("notes") or "",
                customization=spec.get("customization"),
            )

        self._add_toppings(uow, order, item, spec.get("toppings") or [])

        logger.debug(f"Added line '{item.name}' x{item.quantity} to order {order.order_code}")
        return item

    def _add_toppings(self, uow, order, item, toppings):
        for topping_spec in toppings:
            topping = self.inventory.get_sellable_product(topping_spec["product_id"])
            if not topping.is_topping:
                raise ValidationError(f"{topping.name} không phải là topping")
            uow.orders.add_item(
                order,
                product=topping,
                parent_item=item,
                name=topping.name,
                quantity=topping_spec["quantity"],
                unit_price=topping.selling_price,
            )

    def _create_combo_line(self, uow, order, spec) -> OrderItem:
        try:
            combo = Combo.objects.get(pk=spec["combo_id"])
        except Combo.DoesNotExist:
            raise NotFoundError(f"Combo #{spec['combo_id']} không tồn tại")

        now = self.clock()
        if (combo.start_date and now < combo.start_date) or (combo.end_date and now > combo.end_date):
            raise ValidationError(f"Combo {combo.name} không trong thời gian áp dụng")

        combo_items = {
            ci.id: ci
            for ci in ComboItem.objects.select_related("group", "product").filter(group__combo=combo)
        }
        chosen = []
        per_group = {}
        for selection in spec.get("selections") or []:
            combo_item = combo_items.get(selection["combo_item_id"])
            if combo_item is None:
                name = (
                    ComboItem.objects.select_related("product")
                    .filter(pk=selection["combo_item_id"])
                    .values_list("product__name", flat=True)
                    .first()
                ) or f"#{selection['combo_item_id']}"
                raise ValidationError(f"Món {name} không thuộc Combo {combo.name}")
            chosen.append((combo_item, selection["quantity"]))
            per_group[combo_item.group_id] = per_group.get(combo_item.group_id, 0) + selection["quantity"]

        for group in combo.groups.all():
            selected = per_group.get(group.id, 0)
            if selected < group.min_select or selected > group.max_select:
                raise ValidationError(
                    f"Nhóm {group.name} của Combo {combo.name} cần chọn từ {group.min_select} đến {group.max_select} món"
                )

        unit_price = combo.combo_price + sum(
            (combo_item.extra_price * quantity for combo_item, quantity in chosen), Decimal("0")
        )
        item = uow.orders.add_item(
            order,
            combo=combo,
            name=combo.name,
            quantity=spec["quantity"],
            unit_price=quantize(self.currency, unit_price),
            notes=spec.get("notes") or "",
            customization=spec.get("customization"),
        )
        for combo_item, quantity in chosen:
            uow.orders.add_combo_selection(item, combo_item, quantity)
        return item

    # --- Operations ---

    def add_item(self, order_id, spec: dict) -> Order:
        with self.unit_of_work() as uow:
            order = uow.orders.get_for_update(order_id)
            if order.is_terminal:
                raise StateError("Không thể thêm món vào đơn hàng đã hoàn thành hoặc đã hủy")

            item = self.create_line(uow, order, spec)
            self.calculation_service.recalculate_order_totals(order)
            logger.info(f"Item '{item.name}' x{item.quantity} added to order {order.order_code}")
            return order

    def remove_item(self, order_id, item_id) -> Order:
        """
        Hard-deletes a line (and its toppings). Only lines the kitchen has not
        seen yet can be removed; anything else must be reduced with a reason.
        """
        with self.unit_of_work() as uow:
            order = uow.orders.get_for_update(order_id)
            if order.is_terminal:
                raise StateError("Không thể xóa món khỏi đơn hàng đã hoàn thành hoặc đã hủy")

            item = uow.orders.get_item(order, item_id)
            if item.status != OrderItem.ItemStatus.PENDING:
                raise StateError("Chỉ có thể xóa món chưa gửi bếp. Vui lòng dùng chức năng giảm món")

            name = item.name
            item.delete()
            self.calculation_service.recalculate_order_totals(order)
            logger.info(f"Item '{name}' removed from order {order.order_code}")
            return order

    def update_item(self, order_id, item_id, changes: dict) -> Order:
        """
        Edits a line in place. ``changes`` holds only the fields to change:
        quantity, notes, customization and toppings (replacing the current
        toppings). Notes can change until the line is served; everything
        else only while the kitchen has not seen the line.
        """
        if not changes:
            raise ValidationError("Vui lòng nhập thông tin cần cập nhật")

        with self.unit_of_work() as uow:
            order = uow.orders.get_for_update(order_id)
            if order.is_terminal:
                raise StateError("Không thể sửa món của đơn hàng đã hoàn thành hoặc đã hủy")

            item = uow.orders.get_item(order, item_id)
            if item.is_cancelled:
                raise StateError("Món đã bị hủy")
            if item.is_gift:
                raise StateError("Không thể sửa món tặng")
            if item.is_topping:
                raise ValidationError("Topping được cập nhật cùng món chính")

            kitchen_fields = {"quantity", "customization", "toppings"} & set(changes)
            if kitchen_fields and item.status != OrderItem.ItemStatus.PENDING:
                raise StateError("Món đã gửi bếp. Vui lòng dùng chức năng giảm món")
            if "notes" in changes and item.status == OrderItem.ItemStatus.SERVED:
                raise StateError("Món đã phục vụ, không thể sửa ghi chú")

            update_fields = []
            if "quantity" in changes:
                if changes["quantity"] < 1:
                    raise ValidationError("Số lượng phải lớn hơn 0")
                item.quantity = changes["quantity"]
                update_fields.append("quantity")
            if "notes" in changes:
                item.notes = changes["notes"] or ""
                update_fields.append("notes")
            if "customization" in changes:
                item.customization = changes["customization"]
                update_fields.append("customization")
            if update_fields:
                item.save(update_fields=update_fields + ["updated_at"])

            if "toppings" in changes:
                item.toppings.all().delete()
                self._add_toppings(uow, order, item, changes["toppings"] or [])

            self.calculation_service.recalculate_order_totals(order)
            logger.info(
                f"Item '{item.name}' updated on order {order.order_code}: {', '.join(sorted(changes))}"
            )
            return order

    def reduce_item(self, order_id, item_id, reason, quantity=None) -> Order:
        if not reason or not reason.strip():
            raise ValidationError("Vui lòng nhập lý do giảm món")
        reason = reason.strip()

        with self.unit_of_work() as uow:
            order = uow.orders.get_for_update(order_id)
            if order.is_terminal:
                raise StateError("Không thể giảm món của đơn hàng đã hoàn thành hoặc đã hủy")

            item = uow.orders.get_item(order, item_id)
            if item.is_cancelled:
                raise StateError("Món đã bị hủy")

            if quantity is not None:
                if quantity <= 0:
                    raise ValidationError("Số lượng giảm phải lớn hơn 0")
                if quantity > item.quantity:
                    raise ValidationError(
                        f"Số lượng giảm ({quantity}) vượt quá số lượng hiện tại ({item.quantity})"
                    )

            if quantity is None or quantity == item.quantity:
                self.cancel_line(item, reason)
                logger.info(f"Item '{item.name}' cancelled on order {order.order_code}: {reason}")
            else:
                item.quantity -= quantity
                item.notes = f"{item.notes} [Giảm: {reason}]".strip()
                item.save(update_fields=["quantity", "notes", "updated_at"])
                logger.info(
                    f"Item '{item.name}' reduced by {quantity} on order {order.order_code}: {reason}"
                )

            self.calculation_service.recalculate_order_totals(order)
            return order

    def cancel_line(self, item: OrderItem, reason):
        """Cancels a line and its toppings. Quantity and line total are kept."""
        cancelled = OrderItem.ItemStatus.CANCELLED
        item.status = cancelled
        item.cancel_reason = reason
        item.save(update_fields=["status", "cancel_reason", "updated_at"])
        item.toppings.exclude(status=cancelled).update(
            status=cancelled, cancel_reason=reason, updated_at=self.clock()
        )
