from django.db.models import Q
from django.utils import timezone
import logging

from core_backend.exceptions import ConflictError, StateError, ValidationError
from core_backend.unit_of_work import UnitOfWork
from orders.models import Order, OrderItem

logger = logging.getLogger(__name__)


class TableOperationsService:
    """Table transfer, merging and splitting of open orders."""

    def __init__(self, ledger, calculation_service, order_code_prefix="HD", unit_of_work=UnitOfWork,
                 clock=timezone.now):
        self.ledger = ledger
        self.calculation_service = calculation_service
        self.order_code_prefix = order_code_prefix
        self.unit_of_work = unit_of_work
        self.clock = clock

    def _ensure_table_free(self, uow, table, exclude_order_id=None):
        occupant = uow.orders.active_order_for_table(table.id, exclude_order_id=exclude_order_id)
        if occupant is not None:
            raise ConflictError(
                "Bàn mới đã có khách",
                details={"table_id": table.id, "order_id": occupant.id},
            )

    def transfer_table(self, order_id, new_table_id) -> Order:
        with self.unit_of_work() as uow:
            order = uow.orders.get_for_update(order_id)
            if order.is_terminal:
                raise StateError("Không thể chuyển bàn cho đơn hàng đã hoàn thành hoặc đã hủy")

            table = uow.orders.get_table(new_table_id)
            if order.table_id == table.id:
                raise ValidationError("Đơn hàng đã ở bàn này")
            self._ensure_table_free(uow, table, exclude_order_id=order.id)

            previous_table_id = order.table_id
            order.table = table
            order.order_type = Order.OrderType.DINE_IN
            order.save(update_fields=["table", "order_type", "updated_at"])
            logger.info(f"Order {order.order_code} moved from table {previous_table_id} to table {table.id}")
            return order

    def merge_orders(self, target_order_id, source_order_id) -> Order:
        """
        Moves every active line of the source order into the target order and
        cancels the source. The source's promotion is released first.
        """
        if target_order_id == source_order_id:
            raise ValidationError("Không thể gộp đơn hàng với chính nó")

        with self.unit_of_work() as uow:
            # Lock in id order so two merges of the same pair cannot deadlock
            locked = {
                order_id: uow.orders.get_for_update(order_id)
                for order_id in sorted([target_order_id, source_order_id])
            }
            target, source = locked[target_order_id], locked[source_order_id]

            if target.is_terminal or source.is_terminal:
                raise StateError("Không thể gộp đơn hàng đã hoàn thành hoặc đã hủy")

            if (
                target.customer_id is not None
                and source.customer_id is not None
                and target.customer_id != source.customer_id
            ):
                raise ConflictError("Không thể gộp đơn hàng của hai khách hàng khác nhau")

            self.ledger.release(uow, source)

            # Active lines move together with every topping attached to them
            host_ids = list(
                source.items.filter(parent_item__isnull=True)
                .exclude(status=OrderItem.ItemStatus.CANCELLED)
                .values_list("id", flat=True)
            )
            moved = source.items.filter(Q(pk__in=host_ids) | Q(parent_item_id__in=host_ids)).update(
                order=target, updated_at=self.clock()
            )

            if target.customer_id is None and source.customer_id is not None:
                target.customer_id = source.customer_id
                target.save(update_fields=["customer", "updated_at"])

            now = self.clock()
            source.status = Order.OrderStatus.CANCELLED
            source.merged_into = target
            source.cancel_reason = f"Đã gộp vào đơn {target.order_code}"
            source.cancelled_at = now
            source.save(update_fields=["status", "merged_into", "cancel_reason", "cancelled_at", "updated_at"])

            self.calculation_service.recalculate_order_totals(source)
            self.calculation_service.recalculate_order_totals(target)
            logger.info(f"Order {source.order_code} merged into {target.order_code} ({moved} item(s) moved)")
            return target

    def split_order(self, order_id, new_table_id, items):
        """
        Moves the requested quantities into a new order on ``new_table_id``.
        Whole lines move with their toppings; partial lines are copied with
        the same price snapshot. Nothing changes if any request is invalid.
        """
        if not items:
            raise ValidationError("Vui lòng chọn món cần tách")

        requested = {}
        for entry in items:
            if entry["quantity"] <= 0:
                raise ValidationError("Số lượng tách phải lớn hơn 0")
            requested[entry["item_id"]] = requested.get(entry["item_id"], 0) + entry["quantity"]

        with self.unit_of_work() as uow:
            source = uow.orders.get_for_update(order_id)
            if source.is_terminal:
                raise StateError("Không thể tách đơn hàng đã hoàn thành hoặc đã hủy")

            table = uow.orders.get_table(new_table_id)
            self._ensure_table_free(uow, table)

            lines = []
            for item_id, quantity in requested.items():
                item = uow.orders.get_item(source, item_id)
                if item.is_cancelled:
                    raise StateError(f"Không thể tách món đã hủy: {item.name}")
                if item.is_topping:
                    raise ValidationError(f"Không thể tách riêng topping {item.name}")
                if item.is_gift:
                    raise ValidationError(f"Không thể tách món quà tặng {item.name}")
                if quantity > item.quantity:
                    raise ConflictError(
                        f"Số lượng tách của món {item.name} ({quantity}) vượt quá số lượng còn lại ({item.quantity})",
                        details={"item_id": item.id, "requested": quantity, "available": item.quantity},
                    )
                lines.append((item, quantity))

            created = uow.orders.create(
                code_prefix=self.order_code_prefix,
                table=table,
                order_type=Order.OrderType.DINE_IN,
                customer_id=source.customer_id,
                status=source.status,
                sent_to_kitchen_at=source.sent_to_kitchen_at,
                notes=f"Tách từ đơn {source.order_code}",
            )

            for item, quantity in lines:
                if quantity == item.quantity:
                    OrderItem.objects.filter(pk=item.pk).update(order=created)
                    item.toppings.update(order=created)
                else:
                    self._copy_line(uow, created, item, quantity)
                    item.quantity -= quantity
                    item.save(update_fields=["quantity", "updated_at"])

            self.calculation_service.recalculate_order_totals(source)
            self.calculation_service.recalculate_order_totals(created)
            logger.info(f"Order {source.order_code} split into {created.order_code} ({len(lines)} line(s))")
            return source, created

    def _copy_line(self, uow, order, item, quantity):
        copy = uow.orders.add_item(
            order,
            product_id=item.product_id,
            combo_id=item.combo_id,
            name=item.name,
            quantity=quantity,
            unit_price=item.unit_price,
            customization=item.customization,
            notes=item.notes,
            status=item.status,
        )
        for selection in item.combo_selections.all():
            copy.combo_selections.create(
                combo_item_id=selection.combo_item_id,
                product_id=selection.product_id,
                quantity=selection.quantity,
                extra_price=selection.extra_price,
            )
        return copy

    # --- Reads ---

    def get_active_order_for_table(self, table_id):
        with self.unit_of_work() as uow:
            uow.orders.get_table(table_id)
            return uow.orders.active_order_for_table(table_id)

    def get_table_history(self, table_id, limit):
        with self.unit_of_work() as uow:
            uow.orders.get_table(table_id)
            return uow.orders.table_history(table_id, limit)
