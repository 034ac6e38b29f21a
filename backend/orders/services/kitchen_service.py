from django.utils import timezone
import logging

from core_backend.exceptions import NotFoundError, StateError, ValidationError
from core_backend.money import quantize_quantity
from core_backend.unit_of_work import UnitOfWork
from orders.models import Order, OrderItem

logger = logging.getLogger(__name__)


class KitchenService:
    """Kitchen-side transitions of order items and the matching order status."""

    def __init__(self, inventory, unit_of_work=UnitOfWork, clock=timezone.now):
        self.inventory = inventory
        self.unit_of_work = unit_of_work
        self.clock = clock

    def send_to_kitchen(self, order_id) -> Order:
        """
        Moves every pending line to preparing and the order to preparing.
        Sending an order with nothing new pending leaves it unchanged.
        """
        with self.unit_of_work() as uow:
            order = uow.orders.get_for_update(order_id)
            if order.is_terminal:
                raise StateError("Không thể gửi bếp đơn hàng đã hoàn thành hoặc đã hủy")

            active_items = uow.orders.active_items(order)
            if not active_items:
                raise StateError("Đơn hàng không có món nào để gửi bếp")

            now = self.clock()
            sent = order.items.filter(status=OrderItem.ItemStatus.PENDING).update(
                status=OrderItem.ItemStatus.PREPARING, updated_at=now
            )
            if sent:
                order.status = Order.OrderStatus.PREPARING
                order.sent_to_kitchen_at = now
                order.save(update_fields=["status", "sent_to_kitchen_at", "updated_at"])
                logger.info(f"Order {order.order_code}: {sent} item(s) sent to kitchen")
            else:
                logger.debug(f"Order {order.order_code}: no pending items to send")
            return order

    def update_item_status(self, item_id, status, all_items=False):
        """
        Advances an item (or, with ``all_items``, every active item of the same
        product or combo in the order) to ``status``. Progress is strictly
        forward; toppings follow their host.
        """
        if status not in OrderItem.STATUS_FLOW or status == OrderItem.ItemStatus.PENDING:
            raise ValidationError("Trạng thái món không hợp lệ")

        with self.unit_of_work() as uow:
            item = uow.orders.get_item_for_update(item_id)
            order = uow.orders.get_for_update(item.order_id)
            if order.is_terminal:
                raise StateError("Không thể cập nhật món của đơn hàng đã hoàn thành hoặc đã hủy")
            if item.is_cancelled:
                raise StateError("Món đã bị hủy")

            target_rank = OrderItem.STATUS_FLOW.index(status)
            candidates = [item]
            if all_items:
                candidates += list(
                    order.items.select_for_update()
                    .filter(product_id=item.product_id, combo_id=item.combo_id, parent_item__isnull=True)
                    .exclude(pk=item.pk)
                    .exclude(status=OrderItem.ItemStatus.CANCELLED)
                    .order_by("id")
                )

            # Only lines behind the target move; the call fails when none can
            targets = [candidate for candidate in candidates if candidate.status_rank() < target_rank]
            if not targets:
                raise StateError(
                    f"Không thể chuyển món từ '{item.get_status_display()}' về '{OrderItem.ItemStatus(status).label}'"
                )

            now = self.clock()
            updated = []
            for target in targets:
                target.status = status
                target.save(update_fields=["status", "updated_at"])
                updated.append(target)
                for topping in target.toppings.exclude(status=OrderItem.ItemStatus.CANCELLED):
                    if topping.status_rank() < target_rank:
                        topping.status = status
                        topping.save(update_fields=["status", "updated_at"])
                        updated.append(topping)

            self._sync_order_status(order, now)
            logger.info(f"Order {order.order_code}: {len(updated)} item(s) moved to {status}")
            return updated

    def _sync_order_status(self, order, now):
        hosts = list(
            order.items.filter(parent_item__isnull=True).exclude(status=OrderItem.ItemStatus.CANCELLED)
        )
        if not hosts:
            return

        done = (OrderItem.ItemStatus.READY, OrderItem.ItemStatus.SERVED)
        if all(host.status in done for host in hosts):
            new_status = Order.OrderStatus.READY
        elif any(host.status != OrderItem.ItemStatus.PENDING for host in hosts):
            new_status = Order.OrderStatus.PREPARING
        else:
            return

        if order.status != new_status:
            order.status = new_status
            if order.sent_to_kitchen_at is None:
                order.sent_to_kitchen_at = now
            order.save(update_fields=["status", "sent_to_kitchen_at", "updated_at"])

    def get_item_recipe(self, item_id) -> dict:
        """
        What the kitchen needs to make one line: each product in it (the
        combo selections for a combo line) with its recipe scaled to the
        line quantity. Products without a recipe list no ingredients.
        """
        try:
            item = OrderItem.objects.select_related("product", "combo").get(pk=item_id)
        except OrderItem.DoesNotExist:
            raise NotFoundError("Món không tồn tại trong đơn hàng", details={"item_id": item_id})

        if item.combo_id:
            parts = [
                (selection.product, selection.quantity * item.quantity)
                for selection in item.combo_selections.select_related("product").order_by("id")
            ]
        else:
            parts = [(item.product, item.quantity)]

        components = []
        for product, quantity in parts:
            components.append({
                "product_id": product.id,
                "name": product.name,
                "quantity": quantity,
                "ingredients": [
                    {
                        "product_id": recipe_item.product_id,
                        "name": recipe_item.product.name,
                        "quantity": quantize_quantity(recipe_item.quantity * quantity),
                        "unit": recipe_item.unit,
                    }
                    for recipe_item in self.inventory.get_recipe_items(product)
                ],
            })

        return {"item_id": item.id, "name": item.name, "quantity": item.quantity, "components": components}

    def get_kitchen_items(self, status=None):
        """
        Active lines of open orders the kitchen is working on, oldest first.
        """
        statuses = [status] if status else [OrderItem.ItemStatus.PREPARING, OrderItem.ItemStatus.READY]
        return list(
            OrderItem.objects.filter(status__in=statuses)
            .exclude(order__status__in=Order.TERMINAL_STATUSES)
            .select_related("order", "order__table", "product", "combo", "parent_item")
            .order_by("created_at", "id")
        )
