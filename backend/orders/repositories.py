"""
Data access for orders, order items and tables.

Repositories are bound to a UnitOfWork; every ``*_for_update`` lookup takes a
row lock that is held until the unit of work commits or rolls back.
"""
from .models import Order, OrderItem, OrderItemComboSelection, Table
from core_backend.exceptions import NotFoundError


class OrderRepository:
    def get(self, order_id) -> Order:
        try:
            return Order.objects.select_related("table", "customer", "applied_promotion").get(pk=order_id)
        except Order.DoesNotExist:
            raise NotFoundError("Đơn hàng không tồn tại", details={"order_id": order_id})

    def get_for_update(self, order_id) -> Order:
        try:
            return Order.objects.select_for_update().get(pk=order_id)
        except Order.DoesNotExist:
            raise NotFoundError("Đơn hàng không tồn tại", details={"order_id": order_id})

    def create(self, code_prefix="HD", **fields) -> Order:
        order = Order.objects.create(**fields)
        order.assign_order_code(code_prefix)
        return order

    # --- Items ---

    def get_item(self, order, item_id) -> OrderItem:
        try:
            return order.items.select_for_update().get(pk=item_id)
        except OrderItem.DoesNotExist:
            raise NotFoundError("Món không tồn tại trong đơn hàng", details={"item_id": item_id})

    def get_item_for_update(self, item_id) -> OrderItem:
        try:
            return OrderItem.objects.select_for_update().get(pk=item_id)
        except OrderItem.DoesNotExist:
            raise NotFoundError("Món không tồn tại trong đơn hàng", details={"item_id": item_id})

    def active_items(self, order):
        return list(
            order.items.exclude(status=OrderItem.ItemStatus.CANCELLED)
            .select_related("product", "combo")
            .order_by("id")
        )

    def add_item(self, order, **fields) -> OrderItem:
        return OrderItem.objects.create(order=order, **fields)

    def add_combo_selection(self, item, combo_item, quantity):
        return OrderItemComboSelection.objects.create(
            order_item=item,
            combo_item=combo_item,
            product=combo_item.product,
            quantity=quantity,
            extra_price=combo_item.extra_price,
        )

    # --- Tables ---

    def get_table(self, table_id) -> Table:
        try:
            return Table.objects.get(pk=table_id)
        except Table.DoesNotExist:
            raise NotFoundError("Bàn không tồn tại", details={"table_id": table_id})

    def active_order_for_table(self, table_id, exclude_order_id=None):
        queryset = Order.objects.filter(table_id=table_id).exclude(status__in=Order.TERMINAL_STATUSES)
        if exclude_order_id is not None:
            queryset = queryset.exclude(pk=exclude_order_id)
        return queryset.order_by("-created_at", "-id").first()

    def table_history(self, table_id, limit):
        return list(
            Order.objects.filter(table_id=table_id)
            .select_related("customer", "applied_promotion")
            .order_by("-created_at", "-id")[:limit]
        )
