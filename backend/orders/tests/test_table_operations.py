"""
Table Operation Tests

Tests for moving orders between tables, merging two open orders and
splitting part of an order onto another table.
"""
import pytest
from decimal import Decimal

from core_backend.exceptions import ConflictError, StateError, ValidationError
from discounts.models import PromotionUsage
from orders.models import Order, OrderItem


def create_dine_in(services, table, *lines, customer_id=None):
    return services.orders.create_order(
        items=[{"product_id": product.id, "quantity": quantity} for product, quantity in lines],
        order_type=Order.OrderType.DINE_IN,
        table_id=table.id,
        customer_id=customer_id,
    )


def snapshot_state(order):
    order.refresh_from_db()
    return (
        order.subtotal,
        order.total_amount,
        sorted(order.items.values_list("id", "quantity", "status")),
    )


@pytest.mark.django_db
class TestTransferTable:
    def test_transfer(self, services, open_order, table_2):
        order = services.tables.transfer_table(open_order.id, table_2.id)

        assert order.table_id == table_2.id
        assert services.tables.get_active_order_for_table(table_2.id) == open_order

    def test_takeaway_becomes_dine_in(self, services, takeaway_order, table_2):
        order = services.tables.transfer_table(takeaway_order.id, table_2.id)
        assert order.order_type == Order.OrderType.DINE_IN

    def test_occupied_table(self, services, open_order, table_2, product_tea):
        create_dine_in(services, table_2, (product_tea, 1))

        with pytest.raises(ConflictError) as exc_info:
            services.tables.transfer_table(open_order.id, table_2.id)
        assert exc_info.value.message == "Bàn mới đã có khách"

    def test_same_table(self, services, open_order, table_1):
        with pytest.raises(ValidationError):
            services.tables.transfer_table(open_order.id, table_1.id)

    def test_table_freed_after_transfer(self, services, open_order, table_1, table_2):
        services.tables.transfer_table(open_order.id, table_2.id)
        assert services.tables.get_active_order_for_table(table_1.id) is None


@pytest.mark.django_db
class TestMergeOrders:
    def test_merge_moves_items_and_cancels_source(self, services, open_order, table_2, product_tea):
        source = create_dine_in(services, table_2, (product_tea, 2))

        target = services.tables.merge_orders(open_order.id, source.id)

        target.refresh_from_db()
        source.refresh_from_db()
        assert target.subtotal == Decimal("160000")
        assert target.items.count() == 2
        assert source.status == Order.OrderStatus.CANCELLED
        assert source.merged_into_id == target.id
        assert source.cancel_reason == f"Đã gộp vào đơn {target.order_code}"
        assert source.subtotal == Decimal("0")
        assert source.total_amount == Decimal("0")

    def test_merge_carries_toppings(self, services, open_order, table_2, product_tea, topping_pearl):
        source = services.orders.create_order(
            items=[{"product_id": product_tea.id, "quantity": 1, "toppings": [{"product_id": topping_pearl.id, "quantity": 1}]}],
            order_type=Order.OrderType.DINE_IN,
            table_id=table_2.id,
        )

        services.tables.merge_orders(open_order.id, source.id)

        topping = OrderItem.objects.get(product=topping_pearl)
        assert topping.order_id == open_order.id
        assert topping.parent_item.order_id == open_order.id

    def test_merge_releases_source_promotion(self, services, open_order, table_2, product_tea, percent_promotion):
        source = create_dine_in(services, table_2, (product_tea, 2))
        services.ledger.apply(percent_promotion.id, source.id)

        services.tables.merge_orders(open_order.id, source.id)

        source.refresh_from_db()
        assert source.applied_promotion_id is None
        assert not PromotionUsage.objects.filter(order=source).exists()
        open_order.refresh_from_db()
        assert open_order.discount_amount == Decimal("0")

    def test_target_inherits_customer(self, services, open_order, table_2, product_tea, customer_vip):
        source = create_dine_in(services, table_2, (product_tea, 1), customer_id=customer_vip.id)

        target = services.tables.merge_orders(open_order.id, source.id)
        assert target.customer_id == customer_vip.id

    def test_two_different_customers(self, services, table_1, table_2, product_tea, customer_vip, customer_regular):
        target = create_dine_in(services, table_1, (product_tea, 1), customer_id=customer_vip.id)
        source = create_dine_in(services, table_2, (product_tea, 1), customer_id=customer_regular.id)

        with pytest.raises(ConflictError):
            services.tables.merge_orders(target.id, source.id)

    def test_same_order(self, services, open_order):
        with pytest.raises(ValidationError):
            services.tables.merge_orders(open_order.id, open_order.id)

    def test_terminal_order(self, services, open_order, takeaway_order):
        services.orders.cancel_order(takeaway_order.id, "Khách về")
        with pytest.raises(StateError):
            services.tables.merge_orders(open_order.id, takeaway_order.id)


@pytest.mark.django_db
class TestSplitOrder:
    def test_split_whole_line(self, services, table_1, table_2, product_coffee, product_tea):
        order = create_dine_in(services, table_1, (product_coffee, 2), (product_tea, 1))
        tea_line = order.items.get(product=product_tea)

        source, created = services.tables.split_order(order.id, table_2.id, [{"item_id": tea_line.id, "quantity": 1}])

        tea_line.refresh_from_db()
        assert tea_line.order_id == created.id
        assert created.table_id == table_2.id
        assert created.notes == f"Tách từ đơn {source.order_code}"
        assert source.subtotal == Decimal("100000")
        assert created.subtotal == Decimal("30000")

    def test_split_partial_line(self, services, table_1, table_2, product_coffee):
        order = create_dine_in(services, table_1, (product_coffee, 3))
        line = order.items.get()

        source, created = services.tables.split_order(order.id, table_2.id, [{"item_id": line.id, "quantity": 1}])

        line.refresh_from_db()
        assert line.quantity == 2
        copy = created.items.get()
        assert copy.quantity == 1
        assert copy.unit_price == Decimal("50000")
        assert source.subtotal == Decimal("100000")
        assert created.subtotal == Decimal("50000")

    def test_split_more_than_remaining_changes_nothing(self, services, table_1, table_2, product_coffee):
        """Moving 5 of a 3-quantity line fails and leaves both sides untouched"""
        order = create_dine_in(services, table_1, (product_coffee, 3))
        line = order.items.get()
        before = snapshot_state(order)
        orders_before = Order.objects.count()

        with pytest.raises(ConflictError):
            services.tables.split_order(order.id, table_2.id, [{"item_id": line.id, "quantity": 5}])

        assert snapshot_state(order) == before
        assert Order.objects.count() == orders_before
        assert services.tables.get_active_order_for_table(table_2.id) is None

    def test_split_repeated_item_counts_total(self, services, table_1, table_2, product_coffee):
        order = create_dine_in(services, table_1, (product_coffee, 3))
        line = order.items.get()

        with pytest.raises(ConflictError):
            services.tables.split_order(
                order.id,
                table_2.id,
                [{"item_id": line.id, "quantity": 2}, {"item_id": line.id, "quantity": 2}],
            )

    def test_split_to_occupied_table(self, services, open_order, table_2, product_tea):
        create_dine_in(services, table_2, (product_tea, 1))
        line = open_order.items.get()

        with pytest.raises(ConflictError):
            services.tables.split_order(open_order.id, table_2.id, [{"item_id": line.id, "quantity": 1}])

    def test_cannot_split_topping(self, services, table_1, table_2, product_tea, topping_pearl):
        order = services.orders.create_order(
            items=[{"product_id": product_tea.id, "quantity": 1, "toppings": [{"product_id": topping_pearl.id, "quantity": 1}]}],
            order_type=Order.OrderType.DINE_IN,
            table_id=table_1.id,
        )
        topping = order.items.get(parent_item__isnull=False)

        with pytest.raises(ValidationError):
            services.tables.split_order(order.id, table_2.id, [{"item_id": topping.id, "quantity": 1}])

    def test_empty_request(self, services, open_order, table_2):
        with pytest.raises(ValidationError):
            services.tables.split_order(open_order.id, table_2.id, [])


@pytest.mark.django_db
class TestTableReads:
    def test_history_newest_first(self, services, table_1, product_tea, product_coffee):
        first = create_dine_in(services, table_1, (product_tea, 1))
        services.orders.cancel_order(first.id, "Khách về")
        second = create_dine_in(services, table_1, (product_coffee, 1))

        history = services.tables.get_table_history(table_1.id, 10)
        assert [order.id for order in history] == [second.id, first.id]
        assert services.tables.get_table_history(table_1.id, 1) == [second]
