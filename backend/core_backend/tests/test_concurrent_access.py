"""
Concurrent Access Tests

Tests for race conditions that could cause:
- Promotion over-redemption past its usage cap
- Inventory overselling at checkout

These tests use threading to simulate simultaneous requests against a real
(committed) database.
"""
import pytest
from decimal import Decimal
from threading import Thread, Barrier
from django.db import connection

from core_backend.exceptions import ConflictError
from discounts.models import PromotionUsage
from inventory.models import InventoryStock
from orders.models import Order


def run_concurrently(target, arguments):
    """Starts one thread per argument behind a shared barrier and waits for all."""
    barrier = Barrier(len(arguments))

    def worker(argument):
        try:
            barrier.wait()
            target(argument)
        finally:
            # Each thread owns its own connection
            connection.close()

    threads = [Thread(target=worker, args=(argument,)) for argument in arguments]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()


@pytest.mark.django_db(transaction=True)
class TestConcurrentPromotionApply:
    """Test that the usage cap holds when two cashiers apply the same code at once."""

    def test_cap_of_one_gives_exactly_one_success(self, services, table_1, table_2, product_coffee, make_promotion):
        """
        CRITICAL: a promotion limited to one use, applied to two orders at the
        same moment, succeeds once and fails once with a conflict.
        """
        orders = [
            services.orders.create_order(
                items=[{"product_id": product_coffee.id, "quantity": 1}],
                order_type=Order.OrderType.DINE_IN,
                table_id=table.id,
            )
            for table in (table_1, table_2)
        ]
        promotion = make_promotion(apply_to_all_items=True, max_total_usage=1)

        successes = []
        conflicts = []
        unexpected = []

        def attempt_apply(order_id):
            try:
                services.ledger.apply(promotion.id, order_id)
                successes.append(order_id)
            except ConflictError as e:
                conflicts.append(e)
            except Exception as e:
                unexpected.append(f"{type(e).__name__}: {e}")

        run_concurrently(attempt_apply, [order.id for order in orders])

        assert unexpected == [], f"Untyped errors: {unexpected}"
        assert len(successes) == 1, f"Expected 1 successful apply, got {len(successes)}"
        assert len(conflicts) == 1, f"Expected 1 conflict, got {len(conflicts)}"
        assert conflicts[0].message == "Mã khuyến mãi đã hết lượt sử dụng"
        assert PromotionUsage.objects.filter(promotion=promotion).count() == 1

        loser = Order.objects.get(pk=next(order.id for order in orders if order.id not in successes))
        assert loser.applied_promotion_id is None
        assert loser.discount_amount == Decimal("0")


@pytest.mark.django_db(transaction=True)
class TestConcurrentCheckout:
    """Test concurrent checkouts against limited stock."""

    def test_stock_for_one_cake_sells_once(self, services, table_1, table_2, product_cake):
        """Two orders for the last cake: one completes, the other is rejected and stays open"""
        services.inventory.add_stock(product_cake, Decimal("1"), reason="Nhập kho")
        orders = []
        for table in (table_1, table_2):
            order = services.orders.create_order(
                items=[{"product_id": product_cake.id, "quantity": 1}],
                order_type=Order.OrderType.DINE_IN,
                table_id=table.id,
            )
            services.kitchen.send_to_kitchen(order.id)
            orders.append(order)

        completed = []
        conflicts = []
        unexpected = []

        def attempt_checkout(order_id):
            try:
                services.orders.checkout(order_id, Order.PaymentMethod.CASH, Decimal("20000"))
                completed.append(order_id)
            except ConflictError as e:
                conflicts.append(e)
            except Exception as e:
                unexpected.append(f"{type(e).__name__}: {e}")

        run_concurrently(attempt_checkout, [order.id for order in orders])

        assert unexpected == [], f"Untyped errors: {unexpected}"
        assert len(completed) == 1
        assert len(conflicts) == 1
        assert InventoryStock.objects.get(product=product_cake).quantity == Decimal("0")
        assert Order.objects.filter(status=Order.OrderStatus.COMPLETED).count() == 1
