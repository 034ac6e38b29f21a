"""
Operation facade for the order & promotion engine.

``OrderEngine`` is the only entry point the HTTP layer needs: each operation
validates its raw input with a DRF serializer, fills optional values with
their defaults, calls the service that owns the rule and returns plain
serialized data. Services are wired once by ``build_engine`` and passed by
reference; nothing here is a module-level singleton.
"""

from dataclasses import dataclass
import logging

from core_backend.config import EngineSettings
from core_backend.unit_of_work import UnitOfWork
from core_backend.validation import require_id, require_valid
from customers.services import CustomerService
from discounts.evaluator import PromotionEvaluator
from discounts.serializers import (
    ApplyPromotionSerializer,
    AvailablePromotionsSerializer,
    CanUsePromotionSerializer,
    EligibilitySerializer,
    PromotionSerializer,
    PromotionStatsSerializer,
    UnapplyPromotionSerializer,
)
from discounts.services import PromotionLedgerService
from inventory.services import InventoryService
from orders.models import Order
from orders.serializers import (
    CancelOrderSerializer,
    CheckoutSerializer,
    CreateOrderSerializer,
    ItemRecipeSerializer,
    KitchenItemSerializer,
    KitchenItemsSerializer,
    MergeOrdersSerializer,
    OrderItemInputSerializer,
    OrderItemSerializer,
    OrderSerializer,
    ReduceItemSerializer,
    SplitOrderSerializer,
    TableHistorySerializer,
    TransferTableSerializer,
    UpdateItemSerializer,
    UpdateItemStatusSerializer,
    UpdateOrderSerializer,
)
from orders.services import (
    KitchenService,
    OrderCalculationService,
    OrderItemService,
    OrderService,
    TableOperationsService,
)

logger = logging.getLogger(__name__)


def _payload(**values):
    """Builds a serializer payload, leaving out values the caller did not give."""
    return {key: value for key, value in values.items() if value is not None}


@dataclass
class EngineServices:
    settings: EngineSettings
    inventory: InventoryService
    customers: CustomerService
    evaluator: PromotionEvaluator
    calculation: OrderCalculationService
    ledger: PromotionLedgerService
    items: OrderItemService
    orders: OrderService
    kitchen: KitchenService
    tables: TableOperationsService


class OrderEngine:
    def __init__(self, services: EngineServices):
        self.services = services
        self.settings = services.settings

    # --- Order lifecycle ---

    def create_order(self, items, order_type=None, table_id=None, notes=None, customer_id=None):
        """
        Opens an order. Without an explicit ``order_type`` an order with a
        table is dine-in and one without is takeaway.
        """
        if order_type is None:
            order_type = Order.OrderType.DINE_IN if table_id is not None else Order.OrderType.TAKEAWAY
        data = require_valid(
            CreateOrderSerializer,
            _payload(items=items, order_type=order_type, table_id=table_id, notes=notes, customer_id=customer_id),
        )
        order = self.services.orders.create_order(
            items=data["items"],
            order_type=data["order_type"],
            table_id=data["table_id"],
            notes=data["notes"],
            customer_id=data["customer_id"],
        )
        return OrderSerializer(order).data

    def update_order(self, order_id, notes=None, customer_id=None):
        order_id = require_id(order_id, "đơn hàng")
        changes = require_valid(UpdateOrderSerializer, _payload(notes=notes, customer_id=customer_id))
        order = self.services.orders.update_order(order_id, changes)
        return OrderSerializer(order).data

    def confirm_order(self, order_id):
        order = self.services.orders.confirm_order(require_id(order_id, "đơn hàng"))
        return OrderSerializer(order).data

    def add_item(self, order_id, item):
        order_id = require_id(order_id, "đơn hàng")
        spec = require_valid(OrderItemInputSerializer, item)
        order = self.services.items.add_item(order_id, spec)
        return OrderSerializer(order).data

    def update_item(self, order_id, item_id, quantity=None, notes=None, customization=None, toppings=None):
        order_id, item_id = require_id(order_id, "đơn hàng"), require_id(item_id, "món")
        changes = require_valid(
            UpdateItemSerializer,
            _payload(quantity=quantity, notes=notes, customization=customization, toppings=toppings),
        )
        order = self.services.items.update_item(order_id, item_id, changes)
        return OrderSerializer(order).data

    def remove_item(self, order_id, item_id):
        order = self.services.items.remove_item(require_id(order_id, "đơn hàng"), require_id(item_id, "món"))
        return OrderSerializer(order).data

    def reduce_item(self, order_id, item_id, reason=None, quantity=None):
        order_id, item_id = require_id(order_id, "đơn hàng"), require_id(item_id, "món")
        data = require_valid(ReduceItemSerializer, _payload(reason=reason, quantity=quantity))
        order = self.services.items.reduce_item(order_id, item_id, data["reason"], data["quantity"])
        return OrderSerializer(order).data

    def checkout(self, order_id, payment_method=None, paid_amount=None, promotion_id=None, selected_gifts=None):
        order_id = require_id(order_id, "đơn hàng")
        data = require_valid(
            CheckoutSerializer,
            _payload(
                payment_method=payment_method,
                paid_amount=paid_amount,
                promotion_id=promotion_id,
                selected_gifts=selected_gifts,
            ),
        )
        order = self.services.orders.checkout(
            order_id,
            payment_method=data["payment_method"],
            paid_amount=data["paid_amount"],
            promotion_id=data["promotion_id"],
            selected_gifts=data["selected_gifts"] or None,
        )
        return OrderSerializer(order).data

    def cancel_order(self, order_id, reason=None):
        order_id = require_id(order_id, "đơn hàng")
        data = require_valid(CancelOrderSerializer, _payload(reason=reason))
        order = self.services.orders.cancel_order(order_id, data["reason"])
        return OrderSerializer(order).data

    # --- Kitchen ---

    def send_to_kitchen(self, order_id):
        order = self.services.kitchen.send_to_kitchen(require_id(order_id, "đơn hàng"))
        return OrderSerializer(order).data

    def update_item_status(self, item_id, status=None, all_items=False):
        item_id = require_id(item_id, "món")
        data = require_valid(UpdateItemStatusSerializer, _payload(status=status, all=all_items))
        updated = self.services.kitchen.update_item_status(item_id, data["status"], all_items=data["all"])
        return OrderItemSerializer(updated, many=True).data

    def get_kitchen_items(self, status=None):
        data = require_valid(KitchenItemsSerializer, _payload(status=status))
        return KitchenItemSerializer(self.services.kitchen.get_kitchen_items(data["status"]), many=True).data

    def get_item_recipe(self, item_id):
        return ItemRecipeSerializer(self.services.kitchen.get_item_recipe(require_id(item_id, "món"))).data

    # --- Tables ---

    def transfer_table(self, order_id, new_table_id=None):
        order_id = require_id(order_id, "đơn hàng")
        data = require_valid(TransferTableSerializer, _payload(new_table_id=new_table_id))
        order = self.services.tables.transfer_table(order_id, data["new_table_id"])
        return OrderSerializer(order).data

    def merge_orders(self, target_order_id, source_order_id):
        data = require_valid(
            MergeOrdersSerializer,
            _payload(target_order_id=target_order_id, source_order_id=source_order_id),
        )
        order = self.services.tables.merge_orders(data["target_order_id"], data["source_order_id"])
        return OrderSerializer(order).data

    def split_order(self, order_id, new_table_id=None, items=None):
        order_id = require_id(order_id, "đơn hàng")
        data = require_valid(SplitOrderSerializer, _payload(new_table_id=new_table_id, items=items))
        source, created = self.services.tables.split_order(order_id, data["new_table_id"], data["items"])
        return {"source": OrderSerializer(source).data, "created": OrderSerializer(created).data}

    # --- Reads ---

    def get_order(self, order_id):
        return OrderSerializer(self.services.orders.get_order(require_id(order_id, "đơn hàng"))).data

    def get_active_order_for_table(self, table_id):
        order = self.services.tables.get_active_order_for_table(require_id(table_id, "bàn"))
        return OrderSerializer(order).data if order is not None else None

    def get_table_history(self, table_id, limit=None):
        table_id = require_id(table_id, "bàn")
        data = require_valid(TableHistorySerializer, _payload(limit=limit))
        orders = self.services.tables.get_table_history(
            table_id, data["limit"] or self.settings.table_history_limit
        )
        return OrderSerializer(orders, many=True).data

    # --- Promotions ---

    def get_available_promotions(self, order_id, customer_id=None):
        data = require_valid(AvailablePromotionsSerializer, _payload(order_id=order_id, customer_id=customer_id))
        available = self.services.ledger.get_available_promotions(data["order_id"], data["customer_id"])
        return [
            {
                **PromotionSerializer(entry.promotion).data,
                "eligibility": EligibilitySerializer(entry.result.to_dict()).data,
            }
            for entry in available
        ]

    def apply_promotion(self, promotion_id, order_id, selected_gifts=None):
        data = require_valid(
            ApplyPromotionSerializer,
            _payload(promotion_id=promotion_id, order_id=order_id, selected_gifts=selected_gifts),
        )
        applied = self.services.ledger.apply(
            data["promotion_id"], data["order_id"], data["selected_gifts"] or None
        )
        return {
            "order": OrderSerializer(applied.order).data,
            "discount": applied.discount_amount,
            "granted_gifts": EligibilitySerializer(applied.result.to_dict()).data["granted_gifts"],
        }

    def unapply_promotion(self, promotion_id, order_id):
        data = require_valid(UnapplyPromotionSerializer, _payload(promotion_id=promotion_id, order_id=order_id))
        order = self.services.ledger.unapply(data["promotion_id"], data["order_id"])
        return {"order": OrderSerializer(order).data}

    def can_use_promotion(self, promotion_id, customer_id=None):
        data = require_valid(CanUsePromotionSerializer, _payload(promotion_id=promotion_id, customer_id=customer_id))
        result = self.services.ledger.can_use(data["promotion_id"], data["customer_id"])
        return {"eligible": result.eligible, "reason": result.reason, "code": result.code}

    def get_promotion_detail(self, promotion_id):
        detail = self.services.ledger.get_promotion_detail(require_id(promotion_id, "khuyến mãi"))
        return {
            **PromotionSerializer(detail["promotion"]).data,
            "stats": PromotionStatsSerializer(detail["stats"]).data,
        }


def build_engine(settings: EngineSettings = None, unit_of_work=UnitOfWork, clock=None) -> OrderEngine:
    """
    Wires every service once. Tests pass their own ``clock`` or settings;
    the app config builds the process-wide engine with the defaults.
    """
    settings = settings or EngineSettings.from_django_settings()
    timing = {"clock": clock} if clock is not None else {}

    inventory = InventoryService()
    customers = CustomerService()
    evaluator = PromotionEvaluator(customers, currency=settings.currency, **timing)
    calculation = OrderCalculationService(evaluator, currency=settings.currency)
    ledger = PromotionLedgerService(evaluator, calculation, unit_of_work=unit_of_work, **timing)
    items = OrderItemService(
        inventory, calculation, currency=settings.currency, unit_of_work=unit_of_work, **timing
    )
    orders = OrderService(
        items, ledger, calculation, inventory, customers, settings, unit_of_work=unit_of_work, **timing
    )
    kitchen = KitchenService(inventory, unit_of_work=unit_of_work, **timing)
    tables = TableOperationsService(
        ledger, calculation, order_code_prefix=settings.order_code_prefix, unit_of_work=unit_of_work, **timing
    )

    logger.debug(f"Order engine built ({settings.currency}, partial payment={settings.allow_partial_payment})")
    return OrderEngine(
        EngineServices(
            settings=settings,
            inventory=inventory,
            customers=customers,
            evaluator=evaluator,
            calculation=calculation,
            ledger=ledger,
            items=items,
            orders=orders,
            kitchen=kitchen,
            tables=tables,
        )
    )
