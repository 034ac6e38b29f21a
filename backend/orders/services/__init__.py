"""
Orders services package - service layer for the order state machine.

- OrderService: Core order lifecycle (create, confirm, checkout, cancel)
- OrderCalculationService: Subtotal, discount and total recalculation
- OrderItemService: Item management (add, remove, reduce)
- KitchenService: Kitchen operations (send to kitchen, item status, item recipes)
- TableOperationsService: Table transfer, merge and split
"""

# Core order operations
from .order_service import OrderService

# Calculation operations
from .calculation_service import OrderCalculationService

# Item management
from .item_service import OrderItemService

# Kitchen operations
from .kitchen_service import KitchenService

# Table operations
from .table_service import TableOperationsService

__all__ = [
    'OrderService',
    'OrderCalculationService',
    'OrderItemService',
    'KitchenService',
    'TableOperationsService',
]
