"""
Transaction scope for engine operations.

A ``UnitOfWork`` opens one ``transaction.atomic`` block and exposes the
repositories bound to it. Leaving the block normally commits; any exception
rolls back every write made through it, including stock decrements and
usage ledger rows. Nested units of work become savepoints.

    with UnitOfWork() as uow:
        order = uow.orders.get_for_update(order_id)
        ...
"""
from django.db import transaction
import logging

from orders.repositories import OrderRepository
from discounts.repositories import PromotionRepository

logger = logging.getLogger(__name__)


class UnitOfWork:
    def __init__(self, using=None):
        self.using = using
        self._atomic = None
        self.orders = OrderRepository()
        self.promotions = PromotionRepository()

    def __enter__(self):
        self._atomic = transaction.atomic(using=self.using)
        self._atomic.__enter__()
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        if exc_type is not None:
            logger.debug(f"Rolling back unit of work: {exc_type.__name__}: {exc_value}")
        return self._atomic.__exit__(exc_type, exc_value, traceback)
