"""
Customer read adapter for the order engine.
"""
from .models import Customer
from core_backend.exceptions import NotFoundError
import logging

logger = logging.getLogger(__name__)


class CustomerService:
    def get_customer(self, customer_id) -> Customer:
        try:
            return Customer.objects.get(pk=customer_id)
        except Customer.DoesNotExist:
            raise NotFoundError("Khách hàng không tồn tại")

    def get_group_id(self, customer_id):
        """
        Returns the customer's group id, or None for walk-in / ungrouped /
        unknown customers.
        """
        if customer_id is None:
            return None
        return (
            Customer.all_objects.filter(pk=customer_id)
            .values_list("group_id", flat=True)
            .first()
        )
