"""
Customer models used by the order engine for promotion scoping.
"""
from django.db import models
from core_backend.utils.archiving import SoftDeleteMixin


class CustomerGroup(models.Model):
    """Membership tier (e.g. VIP, thành viên) that promotions can target"""

    name = models.CharField(max_length=100, unique=True)
    description = models.TextField(blank=True)

    class Meta:
        ordering = ["name"]

    def __str__(self):
        return self.name


class Customer(SoftDeleteMixin):
    """
    A registered member. Orders without a customer are walk-in orders.
    """

    code = models.CharField(
        max_length=30,
        unique=True,
        null=True,
        blank=True,
        help_text="Customer code printed on membership cards",
    )
    name = models.CharField(max_length=200, help_text="Customer's full name")
    phone = models.CharField(
        max_length=20,
        blank=True,
        help_text="Customer's phone number",
    )
    group = models.ForeignKey(
        CustomerGroup,
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name="customers",
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        ordering = ["name"]
        indexes = [
            models.Index(fields=["phone"]),
        ]

    def __str__(self):
        return f"{self.name} ({self.code})" if self.code else self.name
