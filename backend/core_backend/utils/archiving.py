"""
Soft delete (archiving) infrastructure for the POS engine.

Catalogue rows (products, combos, customers, tables, promotions) are never
hard-deleted while orders reference them. Archived rows are hidden from the
default manager and treated as non-existent by the order and promotion
services.
"""

from django.db import models
from django.utils import timezone


class SoftDeleteQuerySet(models.QuerySet):
    """
    Custom QuerySet that provides soft delete functionality.
    """

    def active(self):
        """Return only active (non-archived) records."""
        return self.filter(is_active=True)


class SoftDeleteManager(models.Manager):
    """
    Custom manager that filters out archived records by default.
    """

    def get_queryset(self):
        return SoftDeleteQuerySet(self.model, using=self._db).active()


class SoftDeleteMixin(models.Model):
    """
    Abstract base class that provides soft delete functionality.

    Models inheriting from this mixin will have:
    - is_active field to mark records as archived
    - archived_at timestamp when record was archived
    - archive() method, also used by delete()
    - Custom manager that filters archived records by default
    """

    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Designates whether this record is active. "
                  "Inactive records are considered archived/soft-deleted."
    )

    archived_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="Timestamp when this record was archived."
    )

    objects = SoftDeleteManager()
    all_objects = models.Manager()

    class Meta:
        abstract = True

    def archive(self):
        """Archive (soft delete) this record."""
        self.is_active = False
        self.archived_at = timezone.now()
        self.save(update_fields=['is_active', 'archived_at'])

    def delete(self, using=None, keep_parents=False):
        """
        Override delete to perform soft delete instead.
        """
        self.archive()
