"""
Data access for promotions and the promotion usage ledger.
"""
from decimal import Decimal
from django.db.models import F, Sum
from .models import Promotion, PromotionUsage
from core_backend.exceptions import NotFoundError


class PromotionRepository:
    def _queryset(self, include_deactivated=True):
        # Deactivated promotions still resolve so the evaluator can report why
        # they are ineligible; deleted (archived) ones do not.
        queryset = Promotion.all_objects.filter(archived_at__isnull=True)
        if not include_deactivated:
            queryset = queryset.filter(is_active=True)
        return queryset

    def get(self, promotion_id) -> Promotion:
        try:
            return self._queryset().get(pk=promotion_id)
        except Promotion.DoesNotExist:
            raise NotFoundError("Mã khuyến mãi không tồn tại", details={"promotion_id": promotion_id})

    def get_for_update(self, promotion_id, include_archived=False) -> Promotion:
        queryset = Promotion.all_objects if include_archived else self._queryset()
        try:
            return queryset.select_for_update().get(pk=promotion_id)
        except Promotion.DoesNotExist:
            raise NotFoundError("Mã khuyến mãi không tồn tại", details={"promotion_id": promotion_id})

    def find(self, promotion_id):
        return self._queryset().filter(pk=promotion_id).first()

    def list_active(self):
        return list(
            self._queryset(include_deactivated=False)
            .prefetch_related("applicable_customers", "applicable_customer_groups")
            .order_by("id")
        )

    # --- Usage ledger ---

    def usage_count(self, promotion) -> int:
        return PromotionUsage.objects.filter(promotion=promotion).count()

    def customer_usage_count(self, promotion, customer_id) -> int:
        return PromotionUsage.objects.filter(promotion=promotion, customer_id=customer_id).count()

    def record_usage(self, promotion, order, discount_amount) -> PromotionUsage:
        usage = PromotionUsage.objects.create(
            promotion=promotion,
            order=order,
            customer_id=order.customer_id,
            discount_amount=discount_amount,
        )
        Promotion.all_objects.filter(pk=promotion.pk).update(current_total_usage=F("current_total_usage") + 1)
        return usage

    def remove_usage(self, promotion, order) -> int:
        deleted, _ = PromotionUsage.objects.filter(promotion=promotion, order=order).delete()
        if deleted:
            Promotion.all_objects.filter(pk=promotion.pk, current_total_usage__gt=0).update(
                current_total_usage=F("current_total_usage") - 1
            )
        return deleted

    def update_usage_amount(self, promotion_id, order, discount_amount):
        PromotionUsage.objects.filter(promotion_id=promotion_id, order=order).update(
            discount_amount=discount_amount
        )

    def usage_stats(self, promotion) -> dict:
        usages = PromotionUsage.objects.filter(promotion=promotion)
        return {
            "total_usages": usages.count(),
            "unique_customers": usages.exclude(customer__isnull=True).values("customer").distinct().count(),
            "total_discount": usages.aggregate(total=Sum("discount_amount"))["total"] or Decimal("0"),
        }
