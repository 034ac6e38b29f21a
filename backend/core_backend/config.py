"""
Engine configuration.

Policy values are read once from ``settings.POS_ENGINE`` and passed explicitly
to the services that need them, instead of being looked up globally from
business logic.
"""

from dataclasses import dataclass
from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
import logging

from core_backend.money import CURRENCY_EXPONENT

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EngineSettings:
    currency: str = "VND"
    allow_partial_payment: bool = True
    table_history_limit: int = 10
    order_code_prefix: str = "HD"

    @classmethod
    def from_django_settings(cls) -> "EngineSettings":
        raw = getattr(settings, "POS_ENGINE", {}) or {}

        currency = str(raw.get("CURRENCY", cls.currency)).upper()
        if currency not in CURRENCY_EXPONENT:
            raise ImproperlyConfigured(f"Unsupported POS_ENGINE currency: {currency}")

        history_limit = int(raw.get("TABLE_HISTORY_LIMIT", cls.table_history_limit))
        if history_limit <= 0:
            raise ImproperlyConfigured("POS_ENGINE TABLE_HISTORY_LIMIT must be positive")

        engine_settings = cls(
            currency=currency,
            allow_partial_payment=bool(raw.get("ALLOW_PARTIAL_PAYMENT", cls.allow_partial_payment)),
            table_history_limit=history_limit,
            order_code_prefix=str(raw.get("ORDER_CODE_PREFIX", cls.order_code_prefix)),
        )
        logger.debug(f"Loaded engine settings: {engine_settings}")
        return engine_settings
