from django.apps import AppConfig
import logging

logger = logging.getLogger(__name__)


class CoreBackendConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "core_backend"
    engine = None

    def ready(self):
        """
        Build the order engine once per process. The HTTP layer reads it from
        ``apps.get_app_config("core_backend").engine``.
        """
        from core_backend.config import EngineSettings
        from core_backend.engine import build_engine

        settings = EngineSettings.from_django_settings()
        self.engine = build_engine(settings)
        logger.info(f"Order engine ready (currency={settings.currency})")
