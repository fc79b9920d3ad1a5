import logging

from django.apps import AppConfig

logger = logging.getLogger(__name__)


class PaymentsConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"

    # Process-wide Razorpay handle, built once at startup.
    gateway = None

    def ready(self):
        from .errors import ConfigurationError
        from .gateway import RazorpayClient

        try:
            self.gateway = RazorpayClient.from_settings()
        except ConfigurationError as e:
            logger.error("Razorpay gateway unavailable: %s", e)
            self.gateway = None
