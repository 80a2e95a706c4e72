from django.apps import AppConfig
from django.core.exceptions import ImproperlyConfigured


class InventoryConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'inventory'

    def ready(self):
        from .ledger import get_shortfall_policy

        try:
            get_shortfall_policy()
        except ValueError as e:
            raise ImproperlyConfigured(f"ORDER_SHORTFALL_POLICY: {e}") from e
