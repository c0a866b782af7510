from django.apps import AppConfig


class PointForgeConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "pointforge"
    verbose_name = "PointForge - Loyalty Points Ledger"
