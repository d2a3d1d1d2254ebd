from django.apps import AppConfig


class FamilyWalletConfig(AppConfig):
    default_auto_field = "django.db.models.BigAutoField"
    name = "family_wallet"
    verbose_name = "Family wallet ledger"
