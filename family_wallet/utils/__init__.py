from family_wallet.utils.notify import post_family_notification

__all__ = ["post_family_notification"]
