import logging

from celery import shared_task
from django.conf import settings

from family_wallet.models import Payout
from family_wallet.utils import post_family_notification

logger = logging.getLogger(__name__)

MAX_RETRIES = getattr(settings, "NOTIFICATION_MAX_RETRIES", 3)


@shared_task(bind=True, acks_late=True, max_retries=MAX_RETRIES, default_retry_delay=30)
def send_payout_notification(self, payout_id: str):
    """
    Tell the family a payout has been completed.

    Runs after the settlement has committed; the payout is re-read so the
    message reflects exactly what was stored.
    """
    try:
        payout = Payout.objects.get(pk=payout_id)
        result = post_family_notification(
            family_id=str(payout.family_id),
            event="payout.completed",
            payload={
                "payout_id": str(payout.id),
                "child_id": str(payout.child_id),
                "amount_pence": payout.amount_pence,
                "chore_amount_pence": payout.chore_amount_pence,
                "gift_ids": payout.gift_ids,
                "method": payout.method,
                "paid_by": payout.paid_by,
            },
        )

        if not result["success"]:
            logger.warning(
                "Payout notification not delivered: payout=%s response=%s",
                payout_id,
                result["response"],
            )

        return {"payout_id": str(payout_id), "delivered": result["success"]}

    except Payout.DoesNotExist:
        logger.error("Payout %s not found; notification dropped.", payout_id)
        return {"payout_id": str(payout_id), "delivered": False}

    except Exception as exc:
        logger.exception(
            "Unexpected error notifying payout=%s: %s",
            payout_id,
            str(exc),
        )
        # Retry with exponential backoff
        raise self.retry(exc=exc, countdown=2**self.request.retries * 10)


def dispatch_payout_notification(payout) -> None:
    """Queue the payout notification; a broker outage is logged, never raised."""
    try:
        send_payout_notification.delay(str(payout.id))
    except Exception:
        logger.exception("Could not queue payout notification: payout=%s", payout.id)
