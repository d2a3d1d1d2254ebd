import logging

import requests
from django.conf import settings

logger = logging.getLogger(__name__)


def _notification_url() -> str:
    return getattr(settings, "FAMILY_NOTIFICATION_URL", "")


def _notification_timeout() -> float:
    return getattr(settings, "FAMILY_NOTIFICATION_TIMEOUT", 5)


def post_family_notification(family_id: str, event: str, payload: dict) -> dict:
    """
    Push an event to the family notification service.

    The notification service fans the event out to the family's connected
    devices. Network failures are returned as a structured result rather
    than raised, so a slow or missing notification service never affects
    the caller.

    Args:
        family_id: Family whose members should be notified.
        event: Event name, e.g. ``payout.completed``.
        payload: JSON-serialisable event body.

    Returns:
        dict with keys:
            - success (bool): Whether the notification service accepted it.
            - response (dict): The raw response data or error details.
    """
    url = _notification_url()
    if not url:
        logger.debug("Family notifications disabled; dropping event=%s", event)
        return {"success": True, "response": {"skipped": True}}

    try:
        response = requests.post(
            url,
            json={"family_id": family_id, "event": event, "data": payload},
            timeout=_notification_timeout(),
        )
        response.raise_for_status()

        logger.info("Family notification sent: family=%s event=%s", family_id, event)
        return {"success": True, "response": {"status": response.status_code}}

    except requests.exceptions.HTTPError as exc:
        logger.warning(
            "Family notification rejected: family=%s event=%s status=%s",
            family_id,
            event,
            exc.response.status_code if exc.response is not None else None,
        )
        return {
            "success": False,
            "response": {"error": "http_error", "detail": str(exc)},
        }

    except requests.exceptions.Timeout as exc:
        logger.error(
            "Family notification timeout: family=%s event=%s error=%s",
            family_id,
            event,
            str(exc),
        )
        return {
            "success": False,
            "response": {"error": "timeout", "detail": str(exc)},
        }

    except requests.exceptions.RequestException as exc:
        logger.error(
            "Family notification request error: family=%s event=%s error=%s",
            family_id,
            event,
            str(exc),
        )
        return {
            "success": False,
            "response": {"error": "request_error", "detail": str(exc)},
        }
