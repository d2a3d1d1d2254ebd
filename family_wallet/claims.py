import uuid
from collections import namedtuple

from rest_framework.exceptions import PermissionDenied, ValidationError

RequestClaims = namedtuple("RequestClaims", ["family_id", "operator_id"])


def get_claims(request) -> RequestClaims:
    """
    Read the caller's identity from the authenticated request context.

    The gateway in front of this service authenticates the user and
    forwards the family and operator as ``X-Family-Id`` / ``X-Operator-Id``.
    """
    raw_family_id = request.META.get("HTTP_X_FAMILY_ID")
    if not raw_family_id:
        raise PermissionDenied("Missing family context.")
    try:
        family_id = uuid.UUID(raw_family_id)
    except ValueError:
        raise PermissionDenied("Malformed family context.")

    operator_id = request.META.get("HTTP_X_OPERATOR_ID") or "unknown"
    return RequestClaims(family_id=family_id, operator_id=operator_id)


def get_idempotency_key(request):
    """Return the Idempotency-Key header as a UUID, or None."""
    raw_key = request.META.get("HTTP_IDEMPOTENCY_KEY")
    if not raw_key:
        return None
    try:
        return uuid.UUID(raw_key)
    except ValueError:
        raise ValidationError({"idempotency_key": "Must be a UUID."})


def get_uuid_param(request, name):
    """Return an optional UUID query parameter, rejecting malformed values."""
    raw_value = request.query_params.get(name)
    if not raw_value:
        return None
    try:
        return uuid.UUID(raw_value)
    except ValueError:
        raise ValidationError({name: "Must be a UUID."})
