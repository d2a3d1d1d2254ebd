from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from family_wallet.claims import get_claims, get_uuid_param
from family_wallet.exceptions import WalletError
from family_wallet.serializers import CreateGiftSerializer, GiftSerializer
from family_wallet.services import build_gift_inbox


class GiftListCreateView(APIView):
    """
    GET /gifts/ - List the family's gifts (``?child_id=``, ``?status=``).
    POST /gifts/ - Record a money gift for a child; it stays pending until paid out.
    """

    def get(self, request, *args, **kwargs):
        claims = get_claims(request)
        gifts = build_gift_inbox().list(
            claims.family_id,
            child_id=get_uuid_param(request, "child_id"),
            status=request.query_params.get("status"),
        )
        return Response(GiftSerializer(gifts, many=True).data)

    def post(self, request, *args, **kwargs):
        claims = get_claims(request)
        serializer = CreateGiftSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            gift = build_gift_inbox().create(
                family_id=claims.family_id,
                child_id=serializer.validated_data["child_id"],
                money_pence=serializer.validated_data["money_pence"],
                given_by=claims.operator_id,
                note=serializer.validated_data.get("note"),
            )
        except WalletError as exc:
            return Response(exc.as_response_body(), status=exc.status_code)

        return Response(GiftSerializer(gift).data, status=status.HTTP_201_CREATED)


class CancelGiftView(APIView):
    """POST /gifts/<gift_id>/cancel - Cancel a pending gift."""

    def post(self, request, gift_id, *args, **kwargs):
        claims = get_claims(request)
        try:
            gift = build_gift_inbox().cancel(claims.family_id, gift_id)
        except WalletError as exc:
            return Response(exc.as_response_body(), status=exc.status_code)
        return Response(GiftSerializer(gift).data)
