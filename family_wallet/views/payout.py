from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from family_wallet.claims import get_claims, get_idempotency_key, get_uuid_param
from family_wallet.exceptions import WalletError
from family_wallet.serializers import PayoutSerializer, SettlePayoutSerializer
from family_wallet.services import build_settlement_engine


class PayoutListCreateView(APIView):
    """
    GET /payouts/ - List the family's payouts, newest first (``?child_id=``).
    POST /payouts/ - Settle a payout from chore earnings and/or pending gifts.

    Request body: {"child_id": "<uuid>", "amount_pence": 500,
                   "chore_amount_pence": 200, "gift_ids": ["<uuid>"],
                   "method": "cash", "note": "..."}
    """

    def get(self, request, *args, **kwargs):
        claims = get_claims(request)
        payouts = build_settlement_engine().list_payouts(
            claims.family_id, child_id=get_uuid_param(request, "child_id")
        )
        return Response({"payouts": PayoutSerializer(payouts, many=True).data})

    def post(self, request, *args, **kwargs):
        claims = get_claims(request)
        serializer = SettlePayoutSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        try:
            payout = build_settlement_engine().settle(
                family_id=claims.family_id,
                child_id=data["child_id"],
                operator_id=claims.operator_id,
                amount_pence=data["amount_pence"],
                chore_amount_pence=data["chore_amount_pence"],
                gift_ids=data["gift_ids"],
                method=data["method"],
                note=data.get("note"),
                idempotency_key=get_idempotency_key(request),
            )
        except WalletError as exc:
            return Response(exc.as_response_body(), status=exc.status_code)

        return Response(
            {"payout": PayoutSerializer(payout).data, "message": "Payout successful"},
            status=status.HTTP_201_CREATED,
        )


class UnpaidBalanceView(APIView):
    """GET /payouts/unpaid/<child_id>/ - What a child is owed right now."""

    def get(self, request, child_id, *args, **kwargs):
        claims = get_claims(request)
        try:
            summary = build_settlement_engine().unpaid_balance(claims.family_id, child_id)
        except WalletError as exc:
            return Response(exc.as_response_body(), status=exc.status_code)
        return Response(summary)
