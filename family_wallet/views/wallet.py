from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from family_wallet.claims import get_claims, get_idempotency_key
from family_wallet.exceptions import WalletError
from family_wallet.serializers import (
    TransactionSerializer,
    WalletCreditSerializer,
    WalletDebitSerializer,
    WalletSerializer,
)
from family_wallet.services import build_wallet_service


class RetrieveWalletView(APIView):
    """GET /children/<child_id>/wallet/ - Retrieve (lazily creating) a child's wallet."""

    def get(self, request, child_id, *args, **kwargs):
        claims = get_claims(request)
        try:
            wallet = build_wallet_service().get_wallet(claims.family_id, child_id)
        except WalletError as exc:
            return Response(exc.as_response_body(), status=exc.status_code)
        return Response(WalletSerializer(wallet).data)


class CreditWalletView(APIView):
    """
    POST /children/<child_id>/wallet/credit - Add money to a child's wallet.

    Request body: {"amount_pence": <positive integer>, "source": "parent"|"relative", "note": "..."}
    """

    def post(self, request, child_id, *args, **kwargs):
        claims = get_claims(request)
        serializer = WalletCreditSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            tx = build_wallet_service().credit(
                family_id=claims.family_id,
                child_id=child_id,
                amount_pence=serializer.validated_data["amount_pence"],
                source=serializer.validated_data["source"],
                note=serializer.validated_data.get("note"),
                idempotency_key=get_idempotency_key(request),
            )
        except WalletError as exc:
            return Response(exc.as_response_body(), status=exc.status_code)

        return Response(
            {
                "wallet": WalletSerializer(tx.wallet).data,
                "transaction": TransactionSerializer(tx).data,
            },
            status=status.HTTP_200_OK,
        )


class DebitWalletView(APIView):
    """
    POST /children/<child_id>/wallet/debit - Take money out of a child's wallet.

    Request body: {"amount_pence": <positive integer>, "note": "..."}
    """

    def post(self, request, child_id, *args, **kwargs):
        claims = get_claims(request)
        serializer = WalletDebitSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        try:
            tx = build_wallet_service().debit(
                family_id=claims.family_id,
                child_id=child_id,
                amount_pence=serializer.validated_data["amount_pence"],
                note=serializer.validated_data.get("note"),
                idempotency_key=get_idempotency_key(request),
            )
        except WalletError as exc:
            return Response(exc.as_response_body(), status=exc.status_code)

        return Response(
            {
                "wallet": WalletSerializer(tx.wallet).data,
                "transaction": TransactionSerializer(tx).data,
            },
            status=status.HTTP_200_OK,
        )
