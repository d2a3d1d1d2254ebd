from rest_framework.generics import ListAPIView

from family_wallet.claims import get_claims
from family_wallet.models import Transaction
from family_wallet.serializers import TransactionSerializer
from family_wallet.services import TransactionLedger, WalletStore


class TransactionListView(ListAPIView):
    """
    GET /children/<child_id>/wallet/transactions/ - List a child's ledger entries.

    Query params:
        - type: Filter by entry type (credit, debit)
        - source: Filter by money source (parent, relative, system)
    """

    serializer_class = TransactionSerializer

    def get_queryset(self):
        claims = get_claims(self.request)
        wallet = WalletStore().find(self.kwargs["child_id"], claims.family_id)
        if wallet is None:
            return Transaction.objects.none()

        tx_type = self.request.query_params.get("type")
        source = self.request.query_params.get("source")
        return TransactionLedger().list_for_wallet(
            wallet.pk,
            type=tx_type.lower() if tx_type else None,
            source=source.lower() if source else None,
        )
