"""
BOLT11 decoding for cl-swap-rebalance

Parsing is delegated to the node: `decode` on current CLN, `decodepay` on
nodes that predate it.
"""

from typing import Any, Dict

from pyln.client import Plugin, RpcError

from .errors import InvoiceDecodeError
from .models import DecodedInvoice, parse_msat
from .node_client import rpc_error_code, rpc_error_message


class InvoiceCodec:
    """Turns a payment request string into a DecodedInvoice."""

    def __init__(self, plugin: Plugin):
        self.plugin = plugin

    def _decode_raw(self, bolt11: str) -> Dict[str, Any]:
        try:
            return self.plugin.rpc.call("decode", {"string": bolt11})
        except RpcError as e:
            if rpc_error_code(e) != -32601:  # method not found
                raise
        return self.plugin.rpc.call("decodepay", {"bolt11": bolt11})

    def decode(self, bolt11: str) -> DecodedInvoice:
        """
        Decode a BOLT11 invoice.

        Raises:
            InvoiceDecodeError: if the string is not a valid BOLT11 invoice
        """
        if not bolt11:
            raise InvoiceDecodeError("empty payment request")

        try:
            decoded = self._decode_raw(bolt11)
        except RpcError as e:
            raise InvoiceDecodeError(f"failed to decode bolt11 invoice: {rpc_error_message(e)}")

        if decoded.get("valid") is False:
            warning = decoded.get("warning_invalid") or decoded.get("warning") or "invalid invoice"
            raise InvoiceDecodeError(f"failed to decode bolt11 invoice: {warning}")

        invoice_type = decoded.get("type")
        if invoice_type is not None and "bolt11" not in invoice_type:
            raise InvoiceDecodeError(f"expected a bolt11 invoice, got {invoice_type}")

        return DecodedInvoice(
            payment_hash=decoded.get("payment_hash", ""),
            payee_pubkey=decoded.get("payee", ""),
            amount_msat=parse_msat(decoded.get("amount_msat")),
            description=decoded.get("description", ""),
            expiry_seconds=int(decoded.get("expiry", 0) or 0),
        )
