"""
Node client adapter for cl-swap-rebalance

Thin layer over the CLN JSON-RPC interface (plugin.rpc) exposing the four
node operations a swap rebalance needs:

- list_channels(): fresh channel snapshot (listpeerchannels)
- make_invoice(): receive invoice for the self-payment (invoice)
- send_payment_sync(): pay the swap invoice and report the fee (pay)
- get_node_info(): our own node id (getinfo)

Payment failures are classified into a PaymentFailureReason from the CLN
pay error code, falling back to the error text for nodes or plugins that
do not set a code.
"""

from typing import Any, Dict, List, Optional

from pyln.client import Plugin, RpcError

from .errors import NodeClientError, PaymentError
from .models import (
    ChannelSummary, PaymentFailureReason, PaymentResult, ReceiveInvoice,
    RebalanceMetadata, parse_msat,
)


# CLN pay error codes (common/jsonrpc_errors.h)
PAY_TRY_OTHER_ROUTE = 204
PAY_ROUTE_NOT_FOUND = 205
PAY_ROUTE_TOO_EXPENSIVE = 206
PAY_STOPPED_RETRYING = 210

PAY_ERROR_REASONS: Dict[int, PaymentFailureReason] = {
    PAY_ROUTE_NOT_FOUND: PaymentFailureReason.NO_ROUTE,
    PAY_TRY_OTHER_ROUTE: PaymentFailureReason.INSUFFICIENT_LIQUIDITY,
    PAY_ROUTE_TOO_EXPENSIVE: PaymentFailureReason.INSUFFICIENT_LIQUIDITY,
    PAY_STOPPED_RETRYING: PaymentFailureReason.TIMEOUT,
}

# Non-RPC failures: a broken lightning-rpc socket or a malformed response
NODE_IO_ERRORS = (OSError, ValueError, TypeError)


def rpc_error_code(error: Exception) -> Optional[int]:
    """Extract the JSON-RPC error code from a pyln RpcError, if any."""
    details = getattr(error, "error", None)
    if isinstance(details, dict):
        code = details.get("code")
        if isinstance(code, int):
            return code
    return None


def rpc_error_message(error: Exception) -> str:
    details = getattr(error, "error", None)
    if isinstance(details, dict) and details.get("message"):
        return str(details["message"])
    return str(error)


def classify_payment_error(error: Exception) -> PaymentFailureReason:
    """
    Map a payment failure onto a PaymentFailureReason.

    A code that maps to a routing failure wins outright. Otherwise routing
    text takes precedence over the code: pay reports "Ran out of routes"
    with PAY_STOPPED_RETRYING, which is a routing failure, not a timeout.
    """
    by_code = PAY_ERROR_REASONS.get(rpc_error_code(error))
    if by_code is not None and by_code.is_routing_failure:
        return by_code

    text = rpc_error_message(error)
    lowered = text.lower()
    if "RouteNotFound" in text or "route" in lowered:
        return PaymentFailureReason.NO_ROUTE
    if by_code is not None:
        return by_code
    if "insufficient" in lowered or "capacity" in lowered:
        return PaymentFailureReason.INSUFFICIENT_LIQUIDITY
    if "timeout" in lowered or "timed out" in lowered:
        return PaymentFailureReason.TIMEOUT
    return PaymentFailureReason.OTHER


class NodeClient:
    """Lightning node operations used by the rebalance workflow."""

    def __init__(self, plugin: Plugin):
        self.plugin = plugin

    def list_channels(self) -> List[ChannelSummary]:
        """
        Return every channel of the node.

        Uses listpeerchannels, falling back to the nested channels of
        listpeers on nodes older than v23.02.

        Raises:
            NodeClientError: if the node cannot list channels
        """
        try:
            try:
                raw = self.plugin.rpc.listpeerchannels().get("channels", [])
            except RpcError as e:
                if rpc_error_code(e) != -32601:  # method not found
                    raise
                raw = []
                for peer in self.plugin.rpc.listpeers().get("peers", []):
                    for ch in peer.get("channels", []):
                        raw.append(dict(ch, peer_id=peer.get("id"),
                                        peer_connected=peer.get("connected", False)))
            return [ChannelSummary.from_rpc(ch) for ch in raw]
        except RpcError as e:
            raise NodeClientError(f"failed to list channels: {rpc_error_message(e)}")
        except NODE_IO_ERRORS as e:
            raise NodeClientError(f"failed to list channels: {e}")

    def make_invoice(self, amount_msat: int, description: str, expiry_seconds: int,
                     metadata: RebalanceMetadata) -> ReceiveInvoice:
        """
        Create a receive invoice labelled with the attempt metadata.

        Raises:
            NodeClientError: if the node refuses to create the invoice
        """
        label = metadata.to_label("receive")
        payload: Dict[str, Any] = {
            "amount_msat": amount_msat,
            "label": label,
            "description": description,
        }
        if expiry_seconds > 0:
            payload["expiry"] = expiry_seconds

        try:
            result = self.plugin.rpc.call("invoice", payload)
        except RpcError as e:
            raise NodeClientError(rpc_error_message(e))
        except NODE_IO_ERRORS as e:
            raise NodeClientError(f"invoice request failed: {e}")

        bolt11 = result.get("bolt11")
        if not bolt11:
            raise NodeClientError(f"invoice response without bolt11: {result}")

        return ReceiveInvoice(
            payment_request=bolt11,
            payment_hash=result.get("payment_hash", ""),
            label=label,
        )

    def send_payment_sync(self, bolt11: str, metadata: RebalanceMetadata,
                          retry_for_seconds: int) -> PaymentResult:
        """
        Pay `bolt11` and block until the node reports the outcome.

        Args:
            bolt11: Invoice to pay
            metadata: Attached to the payment as its label
            retry_for_seconds: Deadline for the node's own retries

        Raises:
            PaymentError: with a classified PaymentFailureReason
        """
        payload = {
            "bolt11": bolt11,
            "label": metadata.to_label("pay"),
            "retry_for": retry_for_seconds,
        }
        try:
            result = self.plugin.rpc.call("pay", payload)
        except RpcError as e:
            raw = rpc_error_message(e)
            raise PaymentError(raw, reason=classify_payment_error(e), raw_error=raw)
        except NODE_IO_ERRORS as e:
            raw = f"pay request failed: {e}"
            raise PaymentError(raw, reason=PaymentFailureReason.OTHER, raw_error=raw)

        if result.get("status", "complete") != "complete":
            raw = f"payment ended with status {result.get('status')}"
            raise PaymentError(raw, reason=PaymentFailureReason.OTHER, raw_error=raw)

        try:
            amount = parse_msat(result.get("amount_msat"))
            sent = parse_msat(result.get("amount_sent_msat"))
        except NODE_IO_ERRORS as e:
            raise NodeClientError(f"unreadable pay response {result}: {e}")
        return PaymentResult(
            fee_msat=max(0, sent - amount),
            payment_hash=result.get("payment_hash", ""),
            amount_msat=amount,
            amount_sent_msat=sent,
        )

    def get_node_info(self) -> str:
        """Return our own node pubkey."""
        return self.plugin.rpc.getinfo()["id"]
