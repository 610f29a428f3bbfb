"""
Rebalance orchestration for cl-swap-rebalance

Sequences one swap rebalance attempt:

    Validating -> CreatingReceiveInvoice -> RequestingOrder
      -> DecodingInvoice -> Paying -> Done

Any stage may fail into Error. Nothing is retried; the caller decides
whether to run the whole workflow again. A RebalanceResult is returned
only after the swap invoice has been paid.

Net fee:
    total_fee_sat = decoded_amount_sat + payment_fee_sat - requested_amount_sat

Each term is truncated to whole sats before the sum, and the result is
not clamped. A swap invoice smaller than the requested amount therefore
shows up as a negative fee.
"""

import threading
import time
from dataclasses import dataclass
from typing import Optional, Set

from pyln.client import Plugin

from .channel_validator import ChannelValidator
from .config import Config, ConfigSnapshot
from .errors import (
    NodeClientError, PaymentError, RebalanceError, RebalanceInProgressError,
    RebalanceValidationError,
)
from .invoice_codec import InvoiceCodec
from .metrics import METRIC_HELP, MetricNames, PrometheusExporter
from .models import (
    DecodedInvoice, PaymentResult, RebalanceMetadata, RebalanceRequest,
    RebalanceResult, RebalanceState,
)
from .node_client import NodeClient
from .swap_client import SwapOrderClient


@dataclass
class RebalanceAttempt:
    """Mutable progress record of one attempt; never shared between attempts."""
    request: RebalanceRequest
    metadata: RebalanceMetadata
    state: RebalanceState = RebalanceState.VALIDATING
    order_id: str = ""
    started_at: float = 0.0

    def advance(self, state: RebalanceState) -> None:
        self.state = state


def compute_total_fee_sat(decoded: DecodedInvoice, payment: PaymentResult,
                          request: RebalanceRequest) -> int:
    return decoded.amount_msat // 1000 + payment.fee_msat // 1000 - request.amount_sat


def routing_failure_message(raw_error: str, request: RebalanceRequest) -> str:
    return (
        f"Failed to pay rebalance invoice: {raw_error}. "
        f"This typically indicates insufficient liquidity in the specified routing path. "
        f"Please ensure: 1) The receive_through node ({request.receive_through}) has "
        f"sufficient outbound liquidity to the destination, "
        f"2) Your node has sufficient outbound liquidity to the receive_through node, "
        f"3) The amount ({request.amount_sat} sats) is within routing limits"
    )


class RebalanceOrchestrator:
    """
    Runs swap rebalances through an external order service.

    Holds no per-attempt state: concurrent calls, even for the same peer,
    each create their own invoice, order and payment. With single_flight
    enabled, a second attempt toward a peer that already has one running
    is rejected instead.
    """

    def __init__(self, plugin: Plugin, config: Config, node: NodeClient,
                 codec: InvoiceCodec, swap_client: SwapOrderClient,
                 validator: Optional[ChannelValidator] = None,
                 metrics: Optional[PrometheusExporter] = None):
        self.plugin = plugin
        self.config = config
        self.node = node
        self.codec = codec
        self.swap_client = swap_client
        self.validator = validator or ChannelValidator(plugin)
        self.metrics = metrics

        self._in_flight: Set[str] = set()
        self._in_flight_lock = threading.Lock()

    # =========================================================================
    # SINGLE-FLIGHT GUARD
    # =========================================================================

    def _acquire(self, peer_id: str) -> None:
        with self._in_flight_lock:
            if peer_id in self._in_flight:
                raise RebalanceInProgressError(
                    f"a rebalance through {peer_id} is already in progress"
                )
            self._in_flight.add(peer_id)

    def _release(self, peer_id: str) -> None:
        with self._in_flight_lock:
            self._in_flight.discard(peer_id)

    @property
    def in_flight(self) -> Set[str]:
        with self._in_flight_lock:
            return set(self._in_flight)

    # =========================================================================
    # METRICS
    # =========================================================================

    def _count(self, name: str, value: float = 1, labels=None) -> None:
        if self.metrics:
            self.metrics.inc_counter(name, value, labels, METRIC_HELP.get(name, ""))

    def _record_success(self, request: RebalanceRequest, result: RebalanceResult) -> None:
        self._count(MetricNames.REBALANCE_SUCCESS_TOTAL)
        # Counters never decrease; a negative net fee goes to its own counter
        if result.total_fee_sat >= 0:
            self._count(MetricNames.REBALANCE_FEE_TOTAL_SATS, result.total_fee_sat)
        else:
            self._count(MetricNames.REBALANCE_FEE_CREDIT_TOTAL_SATS, -result.total_fee_sat)
        self._count(MetricNames.REBALANCE_VOLUME_TOTAL_SATS, request.amount_sat)
        if self.metrics:
            self.metrics.set_gauge(
                MetricNames.LAST_SUCCESS_TIMESTAMP, int(time.time()),
                help_text=METRIC_HELP[MetricNames.LAST_SUCCESS_TIMESTAMP]
            )

    # =========================================================================
    # WORKFLOW
    # =========================================================================

    def rebalance_channel(self, request: RebalanceRequest) -> RebalanceResult:
        """
        Run one rebalance attempt toward `request.receive_through`.

        Raises:
            RebalanceError: any failure; `error.state` names the failed stage
        """
        cfg = self.config.snapshot()
        attempt = RebalanceAttempt(
            request=request,
            metadata=RebalanceMetadata(
                receive_through=request.receive_through,
                amount_sat=request.amount_sat,
            ),
            started_at=time.time(),
        )
        self._count(MetricNames.REBALANCE_ATTEMPTS_TOTAL)

        guarded = False
        try:
            if cfg.single_flight:
                self._acquire(request.receive_through)
                guarded = True
            result = self._run(attempt, cfg)
        except RebalanceError as e:
            failed_stage = attempt.state
            attempt.advance(RebalanceState.ERROR)
            e.state = failed_stage
            self._count(MetricNames.REBALANCE_FAILURES_TOTAL,
                        labels={"stage": failed_stage.value, "kind": e.kind})
            raise
        finally:
            if guarded:
                self._release(request.receive_through)

        self._record_success(request, result)
        return result

    def _run(self, attempt: RebalanceAttempt, cfg: ConfigSnapshot) -> RebalanceResult:
        request = attempt.request

        # Validating
        try:
            channels = self.node.list_channels()
        except NodeClientError as e:
            self.plugin.log(f"Failed to list channels for rebalance validation: {e}", level='error')
            raise NodeClientError(f"failed to validate rebalance request: {e}")

        found, _ = self.validator.validate(request.receive_through, channels)
        if not found:
            raise RebalanceValidationError(f"no channel found with node {request.receive_through}")

        # CreatingReceiveInvoice
        attempt.advance(RebalanceState.CREATING_RECEIVE_INVOICE)
        try:
            receive_invoice = self.node.make_invoice(
                request.amount_msat,
                f"Rebalance through {request.receive_through}",
                cfg.invoice_expiry_seconds,
                attempt.metadata,
            )
        except NodeClientError as e:
            self.plugin.log(f"failed to generate rebalance receive invoice: {e}", level='error')
            raise

        # RequestingOrder
        attempt.advance(RebalanceState.REQUESTING_ORDER)
        order = self.swap_client.create_order(receive_invoice.payment_request,
                                              request.receive_through)
        attempt.order_id = order.order_id

        self._log_node_identity(request)

        # DecodingInvoice
        attempt.advance(RebalanceState.DECODING_INVOICE)
        try:
            decoded = self.codec.decode(order.pay_request)
        except RebalanceError as e:
            self.plugin.log(f"Failed to decode bolt11 invoice of order {order.order_id}: {e}",
                            level='error')
            raise

        # Paying
        attempt.advance(RebalanceState.PAYING)
        pay_metadata = attempt.metadata.with_order(order.order_id)
        self.plugin.log(
            f"Attempting to pay rebalance invoice: receive_through={request.receive_through} "
            f"amount_sat={request.amount_sat} order_id={order.order_id} "
            f"payment_hash={decoded.payment_hash} destination={decoded.payee_pubkey} "
            f"amount_msat={decoded.amount_msat} description={decoded.description!r} "
            f"expiry={decoded.expiry_seconds}"
        )
        try:
            payment = self.node.send_payment_sync(order.pay_request, pay_metadata,
                                                  cfg.pay_retry_for_seconds)
        except PaymentError as e:
            self.plugin.log(
                f"Failed to pay rebalance invoice - check if routing path exists through "
                f"specified node: receive_through={request.receive_through} "
                f"order_id={order.order_id} payment_hash={decoded.payment_hash} "
                f"reason={e.reason.value} error={e.raw_error} bolt11={order.pay_request}",
                level='error'
            )
            if e.reason.is_routing_failure:
                message = routing_failure_message(e.raw_error, request)
            else:
                message = f"failed to pay rebalance invoice: {e.raw_error}"
            raise PaymentError(message, reason=e.reason, raw_error=e.raw_error)

        # Done
        attempt.advance(RebalanceState.DONE)
        total_fee_sat = compute_total_fee_sat(decoded, payment, request)
        if total_fee_sat < 0:
            self.plugin.log(
                f"Rebalance order {order.order_id} reported a negative net fee "
                f"({total_fee_sat} sats): swap invoice {decoded.amount_sat} sats is below "
                f"the requested {request.amount_sat} sats",
                level='warn'
            )

        self.plugin.log(
            f"Rebalance through {request.receive_through} complete: "
            f"order_id={order.order_id} total_fee_sat={total_fee_sat} "
            f"duration={time.time() - attempt.started_at:.1f}s"
        )
        return RebalanceResult(
            total_fee_sat=total_fee_sat,
            order_id=order.order_id,
            payment_hash=payment.payment_hash or decoded.payment_hash,
        )

    def _log_node_identity(self, request: RebalanceRequest) -> None:
        """Best-effort diagnostic lookup; never affects the attempt."""
        try:
            our_pubkey = self.node.get_node_info()
        except Exception as e:
            self.plugin.log(f"Node identity lookup failed (ignored): {e}", level='debug')
            return
        self.plugin.log(
            f"Node information for rebalance routing: our_pubkey={our_pubkey} "
            f"receive_through_pubkey={request.receive_through}"
        )
