"""
Data model for cl-swap-rebalance

Value types that flow through a swap rebalance attempt:

- RebalanceRequest: caller input (target peer + amount)
- ChannelSummary: read-only snapshot of one of our channels
- ReceiveInvoice / SwapOrder / DecodedInvoice / PaymentResult: per-stage outputs
- RebalanceResult: the final response, only produced after a successful payment
- RebalanceMetadata: typed, versioned metadata attached to invoices and payments
"""

import json
import re
import uuid
from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import Any, Dict, Optional

from .errors import RebalanceValidationError


# 33-byte compressed secp256k1 public key, hex encoded
PUBKEY_PATTERN = re.compile(r"^0[23][0-9a-fA-F]{64}$")

METADATA_VERSION = 1
METADATA_KIND = "swap-rebalance"


def parse_msat(value: Any) -> int:
    """Normalize an msat amount that older nodes report as '1234msat'."""
    if value is None:
        return 0
    if isinstance(value, str):
        return int(value.replace("msat", ""))
    return int(value)


class RebalanceState(Enum):
    """Stage of a rebalance attempt."""
    VALIDATING = "validating"
    CREATING_RECEIVE_INVOICE = "creating_receive_invoice"
    REQUESTING_ORDER = "requesting_order"
    DECODING_INVOICE = "decoding_invoice"
    PAYING = "paying"
    DONE = "done"
    ERROR = "error"


class PaymentFailureReason(Enum):
    """Why a payment through the node failed."""
    NO_ROUTE = "no_route"
    INSUFFICIENT_LIQUIDITY = "insufficient_liquidity"
    TIMEOUT = "timeout"
    OTHER = "other"

    @property
    def is_routing_failure(self) -> bool:
        return self in (PaymentFailureReason.NO_ROUTE,
                        PaymentFailureReason.INSUFFICIENT_LIQUIDITY)


@dataclass(frozen=True)
class RebalanceRequest:
    """Rebalance toward `receive_through` by `amount_sat` satoshis."""
    receive_through: str
    amount_sat: int

    @classmethod
    def parse(cls, receive_through: Any, amount_sat: Any) -> 'RebalanceRequest':
        """
        Build a request from raw RPC parameters.

        Raises:
            RebalanceValidationError: on a malformed pubkey or non-positive amount
        """
        if not isinstance(receive_through, str) or not PUBKEY_PATTERN.match(receive_through):
            raise RebalanceValidationError(
                f"receive_through must be a 33-byte hex public key, got {receive_through!r}"
            )
        if isinstance(amount_sat, bool):
            raise RebalanceValidationError("amount_sat must be an integer")
        if isinstance(amount_sat, float) and not amount_sat.is_integer():
            raise RebalanceValidationError(f"amount_sat must be a whole number of sats, got {amount_sat}")
        try:
            amount = int(amount_sat)
        except (TypeError, ValueError):
            raise RebalanceValidationError("amount_sat must be an integer")
        if amount < 1:
            raise RebalanceValidationError("amount_sat must be at least 1")
        return cls(receive_through=receive_through.lower(), amount_sat=amount)

    @property
    def amount_msat(self) -> int:
        return self.amount_sat * 1000


@dataclass(frozen=True)
class ChannelSummary:
    """Snapshot of a channel as reported by the node."""
    remote_pubkey: str
    local_balance_msat: int
    remote_balance_msat: int
    active: bool
    public: bool
    is_outbound: bool
    spendable_msat: int
    short_channel_id: Optional[str] = None

    @property
    def capacity_msat(self) -> int:
        return self.local_balance_msat + self.remote_balance_msat

    @classmethod
    def from_rpc(cls, channel: Dict[str, Any]) -> 'ChannelSummary':
        """Build from a listpeerchannels entry."""
        to_us = parse_msat(channel.get("to_us_msat"))
        total = parse_msat(channel.get("total_msat"))
        state = channel.get("state", "")
        return cls(
            remote_pubkey=channel.get("peer_id", ""),
            local_balance_msat=to_us,
            remote_balance_msat=max(0, total - to_us),
            active=state == "CHANNELD_NORMAL" and bool(channel.get("peer_connected", False)),
            public=not channel.get("private", False),
            is_outbound=channel.get("opener") == "local",
            spendable_msat=parse_msat(channel.get("spendable_msat")),
            short_channel_id=channel.get("short_channel_id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "remote_pubkey": self.remote_pubkey,
            "short_channel_id": self.short_channel_id,
            "capacity_msat": self.capacity_msat,
            "local_balance": self.local_balance_msat,
            "remote_balance": self.remote_balance_msat,
            "spendable": self.spendable_msat,
            "active": self.active,
            "public": self.public,
            "is_outbound": self.is_outbound,
        }


@dataclass(frozen=True)
class RebalanceMetadata:
    """
    Metadata attached to the receive invoice and the outgoing payment.

    CLN has no free-form metadata on invoices or payments, so this is
    serialized into the `label` field. `attempt_id` keeps labels unique
    across attempts with the same peer and amount.
    """
    receive_through: str
    amount_sat: int
    order_id: Optional[str] = None
    attempt_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    version: int = METADATA_VERSION

    def with_order(self, order_id: str) -> 'RebalanceMetadata':
        return RebalanceMetadata(
            receive_through=self.receive_through,
            amount_sat=self.amount_sat,
            order_id=order_id,
            attempt_id=self.attempt_id,
            version=self.version,
        )

    def to_label(self, role: str) -> str:
        """Compact JSON label; `role` distinguishes invoice from payment."""
        payload = {"kind": METADATA_KIND, "role": role}
        payload.update({k: v for k, v in asdict(self).items() if v is not None})
        return json.dumps(payload, separators=(",", ":"), sort_keys=True)


@dataclass(frozen=True)
class ReceiveInvoice:
    payment_request: str
    payment_hash: str = ""
    label: str = ""


@dataclass(frozen=True)
class SwapOrder:
    order_id: str
    pay_request: str


@dataclass(frozen=True)
class DecodedInvoice:
    payment_hash: str
    payee_pubkey: str
    amount_msat: int
    description: str
    expiry_seconds: int

    @property
    def amount_sat(self) -> int:
        return self.amount_msat // 1000


@dataclass(frozen=True)
class PaymentResult:
    fee_msat: int
    payment_hash: str = ""
    amount_msat: int = 0
    amount_sent_msat: int = 0


@dataclass(frozen=True)
class RebalanceResult:
    """Outcome of a successful rebalance; `total_fee_sat` is never clamped."""
    total_fee_sat: int
    order_id: str = ""
    payment_hash: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_fee_sat": self.total_fee_sat,
            "order_id": self.order_id,
            "payment_hash": self.payment_hash,
        }
