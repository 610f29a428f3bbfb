"""
Error taxonomy for cl-swap-rebalance

Every failure of a rebalance attempt is terminal for that attempt and is
raised as a RebalanceError subclass. `kind` groups errors for the RPC
response and metrics; `state` records the stage the attempt was in.
"""

from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .models import PaymentFailureReason, RebalanceState


class RebalanceError(Exception):
    """Base class for all rebalance failures."""
    kind = "error"

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message
        self.state: Optional["RebalanceState"] = None


class RebalanceValidationError(RebalanceError):
    """Precondition failed; no invoice created, no network call made."""
    kind = "validation"


class RebalanceInProgressError(RebalanceValidationError):
    """Another attempt for the same peer is already in flight."""


class NodeClientError(RebalanceError):
    """The Lightning node failed to list channels or create an invoice."""
    kind = "upstream"


class SwapServiceError(RebalanceError):
    """The swap/order service could not be reached or answered badly."""
    kind = "swap_service"

    def __init__(self, message: str, status_code: Optional[int] = None,
                 body: Optional[str] = None):
        super().__init__(message)
        self.status_code = status_code
        self.body = body


class InvoiceDecodeError(RebalanceError):
    """The invoice returned by the swap service is not a valid BOLT11."""
    kind = "decode"


class PaymentError(RebalanceError):
    """Paying the swap invoice failed."""
    kind = "payment"

    def __init__(self, message: str, reason: "PaymentFailureReason",
                 raw_error: str = ""):
        super().__init__(message)
        self.reason = reason
        self.raw_error = raw_error or message
