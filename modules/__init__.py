"""
cl-swap-rebalance modules package

This package contains the core modules for the Swap Rebalance plugin:
- orchestrator: Runs one rebalance attempt end to end
- channel_validator: Confirms the requested peer is a channel counterparty
- node_client: Channel listing, invoice creation and payment through CLN
- invoice_codec: BOLT11 decoding via the node
- swap_client: HTTP client for the rebalance order service
- config: Configuration and constants
- metrics: Optional Prometheus exporter
"""

from .channel_validator import ChannelValidator
from .config import Config, ConfigSnapshot
from .errors import (
    RebalanceError, RebalanceValidationError, RebalanceInProgressError,
    NodeClientError, SwapServiceError, InvoiceDecodeError, PaymentError
)
from .invoice_codec import InvoiceCodec
from .metrics import PrometheusExporter
from .models import RebalanceRequest, RebalanceResult, RebalanceState, PaymentFailureReason
from .node_client import NodeClient
from .orchestrator import RebalanceOrchestrator
from .swap_client import SwapOrderClient

__all__ = [
    'ChannelValidator',
    'Config',
    'ConfigSnapshot',
    'RebalanceError',
    'RebalanceValidationError',
    'RebalanceInProgressError',
    'NodeClientError',
    'SwapServiceError',
    'InvoiceDecodeError',
    'PaymentError',
    'InvoiceCodec',
    'PrometheusExporter',
    'RebalanceRequest',
    'RebalanceResult',
    'RebalanceState',
    'PaymentFailureReason',
    'NodeClient',
    'RebalanceOrchestrator',
    'SwapOrderClient',
]
