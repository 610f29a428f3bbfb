"""
Pytest fixtures for cl-swap-rebalance tests.

Provides mock plugin, RPC, channel and order-service fixtures.
"""

import json
import os
import sys
from unittest.mock import MagicMock

import pytest
from pyln.client import RpcError

# Add modules to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from modules.config import Config
from modules.invoice_codec import InvoiceCodec
from modules.node_client import NodeClient
from modules.orchestrator import RebalanceOrchestrator
from modules.swap_client import SwapOrderClient


OUR_NODE_ID = "02" + "f" * 64
RECEIVE_BOLT11 = "lnbc500u1preceive"
SWAP_BOLT11 = "lnbc500u1pswapinvoice"


def make_response(status_code=200, body=None):
    """Build a requests.Response stand-in."""
    response = MagicMock()
    response.status_code = status_code
    response.text = body if isinstance(body, str) else json.dumps(body or {})
    return response


def make_rpc_error(method, message, code=None):
    error = {"message": message}
    if code is not None:
        error["code"] = code
    return RpcError(method, {}, error)


@pytest.fixture
def sample_peer_ids():
    """Sample peer IDs for testing."""
    return [
        "02" + "a" * 64,
        "02" + "b" * 64,
        "03" + "c" * 64,
    ]


@pytest.fixture
def raw_peer_channels(sample_peer_ids):
    """listpeerchannels entries for three peers."""
    return [
        {
            "peer_id": sample_peer_ids[0],
            "peer_connected": True,
            "state": "CHANNELD_NORMAL",
            "short_channel_id": "800000x1x0",
            "to_us_msat": 600_000_000,
            "total_msat": 1_000_000_000,
            "spendable_msat": 590_000_000,
            "private": False,
            "opener": "local",
        },
        {
            "peer_id": sample_peer_ids[1],
            "peer_connected": False,
            "state": "CHANNELD_AWAITING_LOCKIN",
            "short_channel_id": "800000x2x0",
            "to_us_msat": "0msat",
            "total_msat": "2000000000msat",
            "spendable_msat": "0msat",
            "private": True,
            "opener": "remote",
        },
    ]


@pytest.fixture
def mock_plugin():
    """Create a mock plugin with basic functionality."""
    plugin = MagicMock()
    plugin.log = MagicMock()
    plugin.rpc = MagicMock()
    return plugin


@pytest.fixture
def rpc_handlers(raw_peer_channels):
    """
    Per-method responses for mock_rpc.call.

    Tests replace an entry with a callable to raise or vary the response.
    """
    return {
        "invoice": {
            "bolt11": RECEIVE_BOLT11,
            "payment_hash": "11" * 32,
            "expires_at": 1_700_000_000,
        },
        "decode": {
            "type": "bolt11 invoice",
            "valid": True,
            "payment_hash": "22" * 32,
            "payee": "03" + "e" * 64,
            "amount_msat": 50_000_000,
            "description": "Rebalance order abc",
            "expiry": 3600,
        },
        "pay": {
            "status": "complete",
            "payment_hash": "22" * 32,
            "amount_msat": 50_000_000,
            "amount_sent_msat": 50_001_000,
        },
    }


@pytest.fixture
def mock_rpc(mock_plugin, rpc_handlers, raw_peer_channels):
    """Create a mock RPC interface dispatching rpc.call by method name."""
    rpc = mock_plugin.rpc
    rpc.getinfo.return_value = {"id": OUR_NODE_ID, "alias": "test-node", "network": "regtest"}
    rpc.listpeerchannels.return_value = {"channels": raw_peer_channels}

    def call(method, payload=None):
        handler = rpc_handlers[method]
        if callable(handler):
            return handler(payload)
        return handler

    rpc.call.side_effect = call
    return rpc


@pytest.fixture
def mock_session():
    """requests.Session stand-in answering with a valid order."""
    session = MagicMock()
    session.post.return_value = make_response(200, {"order_id": "abc", "pay_request": SWAP_BOLT11})
    return session


@pytest.fixture
def config():
    return Config(service_url="https://rebalance.example.com")


@pytest.fixture
def orchestrator(mock_plugin, mock_rpc, mock_session, config):
    """Orchestrator wired to real adapters over mocked RPC and HTTP."""
    return RebalanceOrchestrator(
        plugin=mock_plugin,
        config=config,
        node=NodeClient(mock_plugin),
        codec=InvoiceCodec(mock_plugin),
        swap_client=SwapOrderClient(config.service_url, mock_plugin, session=mock_session),
    )
