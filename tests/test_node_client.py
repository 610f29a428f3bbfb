"""
Tests for NodeClient and payment failure classification.
"""

import json

import pytest

from modules.errors import NodeClientError, PaymentError
from modules.models import PaymentFailureReason, RebalanceMetadata
from modules.node_client import NodeClient, classify_payment_error

from conftest import OUR_NODE_ID, make_rpc_error


@pytest.fixture
def node(mock_plugin, mock_rpc):
    return NodeClient(mock_plugin)


@pytest.fixture
def metadata():
    return RebalanceMetadata(receive_through="02" + "a" * 64, amount_sat=1000)


class TestListChannels:

    def test_parses_listpeerchannels(self, node, sample_peer_ids):
        channels = node.list_channels()

        assert [c.remote_pubkey for c in channels] == sample_peer_ids[:2]
        first = channels[0]
        assert first.local_balance_msat == 600_000_000
        assert first.remote_balance_msat == 400_000_000
        assert first.capacity_msat == 1_000_000_000
        assert first.active and first.public and first.is_outbound

    def test_accepts_msat_strings(self, node):
        second = node.list_channels()[1]

        assert second.remote_balance_msat == 2_000_000_000
        assert not second.active
        assert not second.public
        assert not second.is_outbound

    def test_falls_back_to_listpeers(self, node, mock_rpc, sample_peer_ids):
        mock_rpc.listpeerchannels.side_effect = make_rpc_error(
            "listpeerchannels", "Unknown command", -32601)
        mock_rpc.listpeers.return_value = {"peers": [{
            "id": sample_peer_ids[2],
            "connected": True,
            "channels": [{"state": "CHANNELD_NORMAL", "to_us_msat": 1000, "total_msat": 3000}],
        }]}

        channels = node.list_channels()

        assert len(channels) == 1
        assert channels[0].remote_pubkey == sample_peer_ids[2]
        assert channels[0].active

    def test_error_raises_node_client_error(self, node, mock_rpc):
        mock_rpc.listpeerchannels.side_effect = make_rpc_error("listpeerchannels", "down", -1)

        with pytest.raises(NodeClientError):
            node.list_channels()

    def test_socket_error_raises_node_client_error(self, node, mock_rpc):
        mock_rpc.listpeerchannels.side_effect = OSError("Connection refused")

        with pytest.raises(NodeClientError) as exc_info:
            node.list_channels()

        assert "Connection refused" in str(exc_info.value)

    def test_malformed_amount_raises_node_client_error(self, node, raw_peer_channels):
        raw_peer_channels[0]["to_us_msat"] = "lots"

        with pytest.raises(NodeClientError):
            node.list_channels()


class TestMakeInvoice:

    def test_label_carries_metadata(self, node, mock_rpc, metadata):
        invoice = node.make_invoice(1_000_000, "memo", 0, metadata)

        payload = mock_rpc.call.call_args.args[1]
        label = json.loads(payload["label"])
        assert label["version"] == 1
        assert label["role"] == "receive"
        assert label["attempt_id"] == metadata.attempt_id
        assert invoice.label == payload["label"]
        assert invoice.payment_request.startswith("lnbc")

    def test_missing_bolt11(self, node, rpc_handlers, metadata):
        rpc_handlers["invoice"] = {"payment_hash": "00"}

        with pytest.raises(NodeClientError):
            node.make_invoice(1_000_000, "memo", 0, metadata)


class TestSendPayment:

    def test_fee_from_amount_sent(self, node, metadata):
        result = node.send_payment_sync("lnbc1x", metadata, 60)

        assert result.fee_msat == 1000

    def test_incomplete_status_is_failure(self, node, rpc_handlers, metadata):
        rpc_handlers["pay"] = {"status": "pending"}

        with pytest.raises(PaymentError) as exc_info:
            node.send_payment_sync("lnbc1x", metadata, 60)

        assert exc_info.value.reason == PaymentFailureReason.OTHER

    def test_unreadable_amount_raises_node_client_error(self, node, rpc_handlers, metadata):
        rpc_handlers["pay"] = {"status": "complete", "amount_msat": "n/a"}

        with pytest.raises(NodeClientError):
            node.send_payment_sync("lnbc1x", metadata, 60)


class TestClassifyPaymentError:

    @pytest.mark.parametrize("code,reason", [
        (205, PaymentFailureReason.NO_ROUTE),
        (206, PaymentFailureReason.INSUFFICIENT_LIQUIDITY),
        (204, PaymentFailureReason.INSUFFICIENT_LIQUIDITY),
        (210, PaymentFailureReason.TIMEOUT),
    ])
    def test_by_code(self, code, reason):
        assert classify_payment_error(make_rpc_error("pay", "failed", code)) == reason

    @pytest.mark.parametrize("code,message,reason", [
        (210, "Ran out of routes to try after 3 attempts: see `paystatus`",
         PaymentFailureReason.NO_ROUTE),
        (210, "Stopped retrying after 60 seconds", PaymentFailureReason.TIMEOUT),
        (205, "Timed out while searching", PaymentFailureReason.NO_ROUTE),
    ])
    def test_route_text_overrides_non_routing_code(self, code, message, reason):
        assert classify_payment_error(make_rpc_error("pay", message, code)) == reason

    @pytest.mark.parametrize("message,reason", [
        ("RouteNotFound", PaymentFailureReason.NO_ROUTE),
        ("Could not find a route", PaymentFailureReason.NO_ROUTE),
        ("Insufficient balance", PaymentFailureReason.INSUFFICIENT_LIQUIDITY),
        ("payment timed out", PaymentFailureReason.TIMEOUT),
        ("WIRE_INCORRECT_OR_UNKNOWN_PAYMENT_DETAILS", PaymentFailureReason.OTHER),
    ])
    def test_by_message(self, message, reason):
        assert classify_payment_error(make_rpc_error("pay", message)) == reason


def test_get_node_info(node):
    assert node.get_node_info() == OUR_NODE_ID
