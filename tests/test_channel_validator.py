"""
Tests for ChannelValidator.
"""

from modules.channel_validator import ChannelValidator
from modules.models import ChannelSummary


def channel(pubkey, scid, active=True):
    return ChannelSummary(
        remote_pubkey=pubkey,
        local_balance_msat=1000,
        remote_balance_msat=2000,
        active=active,
        public=True,
        is_outbound=True,
        spendable_msat=900,
        short_channel_id=scid,
    )


def test_found(mock_plugin, sample_peer_ids):
    channels = [channel(sample_peer_ids[0], "1x1x0"), channel(sample_peer_ids[1], "1x2x0")]

    found, match = ChannelValidator(mock_plugin).validate(sample_peer_ids[1], channels)

    assert found
    assert match.short_channel_id == "1x2x0"


def test_first_match_wins(mock_plugin, sample_peer_ids):
    channels = [channel(sample_peer_ids[0], "1x1x0"), channel(sample_peer_ids[0], "1x9x0")]

    _, match = ChannelValidator(mock_plugin).validate(sample_peer_ids[0], channels)

    assert match.short_channel_id == "1x1x0"


def test_inactive_channel_passes(mock_plugin, sample_peer_ids):
    found, _ = ChannelValidator(mock_plugin).validate(
        sample_peer_ids[0], [channel(sample_peer_ids[0], "1x1x0", active=False)])

    assert found


def test_not_found_logs_available_peers(mock_plugin, sample_peer_ids):
    channels = [channel(sample_peer_ids[0], "1x1x0")]

    found, match = ChannelValidator(mock_plugin).validate(sample_peer_ids[2], channels)

    assert not found
    assert match is None
    message = mock_plugin.log.call_args.args[0]
    assert sample_peer_ids[0] in message
    assert mock_plugin.log.call_args.kwargs["level"] == "error"


def test_empty_channel_list(mock_plugin, sample_peer_ids):
    found, _ = ChannelValidator(mock_plugin).validate(sample_peer_ids[0], [])

    assert not found


def test_audit_logs_every_channel(mock_plugin, sample_peer_ids):
    channels = [channel(p, f"1x{i}x0") for i, p in enumerate(sample_peer_ids)]

    ChannelValidator(mock_plugin).validate(sample_peer_ids[0], channels)

    logged = " ".join(c.args[0] for c in mock_plugin.log.call_args_list)
    for peer in sample_peer_ids:
        assert peer in logged
    assert "total_channels=3" in logged
