"""
Channel validation for cl-swap-rebalance

Gate for a rebalance attempt: the requested peer must be one of our
channel counterparties. Only the pubkey is checked; inactive, private or
inbound channels still pass.
"""

from typing import List, Optional, Tuple

from pyln.client import Plugin

from .models import ChannelSummary


class ChannelValidator:
    """Confirms a peer is a known channel counterparty."""

    def __init__(self, plugin: Plugin):
        self.plugin = plugin

    def validate(self, peer_pubkey: str,
                 channels: List[ChannelSummary]) -> Tuple[bool, Optional[ChannelSummary]]:
        """
        Find the first channel whose remote pubkey equals `peer_pubkey`.

        Args:
            peer_pubkey: The caller-requested peer
            channels: Fresh channel list from the node

        Returns:
            Tuple of (found, channel). channel is None when not found.
        """
        match = None
        for channel in channels:
            if channel.remote_pubkey == peer_pubkey:
                match = channel
                break

        if match is None:
            self.plugin.log(
                f"No channel found with receive_through node {peer_pubkey}. "
                f"Available peers: {[ch.remote_pubkey for ch in channels]}",
                level='error'
            )
            return False, None

        self.plugin.log(
            f"Starting rebalance through validated channel peer {peer_pubkey}: "
            f"capacity={match.capacity_msat} local_balance={match.local_balance_msat} "
            f"remote_balance={match.remote_balance_msat} active={match.active}"
        )
        self.log_channels(channels)
        return True, match

    def log_channels(self, channels: List[ChannelSummary]) -> None:
        """Audit log of every known channel for routing diagnostics."""
        self.plugin.log(
            f"Available channels for routing diagnostics: total_channels={len(channels)}"
        )
        for ch in channels:
            self.plugin.log(
                f"  peer={ch.remote_pubkey} scid={ch.short_channel_id} "
                f"capacity_msat={ch.capacity_msat} local={ch.local_balance_msat} "
                f"remote={ch.remote_balance_msat} spendable={ch.spendable_msat} "
                f"active={ch.active} public={ch.public} outbound={ch.is_outbound}",
                level='debug'
            )
