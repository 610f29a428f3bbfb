#!/usr/bin/env python3
"""
cl-swap-rebalance: Swap-service rebalancing for Core Lightning

Moves liquidity toward a chosen channel peer by routing a self-payment
through an external rebalance order service:

1. Check the peer is one of our channel counterparties
2. Create a receive invoice for the requested amount
3. Hand the invoice to the order service, which returns a second invoice
   whose payment routes through the peer back to us
4. Decode and pay that invoice
5. Report the net fee

The plugin does not pick peers or amounts, does not compute routes
(lightningd's pay does) and keeps no history.

Dependencies:
- pyln-client: Core Lightning plugin framework
- requests: HTTP client for the order service

License: MIT
"""

import os
import threading
from dataclasses import asdict
from typing import Any, Dict, Optional

from pyln.client import Plugin

from modules.config import (
    Config, CONFIG_FIELD_TYPES, DEFAULT_SERVICE_URL, IMMUTABLE_CONFIG_KEYS,
)
from modules.errors import RebalanceError
from modules.invoice_codec import InvoiceCodec
from modules.metrics import PrometheusExporter, MetricNames
from modules.models import RebalanceRequest, RebalanceState
from modules.node_client import NodeClient
from modules.orchestrator import RebalanceOrchestrator
from modules.swap_client import SwapOrderClient


plugin = Plugin()

# Global instances (initialized in init)
config: Optional[Config] = None
orchestrator: Optional[RebalanceOrchestrator] = None
metrics_exporter: Optional[PrometheusExporter] = None


# =============================================================================
# PLUGIN OPTIONS
# =============================================================================

plugin.add_option(
    name='swap-rebalance-service-url',
    default=os.environ.get('REBALANCE_SERVICE_URL', DEFAULT_SERVICE_URL),
    description='Base URL of the rebalance order service (default: https://api.megalithic.me)'
)

plugin.add_option(
    name='swap-rebalance-invoice-expiry-seconds',
    default='0',
    description='Expiry of the receive invoice in seconds, 0 = node default (default: 0)'
)

plugin.add_option(
    name='swap-rebalance-pay-retry-for-seconds',
    default='60',
    description='How long lightningd may keep retrying the swap payment (default: 60)'
)

plugin.add_option(
    name='swap-rebalance-single-flight',
    default='false',
    description='If true, reject a rebalance toward a peer that already has one in progress (default: false)'
)

plugin.add_option(
    name='swap-rebalance-enable-prometheus',
    default='false',
    description='If true, start Prometheus metrics exporter HTTP server (default: false)'
)

plugin.add_option(
    name='swap-rebalance-prometheus-port',
    default='9810',
    description='Port for Prometheus HTTP metrics server (default: 9810)'
)


# =============================================================================
# INITIALIZATION
# =============================================================================

@plugin.init()
def init(options: Dict[str, Any], configuration: Dict[str, Any], plugin: Plugin, **kwargs):
    """
    Initialize the swap rebalance plugin.

    Builds the configuration from options, wires the node client, invoice
    codec and order service client into the orchestrator, and starts the
    Prometheus exporter if enabled.
    """
    global config, orchestrator, metrics_exporter

    plugin.log("Initializing cl-swap-rebalance plugin...")

    config = Config(
        service_url=options['swap-rebalance-service-url'],
        invoice_expiry_seconds=int(options['swap-rebalance-invoice-expiry-seconds']),
        pay_retry_for_seconds=int(options['swap-rebalance-pay-retry-for-seconds']),
        single_flight=options['swap-rebalance-single-flight'].lower() == 'true',
        enable_prometheus=options['swap-rebalance-enable-prometheus'].lower() == 'true',
        prometheus_port=int(options['swap-rebalance-prometheus-port']),
    )

    plugin.log(f"Configuration loaded: service_url={config.service_url}, "
               f"pay_retry_for={config.pay_retry_for_seconds}s, "
               f"single_flight={config.single_flight}")

    if config.enable_prometheus:
        metrics_exporter = PrometheusExporter(port=config.prometheus_port, plugin=plugin)
        if not metrics_exporter.start_server():
            metrics_exporter = None

    orchestrator = RebalanceOrchestrator(
        plugin=plugin,
        config=config,
        node=NodeClient(plugin),
        codec=InvoiceCodec(plugin),
        swap_client=SwapOrderClient(config.service_url, plugin),
        metrics=metrics_exporter,
    )

    plugin.log("cl-swap-rebalance initialized")


# =============================================================================
# RPC METHODS
# =============================================================================

def run_swap_rebalance(receive_through: Any, amount_sat: Any) -> Dict[str, Any]:
    """Run one attempt and shape its outcome as the RPC response."""
    if orchestrator is None:
        return {"status": "error", "error": "Plugin not fully initialized", "kind": "validation"}

    try:
        request = RebalanceRequest.parse(receive_through, amount_sat)
        result = orchestrator.rebalance_channel(request)
    except RebalanceError as e:
        return {
            "status": "error",
            "error": e.message,
            "kind": e.kind,
            "stage": (e.state or RebalanceState.VALIDATING).value,
        }
    except Exception as e:
        plugin.log(f"Unexpected error during swap rebalance: {e}", level='error')
        return {"status": "error", "error": str(e), "kind": "error"}

    return {"status": "success", **result.to_dict()}


@plugin.async_method("swap-rebalance")
def swap_rebalance(plugin: Plugin, request, receive_through: str, amount_sat: int):
    """
    Rebalance toward a channel peer through the order service.

    Runs on a worker thread and answers through request.set_result; the
    plugin's main loop keeps serving other calls, including further attempts.

    Usage: lightning-cli swap-rebalance receive_through amount_sat
    """
    def worker():
        request.set_result(run_swap_rebalance(receive_through, amount_sat))

    threading.Thread(target=worker, daemon=True, name="swap-rebalance").start()


@plugin.method("swap-rebalance-status")
def swap_rebalance_status(plugin: Plugin) -> Dict[str, Any]:
    """
    Show configuration, in-flight peers and counters.

    Usage: lightning-cli swap-rebalance-status
    """
    if orchestrator is None or config is None:
        return {"error": "Plugin not fully initialized"}

    counters = {}
    if metrics_exporter:
        for name in (MetricNames.REBALANCE_ATTEMPTS_TOTAL,
                     MetricNames.REBALANCE_SUCCESS_TOTAL,
                     MetricNames.REBALANCE_FEE_TOTAL_SATS,
                     MetricNames.REBALANCE_FEE_CREDIT_TOTAL_SATS,
                     MetricNames.REBALANCE_VOLUME_TOTAL_SATS):
            counters[name] = metrics_exporter.get_metric(name) or 0

    return {
        "status": "running",
        "config": asdict(config.snapshot()),
        "in_flight": sorted(orchestrator.in_flight),
        "metrics_enabled": metrics_exporter is not None,
        "counters": counters,
    }


@plugin.method("swap-rebalance-config")
def swap_rebalance_config(plugin: Plugin, action: str, key: str = None,
                          value: str = None) -> Dict[str, Any]:
    """
    Get or set runtime configuration. Changes are not persisted.

    Usage:
      lightning-cli swap-rebalance-config get [key]
      lightning-cli swap-rebalance-config set <key> <value>
      lightning-cli swap-rebalance-config list-mutable
    """
    if config is None:
        return {"error": "Plugin not initialized"}

    if action == "get":
        if key:
            if key not in CONFIG_FIELD_TYPES:
                return {"error": f"Unknown config key: {key}"}
            return {"key": key, "value": getattr(config, key), "version": config._version}
        return {"config": asdict(config.snapshot()), "version": config._version}

    elif action == "set":
        if not key or value is None:
            return {"error": "Usage: swap-rebalance-config set <key> <value>"}

        result = config.update_runtime(key, str(value))
        if result.get("status") == "success":
            plugin.log(
                f"CONFIG UPDATE: {key} changed from {result['old_value']} "
                f"to {result['new_value']} (v{result['version']})"
            )
        return result

    elif action == "list-mutable":
        mutable = [k for k in CONFIG_FIELD_TYPES if k not in IMMUTABLE_CONFIG_KEYS]
        return {"mutable_keys": sorted(mutable), "count": len(mutable)}

    return {"error": f"Unknown action: {action}. Use 'get', 'set' or 'list-mutable'"}


# =============================================================================
# ENTRY POINT
# =============================================================================

if __name__ == "__main__":
    plugin.run()
