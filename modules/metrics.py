"""
Prometheus Metrics Exporter module for cl-swap-rebalance

Exposes rebalance attempt counters in the Prometheus text format using
only the Python standard library. Disabled unless
swap-rebalance-enable-prometheus is set.

All metric names are prefixed with 'cl_swap_rebalance_'.
"""

import socket
import threading
from http.server import HTTPServer, BaseHTTPRequestHandler
from typing import Dict, Optional, Any


class MetricType:
    """Metric type constants."""
    GAUGE = "gauge"
    COUNTER = "counter"


class PrometheusExporter:
    """
    Lightweight, thread-safe Prometheus metrics exporter.

    Usage:
        exporter = PrometheusExporter(port=9810, plugin=plugin)
        exporter.start_server()
        exporter.inc_counter(MetricNames.REBALANCE_ATTEMPTS_TOTAL, 1,
                             help_text=METRIC_HELP[MetricNames.REBALANCE_ATTEMPTS_TOTAL])
    """

    def __init__(self, port: int = 9810, plugin=None):
        self.port = port
        self.plugin = plugin

        self._lock = threading.Lock()

        # name -> {"type": ..., "help": ..., "values": {frozenset(labels): value}}
        self._metrics: Dict[str, Dict[str, Any]] = {}

        self._server: Optional[HTTPServer] = None
        self._server_thread: Optional[threading.Thread] = None
        self._running = False

    def _log(self, message: str, level: str = 'info'):
        if self.plugin:
            self.plugin.log(message, level=level)

    def _ensure(self, name: str, metric_type: str, help_text: str) -> Dict[str, Any]:
        if name not in self._metrics:
            self._metrics[name] = {"type": metric_type, "help": help_text, "values": {}}
        return self._metrics[name]

    def set_gauge(self, name: str, value: float, labels: Optional[Dict[str, str]] = None,
                  help_text: str = "") -> None:
        """Set a gauge metric value."""
        label_key = frozenset((labels or {}).items())
        with self._lock:
            self._ensure(name, MetricType.GAUGE, help_text)["values"][label_key] = value

    def inc_counter(self, name: str, value: float = 1, labels: Optional[Dict[str, str]] = None,
                    help_text: str = "") -> None:
        """Increment a counter metric."""
        label_key = frozenset((labels or {}).items())
        with self._lock:
            values = self._ensure(name, MetricType.COUNTER, help_text)["values"]
            values[label_key] = values.get(label_key, 0) + value

    def get_metric(self, name: str, labels: Optional[Dict[str, str]] = None) -> Optional[float]:
        """Current value for an exact label match, or None."""
        label_key = frozenset((labels or {}).items())
        with self._lock:
            if name in self._metrics:
                return self._metrics[name]["values"].get(label_key)
        return None

    def format_prometheus(self) -> str:
        """Format all metrics in Prometheus text exposition format."""
        lines = []

        with self._lock:
            for name, metric in sorted(self._metrics.items()):
                if metric["help"]:
                    lines.append(f"# HELP {name} {metric['help']}")
                lines.append(f"# TYPE {name} {metric['type']}")

                for label_key, value in sorted(metric["values"].items(), key=lambda x: str(x[0])):
                    if label_key:
                        label_strs = [f'{k}="{v}"' for k, v in sorted(label_key)]
                        lines.append(f"{name}{{{', '.join(label_strs)}}} {value}")
                    else:
                        lines.append(f"{name} {value}")

                lines.append("")

        return "\n".join(lines)

    def _create_request_handler(self):
        exporter = self

        class MetricsHandler(BaseHTTPRequestHandler):
            """HTTP request handler for /metrics endpoint."""

            def log_message(self, format, *args):
                pass

            def do_GET(self):
                try:
                    if self.path in ('/', '/metrics'):
                        content = exporter.format_prometheus().encode('utf-8')
                        self.send_response(200)
                        self.send_header('Content-Type', 'text/plain; charset=utf-8')
                        self.send_header('Content-Length', str(len(content)))
                        self.end_headers()
                        self.wfile.write(content)
                    else:
                        self.send_response(404)
                        self.send_header('Content-Type', 'text/plain')
                        self.end_headers()
                        self.wfile.write(b'Not Found. Try /metrics')
                except (BrokenPipeError, ConnectionResetError):
                    # Client went away mid-response
                    pass

        return MetricsHandler

    def start_server(self) -> bool:
        """
        Start the HTTP server in a background thread.

        Returns:
            True if server started successfully, False otherwise
        """
        if self._running:
            return True

        try:
            self._server = HTTPServer(('0.0.0.0', self.port), self._create_request_handler())
            self._server.socket.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            self._server_thread = threading.Thread(
                target=self._server.serve_forever,
                daemon=True,
                name="prometheus-exporter"
            )
            self._server_thread.start()
            self._running = True
            self._log(f"Prometheus metrics server started on port {self.port}")
            return True
        except OSError as e:
            self._log(
                f"Failed to start Prometheus server on port {self.port}: {e}. "
                "Plugin continues without metrics.",
                level='error'
            )
            return False

    def stop_server(self):
        if self._server:
            self._server.shutdown()
            self._running = False
            self._log("Prometheus metrics server stopped")

    def is_running(self) -> bool:
        return self._running


class MetricNames:
    """Standard metric names for cl-swap-rebalance."""

    REBALANCE_ATTEMPTS_TOTAL = "cl_swap_rebalance_attempts_total"
    REBALANCE_SUCCESS_TOTAL = "cl_swap_rebalance_success_total"
    REBALANCE_FAILURES_TOTAL = "cl_swap_rebalance_failures_total"
    REBALANCE_FEE_TOTAL_SATS = "cl_swap_rebalance_fee_total_sats"
    REBALANCE_FEE_CREDIT_TOTAL_SATS = "cl_swap_rebalance_fee_credit_total_sats"
    REBALANCE_VOLUME_TOTAL_SATS = "cl_swap_rebalance_volume_total_sats"
    LAST_SUCCESS_TIMESTAMP = "cl_swap_rebalance_last_success_timestamp_seconds"


METRIC_HELP = {
    MetricNames.REBALANCE_ATTEMPTS_TOTAL: "Total swap rebalance attempts",
    MetricNames.REBALANCE_SUCCESS_TOTAL: "Total successful swap rebalances",
    MetricNames.REBALANCE_FAILURES_TOTAL: "Total failed swap rebalances by stage and kind",
    MetricNames.REBALANCE_FEE_TOTAL_SATS: "Total positive net fees paid for successful rebalances in sats",
    MetricNames.REBALANCE_FEE_CREDIT_TOTAL_SATS: "Total of negative net fees (swap invoice below requested amount) in sats",
    MetricNames.REBALANCE_VOLUME_TOTAL_SATS: "Total amount rebalanced in sats",
    MetricNames.LAST_SUCCESS_TIMESTAMP: "Unix timestamp of the last successful rebalance",
}
