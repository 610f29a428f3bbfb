"""
Configuration module for cl-swap-rebalance

Contains the Config dataclass that holds all tunable parameters of the
plugin, and the immutable ConfigSnapshot used for the duration of one
rebalance attempt.

Runtime updates (swap-rebalance-config set) are held in memory only and
are lost on plugin restart.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet


# Wire constants of the order service
SWAP_CLIENT_TOKEN = "alby-hub"
SWAP_REQUEST_TIMEOUT_SECONDS = 60
CREATE_ORDER_PATH = "/api/rebalance/v1/create_order"

DEFAULT_SERVICE_URL = "https://api.megalithic.me"


# Keys that cannot be changed at runtime
IMMUTABLE_CONFIG_KEYS: FrozenSet[str] = frozenset({
    'service_url',
    'enable_prometheus',
    'prometheus_port',
})

# Type mapping for config fields (for validation)
CONFIG_FIELD_TYPES: Dict[str, type] = {
    'service_url': str,
    'invoice_expiry_seconds': int,
    'pay_retry_for_seconds': int,
    'single_flight': bool,
    'enable_prometheus': bool,
    'prometheus_port': int,
}

# Range constraints for numeric fields
CONFIG_FIELD_RANGES: Dict[str, tuple] = {
    'invoice_expiry_seconds': (0, 604800),   # 0 = node default
    'pay_retry_for_seconds': (1, 3600),
    'prometheus_port': (1, 65535),
}


def coerce_value(key: str, value: str) -> Any:
    """Convert a string option value to the field's declared type."""
    field_type = CONFIG_FIELD_TYPES.get(key, str)
    if field_type == bool:
        return value.lower() in ('true', '1', 'yes', 'on')
    if field_type == int:
        return int(value)
    if field_type == float:
        return float(value)
    return value


@dataclass
class Config:
    """
    Configuration container for the swap rebalance plugin.

    All values can be set via plugin options at startup.
    """

    # Order service base URL (create_order path is appended)
    service_url: str = DEFAULT_SERVICE_URL

    # Receive invoice expiry, 0 lets the node pick its default
    invoice_expiry_seconds: int = 0

    # Upper bound for the node's own payment retries (pay retry_for)
    pay_retry_for_seconds: int = 60

    # Reject a second concurrent attempt toward the same peer
    single_flight: bool = False

    # Prometheus Metrics
    enable_prometheus: bool = False
    prometheus_port: int = 9810

    # Internal version tracking (not a user-configurable option)
    _version: int = field(default=0, repr=False, compare=False)

    def snapshot(self) -> 'ConfigSnapshot':
        """
        Create an immutable snapshot for one rebalance attempt.

        An attempt captures a snapshot when it starts so a concurrent
        swap-rebalance-config set cannot change its parameters mid-flight.
        """
        return ConfigSnapshot.from_config(self)

    def update_runtime(self, key: str, value: str) -> Dict[str, Any]:
        """
        Validate and apply a runtime update.

        Returns:
            Dict with status, old_value, new_value, version (or error)
        """
        if key in IMMUTABLE_CONFIG_KEYS:
            return {"error": f"Key '{key}' cannot be changed at runtime"}

        if key not in CONFIG_FIELD_TYPES:
            return {"error": f"Unknown config key: {key}"}

        try:
            typed_value = coerce_value(key, value)
        except (ValueError, TypeError) as e:
            field_type = CONFIG_FIELD_TYPES[key]
            return {"error": f"Invalid value for {key} (expected {field_type.__name__}): {e}"}

        if key in CONFIG_FIELD_RANGES:
            min_val, max_val = CONFIG_FIELD_RANGES[key]
            if not (min_val <= typed_value <= max_val):
                return {"error": f"Value {typed_value} out of range [{min_val}, {max_val}] for {key}"}

        old_value = getattr(self, key)
        setattr(self, key, typed_value)
        self._version += 1

        return {
            "status": "success",
            "key": key,
            "old_value": old_value,
            "new_value": typed_value,
            "version": self._version
        }


@dataclass(frozen=True)
class ConfigSnapshot:
    """Immutable configuration snapshot for one rebalance attempt."""
    service_url: str
    invoice_expiry_seconds: int
    pay_retry_for_seconds: int
    single_flight: bool
    enable_prometheus: bool
    prometheus_port: int

    # Version tracking
    version: int = 0

    @classmethod
    def from_config(cls, config: 'Config') -> 'ConfigSnapshot':
        """Create snapshot from mutable Config."""
        return cls(
            service_url=config.service_url,
            invoice_expiry_seconds=config.invoice_expiry_seconds,
            pay_retry_for_seconds=config.pay_retry_for_seconds,
            single_flight=config.single_flight,
            enable_prometheus=config.enable_prometheus,
            prometheus_port=config.prometheus_port,
            version=config._version,
        )
