"""
Swap order client for cl-swap-rebalance

Talks to the external rebalance order service. Given our receive invoice
and the peer to route through, the service returns an order id and a
second invoice; paying that invoice moves liquidity through the peer back
to us.

One POST per attempt, hard 60 second timeout, no retries. A created order
is a liability: there is no cancellation endpoint, so the caller either
pays the returned invoice or abandons the order.
"""

import json
from typing import Any, Dict, Optional

import requests

from .config import CREATE_ORDER_PATH, SWAP_CLIENT_TOKEN, SWAP_REQUEST_TIMEOUT_SECONDS
from .errors import SwapServiceError
from .models import SwapOrder


USER_AGENT = "cl-swap-rebalance/0.1"


class SwapOrderClient:
    """
    HTTP/JSON client of the rebalance order service.

    Usage:
        client = SwapOrderClient("https://api.megalithic.me", plugin)
        order = client.create_order(receive_invoice.payment_request, peer_id)
    """

    def __init__(self, base_url: str, plugin=None,
                 token: str = SWAP_CLIENT_TOKEN,
                 timeout: int = SWAP_REQUEST_TIMEOUT_SECONDS,
                 session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.plugin = plugin
        self.token = token
        self.timeout = timeout
        self.session = session or requests.Session()

    def _log(self, message: str, level: str = 'info') -> None:
        if self.plugin:
            self.plugin.log(message, level=level)

    @property
    def create_order_url(self) -> str:
        return self.base_url + CREATE_ORDER_PATH

    def build_request(self, pay_request: str, pubkey: str) -> Dict[str, Any]:
        return {
            "token": self.token,
            "pay_request": pay_request,
            "pay_through_this_public_key": pubkey,
        }

    def create_order(self, pay_request: str, pubkey: str) -> SwapOrder:
        """
        Submit our receive invoice and get the invoice to pay.

        Args:
            pay_request: Our receive invoice (BOLT11)
            pubkey: Peer the payment must route through

        Returns:
            SwapOrder with order_id and pay_request

        Raises:
            SwapServiceError: on transport failure, timeout, non-2xx status
                or an unparseable response body
        """
        payload = self.build_request(pay_request, pubkey)

        try:
            response = self.session.post(
                self.create_order_url,
                json=payload,
                headers={
                    "Content-Type": "application/json",
                    "User-Agent": USER_AGENT,
                },
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            self._log(f"Rebalance create_order timed out after {self.timeout}s: {e}", level='error')
            raise SwapServiceError(f"rebalance create_order request timed out: {e}")
        except requests.exceptions.RequestException as e:
            self._log(f"Failed to request new rebalance order: {e}", level='error')
            raise SwapServiceError(f"failed to request rebalance order: {e}")

        try:
            body = response.text
        except (requests.exceptions.RequestException, UnicodeDecodeError) as e:
            self._log(f"Failed to read rebalance response body: {e}", level='error')
            raise SwapServiceError("failed to read response body", status_code=response.status_code)

        if response.status_code >= 300:
            self._log(
                f"rebalance create_order endpoint returned non-success code "
                f"{response.status_code}: {body}",
                level='error'
            )
            raise SwapServiceError(
                f"rebalance create_order endpoint returned non-success code: {body}",
                status_code=response.status_code,
                body=body,
            )

        try:
            data = json.loads(body)
            order = SwapOrder(order_id=str(data["order_id"]), pay_request=data["pay_request"])
        except (ValueError, KeyError, TypeError) as e:
            self._log(f"Failed to deserialize rebalance order response: {e}", level='error')
            raise SwapServiceError(
                f"failed to deserialize json from rebalance create order response: {body}",
                status_code=response.status_code,
                body=body,
            )

        if not isinstance(order.pay_request, str) or not order.pay_request:
            raise SwapServiceError(
                f"failed to deserialize json from rebalance create order response: {body}",
                status_code=response.status_code,
                body=body,
            )

        self._log(f"New rebalance order created: order_id={order.order_id}")
        return order
