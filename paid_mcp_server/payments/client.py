"""
Async client for the ATXP payment server.

Covers the three calls the payment gate needs: bearer token introspection,
charging a payer, and creating a payment request the payer can settle out of
band. Uses a lazily created httpx.AsyncClient shared by all requests.
"""

import logging
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx
from pydantic import BaseModel

from paid_mcp_server.errors import PaymentServerError
from paid_mcp_server.payments.account import ATXPAccount

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class ChargeRequest(BaseModel):
    source: str
    destination: str
    amount: Decimal
    currency: str = "USDC"
    payee_name: str

    def to_payload(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "destination": self.destination,
            "amount": str(self.amount),
            "currency": self.currency,
            "payeeName": self.payee_name,
        }


class PaymentServerClient:
    """Talks to the payment server on behalf of the destination account."""

    def __init__(
        self,
        base_url: str,
        account: ATXPAccount,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._account = account
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self._timeout,
                headers={"Authorization": f"Bearer {self._account.token.get_secret_value()}"},
                transport=self._transport,
            )
        return self._client

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _post(self, path: str, **kwargs: Any) -> httpx.Response:
        client = self._ensure_client()
        try:
            return await client.post(path, **kwargs)
        except httpx.HTTPError as e:
            raise PaymentServerError(f"Payment server request to {path} failed: {e}") from e

    @staticmethod
    def _json(response: httpx.Response, action: str) -> Dict[str, Any]:
        try:
            payload = response.json()
        except ValueError as e:
            raise PaymentServerError(f"{action} returned a body that is not JSON") from e
        if not isinstance(payload, dict):
            raise PaymentServerError(f"{action} returned unexpected JSON: {payload!r}")
        return payload

    def payment_request_url(self, request_id: str) -> str:
        return f"{self.base_url}/payment-request/{request_id}"

    async def introspect(self, token: str) -> Optional[str]:
        """
        Return the payer id for an active bearer token, None otherwise.
        """
        response = await self._post("/introspect", data={"token": token})
        if response.status_code >= 500:
            raise PaymentServerError(f"Token introspection failed with HTTP {response.status_code}")
        if response.status_code != 200:
            return None

        payload = self._json(response, "Token introspection")
        if not payload.get("active"):
            return None
        return payload.get("sub") or None

    async def charge(self, request: ChargeRequest) -> bool:
        """
        Charge the payer. True when settled, False when declined.
        """
        response = await self._post("/charge", json=request.to_payload())
        if response.status_code == 200:
            return True
        if response.status_code == 402:
            logger.info(f"Charge of {request.amount} {request.currency} declined for {request.source}")
            return False
        raise PaymentServerError(f"Charge failed with HTTP {response.status_code}")

    async def create_payment_request(self, request: ChargeRequest) -> str:
        response = await self._post("/payment-request", json=request.to_payload())
        if response.status_code not in (200, 201):
            raise PaymentServerError(f"Creating payment request failed with HTTP {response.status_code}")

        request_id = self._json(response, "Creating payment request").get("id")
        if not request_id:
            raise PaymentServerError("Payment server returned a payment request without an id")
        return request_id
