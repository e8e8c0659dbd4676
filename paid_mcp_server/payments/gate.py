"""
Payment gate.

Two layers:

* ``PaymentMiddleware`` runs on every HTTP request before routing. It serves
  the OAuth protected-resource metadata and rejects requests whose bearer
  token the payment server does not recognise, so nothing downstream runs
  for unpaid callers.
* ``PaymentGate.require_payment`` is awaited from inside a tool handler and
  charges the caller identified by the middleware for that one invocation.
"""

import contextlib
import contextvars
import logging
from decimal import Decimal
from typing import Iterator, Optional

import anyio
from pydantic import BaseModel
from starlette.requests import Request
from starlette.responses import JSONResponse
from starlette.types import ASGIApp, Receive, Scope, Send

from paid_mcp_server.errors import PaymentRequiredError, PaymentServerError
from paid_mcp_server.payments.account import ATXPAccount
from paid_mcp_server.payments.client import ChargeRequest, PaymentServerClient

logger = logging.getLogger(__name__)

METADATA_PATH = "/.well-known/oauth-protected-resource"


class PaymentContext(BaseModel):
    payer: str
    token: str


class PaymentRequirement(BaseModel):
    price: Decimal
    currency: str = "USDC"


_payment_context: contextvars.ContextVar[Optional[PaymentContext]] = contextvars.ContextVar(
    "payment_context", default=None
)


def current_payment_context() -> Optional[PaymentContext]:
    return _payment_context.get()


@contextlib.contextmanager
def use_payment_context(context: PaymentContext) -> Iterator[PaymentContext]:
    """Install ``context`` as the caller for the enclosed request handling."""
    reset_token = _payment_context.set(context)
    try:
        yield context
    finally:
        _payment_context.reset(reset_token)


class PaymentGate:
    """Charges callers against the destination account."""

    def __init__(self, account: ATXPAccount, payment_server: PaymentServerClient, payee_name: str):
        self.account = account
        self.payment_server = payment_server
        self.payee_name = payee_name

    async def authenticate(self, token: str) -> Optional[PaymentContext]:
        payer = await self.payment_server.introspect(token)
        if payer is None:
            return None
        return PaymentContext(payer=payer, token=token)

    async def require_payment(self, price: Decimal) -> None:
        """
        Charge the current caller ``price`` USDC.

        Raises:
            PaymentRequiredError: No authenticated caller, or the charge was declined
            PaymentServerError: The payment server could not be reached
        """
        requirement = PaymentRequirement(price=price)
        context = current_payment_context()
        if context is None:
            raise PaymentRequiredError(requirement.price)

        charge = ChargeRequest(
            source=context.payer,
            destination=self.account.account_id,
            amount=requirement.price,
            currency=requirement.currency,
            payee_name=self.payee_name,
        )
        # A charge already sent runs to completion even if the client goes away
        with anyio.CancelScope(shield=True):
            settled = await self.payment_server.charge(charge)
        if settled:
            logger.info(f"Charged {requirement.price} {requirement.currency} to {context.payer}")
            return

        request_id = await self.payment_server.create_payment_request(charge)
        raise PaymentRequiredError(
            requirement.price,
            payment_request_id=request_id,
            payment_request_url=self.payment_server.payment_request_url(request_id),
        )


def _bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("authorization", "")
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class PaymentMiddleware:
    """ASGI middleware enforcing a valid payment credential on every request."""

    def __init__(self, app: ASGIApp, gate: PaymentGate, payment_server_url: str) -> None:
        self.app = app
        self.gate = gate
        self.payment_server_url = payment_server_url

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        if request.url.path == METADATA_PATH:
            await self._metadata(request)(scope, receive, send)
            return

        token = _bearer_token(request)
        if token is None:
            logger.info(f"Rejecting {request.method} {request.url.path}: no payment credential")
            await self._challenge(request, "Missing bearer token")(scope, receive, send)
            return

        try:
            context = await self.gate.authenticate(token)
        except PaymentServerError as e:
            logger.error(f"Payment server unavailable: {e}")
            response = JSONResponse(
                {"error": "payment_server_unavailable", "error_description": "Could not verify payment credential"},
                status_code=502,
            )
            await response(scope, receive, send)
            return

        if context is None:
            logger.info(f"Rejecting {request.method} {request.url.path}: inactive payment credential")
            await self._challenge(request, "Invalid or expired bearer token")(scope, receive, send)
            return

        with use_payment_context(context):
            await self.app(scope, receive, send)

    def _resource_url(self, request: Request) -> str:
        return str(request.base_url).rstrip("/")

    def _metadata(self, request: Request) -> JSONResponse:
        return JSONResponse(
            {
                "resource": self._resource_url(request),
                "authorization_servers": [self.payment_server_url],
                "bearer_methods_supported": ["header"],
                "resource_name": self.gate.payee_name,
            }
        )

    def _challenge(self, request: Request, description: str) -> JSONResponse:
        metadata_url = f"{self._resource_url(request)}{METADATA_PATH}"
        return JSONResponse(
            {"error": "invalid_token", "error_description": description},
            status_code=401,
            headers={"WWW-Authenticate": f'Bearer resource_metadata="{metadata_url}"'},
        )
