from decimal import Decimal
from typing import Any, Dict, List, Optional

from mcp.types import INTERNAL_ERROR, INVALID_PARAMS

# ATXP error code for "payment required" JSON-RPC errors
PAYMENT_REQUIRED_ERROR_CODE = -30402


class PaidMCPError(Exception):
    """Base class for errors raised by the paid MCP server."""


class ConfigurationError(PaidMCPError):
    """Missing or invalid startup configuration."""


class InvalidArgumentError(PaidMCPError):
    code = INVALID_PARAMS

    def __init__(self, message: str, errors: Optional[List[str]] = None):
        super().__init__(message)
        self.errors = errors or []


class PaymentRequiredError(PaidMCPError):
    code = PAYMENT_REQUIRED_ERROR_CODE

    def __init__(
        self,
        price: Decimal,
        payment_request_id: Optional[str] = None,
        payment_request_url: Optional[str] = None,
    ):
        self.price = price
        self.payment_request_id = payment_request_id
        self.payment_request_url = payment_request_url
        if payment_request_url:
            message = f"Payment via ATXP is required. Please pay at: {payment_request_url} and then try again."
        else:
            message = "Payment via ATXP is required."
        super().__init__(message)

    @property
    def data(self) -> Optional[Dict[str, Any]]:
        if self.payment_request_id is None:
            return None
        return {
            "paymentRequestId": self.payment_request_id,
            "paymentRequestUrl": self.payment_request_url,
        }


class PaymentServerError(PaidMCPError):
    """The payment server was unreachable or answered unexpectedly."""


class InternalServerError(PaidMCPError):
    code = INTERNAL_ERROR

    def __init__(self, message: str = "Internal server error"):
        super().__init__(message)

    def to_jsonrpc(self) -> Dict[str, Any]:
        return {
            "jsonrpc": "2.0",
            "error": {"code": self.code, "message": str(self)},
            "id": None,
        }
