import pytest
from starlette.testclient import TestClient

from paid_mcp_server.app import create_app
from paid_mcp_server.config import ServerConfig
from paid_mcp_server.payments.account import ATXPAccount

CONNECTION_STRING = "https://accounts.atxp.ai?connection_token=conn-token&account_id=acct-123"
PAYMENT_SERVER_URL = "https://auth.example.test"


class FakePaymentServer:
    """In-memory payment server with the PaymentServerClient interface."""

    def __init__(self, tokens=None, decline=False):
        self.base_url = PAYMENT_SERVER_URL
        self.tokens = tokens if tokens is not None else {"valid-token": "payer-1"}
        self.decline = decline
        self.introspections = []
        self.charges = []
        self.payment_requests = []
        self.closed = False

    async def introspect(self, token):
        self.introspections.append(token)
        return self.tokens.get(token)

    async def charge(self, request):
        self.charges.append(request)
        return not self.decline

    async def create_payment_request(self, request):
        self.payment_requests.append(request)
        return f"pr-{len(self.payment_requests)}"

    def payment_request_url(self, request_id):
        return f"{self.base_url}/payment-request/{request_id}"

    async def close(self):
        self.closed = True


@pytest.fixture
def account():
    return ATXPAccount.from_connection_string(CONNECTION_STRING)


@pytest.fixture
def config(account):
    return ServerConfig(account=account, payment_server=PAYMENT_SERVER_URL)


@pytest.fixture
def payment_server():
    return FakePaymentServer()


@pytest.fixture
def client(config, payment_server):
    app = create_app(config, payment_server=payment_server)
    with TestClient(app) as test_client:
        yield test_client
