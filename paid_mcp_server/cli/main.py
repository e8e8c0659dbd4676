import json
import logging
from typing import Optional

import typer
from pydantic import SecretStr

from paid_mcp_server.app import create_app, create_registry
from paid_mcp_server.config import DEFAULT_PAYEE_NAME, DEFAULT_PAYMENT_SERVER, load_config
from paid_mcp_server.errors import ConfigurationError
from paid_mcp_server.listener import HttpListener, ListenerError
from paid_mcp_server.payments.account import ATXPAccount
from paid_mcp_server.payments.client import PaymentServerClient
from paid_mcp_server.payments.gate import PaymentGate

logger = logging.getLogger(__name__)

app = typer.Typer(help="Paid MCP server exposing an addition tool behind an ATXP payment gate")


@app.command()
def serve(
    port: Optional[int] = typer.Option(None, "--port", help="Port to listen on (env: PORT, default 3000)"),
    host: Optional[str] = typer.Option(None, "--host", help="Interface to bind (env: HOST, default 0.0.0.0)"),
    connection: Optional[str] = typer.Option(
        None, "--connection", help="ATXP connection string (env: ATXP_CONNECTION)"
    ),
    payee_name: Optional[str] = typer.Option(
        None, "--payee-name", help="Payee name shown to payers (env: ATXP_PAYEE_NAME)"
    ),
    payment_server: Optional[str] = typer.Option(
        None, "--payment-server", help="Payment server base URL (env: ATXP_PAYMENT_SERVER)"
    ),
    log_level: Optional[str] = typer.Option(None, "--log-level", help="Logging level (env: LOG_LEVEL)"),
):
    """
    Start the MCP server over streamable HTTP.

    Configuration errors and bind failures exit with status 1 before any
    request is served.
    """
    try:
        config = load_config(
            connection=connection,
            port=port,
            host=host,
            payee_name=payee_name,
            payment_server=payment_server,
            log_level=log_level,
        )
    except ConfigurationError as e:
        typer.echo(f"Configuration error: {e}", err=True)
        raise typer.Exit(1)

    logging.basicConfig(level=config.log_level)

    listener = HttpListener(create_app(config), config.host, config.port, log_level=config.log_level)
    try:
        listener.bind()
    except ListenerError:
        raise typer.Exit(1)

    listener.serve()


def _describe_only_gate() -> PaymentGate:
    """Gate for listing tools: its client is never opened, so nothing is charged."""
    account = ATXPAccount(origin=DEFAULT_PAYMENT_SERVER, token=SecretStr(""), account_id="")
    return PaymentGate(account, PaymentServerClient(DEFAULT_PAYMENT_SERVER, account), DEFAULT_PAYEE_NAME)


@app.command()
def tools():
    """
    Print the registered tool definitions as JSON.
    """
    registry = create_registry(_describe_only_gate())
    payload = [tool.model_dump(mode="json", exclude_none=True) for tool in registry.list_tools()]
    typer.echo(json.dumps(payload, indent=2))


if __name__ == "__main__":
    app()
