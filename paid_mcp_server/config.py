import os
from typing import Optional

from pydantic import BaseModel, ConfigDict, ValidationError

from paid_mcp_server.errors import ConfigurationError
from paid_mcp_server.payments.account import ATXPAccount

DEFAULT_PORT = 3000
DEFAULT_HOST = "0.0.0.0"
DEFAULT_PAYEE_NAME = "Add"
DEFAULT_PAYMENT_SERVER = "https://auth.atxp.ai"
LOG_LEVELS = ("CRITICAL", "ERROR", "WARNING", "INFO", "DEBUG")


class ServerConfig(BaseModel):
    model_config = ConfigDict(frozen=True)

    account: ATXPAccount
    port: int = DEFAULT_PORT
    host: str = DEFAULT_HOST
    payee_name: str = DEFAULT_PAYEE_NAME
    payment_server: str = DEFAULT_PAYMENT_SERVER
    log_level: str = "INFO"


def _option_or_env(value, env_name: str) -> Optional[str]:
    if value is not None:
        return str(value)
    env_value = os.environ.get(env_name)
    if env_value is not None and env_value.strip():
        return env_value.strip()
    return None


def load_config(
    connection: Optional[str] = None,
    port: Optional[int] = None,
    host: Optional[str] = None,
    payee_name: Optional[str] = None,
    payment_server: Optional[str] = None,
    log_level: Optional[str] = None,
) -> ServerConfig:
    """
    Build the server configuration.

    Explicit arguments (CLI options) take precedence over environment
    variables, which take precedence over defaults.

    Raises:
        ConfigurationError: If ATXP_CONNECTION is missing or any value is invalid
    """
    connection_string = _option_or_env(connection, "ATXP_CONNECTION")
    if not connection_string:
        raise ConfigurationError("ATXP_CONNECTION environment variable is not defined.")
    account = ATXPAccount.from_connection_string(connection_string)

    raw_port = _option_or_env(port, "PORT")
    try:
        resolved_port = int(raw_port) if raw_port is not None else DEFAULT_PORT
    except ValueError:
        raise ConfigurationError(f"PORT must be an integer, got {raw_port!r}")
    if not 0 <= resolved_port <= 65535:
        raise ConfigurationError(f"PORT out of range: {resolved_port}")

    resolved_log_level = (_option_or_env(log_level, "LOG_LEVEL") or "INFO").upper()
    if resolved_log_level not in LOG_LEVELS:
        raise ConfigurationError(f"LOG_LEVEL must be one of {', '.join(LOG_LEVELS)}, got {resolved_log_level!r}")

    try:
        return ServerConfig(
            account=account,
            port=resolved_port,
            host=_option_or_env(host, "HOST") or DEFAULT_HOST,
            payee_name=_option_or_env(payee_name, "ATXP_PAYEE_NAME") or DEFAULT_PAYEE_NAME,
            payment_server=(_option_or_env(payment_server, "ATXP_PAYMENT_SERVER") or DEFAULT_PAYMENT_SERVER).rstrip("/"),
            log_level=resolved_log_level,
        )
    except ValidationError as e:
        raise ConfigurationError(f"Invalid server configuration: {e}") from e
