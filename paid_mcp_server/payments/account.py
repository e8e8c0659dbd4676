from urllib.parse import parse_qs, urlsplit

from pydantic import BaseModel, ConfigDict, SecretStr

from paid_mcp_server.errors import ConfigurationError


class ATXPAccount(BaseModel):
    """
    Destination account for payments.

    Parsed once from the ATXP connection string and shared read-only by
    every request.
    """

    model_config = ConfigDict(frozen=True)

    origin: str
    token: SecretStr
    account_id: str

    @classmethod
    def from_connection_string(cls, connection_string: str) -> "ATXPAccount":
        """
        Parse a connection string such as
        ``https://accounts.atxp.ai?connection_token=abc&account_id=xyz``.
        """
        parts = urlsplit(connection_string.strip())
        if parts.scheme not in ("http", "https") or not parts.netloc:
            raise ConfigurationError("ATXP connection string must be an http(s) URL")

        query = parse_qs(parts.query)
        token = query.get("connection_token", [""])[0]
        account_id = query.get("account_id", [""])[0]
        if not token:
            raise ConfigurationError("ATXP connection string is missing connection_token")
        if not account_id:
            raise ConfigurationError("ATXP connection string is missing account_id")

        return cls(
            origin=f"{parts.scheme}://{parts.netloc}",
            token=SecretStr(token),
            account_id=account_id,
        )
