import enum
import logging
import socket
from typing import Optional

import uvicorn
from starlette.types import ASGIApp

logger = logging.getLogger(__name__)


class ListenerState(str, enum.Enum):
    STARTING = "starting"
    LISTENING = "listening"
    FAILED = "failed"


class ListenerError(Exception):
    """The listener could not bind its port."""


class HttpListener:
    """
    Binds the HTTP port and serves the ASGI app with uvicorn.

    starting -> listening on a successful bind, starting -> failed otherwise.
    failed is terminal: there is no retry.
    """

    def __init__(self, app: ASGIApp, host: str, port: int, log_level: str = "info") -> None:
        self.app = app
        self.host = host
        self.port = port
        self.log_level = log_level.lower()
        self.state = ListenerState.STARTING
        self._socket: Optional[socket.socket] = None

    def bind(self) -> socket.socket:
        if self.state is not ListenerState.STARTING:
            raise ListenerError(f"Listener cannot bind from state {self.state.value}")

        family = socket.AF_INET6 if ":" in self.host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((self.host, self.port))
        except OSError as e:
            sock.close()
            self.state = ListenerState.FAILED
            logger.error(f"Server error: could not bind {self.host}:{self.port}: {e}")
            raise ListenerError(str(e)) from e

        sock.set_inheritable(True)
        self._socket = sock
        # Port 0 lets the OS choose
        self.port = sock.getsockname()[1]
        self.state = ListenerState.LISTENING
        logger.info(f"MCP Streamable HTTP Server listening on port {self.port}")
        return sock

    def serve(self) -> None:
        """Serve until the process is stopped."""
        if self.state is ListenerState.STARTING:
            self.bind()
        if self.state is not ListenerState.LISTENING or self._socket is None:
            raise ListenerError(f"Listener cannot serve from state {self.state.value}")

        config = uvicorn.Config(self.app, log_level=self.log_level)
        server = uvicorn.Server(config)
        try:
            server.run(sockets=[self._socket])
        finally:
            self.close()

    def close(self) -> None:
        if self._socket is not None:
            self._socket.close()
            self._socket = None
