"""Session lifecycle over a stdio JSON-RPC transport.

Usage:
    from stdio_rpc import open_session

    session = await open_session("node", "cli.js", "--headless")
    try:
        tools = await session.list_tools()
        result = await session.call_tool("browser_navigate", {"url": "https://example.com"})
    finally:
        await session.close()

    # or
    async with Session.connect("node", "cli.js") as session:
        await session.call("ping")
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, AsyncIterator, Dict, Mapping, Optional

from stdio_rpc.ipc.protocol import RpcError, SessionError
from stdio_rpc.ipc.transport import StdioTransport
from stdio_rpc.protocols import LoggerProtocol, NotificationHandler, RequestHandler
from stdio_rpc.settings import Settings, get_settings
from stdio_rpc.utils.logging import get_component_logger

INITIALIZE_METHOD = "initialize"
INITIALIZED_NOTIFICATION = "notifications/initialized"


class SessionState(str, Enum):
    UNSTARTED = "unstarted"
    INITIALIZING = "initializing"
    READY = "ready"
    CLOSED = "closed"


class Session:
    """A handshaked conversation with one child process.

    States: UNSTARTED -> INITIALIZING -> READY -> CLOSED. CLOSED is terminal.
    Calls made before READY are passed through; ordering them after the
    handshake is the caller's job.
    """

    def __init__(
        self,
        transport: StdioTransport,
        *,
        settings: Optional[Settings] = None,
        logger: Optional[LoggerProtocol] = None,
    ):
        self._transport = transport
        self._settings = settings or get_settings()
        self._logger = get_component_logger("Session", logger)
        self._state = SessionState.UNSTARTED
        self._server_result: Dict[str, Any] = {}

    @classmethod
    async def open(
        cls,
        command: str,
        *args: str,
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        settings: Optional[Settings] = None,
        logger: Optional[LoggerProtocol] = None,
        capabilities: Optional[Dict[str, Any]] = None,
        client_info: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> "Session":
        """Spawn the child, then perform the initialize handshake.

        Raises:
            OSError: If the child cannot be started.
            RpcError: If the handshake fails; the child is terminated first.
        """
        settings = settings or get_settings()
        transport = await StdioTransport.spawn(
            command, *args, cwd=cwd, env=env, settings=settings, logger=logger,
        )
        session = cls(transport, settings=settings, logger=logger)
        try:
            await session.initialize(
                capabilities=capabilities,
                client_info=client_info,
                timeout=timeout,
            )
        except BaseException:
            await session.close()
            raise
        return session

    @classmethod
    @asynccontextmanager
    async def connect(cls, command: str, *args: str, **kwargs: Any) -> AsyncIterator["Session"]:
        """Open a session as an async context manager; closed on exit."""
        session = await cls.open(command, *args, **kwargs)
        try:
            yield session
        finally:
            await session.close()

    async def __aenter__(self) -> "Session":
        if self._state is SessionState.UNSTARTED:
            await self.initialize()
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    # =========================================================================
    # State
    # =========================================================================

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def transport(self) -> StdioTransport:
        return self._transport

    @property
    def server_info(self) -> Dict[str, Any]:
        return self._server_result.get("serverInfo") or {}

    @property
    def server_capabilities(self) -> Dict[str, Any]:
        return self._server_result.get("capabilities") or {}

    @property
    def protocol_version(self) -> Optional[str]:
        return self._server_result.get("protocolVersion")

    # =========================================================================
    # Lifecycle
    # =========================================================================

    async def initialize(
        self,
        *,
        capabilities: Optional[Dict[str, Any]] = None,
        client_info: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Run the initialize call, then send the initialized notification.

        Returns:
            The server's initialize result.

        Raises:
            SessionError: If the session is not UNSTARTED.
            RpcError: If the handshake fails. The session is closed first.
        """
        if self._state is not SessionState.UNSTARTED:
            raise SessionError(f"Cannot initialize a session in state {self._state.value}")
        self._state = SessionState.INITIALIZING

        params = {
            "protocolVersion": self._settings.protocol_version,
            "capabilities": capabilities or {},
            "clientInfo": client_info or self._settings.client_info(),
        }
        try:
            result = await self._transport.call(INITIALIZE_METHOD, params, timeout=timeout)
            self._transport.notify(INITIALIZED_NOTIFICATION, {})
        except RpcError as e:
            self._logger.error("session_initialize_failed", error=str(e))
            await self.close()
            raise

        self._server_result = result if isinstance(result, dict) else {}
        self._state = SessionState.READY
        self._logger.info(
            "session_ready",
            server=self.server_info.get("name"),
            protocol_version=self.protocol_version,
        )
        return self._server_result

    async def close(self) -> None:
        """Terminate the child. Idempotent; CLOSED is terminal."""
        if self._state is SessionState.CLOSED:
            return
        self._state = SessionState.CLOSED
        await self._transport.close()
        self._logger.info("session_closed")

    # =========================================================================
    # Calls
    # =========================================================================

    async def call(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        timeout: Optional[float] = None,
    ) -> Any:
        """Send a call and wait for its result. See StdioTransport.call."""
        return await self._transport.call(method, params, timeout=timeout)

    def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        self._transport.notify(method, params)

    async def call_tool(
        self,
        name: str,
        arguments: Optional[Dict[str, Any]] = None,
        *,
        timeout: Optional[float] = None,
    ) -> Any:
        """Invoke a server tool via ``tools/call``."""
        return await self.call(
            "tools/call",
            {"name": name, "arguments": arguments or {}},
            timeout=timeout,
        )

    async def list_tools(self, *, timeout: Optional[float] = None) -> Any:
        return await self.call("tools/list", {}, timeout=timeout)

    def on_notification(self, method: str, handler: NotificationHandler) -> None:
        self._transport.on_notification(method, handler)

    def on_request(self, method: str, handler: RequestHandler) -> None:
        self._transport.on_request(method, handler)


async def open_session(command: str, *args: str, **kwargs: Any) -> Session:
    """Spawn ``command`` and return a READY session. See Session.open."""
    return await Session.open(command, *args, **kwargs)
