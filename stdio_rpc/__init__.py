"""stdio-rpc - JSON-RPC 2.0 client for tools spoken to over a child's stdio."""

from stdio_rpc.ipc import (
    RemoteError,
    RpcError,
    RpcTimeoutError,
    SessionError,
    StdioTransport,
    TransportClosedError,
)
from stdio_rpc.session import Session, SessionState, open_session
from stdio_rpc.settings import Settings, get_settings

__version__ = "0.1.0"

__all__ = [
    "Session",
    "SessionState",
    "open_session",
    "StdioTransport",
    "Settings",
    "get_settings",
    "RpcError",
    "RemoteError",
    "RpcTimeoutError",
    "SessionError",
    "TransportClosedError",
]
