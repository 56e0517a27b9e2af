"""Stdio JSON-RPC transport: framing, wire protocol and correlation."""

from stdio_rpc.ipc.framing import LineFramer
from stdio_rpc.ipc.pending import PendingRequest, PendingTable
from stdio_rpc.ipc.protocol import (
    Message,
    Notification,
    RemoteError,
    Request,
    Response,
    RpcError,
    RpcTimeoutError,
    SessionError,
    TransportClosedError,
    decode_message,
    encode_notification,
    encode_request,
    encode_response,
)
from stdio_rpc.ipc.transport import StdioTransport

__all__ = [
    "LineFramer",
    "PendingRequest",
    "PendingTable",
    "StdioTransport",
    "Message",
    "Notification",
    "Request",
    "Response",
    "RpcError",
    "RemoteError",
    "RpcTimeoutError",
    "SessionError",
    "TransportClosedError",
    "decode_message",
    "encode_notification",
    "encode_request",
    "encode_response",
]
