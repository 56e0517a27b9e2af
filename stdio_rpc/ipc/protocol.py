"""Wire protocol for stdio JSON-RPC.

Frame format: one JSON-RPC 2.0 object per line, UTF-8, terminated by ``\\n``.

    call          {"jsonrpc":"2.0","id":1,"method":"initialize","params":{...}}
    notification  {"jsonrpc":"2.0","method":"notifications/initialized","params":{}}
    response      {"jsonrpc":"2.0","id":1,"result":...}
                  {"jsonrpc":"2.0","id":1,"error":{"code":-32601,"message":"..."}}

A frame carrying both ``id`` and ``method`` is a request initiated by the
peer and must be answered by the client.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

JSONRPC_VERSION = "2.0"
DELIMITER = b"\n"

# Max size of a single frame (50MB); a longer unterminated tail is fatal
MAX_FRAME_SIZE: int = 50 * 1024 * 1024

# JSON-RPC 2.0 reserved error codes
PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


# =============================================================================
# ERRORS
# =============================================================================


class RpcError(Exception):
    """Base error for stdio RPC failures."""

    def __init__(self, code: Union[str, int], message: str):
        self.code = code
        self.message = message
        super().__init__(f"[{code}] {message}")


class RemoteError(RpcError):
    """The peer answered a call with an error payload."""

    def __init__(self, code: Union[str, int], message: str, data: Any = None):
        super().__init__(code, message)
        self.data = data

    @classmethod
    def from_payload(cls, error: Any) -> "RemoteError":
        """Build from a response ``error`` member, tolerating malformed payloads."""
        if not isinstance(error, dict):
            return cls(INTERNAL_ERROR, str(error), data=error)
        return cls(
            error.get("code", INTERNAL_ERROR),
            error.get("message", "Unknown error"),
            data=error.get("data"),
        )


class RpcTimeoutError(RpcError):
    """No response arrived within the call's timeout."""

    def __init__(self, method: str, request_id: int, timeout: float):
        super().__init__("TIMEOUT", f"Request {method} (id={request_id}) timed out after {timeout}s")
        self.method = method
        self.request_id = request_id
        self.timeout = timeout


class TransportClosedError(RpcError):
    """The child process is gone or the transport was closed."""

    def __init__(self, message: str = "Transport closed"):
        super().__init__("UNAVAILABLE", message)


class SessionError(RpcError):
    """Session lifecycle misuse."""

    def __init__(self, message: str):
        super().__init__("SESSION", message)


# =============================================================================
# MESSAGES
# =============================================================================


@dataclass(frozen=True)
class Response:
    """Reply to a call; exactly one of result/error is meaningful."""
    id: Any
    result: Any = None
    error: Optional[Dict[str, Any]] = None

    @property
    def is_error(self) -> bool:
        return self.error is not None


@dataclass(frozen=True)
class Notification:
    """One-way message, no identifier."""
    method: str
    params: Any = None


@dataclass(frozen=True)
class Request:
    """Call initiated by the peer."""
    id: Any
    method: str
    params: Any = None


Message = Union[Response, Notification, Request]


# =============================================================================
# ENCODING
# =============================================================================


def _encode(payload: Dict[str, Any]) -> bytes:
    return json.dumps(payload, separators=(",", ":"), ensure_ascii=False).encode("utf-8") + DELIMITER


def encode_request(request_id: int, method: str, params: Optional[Dict[str, Any]] = None) -> bytes:
    """Encode a call frame, delimiter included.

    Args:
        request_id: Correlation identifier.
        method: Method name.
        params: Params object; ``{}`` when omitted.

    Returns:
        Complete frame bytes.
    """
    return _encode({
        "jsonrpc": JSONRPC_VERSION,
        "id": request_id,
        "method": method,
        "params": params if params is not None else {},
    })


def encode_notification(method: str, params: Optional[Dict[str, Any]] = None) -> bytes:
    """Encode a notification frame (no ``id``), delimiter included."""
    return _encode({
        "jsonrpc": JSONRPC_VERSION,
        "method": method,
        "params": params if params is not None else {},
    })


def encode_response(
    request_id: Any,
    result: Any = None,
    error: Optional[Dict[str, Any]] = None,
) -> bytes:
    """Encode a reply to a peer-initiated request."""
    payload: Dict[str, Any] = {"jsonrpc": JSONRPC_VERSION, "id": request_id}
    if error is not None:
        payload["error"] = error
    else:
        payload["result"] = result
    return _encode(payload)


# =============================================================================
# DECODING
# =============================================================================


def decode_message(frame: str) -> Optional[Message]:
    """Decode one frame into a message.

    Frames that do not parse as a JSON object are not protocol traffic
    (stdio is shared with diagnostics) and yield ``None``.

    Args:
        frame: One line, delimiter stripped.

    Returns:
        Response, Notification, Request, or None.
    """
    try:
        payload = json.loads(frame)
    except ValueError:
        return None
    if not isinstance(payload, dict):
        return None

    has_id = "id" in payload
    method = payload.get("method")

    if has_id and isinstance(method, str):
        return Request(id=payload["id"], method=method, params=payload.get("params"))
    if has_id:
        error = payload.get("error")
        if error is not None:
            return Response(id=payload["id"], error=error if isinstance(error, dict) else {"message": str(error)})
        return Response(id=payload["id"], result=payload.get("result"))
    if isinstance(method, str):
        return Notification(method=method, params=payload.get("params"))
    return None
