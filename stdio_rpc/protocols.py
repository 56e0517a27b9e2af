"""Protocol definitions - interfaces for dependency injection.

These are typing.Protocol classes for static type checking. Any structlog
bound logger satisfies LoggerProtocol, as does a MagicMock in tests.
"""

from typing import Any, Awaitable, Callable, Optional, Protocol, Union, runtime_checkable


@runtime_checkable
class LoggerProtocol(Protocol):
    """Structured logging interface."""

    def info(self, message: str, **kwargs: Any) -> None: ...
    def debug(self, message: str, **kwargs: Any) -> None: ...
    def warning(self, message: str, **kwargs: Any) -> None: ...
    def error(self, message: str, **kwargs: Any) -> None: ...
    def exception(self, message: str, **kwargs: Any) -> None: ...
    def bind(self, **kwargs: Any) -> "LoggerProtocol": ...


# Callback invoked with the ``params`` of an inbound notification.
NotificationHandler = Callable[[Optional[Any]], None]

# Callback invoked with the ``params`` of a peer-initiated request.
# Its return value, awaited first when it is awaitable, becomes the
# ``result`` of the reply.
RequestHandler = Callable[[Optional[Any]], Union[Any, Awaitable[Any]]]


__all__ = [
    "LoggerProtocol",
    "NotificationHandler",
    "RequestHandler",
]
