"""Async stdio transport for JSON-RPC with a child process.

Owns the child's pipes, the read loop that frames and dispatches inbound
messages, and the pending-call table that correlates responses.
"""

from __future__ import annotations

import asyncio
import contextlib
import inspect
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set

from stdio_rpc.ipc.framing import LineFramer
from stdio_rpc.ipc.pending import PendingRequest, PendingTable
from stdio_rpc.ipc.protocol import (
    INTERNAL_ERROR,
    MAX_FRAME_SIZE,
    METHOD_NOT_FOUND,
    Notification,
    RemoteError,
    Request,
    Response,
    RpcTimeoutError,
    TransportClosedError,
    decode_message,
    encode_notification,
    encode_request,
    encode_response,
)
from stdio_rpc.protocols import LoggerProtocol, NotificationHandler, RequestHandler
from stdio_rpc.settings import Settings, get_settings
from stdio_rpc.utils.logging import get_component_logger


def _reply_to_ping(params: Any) -> Dict[str, Any]:
    return {}


class StdioTransport:
    """JSON-RPC over a child process's stdin/stdout.

    Usage:
        transport = await StdioTransport.spawn("node", "server.js")
        result = await transport.call("tools/list", {}, timeout=10.0)
        transport.notify("notifications/initialized")
        await transport.close()
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: Any,
        *,
        process: Optional[asyncio.subprocess.Process] = None,
        stderr: Optional[asyncio.StreamReader] = None,
        settings: Optional[Settings] = None,
        logger: Optional[LoggerProtocol] = None,
    ):
        """Wrap already-open streams.

        Args:
            reader: Child's stdout.
            writer: Child's stdin (StreamWriter or anything with
                write/drain/close/wait_closed).
            process: Child process to terminate on close, if owned.
            stderr: Child's stderr, drained and logged at debug.
            settings: Settings override (defaults to get_settings()).
            logger: Injected logger.
        """
        self._reader = reader
        self._writer = writer
        self._process = process
        self._stderr = stderr
        self._settings = settings or get_settings()
        self._logger = get_component_logger("StdioTransport", logger)
        self._framer = LineFramer()
        self._pending = PendingTable()
        self._drain_lock = asyncio.Lock()
        self._closed = False
        self._lost_reason: Optional[str] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._stderr_task: Optional[asyncio.Task] = None
        self._handler_tasks: Set[asyncio.Task] = set()
        self._notification_handlers: Dict[str, List[NotificationHandler]] = {}
        self._request_handlers: Dict[str, RequestHandler] = {"ping": _reply_to_ping}
        self.ignored_frames = 0

    @classmethod
    async def spawn(
        cls,
        command: str,
        *args: str,
        cwd: Optional[str] = None,
        env: Optional[Mapping[str, str]] = None,
        settings: Optional[Settings] = None,
        logger: Optional[LoggerProtocol] = None,
    ) -> "StdioTransport":
        """Spawn ``command`` with piped stdio and start reading from it.

        Raises:
            OSError: If the executable cannot be started.
        """
        process = await asyncio.create_subprocess_exec(
            command,
            *args,
            stdin=asyncio.subprocess.PIPE,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=dict(env) if env is not None else None,
        )
        transport = cls(
            process.stdout,
            process.stdin,
            process=process,
            stderr=process.stderr,
            settings=settings,
            logger=logger,
        )
        transport.start()
        transport._logger.info("rpc_child_spawned", command=command, pid=process.pid)
        return transport

    def start(self) -> None:
        """Start the background read loop (and stderr drain). Idempotent."""
        if self._reader_task is None:
            self._reader_task = asyncio.create_task(self._read_loop())
        if self._stderr is not None and self._stderr_task is None:
            self._stderr_task = asyncio.create_task(self._drain_stderr())

    # =========================================================================
    # State
    # =========================================================================

    @property
    def connected(self) -> bool:
        return not self._closed and self._lost_reason is None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> PendingTable:
        return self._pending

    @property
    def process(self) -> Optional[asyncio.subprocess.Process]:
        return self._process

    @property
    def returncode(self) -> Optional[int]:
        return self._process.returncode if self._process is not None else None

    # =========================================================================
    # Outbound
    # =========================================================================

    async def call(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        *,
        timeout: Optional[float] = None,
    ) -> Any:
        """Send a call and wait for its response.

        Args:
            method: Method name.
            params: Params object.
            timeout: Seconds before the call is rejected; settings default
                when None.

        Returns:
            The response's ``result`` member.

        Raises:
            RemoteError: The peer answered with an error payload.
            RpcTimeoutError: No response within ``timeout``.
            TransportClosedError: The child went away or the transport is closed.
        """
        self._ensure_writable()
        if timeout is None:
            timeout = self._settings.default_timeout

        loop = asyncio.get_running_loop()
        request_id = self._pending.next_id()
        entry = PendingRequest(request_id=request_id, method=method, future=loop.create_future())
        entry.timer = loop.call_later(timeout, self._expire, request_id, timeout)
        self._pending.register(entry)

        try:
            self._writer.write(encode_request(request_id, method, params))
            await self._drain()
        except BaseException:
            self._pending.take(request_id)
            raise
        self._logger.debug("rpc_request_sent", request_id=request_id, method=method)

        try:
            return await entry.future
        except asyncio.CancelledError:
            self._pending.take(request_id)
            raise

    def notify(self, method: str, params: Optional[Dict[str, Any]] = None) -> None:
        """Send a notification. Fire-and-forget: no pending entry, no timer.

        Raises:
            TransportClosedError: If the transport is closed or lost.
        """
        self._ensure_writable()
        self._writer.write(encode_notification(method, params))
        self._logger.debug("rpc_notification_sent", method=method)

    def on_notification(self, method: str, handler: NotificationHandler) -> None:
        """Register a callback for inbound notifications named ``method``."""
        self._notification_handlers.setdefault(method, []).append(handler)

    def on_request(self, method: str, handler: RequestHandler) -> None:
        """Answer peer-initiated requests named ``method`` with ``handler(params)``.

        ``handler`` may be a coroutine function; its result is sent once it
        completes.
        """
        self._request_handlers[method] = handler

    async def close(self) -> None:
        """Reject pending calls, close stdin and terminate the child. Idempotent."""
        if self._closed:
            return
        self._closed = True

        rejected = self._reject_all("Transport closed")

        self._writer.close()
        with contextlib.suppress(OSError):
            await self._writer.wait_closed()

        await self._terminate_process()

        for task in (self._reader_task, self._stderr_task, *self._handler_tasks):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

        self._logger.info(
            "rpc_transport_closed",
            pending_rejected=rejected,
            returncode=self.returncode,
        )

    # =========================================================================
    # Internals
    # =========================================================================

    def _ensure_writable(self) -> None:
        if self._closed:
            raise TransportClosedError("Transport closed")
        if self._lost_reason is not None:
            raise TransportClosedError(self._lost_reason)

    async def _drain(self) -> None:
        try:
            async with self._drain_lock:
                await self._writer.drain()
        except ConnectionError as e:
            raise TransportClosedError(f"Write failed: {e}") from e

    def _expire(self, request_id: int, timeout: float) -> None:
        entry = self._pending.take(request_id)
        if entry is None:
            return
        self._logger.warning("rpc_request_timeout", request_id=request_id, method=entry.method, timeout=timeout)
        entry.reject(RpcTimeoutError(entry.method, request_id, timeout))

    def _reject_all(self, reason: str) -> int:
        entries = self._pending.take_all()
        for entry in entries:
            entry.reject(TransportClosedError(reason))
        return len(entries)

    def _connection_lost(self, reason: str) -> None:
        if self._closed or self._lost_reason is not None:
            return
        self._lost_reason = reason
        rejected = self._reject_all(reason)
        self._logger.warning("rpc_transport_lost", reason=reason, pending_rejected=rejected)

    async def _read_loop(self) -> None:
        """Background task: frame stdout and dispatch every decoded message."""
        reason = "Child process closed its output stream"
        try:
            while True:
                chunk = await self._reader.read(self._settings.read_chunk_size)
                if not chunk:
                    break
                for frame in self._framer.feed(chunk):
                    try:
                        self._dispatch(frame)
                    except Exception:
                        self._logger.exception("rpc_dispatch_failed", frame=frame[:200])
                if self._framer.buffered > MAX_FRAME_SIZE:
                    self._logger.error("rpc_frame_too_large", size=self._framer.buffered)
                    reason = "Frame exceeded maximum size"
                    self._framer.reset()
                    break
        except asyncio.CancelledError:
            return
        except Exception as e:
            self._logger.error("rpc_read_error", error=str(e))
            reason = f"Read failed: {e}"
        finally:
            self._connection_lost(reason)

    async def _drain_stderr(self) -> None:
        try:
            while True:
                try:
                    line = await self._stderr.readline()
                except ValueError:
                    # Line longer than the stream limit; the reader already skipped it.
                    continue
                if not line:
                    break
                self._logger.debug("child_stderr", line=line.decode("utf-8", errors="replace").rstrip())
        except asyncio.CancelledError:
            return

    async def _terminate_process(self) -> None:
        proc = self._process
        if proc is None or proc.returncode is not None:
            return
        with contextlib.suppress(ProcessLookupError):
            proc.terminate()
        try:
            await asyncio.wait_for(proc.wait(), timeout=self._settings.kill_timeout)
        except asyncio.TimeoutError:
            self._logger.warning("rpc_child_kill", pid=proc.pid)
            with contextlib.suppress(ProcessLookupError):
                proc.kill()
            await proc.wait()

    def _dispatch(self, frame: str) -> None:
        message = decode_message(frame)
        if message is None:
            self.ignored_frames += 1
            self._logger.debug("rpc_frame_ignored", frame=frame[:200])
        elif isinstance(message, Response):
            self._handle_response(message)
        elif isinstance(message, Request):
            self._handle_request(message)
        else:
            self._handle_notification(message)

    def _handle_response(self, message: Response) -> None:
        entry = self._pending.take(message.id)
        if entry is None:
            self._logger.debug("rpc_orphan_response", request_id=message.id)
            return
        self._logger.debug(
            "rpc_response_received",
            request_id=entry.request_id,
            method=entry.method,
            elapsed_ms=round(entry.elapsed * 1000, 1),
            error=message.is_error,
        )
        if message.is_error:
            entry.reject(RemoteError.from_payload(message.error))
        else:
            entry.resolve(message.result)

    def _handle_notification(self, message: Notification) -> None:
        handlers: Sequence[NotificationHandler] = self._notification_handlers.get(message.method, ())
        if not handlers:
            self._logger.debug("rpc_notification_received", method=message.method)
            return
        for handler in handlers:
            try:
                handler(message.params)
            except Exception:
                self._logger.exception("rpc_notification_handler_failed", method=message.method)

    def _handle_request(self, message: Request) -> None:
        handler = self._request_handlers.get(message.method)
        if handler is None:
            self._logger.debug("rpc_peer_request_unhandled", method=message.method)
            self._reply(message.id, error={"code": METHOD_NOT_FOUND, "message": f"Method not found: {message.method}"})
            return
        try:
            result = handler(message.params)
        except Exception as e:
            self._logger.exception("rpc_request_handler_failed", method=message.method)
            self._reply(message.id, error={"code": INTERNAL_ERROR, "message": str(e)})
            return
        if inspect.isawaitable(result):
            task = asyncio.ensure_future(result)
            self._handler_tasks.add(task)
            task.add_done_callback(lambda done: self._finish_request(message, done))
            return
        self._reply_result(message, result)

    def _finish_request(self, message: Request, task: asyncio.Future) -> None:
        self._handler_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._logger.error("rpc_request_handler_failed", method=message.method, error=str(exc))
            self._reply(message.id, error={"code": INTERNAL_ERROR, "message": str(exc)})
            return
        self._reply_result(message, task.result())

    def _reply_result(self, message: Request, result: Any) -> None:
        try:
            frame = encode_response(message.id, result=result)
        except (TypeError, ValueError) as e:
            self._logger.error("rpc_request_result_unencodable", method=message.method, error=str(e))
            frame = encode_response(
                message.id,
                error={"code": INTERNAL_ERROR, "message": f"Result not serializable: {e}"},
            )
        self._write_reply(frame)

    def _reply(self, request_id: Any, result: Any = None, error: Optional[Dict[str, Any]] = None) -> None:
        self._write_reply(encode_response(request_id, result=result, error=error))

    def _write_reply(self, frame: bytes) -> None:
        if not self.connected:
            return
        self._writer.write(frame)
