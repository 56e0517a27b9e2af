"""Tests for the stdio transport.

Uses an in-memory FakePeer in place of a child process.
"""

import asyncio
import json
from unittest.mock import patch

import pytest

from fixtures.peer import (
    FakePeer,
    create_transport,
    error_for,
    result_for,
    settle,
    wait_for_pending,
)
from stdio_rpc.ipc.protocol import (
    INTERNAL_ERROR,
    METHOD_NOT_FOUND,
    RemoteError,
    RpcTimeoutError,
    TransportClosedError,
)


def answer_everything(msg):
    if "id" in msg and "method" in msg:
        return result_for(msg, {"echo": msg["method"], "params": msg["params"]})
    return None


class TestCallHappyPath:
    async def test_call_returns_result(self, mock_logger):
        peer = FakePeer(answer_everything)
        transport = create_transport(peer, mock_logger)

        result = await transport.call("tools/list", {"cursor": None})

        assert result == {"echo": "tools/list", "params": {"cursor": None}}
        assert peer.received[0] == {
            "jsonrpc": "2.0",
            "id": 1,
            "method": "tools/list",
            "params": {"cursor": None},
        }
        assert len(transport.pending) == 0
        await transport.close()

    async def test_each_frame_is_written_whole(self, mock_logger):
        peer = FakePeer(answer_everything)
        transport = create_transport(peer, mock_logger)

        await asyncio.gather(*(transport.call("m", {"i": i}) for i in range(10)))

        lines = bytes(peer.stdin.data).split(b"\n")
        assert lines[-1] == b""
        assert [json.loads(line)["params"]["i"] for line in lines[:-1]] == list(range(10))
        await transport.close()

    async def test_identifiers_strictly_increase(self, mock_logger):
        peer = FakePeer(answer_everything)
        transport = create_transport(peer, mock_logger)

        for _ in range(3):
            await transport.call("seq")
        await asyncio.gather(*(transport.call("concurrent") for _ in range(5)))

        ids = [m["id"] for m in peer.requests]
        assert ids == list(range(1, 9))
        assert len(set(ids)) == len(ids)
        await transport.close()

    async def test_out_of_order_completion(self, mock_logger):
        peer = FakePeer()
        transport = create_transport(peer, mock_logger)

        call_a = asyncio.create_task(transport.call("a"))
        call_b = asyncio.create_task(transport.call("b"))
        await wait_for_pending(transport, 2)
        req_a, req_b = peer.requests

        peer.send(result_for(req_b, "B"))
        assert await call_b == "B"
        assert not call_a.done()

        peer.send(result_for(req_a, "A"))
        assert await call_a == "A"
        await transport.close()

    async def test_response_split_into_fragments(self, mock_logger):
        peer = FakePeer()
        transport = create_transport(peer, mock_logger)

        task = asyncio.create_task(transport.call("slow"))
        await wait_for_pending(transport, 1)
        data = json.dumps(result_for(peer.requests[0], {"text": "☃" * 10})).encode() + b"\n"
        for i in range(len(data)):
            peer.send_raw(data[i:i + 1])
            await asyncio.sleep(0)

        assert await task == {"text": "☃" * 10}
        await transport.close()


class TestNoise:
    async def test_malformed_line_before_response_is_ignored(self, mock_logger):
        peer = FakePeer()
        transport = create_transport(peer, mock_logger)

        task = asyncio.create_task(transport.call("x"))
        await wait_for_pending(transport, 1)
        peer.send_raw(b'not-json\n{"jsonrpc":"2.0","id":1,"result":1}\n')

        assert await task == 1
        assert transport.ignored_frames == 1
        mock_logger.error.assert_not_called()
        await transport.close()

    async def test_orphan_response_is_dropped(self, mock_logger):
        peer = FakePeer(answer_everything)
        transport = create_transport(peer, mock_logger)

        peer.send({"jsonrpc": "2.0", "id": 999, "result": "stray"})
        await settle()

        assert transport.connected
        assert await transport.call("after") == {"echo": "after", "params": {}}
        await transport.close()


class TestRemoteErrors:
    async def test_error_response_raises_remote_error(self, mock_logger):
        peer = FakePeer(lambda msg: error_for(msg, -32602, "Invalid params", {"field": "url"}))
        transport = create_transport(peer, mock_logger)

        with pytest.raises(RemoteError) as exc_info:
            await transport.call("tools/call", {"name": "nav"})

        assert exc_info.value.code == -32602
        assert exc_info.value.message == "Invalid params"
        assert exc_info.value.data == {"field": "url"}
        assert len(transport.pending) == 0
        assert transport.connected
        await transport.close()

    async def test_error_affects_only_its_call(self, mock_logger):
        def handler(msg):
            if msg["method"] == "bad":
                return error_for(msg, -32000, "nope")
            return result_for(msg, "fine")

        peer = FakePeer(handler)
        transport = create_transport(peer, mock_logger)

        results = await asyncio.gather(
            transport.call("good"),
            transport.call("bad"),
            transport.call("good"),
            return_exceptions=True,
        )

        assert results[0] == "fine"
        assert isinstance(results[1], RemoteError)
        assert results[2] == "fine"
        await transport.close()


class TestTimeouts:
    async def test_timeout_raises_and_cleans_up(self, mock_logger):
        peer = FakePeer()
        transport = create_transport(peer, mock_logger)
        loop = asyncio.get_running_loop()

        started = loop.time()
        with pytest.raises(RpcTimeoutError) as exc_info:
            await transport.call("never", timeout=0.05)
        elapsed = loop.time() - started

        assert exc_info.value.code == "TIMEOUT"
        assert exc_info.value.method == "never"
        assert exc_info.value.request_id == 1
        assert 0.04 <= elapsed < 1.0
        assert len(transport.pending) == 0
        await transport.close()

    async def test_default_timeout_comes_from_settings(self, mock_logger):
        peer = FakePeer()
        transport = create_transport(peer, mock_logger, default_timeout=0.05)

        with pytest.raises(RpcTimeoutError) as exc_info:
            await transport.call("never")
        assert exc_info.value.timeout == 0.05
        await transport.close()

    async def test_timeout_isolation(self, mock_logger):
        def handler(msg):
            if msg["method"] == "ping":
                return result_for(msg, "pong")
            return None

        peer = FakePeer(handler)
        transport = create_transport(peer, mock_logger)

        slow, fast = await asyncio.gather(
            transport.call("hang", timeout=0.05),
            transport.call("ping", timeout=5.0),
            return_exceptions=True,
        )

        assert isinstance(slow, RpcTimeoutError)
        assert fast == "pong"
        await transport.close()

    async def test_late_response_after_timeout_is_noop(self, mock_logger):
        peer = FakePeer()
        transport = create_transport(peer, mock_logger)

        with pytest.raises(RpcTimeoutError):
            await transport.call("late", timeout=0.02)
        peer.send(result_for(peer.requests[0], "too late"))
        await settle()

        assert transport.connected
        task = asyncio.create_task(transport.call("next"))
        await wait_for_pending(transport, 1)
        assert peer.requests[1]["id"] == 2
        peer.send(result_for(peer.requests[1], "ok"))
        assert await task == "ok"
        await transport.close()

    async def test_duplicate_response_is_noop(self, mock_logger):
        def handler(msg):
            reply = result_for(msg, "first")
            peer.send(reply)
            return result_for(msg, "second")

        peer = FakePeer(handler)
        transport = create_transport(peer, mock_logger)

        assert await transport.call("dup") == "first"
        await settle()
        assert len(transport.pending) == 0
        assert transport.connected
        await transport.close()

    async def test_cancelled_call_is_removed(self, mock_logger):
        peer = FakePeer()
        transport = create_transport(peer, mock_logger)

        task = asyncio.create_task(transport.call("cancel-me"))
        await wait_for_pending(transport, 1)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert len(transport.pending) == 0
        await transport.close()


class TestNotify:
    async def test_notify_creates_no_pending_entry_or_timer(self, mock_logger):
        peer = FakePeer()
        transport = create_transport(peer, mock_logger)
        loop = asyncio.get_running_loop()

        with patch.object(loop, "call_later", wraps=loop.call_later) as spy:
            transport.notify("notifications/initialized", {})
            spy.assert_not_called()

        assert len(transport.pending) == 0
        assert peer.received == [
            {"jsonrpc": "2.0", "method": "notifications/initialized", "params": {}}
        ]
        await transport.close()

    async def test_notify_does_not_consume_an_identifier(self, mock_logger):
        peer = FakePeer(answer_everything)
        transport = create_transport(peer, mock_logger)

        transport.notify("n1")
        await transport.call("c")

        assert peer.requests[0]["id"] == 1
        await transport.close()


class TestInboundNotifications:
    async def test_handler_receives_params(self, mock_logger):
        peer = FakePeer()
        transport = create_transport(peer, mock_logger)
        seen = []
        transport.on_notification("notifications/progress", seen.append)

        peer.send({"jsonrpc": "2.0", "method": "notifications/progress", "params": {"progress": 1}})
        peer.send({"jsonrpc": "2.0", "method": "notifications/other", "params": {}})
        await settle()

        assert seen == [{"progress": 1}]
        await transport.close()

    async def test_failing_handler_does_not_stop_dispatch(self, mock_logger):
        peer = FakePeer(answer_everything)
        transport = create_transport(peer, mock_logger)

        def explode(params):
            raise RuntimeError("handler bug")

        transport.on_notification("boom", explode)
        peer.send({"jsonrpc": "2.0", "method": "boom", "params": {}})
        await settle()

        mock_logger.exception.assert_called_once()
        assert await transport.call("still-alive") == {"echo": "still-alive", "params": {}}
        await transport.close()


class TestPeerRequests:
    async def test_ping_is_answered(self, mock_logger):
        peer = FakePeer()
        transport = create_transport(peer, mock_logger)

        peer.send({"jsonrpc": "2.0", "id": "srv-1", "method": "ping"})
        await settle()

        assert peer.replies == [{"jsonrpc": "2.0", "id": "srv-1", "result": {}}]
        await transport.close()

    async def test_unknown_method_gets_method_not_found(self, mock_logger):
        peer = FakePeer()
        transport = create_transport(peer, mock_logger)

        peer.send({"jsonrpc": "2.0", "id": 5, "method": "roots/list", "params": {}})
        await settle()

        assert peer.replies[0]["id"] == 5
        assert peer.replies[0]["error"]["code"] == METHOD_NOT_FOUND
        await transport.close()

    async def test_registered_handler_result_is_returned(self, mock_logger):
        peer = FakePeer()
        transport = create_transport(peer, mock_logger)
        transport.on_request("roots/list", lambda params: {"roots": []})

        peer.send({"jsonrpc": "2.0", "id": 6, "method": "roots/list"})
        await settle()

        assert peer.replies == [{"jsonrpc": "2.0", "id": 6, "result": {"roots": []}}]
        await transport.close()

    async def test_handler_exception_becomes_internal_error(self, mock_logger):
        peer = FakePeer()
        transport = create_transport(peer, mock_logger)

        def broken(params):
            raise ValueError("no roots")

        transport.on_request("roots/list", broken)
        peer.send({"jsonrpc": "2.0", "id": 7, "method": "roots/list"})
        await settle()

        assert peer.replies[0]["error"] == {"code": INTERNAL_ERROR, "message": "no roots"}
        await transport.close()

    async def test_unencodable_result_becomes_internal_error(self, mock_logger):
        peer = FakePeer()
        transport = create_transport(peer, mock_logger)
        transport.on_request("sampling/createMessage", lambda params: {1, 2})

        task = asyncio.create_task(transport.call("slow"))
        await wait_for_pending(transport, 1)
        peer.send({"jsonrpc": "2.0", "id": 99, "method": "sampling/createMessage"})
        await settle()

        assert peer.replies[0]["id"] == 99
        assert peer.replies[0]["error"]["code"] == INTERNAL_ERROR
        assert transport.connected

        peer.send(result_for(peer.requests[0], "done"))
        assert await task == "done"
        await transport.close()

    async def test_async_handler_result_is_sent(self, mock_logger):
        peer = FakePeer()
        transport = create_transport(peer, mock_logger)

        async def list_roots(params):
            await asyncio.sleep(0)
            return {"roots": [{"uri": "file:///tmp"}]}

        transport.on_request("roots/list", list_roots)
        task = asyncio.create_task(transport.call("slow"))
        await wait_for_pending(transport, 1)
        peer.send({"jsonrpc": "2.0", "id": 8, "method": "roots/list"})
        await settle()

        assert peer.replies == [{"jsonrpc": "2.0", "id": 8, "result": {"roots": [{"uri": "file:///tmp"}]}}]
        assert transport.connected

        peer.send(result_for(peer.requests[0], "done"))
        assert await task == "done"
        await transport.close()

    async def test_async_handler_exception_becomes_internal_error(self, mock_logger):
        peer = FakePeer()
        transport = create_transport(peer, mock_logger)

        async def broken(params):
            raise RuntimeError("no roots")

        transport.on_request("roots/list", broken)
        peer.send({"jsonrpc": "2.0", "id": 9, "method": "roots/list"})
        await settle()

        assert peer.replies[0]["error"] == {"code": INTERNAL_ERROR, "message": "no roots"}
        assert transport.connected
        await transport.close()

    async def test_dispatch_failure_keeps_read_loop_running(self, mock_logger):
        peer = FakePeer()
        transport = create_transport(peer, mock_logger)

        task = asyncio.create_task(transport.call("slow"))
        await wait_for_pending(transport, 1)
        with patch.object(transport, "_handle_notification", side_effect=RuntimeError("boom")):
            peer.send({"jsonrpc": "2.0", "method": "notifications/progress"})
            await settle()

        assert transport.connected
        peer.send(result_for(peer.requests[0], "done"))
        assert await task == "done"
        await transport.close()

    async def test_peer_request_id_does_not_resolve_pending_call(self, mock_logger):
        peer = FakePeer()
        transport = create_transport(peer, mock_logger)

        task = asyncio.create_task(transport.call("mine"))
        await wait_for_pending(transport, 1)
        peer.send({"jsonrpc": "2.0", "id": 1, "method": "ping"})
        await settle()

        assert not task.done()
        peer.send(result_for(peer.requests[0], "mine"))
        assert await task == "mine"
        await transport.close()


class TestConnectionLost:
    async def test_eof_rejects_pending_calls(self, mock_logger):
        peer = FakePeer()
        transport = create_transport(peer, mock_logger)

        async def disconnect():
            await wait_for_pending(transport, 2)
            peer.close()

        task = asyncio.create_task(disconnect())
        results = await asyncio.gather(
            transport.call("a", timeout=5.0),
            transport.call("b", timeout=5.0),
            return_exceptions=True,
        )
        await task

        assert all(isinstance(r, TransportClosedError) for r in results)
        assert all(r.code == "UNAVAILABLE" for r in results)
        assert not transport.connected
        mock_logger.warning.assert_called()
        await transport.close()

    async def test_calls_after_eof_fail_fast(self, mock_logger):
        peer = FakePeer()
        transport = create_transport(peer, mock_logger)
        peer.close()
        await settle()

        with pytest.raises(TransportClosedError):
            await transport.call("x", timeout=5.0)
        with pytest.raises(TransportClosedError):
            transport.notify("y")
        await transport.close()

    async def test_oversized_frame_disconnects(self, mock_logger, monkeypatch):
        monkeypatch.setattr("stdio_rpc.ipc.transport.MAX_FRAME_SIZE", 16)
        peer = FakePeer()
        transport = create_transport(peer, mock_logger)

        task = asyncio.create_task(transport.call("big", timeout=5.0))
        await wait_for_pending(transport, 1)
        peer.send_raw(b"x" * 64)

        with pytest.raises(TransportClosedError) as exc_info:
            await task
        assert "maximum size" in exc_info.value.message
        mock_logger.error.assert_called()
        await transport.close()


class TestClose:
    async def test_close_is_idempotent(self, mock_logger):
        peer = FakePeer()
        transport = create_transport(peer, mock_logger)
        await transport.close()
        await transport.close()
        assert transport.closed
        assert peer.stdin.closed

    async def test_close_rejects_pending(self, mock_logger):
        peer = FakePeer()
        transport = create_transport(peer, mock_logger)

        task = asyncio.create_task(transport.call("x", timeout=5.0))
        await wait_for_pending(transport, 1)
        await transport.close()

        with pytest.raises(TransportClosedError):
            await task
        assert len(transport.pending) == 0

    async def test_call_and_notify_after_close_raise(self, mock_logger):
        peer = FakePeer()
        transport = create_transport(peer, mock_logger)
        await transport.close()

        with pytest.raises(TransportClosedError) as exc_info:
            await transport.call("x")
        assert exc_info.value.code == "UNAVAILABLE"
        with pytest.raises(TransportClosedError):
            transport.notify("y")
        assert peer.received == []
