"""Tests for the per-target websocket session.

A ``FakeSocket`` stands in for the DevTools websocket; the session's
``connect`` hook hands it over instead of dialing out.
"""

import asyncio
from unittest.mock import MagicMock

from conftest import FakeSocket, evaluate_reply

from autoaccept.cdp.session import TargetSession, next_message_id
from autoaccept.models import SocketState


def _run(coro):
    """Run an async coroutine synchronously."""
    return asyncio.new_event_loop().run_until_complete(coro)


def _connector(ws):
    async def connect(url, **kwargs):
        return ws
    return connect


async def _open(ws, **kwargs):
    session = TargetSession("9000:A", "ws://127.0.0.1:9000/devtools/page/A",
                            connect=_connector(ws), **kwargs)
    assert await session.open() is True
    return session


class TestOpen:
    def test_connected_state(self):
        async def scenario():
            session = await _open(FakeSocket())
            assert session.state is SocketState.CONNECTED
            assert session.connected
            await session.close()
            return session

        session = _run(scenario())
        assert session.state is SocketState.DISCONNECTED

    def test_connection_failure(self):
        async def refuse(url, **kwargs):
            raise OSError("refused")

        async def scenario():
            session = TargetSession("9000:A", "ws://x", connect=refuse)
            return await session.open(), session.state

        assert _run(scenario()) == (False, SocketState.DISCONNECTED)

    def test_connect_options(self):
        seen = {}

        async def connect(url, **kwargs):
            seen.update(kwargs, url=url)
            return FakeSocket()

        async def scenario():
            session = TargetSession("9000:A", "ws://x", connect=connect)
            await session.open()
            await session.close()

        _run(scenario())
        assert seen["url"] == "ws://x"
        assert seen["max_size"] is None


class TestExchange:
    def test_evaluate_returns_value(self):
        async def scenario():
            ws = FakeSocket(responder=lambda m: evaluate_reply(m, "ok"))
            session = await _open(ws)
            value = await session.evaluate("'ok'")
            await session.close()
            return value, ws.sent

        value, sent = _run(scenario())
        assert value == "ok"
        assert sent[0]["method"] == "Runtime.evaluate"
        assert sent[0]["params"]["expression"] == "'ok'"

    def test_page_enable(self):
        async def scenario():
            ws = FakeSocket(responder=lambda m: {"id": m["id"], "result": {}})
            session = await _open(ws)
            ok = await session.enable_page_events()
            await session.close()
            return ok, ws.sent[0]["method"]

        assert _run(scenario()) == (True, "Page.enable")

    def test_timeout_returns_none_and_keeps_session(self):
        async def scenario():
            session = await _open(FakeSocket(), exchange_timeout=0.05)
            value = await session.evaluate("never answered")
            still_connected = session.connected
            await session.close()
            return value, still_connected

        assert _run(scenario()) == (None, True)

    def test_ids_increase(self):
        async def scenario():
            ws = FakeSocket(responder=lambda m: evaluate_reply(m, 1))
            session = await _open(ws)
            for _ in range(3):
                await session.evaluate("1")
            await session.close()
            return [m["id"] for m in ws.sent]

        ids = _run(scenario())
        assert ids == sorted(ids)
        assert len(set(ids)) == 3
        assert next_message_id() > ids[-1]

    def test_malformed_and_unknown_frames_ignored(self):
        async def scenario():
            def respond(msg):
                ws.push("{broken")
                ws.push({"id": 10 ** 9, "result": {}})
                return evaluate_reply(msg, True)

            ws = FakeSocket(responder=respond)
            session = await _open(ws)
            value = await session.evaluate("true")
            await session.close()
            return value

        assert _run(scenario()) is True

    def test_exchange_when_disconnected(self):
        session = TargetSession("9000:A", "ws://x")
        assert _run(session.evaluate("1")) is None


class TestEventsAndClose:
    def test_events_routed(self):
        on_event = MagicMock()
        event = {"method": "Page.loadEventFired", "params": {"timestamp": 1.0}}

        async def scenario():
            ws = FakeSocket()
            session = await _open(ws, on_event=on_event)
            ws.push(event)
            await asyncio.sleep(0.01)
            await session.close()

        _run(scenario())
        on_event.assert_called_once_with("9000:A", event)

    def test_remote_close_notifies_once(self):
        on_close = MagicMock()

        async def scenario():
            ws = FakeSocket()
            session = await _open(ws, on_close=on_close)
            session.injected = True
            ws.drop()
            await asyncio.sleep(0.01)
            state = session.state, session.injected
            await session.close()
            return state

        assert _run(scenario()) == (SocketState.DISCONNECTED, False)
        on_close.assert_called_once_with("9000:A")

    def test_close_resolves_pending_with_none(self):
        async def scenario():
            ws = FakeSocket()
            session = await _open(ws, exchange_timeout=5.0)
            pending = asyncio.create_task(session.evaluate("slow"))
            await asyncio.sleep(0.01)
            ws.drop()
            return await asyncio.wait_for(pending, timeout=1.0)

        assert _run(scenario()) is None

    def test_local_close(self):
        on_close = MagicMock()

        async def scenario():
            ws = FakeSocket()
            session = await _open(ws, on_close=on_close)
            await session.close()
            return ws.closed

        assert _run(scenario()) is True
        on_close.assert_called_once_with("9000:A")
