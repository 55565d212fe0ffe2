"""Tests for the session manager: connect, inject, re-inject, reconnect, stop.

Sessions are real ``TargetSession`` objects wired to ``FakeSocket``
instances that answer like a page with the probe installed.
"""

import asyncio
import json
from functools import partial
from unittest.mock import AsyncMock

from conftest import FakeSocket, evaluate_reply

from autoaccept.agent.probe import HALT_EXPR, SCAN_EXPR, load_probe_script
from autoaccept.cdp.manager import SessionManager
from autoaccept.cdp.session import TargetSession
from autoaccept.models import AgentStats, Configuration, TargetDescriptor


def _run(coro):
    """Run an async coroutine synchronously."""
    return asyncio.new_event_loop().run_until_complete(coro)


TARGET = TargetDescriptor(id="A", type="page", webSocketDebuggerUrl="ws://127.0.0.1:9000/devtools/page/A")
TARGET_ID = "9000:A"
FAST = Configuration(poll_interval_ms=10)


def page_responder(controls=()):
    """Answer Page.enable, the probe script, scans, triggers and halt."""

    def respond(msg):
        if msg["method"] == "Page.enable":
            return {"id": msg["id"], "result": {}}
        expr = msg["params"]["expression"]
        if expr == SCAN_EXPR:
            return evaluate_reply(msg, json.dumps(list(controls)))
        if expr == HALT_EXPR or expr.startswith("window.__autoAccept ? window.__autoAccept.trigger("):
            return evaluate_reply(msg, True)
        return evaluate_reply(msg, "injected")

    return respond


class Harness:
    """Builds a manager whose sessions dial FakeSockets."""

    def __init__(self, controls=(), reconnect_delay=0.01, refuse_after=None, hold=()):
        self.sockets = []
        self.by_attempt = {}
        self.attempts = 0
        self.controls = controls
        self.refuse_after = refuse_after
        self.hold = set(hold)
        self.release = None
        self.manager = SessionManager(
            reconnect_delay=reconnect_delay,
            exchange_timeout=0.5,
            session_factory=partial(TargetSession, connect=self.connect),
            discover_fn=AsyncMock(return_value=[(9000, TARGET)]),
        )

    async def connect(self, url, **kwargs):
        self.attempts += 1
        attempt = self.attempts
        if self.refuse_after is not None and attempt > self.refuse_after:
            raise OSError("refused")
        if attempt in self.hold:
            await self.release.wait()
        ws = FakeSocket(responder=page_responder(self.controls))
        self.sockets.append(ws)
        self.by_attempt[attempt] = ws
        return ws

    def probe_injections(self, ws):
        script = load_probe_script()
        return sum(1 for m in ws.sent if m.get("params", {}).get("expression") == script)


ACCEPT = {
    "index": 0, "label": "Accept", "display": "block", "width": 80,
    "pointerEvents": "auto", "disabled": False, "context": [],
}


class TestScan:
    def test_connects_and_injects(self):
        async def scenario():
            h = Harness()
            count = await h.manager.scan(FAST)
            session = h.manager.targets[TARGET_ID]
            result = (count, session.injected, h.manager.agents[TARGET_ID].running,
                      [m["method"] for m in h.sockets[0].sent[:2]])
            await h.manager.stop()
            return result

        count, injected, running, methods = _run(scenario())
        assert count == 1
        assert injected is True
        assert running is True
        assert methods == ["Page.enable", "Runtime.evaluate"]

    def test_rescan_keeps_connection(self):
        async def scenario():
            h = Harness()
            await h.manager.scan(FAST)
            await h.manager.scan(FAST)
            result = h.attempts, h.probe_injections(h.sockets[0])
            await h.manager.stop()
            return result

        assert _run(scenario()) == (1, 1)

    def test_rescan_pushes_new_config(self):
        async def scenario():
            h = Harness()
            await h.manager.scan(FAST)
            safe = FAST.model_copy(update={"safe_mode": True})
            await h.manager.scan(safe)
            result = h.manager.agents[TARGET_ID].state.config.safe_mode
            await h.manager.stop()
            return result

        assert _run(scenario()) is True

    def test_describe(self):
        async def scenario():
            h = Harness()
            await h.manager.scan(FAST)
            described = h.manager.describe()
            await h.manager.stop()
            return described

        assert _run(scenario()) == [
            {"id": TARGET_ID, "state": "connected", "injected": True, "agent_running": True}
        ]


class TestNavigation:
    def test_navigation_reinjects(self):
        async def scenario():
            h = Harness()
            await h.manager.scan(FAST)
            ws = h.sockets[0]
            ws.push({"method": "Page.frameNavigated", "params": {"frame": {"id": "f"}}})
            await asyncio.sleep(0.05)
            result = h.probe_injections(ws), h.manager.targets[TARGET_ID].injected
            await h.manager.stop()
            return result

        assert _run(scenario()) == (2, True)

    def test_other_events_ignored(self):
        async def scenario():
            h = Harness()
            await h.manager.scan(FAST)
            ws = h.sockets[0]
            ws.push({"method": "Runtime.consoleAPICalled", "params": {}})
            await asyncio.sleep(0.03)
            result = h.probe_injections(ws)
            await h.manager.stop()
            return result

        assert _run(scenario()) == 1


class TestReconnect:
    def test_reconnects_with_last_config(self):
        async def scenario():
            h = Harness()
            cfg = FAST.model_copy(update={"whitelist": ("npm test",)})
            await h.manager.scan(cfg)
            h.sockets[0].drop()
            await asyncio.sleep(0.001)
            dropped = TARGET_ID not in h.manager.targets
            await asyncio.sleep(0.1)
            session = h.manager.targets.get(TARGET_ID)
            agent = h.manager.agents.get(TARGET_ID)
            result = (dropped, h.attempts, session is not None and session.injected,
                      agent.state.config.whitelist if agent else None)
            await h.manager.stop()
            return result

        dropped, attempts, injected, whitelist = _run(scenario())
        assert dropped is True
        assert attempts == 2
        assert injected is True
        assert whitelist == ("npm test",)

    def test_keeps_retrying_while_unreachable(self):
        async def scenario():
            h = Harness(refuse_after=1)
            await h.manager.scan(FAST)
            h.sockets[0].drop()
            await asyncio.sleep(0.1)
            attempts = h.attempts
            await h.manager.stop()
            stopped_at = h.attempts
            await asyncio.sleep(0.05)
            return attempts, stopped_at, h.attempts

        attempts, stopped_at, final = _run(scenario())
        assert attempts >= 3
        assert final == stopped_at

    def test_slow_reconnect_loses_to_scan(self):
        async def scenario():
            h = Harness(hold={2})
            h.release = asyncio.Event()
            await h.manager.scan(FAST)
            h.by_attempt[1].drop()
            await asyncio.sleep(0.05)
            # attempt 2 (the reconnect) is still dialing; a scan connects first
            await h.manager.scan(FAST)
            live = h.manager.targets[TARGET_ID]
            h.release.set()
            await asyncio.sleep(0.05)
            result = (h.attempts, h.by_attempt[2].closed, h.by_attempt[3].closed,
                      h.manager.targets.get(TARGET_ID) is live, TARGET_ID in h.manager.agents,
                      h.manager._reconnects)
            await h.manager.stop()
            return result

        attempts, late_closed, live_closed, still_tracked, has_agent, pending = _run(scenario())
        assert attempts == 3
        assert late_closed is True
        assert live_closed is False
        assert still_tracked is True
        assert has_agent is True
        assert pending == {}

    def test_close_of_untracked_session_ignored(self):
        async def scenario():
            h = Harness(reconnect_delay=10.0)
            await h.manager.scan(FAST)
            live = h.manager.targets[TARGET_ID]
            stale = TargetSession(TARGET_ID, "ws://stale")
            h.manager._on_close(TARGET_ID, stale)
            result = h.manager.targets.get(TARGET_ID) is live, h.manager._reconnects
            await h.manager.stop()
            return result

        assert _run(scenario()) == (True, {})


class TestStop:
    def test_stop_halts_and_closes(self):
        async def scenario():
            h = Harness()
            await h.manager.scan(FAST)
            ws = h.sockets[0]
            await h.manager.stop()
            await asyncio.sleep(0.05)
            halted = any(m.get("params", {}).get("expression") == HALT_EXPR for m in ws.sent)
            return halted, ws.closed, h.manager.targets, h.manager.agents, h.attempts

        halted, closed, targets, agents, attempts = _run(scenario())
        assert halted is True
        assert closed is True
        assert targets == {}
        assert agents == {}
        assert attempts == 1

    def test_stop_without_targets(self):
        manager = SessionManager(discover_fn=AsyncMock(return_value=[]))
        _run(manager.stop())
        assert manager.connection_count == 0


class TestStats:
    def test_clicks_aggregate_and_reset(self):
        async def scenario():
            h = Harness(controls=[ACCEPT])
            await h.manager.scan(FAST)
            await asyncio.sleep(0.1)
            first = h.manager.get_stats()
            second = h.manager.get_stats()
            await h.manager.stop()
            return first, second

        first, second = _run(scenario())
        assert first.clicks > 0
        assert second == AgentStats()

    def test_closed_target_counts_are_carried(self):
        async def scenario():
            h = Harness(reconnect_delay=10.0)
            await h.manager.scan(FAST)
            agent = h.manager.agents[TARGET_ID]
            agent.state.clicks = 3
            agent.state.blocked = 1
            h.sockets[0].drop()
            await asyncio.sleep(0.01)
            stats = h.manager.get_stats()
            await h.manager.stop()
            return stats, h.manager.get_stats()

        stats, after = _run(scenario())
        assert stats == AgentStats(clicks=3, blocked=1)
        assert after.empty
