"""Session manager: discovery, connection, injection and reconnection.

Per target id the lifecycle is

    Disconnected -> Connecting -> Connected(uninjected) -> Connected(injected)

and any state falls back to Disconnected when the socket closes.  A
closed target is dropped and a reconnect is scheduled after a fixed
delay with the configuration last pushed to it.  There is no backoff
and no retry cap: while a target stays unreachable, attempts continue at
a steady cadence until ``stop()``.

All mutation happens on the event loop thread, so no locks are needed.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Iterable, Optional

from autoaccept.agent.action_agent import ActionAgent
from autoaccept.agent.gate import AdmissionGate
from autoaccept.agent.probe import ProbePage
from autoaccept.cdp.discovery import BASE_PORT, PORT_WINDOW, discover, target_key
from autoaccept.cdp.protocol import is_navigation_event
from autoaccept.cdp.session import EXCHANGE_TIMEOUT, TargetSession
from autoaccept.models import AgentStats, Configuration, TargetDescriptor

logger = logging.getLogger(__name__)

RECONNECT_DELAY = 3.0

DiscoverFn = Callable[[int, int], Awaitable[list[tuple[int, TargetDescriptor]]]]


class SessionManager:
    """Owns every tracked ``TargetSession`` and its ``ActionAgent``."""

    def __init__(
        self,
        base_port: int = BASE_PORT,
        port_window: int = PORT_WINDOW,
        reconnect_delay: float = RECONNECT_DELAY,
        exchange_timeout: float = EXCHANGE_TIMEOUT,
        workspace_roots: Iterable[str] = (),
        session_factory: Optional[Callable[..., TargetSession]] = None,
        discover_fn: Optional[DiscoverFn] = None,
    ):
        self.base_port = base_port
        self.port_window = port_window
        self.reconnect_delay = reconnect_delay
        self.exchange_timeout = exchange_timeout
        self.gate = AdmissionGate(workspace_roots)
        self.targets: dict[str, TargetSession] = {}
        self.agents: dict[str, ActionAgent] = {}
        self._session_factory = session_factory or TargetSession
        self._discover = discover_fn or discover
        self._socket_urls: dict[str, str] = {}
        self._reconnects: dict[str, asyncio.Task] = {}
        self._background: set[asyncio.Task] = set()
        self._carry = AgentStats()
        self._stopping = False

    @property
    def connection_count(self) -> int:
        return len(self.targets)

    def describe(self) -> list[dict]:
        """Snapshot of tracked targets for status output."""
        return [
            {
                "id": target_id,
                "state": session.state.value,
                "injected": session.injected,
                "agent_running": target_id in self.agents and self.agents[target_id].running,
            }
            for target_id, session in sorted(self.targets.items())
        ]

    # ------------------------------------------------------------------
    # Discovery + connection
    # ------------------------------------------------------------------

    async def scan(self, config: Configuration) -> int:
        """Connect any new targets, then push ``config`` to every tracked one."""
        self._stopping = False
        for port, descriptor in await self._discover(self.base_port, self.port_window):
            target_id = target_key(port, descriptor)
            if target_id not in self.targets:
                await self.connect(target_id, descriptor.socket_url, config)
        for target_id in list(self.targets):
            await self.inject(target_id, config)
        return len(self.targets)

    async def connect(self, target_id: str, socket_url: str, config: Configuration) -> bool:
        """Open the socket, enable navigation events, inject, push config."""
        self._socket_urls[target_id] = socket_url
        session = self._session_factory(
            target_id,
            socket_url,
            on_event=self._on_event,
            on_close=lambda closed_id: self._on_close(closed_id, session),
            exchange_timeout=self.exchange_timeout,
        )
        session.last_config = config
        if not await session.open():
            return False
        if target_id in self.targets or self._stopping:
            # Another attempt won the race while this one was dialing
            logger.debug("Discarding duplicate connection to %s", target_id)
            await session.close()
            return False
        self.targets[target_id] = session
        self._cancel_reconnect(target_id)
        if not await session.enable_page_events():
            logger.warning("Page.enable got no answer from %s", target_id)
        await self.inject(target_id, config)
        return True

    async def inject(self, target_id: str, config: Configuration) -> bool:
        """Inject the probe if needed and (re)start the target's agent."""
        session = self.targets.get(target_id)
        if session is None:
            return False
        session.last_config = config
        agent = self.agents.get(target_id)
        page = agent.page if agent is not None else ProbePage(session)
        if not session.injected:
            if not await page.inject():
                logger.warning("Injection failed for %s", target_id)
                return False
            session.injected = True
            logger.info("Probe injected into %s", target_id)
        if agent is None:
            agent = ActionAgent(page, self.gate, name=target_id)
            self.agents[target_id] = agent
        agent.start(config)
        return True

    # ------------------------------------------------------------------
    # Socket callbacks
    # ------------------------------------------------------------------

    def _on_event(self, target_id: str, msg: dict) -> None:
        if not is_navigation_event(msg):
            return
        session = self.targets.get(target_id)
        if session is None:
            return
        logger.debug("%s on %s, re-injecting", msg.get("method"), target_id)
        session.injected = False
        # The reader task is delivering this event; the exchange must run elsewhere
        self._spawn(self.inject(target_id, session.last_config or Configuration()))

    def _on_close(self, target_id: str, session: TargetSession) -> None:
        if self.targets.get(target_id) is not session:
            return
        del self.targets[target_id]
        self._retire_agent(target_id)
        if self._stopping:
            return
        self._schedule_reconnect(target_id, session.last_config)

    def _retire_agent(self, target_id: str) -> None:
        agent = self.agents.pop(target_id, None)
        if agent is None:
            return
        # Unread counters survive into the next stats read
        self._carry = self._carry + agent.get_stats()
        agent.stop()

    # ------------------------------------------------------------------
    # Reconnection
    # ------------------------------------------------------------------

    def _schedule_reconnect(self, target_id: str, config: Optional[Configuration]) -> None:
        if target_id in self._reconnects or target_id not in self._socket_urls:
            return
        logger.info("Reconnect to %s scheduled in %.1fs", target_id, self.reconnect_delay)
        self._reconnects[target_id] = asyncio.create_task(
            self._reconnect_later(target_id, config or Configuration())
        )

    async def _reconnect_later(self, target_id: str, config: Configuration) -> None:
        await asyncio.sleep(self.reconnect_delay)
        self._reconnects.pop(target_id, None)
        if self._stopping or target_id in self.targets:
            return
        logger.info("Reconnecting to %s", target_id)
        connected = await self.connect(target_id, self._socket_urls[target_id], config)
        if not connected and not self._stopping and target_id not in self.targets:
            self._schedule_reconnect(target_id, config)

    def _cancel_reconnect(self, target_id: str) -> None:
        task = self._reconnects.pop(target_id, None)
        if task is not None and task is not asyncio.current_task():
            task.cancel()

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    # ------------------------------------------------------------------
    # Stats + shutdown
    # ------------------------------------------------------------------

    def get_stats(self) -> AgentStats:
        """Read-and-reset totals across every tracked target."""
        total, self._carry = self._carry, AgentStats()
        for agent in self.agents.values():
            total = total + agent.get_stats()
        return total

    async def stop(self) -> None:
        """Halt every agent, best-effort halt each probe, close every socket."""
        self._stopping = True
        for task in self._reconnects.values():
            task.cancel()
        self._reconnects.clear()
        for task in list(self._background):
            task.cancel()

        targets, self.targets = self.targets, {}
        for target_id, session in targets.items():
            agent = self.agents.get(target_id)
            self._retire_agent(target_id)
            page = agent.page if agent is not None else ProbePage(session)
            try:
                if not await page.halt():
                    logger.debug("Halt not confirmed by %s", target_id)
            finally:
                await session.close()
        self.agents.clear()
        logger.info("Session manager stopped (%d target(s) closed)", len(targets))
