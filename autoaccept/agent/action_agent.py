"""Action Agent: the bounded poll loop that finds and triggers approval controls.

One agent per target.  It is single-threaded and cooperative: one tick
at a time on the event loop, suspended only between ticks.  All state
lives on the instance (``AgentState``); nothing is global.

Each tick:
  1. scan the page (document + nested frames) through the probe
  2. keep accept candidates (label rules, visibility)
  3. recover the nearby command text
  4. ask the admission gate (the classifier): blocked or triggered
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional, Protocol

from autoaccept.agent.controls import (
    ControlSnapshot,
    find_nearby_command_text,
    is_accept_candidate,
)
from autoaccept.agent.gate import AdmissionGate
from autoaccept.models import AgentStats, Configuration

logger = logging.getLogger(__name__)


class Page(Protocol):
    async def scan(self) -> Optional[list[ControlSnapshot]]: ...

    async def trigger(self, index: int) -> bool: ...


@dataclass
class AgentState:
    running: bool = False
    clicks: int = 0
    blocked: int = 0
    config: Configuration = field(default_factory=Configuration)


class ActionAgent:
    """Poll loop bound to one page.

    >>> agent = ActionAgent(page=None)
    >>> agent.get_stats()
    AgentStats(clicks=0, blocked=0)
    """

    def __init__(self, page: Page, gate: Optional[AdmissionGate] = None, name: str = ""):
        self.page = page
        self.gate = gate or AdmissionGate()
        self.name = name
        self.state = AgentState()
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self.state.running

    def start(self, config: Configuration) -> None:
        """Start polling, or refresh the admission settings if already running.

        A running agent keeps its counters and its timer; the banned list,
        whitelist, safe mode and danger threshold are taken from ``config``.
        """
        if self.state.running:
            self.state.config = self.state.config.model_copy(update={
                "banned_commands": config.banned_commands,
                "whitelist": config.whitelist,
                "safe_mode": config.safe_mode,
                "danger_threshold": config.danger_threshold,
            })
            return
        self.state = AgentState(running=True, config=config)
        self._task = asyncio.create_task(self._loop())
        logger.info("Agent %s started (safe mode: %s)", self.name, config.safe_mode)

    def stop(self) -> None:
        self.state.running = False
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None
        logger.info("Agent %s stopped", self.name)

    def get_stats(self) -> AgentStats:
        """Return the counters and zero them in the same step."""
        stats = AgentStats(clicks=self.state.clicks, blocked=self.state.blocked)
        self.state.clicks = 0
        self.state.blocked = 0
        return stats

    async def _loop(self) -> None:
        interval = self.state.config.poll_interval_ms / 1000
        while self.state.running:
            try:
                await self.tick()
            except Exception as e:
                logger.warning("Agent %s tick failed: %s", self.name, e)
            await asyncio.sleep(interval)

    async def tick(self) -> int:
        """Run one poll cycle. Returns the number of controls triggered."""
        if not self.state.running:
            return 0
        controls = await self.page.scan()
        if not controls:
            return 0

        clicked = 0
        for control in controls:
            if not self.state.running:
                break
            if not is_accept_candidate(control):
                continue
            command_text = find_nearby_command_text(control)
            admission = self.gate.admit(control.label, command_text, self.state.config)
            if not admission.admitted:
                self.state.blocked += 1
                continue
            if await self.page.trigger(control.index):
                logger.debug("Agent %s clicked %r", self.name, control.label)
                self.state.clicks += 1
                clicked += 1
        return clicked
