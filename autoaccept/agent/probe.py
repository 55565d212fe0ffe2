"""Host-side handle on the DOM probe injected into a target.

``ProbePage`` is the page interface the Action Agent drives; it turns
the probe's JSON answers into ``ControlSnapshot`` objects.
"""

import logging
from functools import lru_cache
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from autoaccept.agent.controls import ControlSnapshot
from autoaccept.cdp.protocol import evaluation_succeeded, extract_json_value
from autoaccept.cdp.session import TargetSession

logger = logging.getLogger(__name__)

# Where bundled scripts live inside the package
_DATA_DIR = Path(__file__).resolve().parent.parent / "data"
PROBE_SCRIPT_PATH = _DATA_DIR / "probe.js"

_HANDLE = "window.__autoAccept"
SCAN_EXPR = f"{_HANDLE} ? {_HANDLE}.scan() : null"
HALT_EXPR = f"{_HANDLE} ? {_HANDLE}.halt() : false"


def trigger_expr(index: int) -> str:
    """
    >>> trigger_expr(3)
    'window.__autoAccept ? window.__autoAccept.trigger(3) : false'
    """
    return f"{_HANDLE} ? {_HANDLE}.trigger({int(index)}) : false"


@lru_cache(maxsize=1)
def load_probe_script() -> str:
    """Read the bundled probe source once."""
    return PROBE_SCRIPT_PATH.read_text(encoding="utf-8")


def parse_controls(payload) -> Optional[list[ControlSnapshot]]:
    """Snapshots from a decoded scan answer; None if the answer is unusable.

    >>> [c.label for c in parse_controls([{"index": 0, "label": "Run"}, {"label": "no index"}])]
    ['Run']
    >>> parse_controls("nope") is None
    True
    """
    if not isinstance(payload, list):
        return None
    controls = []
    for entry in payload:
        if not isinstance(entry, dict):
            continue
        try:
            controls.append(ControlSnapshot.model_validate(entry))
        except ValidationError:
            continue
    return controls


class ProbePage:
    """Page interface backed by a ``TargetSession``."""

    def __init__(self, session: TargetSession):
        self.session = session

    async def inject(self) -> bool:
        response = await self.session.evaluate_raw(load_probe_script())
        return evaluation_succeeded(response)

    async def scan(self) -> Optional[list[ControlSnapshot]]:
        return parse_controls(extract_json_value(await self.session.evaluate_raw(SCAN_EXPR)))

    async def trigger(self, index: int) -> bool:
        return await self.session.evaluate(trigger_expr(index)) is True

    async def halt(self) -> bool:
        return await self.session.evaluate(HALT_EXPR) is True
