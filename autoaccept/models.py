"""Pydantic v2 models shared by the classifier, the agent and the CDP layer.

``Configuration`` is the one snapshot every consumer reads; it is frozen
so a poll cycle can never observe a half-updated config.  Field names are
snake_case in Python and camelCase on the wire.

>>> Configuration().danger_threshold
70
>>> Configuration.model_validate({"safeMode": True}).safe_mode
True
"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


# Target types accepted from the /json/list listing ("webview" is the
# embedded-view type)
USABLE_TARGET_TYPES = frozenset({"page", "webview"})


class Configuration(BaseModel):
    """Immutable configuration snapshot.

    >>> cfg = Configuration(whitelist=["npm test"], danger_threshold=80)
    >>> cfg.model_dump(by_alias=True)["dangerThreshold"]
    80
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, alias_generator=to_camel)

    poll_interval_ms: int = Field(default=300, gt=0)
    banned_commands: tuple[str, ...] = ()
    whitelist: tuple[str, ...] = ()
    safe_mode: bool = False
    danger_threshold: int = Field(default=70, ge=0, le=100)

    @field_validator("banned_commands", "whitelist", mode="before")
    @classmethod
    def _drop_blank_entries(cls, value):
        if value is None:
            return ()
        return tuple(str(v) for v in value if v and str(v).strip())

    def to_wire(self) -> dict:
        """camelCase dict for the remote configuration schema."""
        return self.model_dump(by_alias=True, mode="json")


class ClassificationVerdict(BaseModel):
    """Structured safe/unsafe decision.

    ``level`` is only set when the verdict is unsafe; ``decoded_command``
    only when normalization changed the text.
    """

    model_config = ConfigDict(frozen=True)

    safe: bool
    score: int = Field(default=0, ge=0, le=100)
    reason: str = ""
    level: Optional[int] = None
    original_command: str = ""
    decoded_command: Optional[str] = None


def level_for_score(score: int) -> int:
    """Bucket a score into a severity level.

    >>> [level_for_score(s) for s in (100, 80, 79, 50, 49, 0)]
    [1, 1, 2, 2, 3, 3]
    """
    if score >= 80:
        return 1
    if score >= 50:
        return 2
    return 3


def severity_label(level: Optional[int]) -> str:
    """Human label for a verdict level.

    >>> severity_label(1), severity_label(None)
    ('critical', 'none')
    """
    return {1: "critical", 2: "high", 3: "medium"}.get(level, "none")


class SocketState(str, Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


class TargetDescriptor(BaseModel):
    """One entry from a DevTools ``/json/list`` listing."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    id: str
    type: str = ""
    title: str = ""
    url: str = ""
    socket_url: Optional[str] = Field(default=None, alias="webSocketDebuggerUrl")

    @property
    def usable(self) -> bool:
        """Only pages and embedded views with a socket URL can be driven.

        >>> TargetDescriptor(id="a", type="page", webSocketDebuggerUrl="ws://x").usable
        True
        >>> TargetDescriptor(id="b", type="service_worker", webSocketDebuggerUrl="ws://x").usable
        False
        """
        return bool(self.socket_url) and self.type in USABLE_TARGET_TYPES


class AgentStats(BaseModel):
    """Click/block counters, summable across targets.

    >>> (AgentStats(clicks=2) + AgentStats(clicks=1, blocked=4)).model_dump()
    {'clicks': 3, 'blocked': 4}
    """

    clicks: int = 0
    blocked: int = 0

    def __add__(self, other: "AgentStats") -> "AgentStats":
        return AgentStats(clicks=self.clicks + other.clicks, blocked=self.blocked + other.blocked)

    @property
    def empty(self) -> bool:
        return self.clicks == 0 and self.blocked == 0
