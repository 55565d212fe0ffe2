"""Approval-control recognition and nearby command-text recovery.

The injected probe reports raw facts about every button-like element;
the decisions about which of them are accept candidates, and which text
they confirm, are made here.

>>> is_accept_label("Run command")
True
>>> is_accept_label("Cancel run")
False
"""

from pydantic import BaseModel, ConfigDict, Field

ACCEPT_PATTERNS = (
    "accept",
    "run",
    "apply",
    "execute",
    "confirm",
    "allow once",
    "allow",
    "retry",
)
REJECT_PATTERNS = (
    "skip",
    "reject",
    "cancel",
    "close",
    "refine",
    "deny",
)
# Labels that confirm running a command (banned-list check applies)
RUN_PATTERNS = ("run", "execute")

MAX_LABEL_LENGTH = 50
MAX_ANCESTOR_DEPTH = 10
MAX_SIBLINGS_PER_LEVEL = 5
MIN_CONTEXT_LENGTH = 10


class ControlSnapshot(BaseModel):
    """One interactive element as reported by the probe.

    ``context`` holds, per ancestor level (nearest first), the code/pre
    text found in that level's preceding siblings (nearest first).
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    index: int
    label: str = ""
    display: str = ""
    width: float = 0
    pointer_events: str = Field(default="", alias="pointerEvents")
    disabled: bool = False
    context: list[list[str]] = Field(default_factory=list)

    @property
    def normalized_label(self) -> str:
        return self.label.strip().lower()

    @property
    def interactive(self) -> bool:
        """Visible, laid out, accepting pointer events and not disabled."""
        return (
            self.display != "none"
            and self.width > 0
            and self.pointer_events != "none"
            and not self.disabled
        )


def is_accept_label(label: str) -> bool:
    """Reject keywords take precedence over accept keywords.

    >>> is_accept_label("Allow once")
    True
    >>> is_accept_label("")
    False
    >>> is_accept_label("Accept " + "x" * 60)
    False
    """
    text = label.strip().lower()
    if not text or len(text) > MAX_LABEL_LENGTH:
        return False
    if any(word in text for word in REJECT_PATTERNS):
        return False
    return any(word in text for word in ACCEPT_PATTERNS)


def is_accept_candidate(control: ControlSnapshot) -> bool:
    return is_accept_label(control.label) and control.interactive


def implies_run(label: str) -> bool:
    """
    >>> implies_run("Run"), implies_run("Execute step"), implies_run("Apply")
    (True, True, False)
    """
    text = label.lower()
    return any(word in text for word in RUN_PATTERNS)


def find_nearby_command_text(control: ControlSnapshot) -> str:
    """Approximate the command a control confirms.

    Walks at most ``MAX_ANCESTOR_DEPTH`` ancestor levels and
    ``MAX_SIBLINGS_PER_LEVEL`` preceding siblings per level, stopping at
    the first level after which more than ``MIN_CONTEXT_LENGTH``
    characters were collected.

    >>> c = ControlSnapshot(index=0, context=[[], ["npm run build"], ["ignored, too far"]])
    >>> find_nearby_command_text(c)
    'npm run build'
    >>> find_nearby_command_text(ControlSnapshot(index=1))
    ''
    """
    collected = ""
    for level in control.context[:MAX_ANCESTOR_DEPTH]:
        for text in level[:MAX_SIBLINGS_PER_LEVEL]:
            text = (text or "").strip()
            if text:
                collected += " " + text
        if len(collected) > MIN_CONTEXT_LENGTH:
            break
    return collected.strip().lower()
