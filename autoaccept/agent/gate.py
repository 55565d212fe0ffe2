"""Admission gate for the Action Agent.

Every admission decision goes through one ``classify()`` call.  The
small LRU here only remembers verdicts already produced for the same
(text, configuration) pair; it never decides anything on its own.
"""

import logging
from collections import OrderedDict
from typing import Iterable, NamedTuple, Optional

from autoaccept.agent.controls import implies_run
from autoaccept.classifier import classify
from autoaccept.models import ClassificationVerdict, Configuration

logger = logging.getLogger(__name__)

VERDICT_CACHE_SIZE = 128


class Admission(NamedTuple):
    admitted: bool
    verdict: Optional[ClassificationVerdict]


class AdmissionGate:
    """Decide whether a recognised control may be triggered.

    >>> gate = AdmissionGate()
    >>> gate.admit("Run", "rm -rf /", Configuration()).admitted
    False
    >>> gate.admit("Apply", "", Configuration()).admitted
    True
    """

    def __init__(self, workspace_roots: Iterable[str] = (), cache_size: int = VERDICT_CACHE_SIZE):
        self.workspace_roots = tuple(workspace_roots)
        self._cache: OrderedDict[tuple[str, Configuration], ClassificationVerdict] = OrderedDict()
        self._cache_size = cache_size

    def verdict(self, text: str, config: Configuration) -> ClassificationVerdict:
        key = (text, config)
        cached = self._cache.get(key)
        if cached is not None:
            self._cache.move_to_end(key)
            return cached
        result = classify(text, config, self.workspace_roots)
        self._cache[key] = result
        if len(self._cache) > self._cache_size:
            self._cache.popitem(last=False)
        return result

    def admit(self, label: str, text: str, config: Configuration) -> Admission:
        """Safe mode gates every control; otherwise only run/execute labels are gated."""
        if not config.safe_mode and not implies_run(label):
            return Admission(True, None)
        result = self.verdict(text, config)
        if not result.safe:
            logger.info("BLOCKED %r: %s (score %d)", text[:100], result.reason, result.score)
        return Admission(result.safe, result)

    def clear(self) -> None:
        self._cache.clear()
