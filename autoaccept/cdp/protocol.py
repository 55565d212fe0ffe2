"""Chrome DevTools Protocol message helpers.

Pure functions, no I/O, no state.  Builds the two outbound message
shapes we use and classifies inbound ones.

>>> build_page_enable(7)
{'id': 7, 'method': 'Page.enable'}
>>> parse_message('not json') is None
True
"""

import json
import logging
from typing import Any

logger = logging.getLogger(__name__)

# Unsolicited events that mean the page's JS context was replaced
NAVIGATION_EVENTS = frozenset({
    "Page.frameNavigated",
    "Page.loadEventFired",
    "Page.domContentEventFired",
})


def build_evaluate(msg_id: int, expression: str) -> dict:
    """Build a ``Runtime.evaluate`` request.

    >>> msg = build_evaluate(1, "1 + 1")
    >>> msg["method"], msg["params"]["userGesture"], msg["params"]["awaitPromise"]
    ('Runtime.evaluate', True, True)
    """
    return {
        "id": msg_id,
        "method": "Runtime.evaluate",
        "params": {"expression": expression, "userGesture": True, "awaitPromise": True},
    }


def build_page_enable(msg_id: int) -> dict:
    return {"id": msg_id, "method": "Page.enable"}


def encode(msg: dict) -> str:
    """Compact JSON for the wire.

    >>> encode({"id": 1, "method": "Page.enable"})
    '{"id":1,"method":"Page.enable"}'
    """
    return json.dumps(msg, separators=(",", ":"))


def parse_message(raw: Any) -> dict | None:
    """Parse one inbound frame. Returns None for malformed payloads (permissive).

    >>> parse_message('{"id": 3, "result": {}}')
    {'id': 3, 'result': {}}
    >>> parse_message(b'[1, 2]') is None
    True
    """
    if isinstance(raw, (bytes, bytearray)):
        try:
            raw = raw.decode("utf-8")
        except UnicodeDecodeError:
            return None
    if not isinstance(raw, str) or not raw.strip():
        return None
    try:
        msg = json.loads(raw)
    except (json.JSONDecodeError, ValueError):
        logger.debug("Malformed CDP frame: %s", raw[:100])
        return None
    return msg if isinstance(msg, dict) else None


def is_response(msg: dict) -> bool:
    """Responses carry the correlation id; events carry a method instead.

    >>> is_response({"id": 1, "result": {}}), is_response({"method": "Page.loadEventFired"})
    (True, False)
    """
    return isinstance(msg.get("id"), int)


def is_navigation_event(msg: dict) -> bool:
    """
    >>> is_navigation_event({"method": "Page.frameNavigated", "params": {}})
    True
    >>> is_navigation_event({"method": "Runtime.consoleAPICalled"})
    False
    """
    return not is_response(msg) and msg.get("method") in NAVIGATION_EVENTS


def extract_value(response: dict | None) -> Any:
    """Pull the primitive value out of a ``Runtime.evaluate`` response.

    Returns None when the response is missing, errored, or threw.

    >>> extract_value({"id": 1, "result": {"result": {"type": "string", "value": "ok"}}})
    'ok'
    >>> extract_value({"id": 1, "result": {"result": {}, "exceptionDetails": {"text": "boom"}}}) is None
    True
    >>> extract_value(None) is None
    True
    """
    if not response or "error" in response:
        return None
    result = response.get("result") or {}
    if result.get("exceptionDetails"):
        return None
    return (result.get("result") or {}).get("value")


def evaluation_succeeded(response: dict | None) -> bool:
    """True when the expression ran without throwing.

    >>> evaluation_succeeded({"id": 1, "result": {"result": {"type": "undefined"}}})
    True
    >>> evaluation_succeeded({"id": 1, "result": {"exceptionDetails": {"text": "x"}}})
    False
    >>> evaluation_succeeded(None)
    False
    """
    if not response or "error" in response:
        return False
    return not (response.get("result") or {}).get("exceptionDetails")


def extract_json_value(response: dict | None) -> Any:
    """Like ``extract_value`` for expressions that return ``JSON.stringify(...)``.

    >>> extract_json_value({"result": {"result": {"value": '{"clicks": 1}'}}})
    {'clicks': 1}
    >>> extract_json_value({"result": {"result": {"value": "{oops"}}}) is None
    True
    """
    value = extract_value(response)
    if not isinstance(value, str):
        return None
    try:
        return json.loads(value)
    except (json.JSONDecodeError, ValueError):
        return None
