"""DevTools target discovery over the local HTTP listing endpoint.

Probes a small fixed window of ports around a base port.  An
unreachable port, a timeout or a malformed listing is skipped silently;
discovery never raises.
"""

import logging
from typing import Optional

import httpx
from pydantic import ValidationError

from autoaccept.models import TargetDescriptor

logger = logging.getLogger(__name__)

BASE_PORT = 9000
PORT_WINDOW = 3
PROBE_TIMEOUT = 0.5
LISTING_PATH = "/json/list"
HOST = "127.0.0.1"


def candidate_ports(base_port: int = BASE_PORT, window: int = PORT_WINDOW) -> list[int]:
    """Ports probed on each discovery pass.

    >>> candidate_ports(9000, 1)
    [8999, 9000, 9001]
    """
    return list(range(base_port - window, base_port + window + 1))


def target_key(port: int, descriptor: TargetDescriptor) -> str:
    """Stable id derived from endpoint + page identity.

    >>> target_key(9000, TargetDescriptor(id="ABC"))
    '9000:ABC'
    """
    return f"{port}:{descriptor.id}"


def parse_listing(payload) -> list[TargetDescriptor]:
    """Usable descriptors from a decoded ``/json/list`` body.

    >>> parse_listing([{"id": "1", "type": "page", "webSocketDebuggerUrl": "ws://h/1"},
    ...                {"id": "2", "type": "page"},
    ...                {"id": "3", "type": "worker", "webSocketDebuggerUrl": "ws://h/3"}])
    [TargetDescriptor(id='1', type='page', title='', url='', socket_url='ws://h/1')]
    >>> parse_listing({"not": "a list"})
    []
    """
    if not isinstance(payload, list):
        return []
    targets = []
    for entry in payload:
        if not isinstance(entry, dict):
            continue
        try:
            descriptor = TargetDescriptor.model_validate(entry)
        except ValidationError:
            continue
        if descriptor.usable:
            targets.append(descriptor)
    return targets


async def list_targets(
    port: int,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = PROBE_TIMEOUT,
) -> list[TargetDescriptor]:
    """Query one port's listing. Empty list when unreachable or malformed."""
    url = f"http://{HOST}:{port}{LISTING_PATH}"
    try:
        if client is None:
            async with httpx.AsyncClient(timeout=timeout) as owned:
                resp = await owned.get(url)
        else:
            resp = await client.get(url, timeout=timeout)
        resp.raise_for_status()
        return parse_listing(resp.json())
    except httpx.TimeoutException:
        logger.debug("Discovery timeout on port %d", port)
    except httpx.HTTPError as e:
        logger.debug("Discovery unavailable on port %d: %s", port, e)
    except ValueError:
        logger.debug("Malformed listing on port %d", port)
    return []


async def discover(
    base_port: int = BASE_PORT,
    window: int = PORT_WINDOW,
    client: Optional[httpx.AsyncClient] = None,
    timeout: float = PROBE_TIMEOUT,
) -> list[tuple[int, TargetDescriptor]]:
    """Walk every candidate port and collect (port, descriptor) pairs."""
    found: list[tuple[int, TargetDescriptor]] = []
    for port in candidate_ports(base_port, window):
        for descriptor in await list_targets(port, client=client, timeout=timeout):
            found.append((port, descriptor))
    return found


async def is_available(
    base_port: int = BASE_PORT,
    window: int = PORT_WINDOW,
    client: Optional[httpx.AsyncClient] = None,
) -> bool:
    """True when at least one port lists a usable target."""
    for port in candidate_ports(base_port, window):
        if await list_targets(port, client=client):
            return True
    return False
