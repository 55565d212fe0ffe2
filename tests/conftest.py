"""Shared fixtures for autoaccept tests."""

import asyncio
import json

import pytest

from autoaccept.database import Database
from autoaccept.models import Configuration


@pytest.fixture
def db():
    """Fresh in-memory database."""
    database = Database(":memory:")
    yield database
    database.close()


@pytest.fixture
def tmp_db_path(tmp_path, monkeypatch):
    """Temporary database file, exported through AUTOACCEPT_DB."""
    db_path = tmp_path / "autoaccept.db"
    monkeypatch.setenv("AUTOACCEPT_DB", str(db_path))
    return db_path


@pytest.fixture
def config():
    return Configuration()


class FakeSocket:
    """In-process stand-in for a DevTools websocket.

    ``responder`` gets every decoded outbound message and returns the reply
    dict to deliver (or None to stay silent).  Must be created inside the
    running event loop.
    """

    def __init__(self, responder=None):
        self.sent = []
        self.closed = False
        self.responder = responder
        self._incoming = asyncio.Queue()

    async def send(self, data):
        msg = json.loads(data)
        self.sent.append(msg)
        if self.responder is not None:
            reply = self.responder(msg)
            if reply is not None:
                self.push(reply)

    def push(self, msg):
        self._incoming.put_nowait(json.dumps(msg) if isinstance(msg, dict) else msg)

    def drop(self):
        """Simulate the remote end closing the socket."""
        self._incoming.put_nowait(None)

    async def close(self):
        self.closed = True
        self.drop()

    def __aiter__(self):
        return self

    async def __anext__(self):
        item = await self._incoming.get()
        if item is None:
            raise StopAsyncIteration
        return item


def evaluate_reply(msg, value):
    """Runtime.evaluate response carrying ``value``."""
    return {"id": msg["id"], "result": {"result": {"type": type(value).__name__, "value": value}}}
