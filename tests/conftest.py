"""
Pytest configuration and shared fixtures.
"""

import json

import pytest
from websockets.exceptions import ConnectionClosed

from datastream.game_engine import GameEngine
from datastream.state import NetworkState

FIXED_NOW_MS = 1_700_000_000_000.0


@pytest.fixture
def state():
    """Fresh network holding only the Core at (600, 400)."""
    return NetworkState()


@pytest.fixture
def engine():
    """Engine with starting resources and a frozen wall clock."""
    return GameEngine(clock=lambda: FIXED_NOW_MS)


@pytest.fixture
def rich_engine(engine):
    """Engine with enough Data to place anything."""
    engine.state.data = 1000.0
    return engine


class FakeWebSocket:
    """Stands in for a server connection: replays incoming frames, records sent ones."""

    def __init__(self, incoming=None, closed=False):
        self.incoming = list(incoming or [])
        self.sent = []
        self.closed = closed

    async def send(self, payload):
        if self.closed:
            raise ConnectionClosed(None, None)
        self.sent.append(json.loads(payload))

    def __aiter__(self):
        return self._frames()

    async def _frames(self):
        for frame in self.incoming:
            yield frame


@pytest.fixture
def websocket():
    return FakeWebSocket()


@pytest.fixture
def make_websocket():
    return FakeWebSocket
