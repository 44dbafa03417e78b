import asyncio

import pytest

from main import create_app
from relay.api import RELAY_KEY
from relay.config import Settings
from relay.engine import Relay
from relay.errors import DeliveryError

ACCESS_KEY = "KEY1"


class FakeConnection:
    """In-memory stand-in for a WebSocket channel"""

    def __init__(self, fail=False):
        self.sent = []
        self.closed = False
        self.fail = fail

    def send(self, event):
        if self.fail or self.closed:
            raise DeliveryError("send failed")
        self.sent.append(event)

    def types(self):
        return [e["type"] for e in self.sent]


class FakeVideo:
    """Scriptable video element that counts control calls"""

    def __init__(self, current_time=0.0, paused=True, playback_rate=1.0,
                 ready_state=4, src="movie.mp4", current_src=""):
        self._current_time = current_time
        self._playback_rate = playback_rate
        self.paused = paused
        self.ready_state = ready_state
        self.src = src
        self.current_src = current_src or src
        self.calls = []
        self.play_error = None

    @property
    def current_time(self):
        return self._current_time

    @current_time.setter
    def current_time(self, value):
        self.calls.append(("seek", value))
        self._current_time = value

    @property
    def playback_rate(self):
        return self._playback_rate

    @playback_rate.setter
    def playback_rate(self, value):
        self.calls.append(("rate", value))
        self._playback_rate = value

    def play(self):
        self.calls.append(("play",))
        if self.play_error is not None:
            raise self.play_error
        self.paused = False

    def pause(self):
        self.calls.append(("pause",))
        self.paused = True

    def advance(self, seconds):
        """Playback progressing on its own, no seek"""
        self._current_time += seconds


async def wait_for(predicate, timeout=3.0, interval=0.01):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(interval)


@pytest.fixture
def relay():
    return Relay(ACCESS_KEY)


@pytest.fixture
def authed(relay):
    """Factory for connections that have already authenticated"""
    made = []

    def _make():
        connection = FakeConnection()
        relay.on_connect(connection)
        relay.on_message(connection, '{"type": "auth", "accessKey": "KEY1"}')
        made.append(connection)
        # every fixture-made connection starts the test with an empty outbox
        for c in made:
            c.sent.clear()
        return connection

    return _make


@pytest.fixture
def app():
    return create_app(Settings(access_key=ACCESS_KEY, heartbeat=None))


@pytest.fixture
def app_relay(app):
    return app[RELAY_KEY]
