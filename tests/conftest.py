import os
import sys
import pytest

# Ensure src/ (containing the `impro` package) is on sys.path
CURRENT_DIR = os.path.dirname(__file__)
SRC_ROOT = os.path.abspath(os.path.join(CURRENT_DIR, '..', 'src'))
if SRC_ROOT not in sys.path:
    sys.path.insert(0, SRC_ROOT)

from impro.client.connection import ConnectionManager
from impro.config import Config, ConnectionConfig
from impro.core.state import RoomRegistry
from impro.web.app import create_app, socketio


# ============ Server fixtures ============

@pytest.fixture()
def config():
    config = Config()
    config.storage.enabled = False
    return config


@pytest.fixture()
def registry():
    return RoomRegistry()


@pytest.fixture()
def flask_app(config, registry):
    application = create_app(config, registry)
    application.config['TESTING'] = True
    return application


@pytest.fixture()
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture()
def sio_client(flask_app):
    test_client = socketio.test_client(
        flask_app,
        flask_test_client=flask_app.test_client(),
    )
    yield test_client
    if test_client.is_connected():
        test_client.disconnect()


# ============ Client fakes ============

class FakeTransport:
    """Stands in for socketio.Client; the test drives its events."""

    def __init__(self, connect_error=None):
        self.handlers = {}
        self.emitted = []
        self.connect_calls = []
        self.connect_error = connect_error
        self.fail_emit = False
        self.connected = False
        self.closed = False

    def on(self, event, handler):
        self.handlers[event] = handler

    def connect(self, url, **kwargs):
        self.connect_calls.append((url, kwargs))
        if self.connect_error is not None:
            raise self.connect_error

    def emit(self, event, data=None):
        if self.fail_emit:
            raise ConnectionError('transport gone')
        self.emitted.append((event, data))

    def disconnect(self):
        self.closed = True
        if self.connected:
            self.connected = False
            self.fire('disconnect', 'client disconnect')

    def fire(self, event, *args):
        if event == 'connect':
            self.connected = True
        handler = self.handlers.get(event)
        if handler is not None:
            handler(*args)


class TransportFactory:
    def __init__(self):
        self.created = []
        self.connect_error = None

    def __call__(self):
        transport = FakeTransport(connect_error=self.connect_error)
        self.created.append(transport)
        return transport

    @property
    def last(self):
        return self.created[-1]


class ManualTimer:
    def __init__(self, interval, function, args=None):
        self.interval = interval
        self.function = function
        self.args = args or ()
        self.daemon = False
        self.started = False
        self.cancelled = False
        self.fired = False

    def start(self):
        self.started = True

    def cancel(self):
        self.cancelled = True

    def fire(self):
        assert self.started and not self.cancelled
        self.fired = True
        self.function(*self.args)


class TimerFactory:
    def __init__(self):
        self.created = []

    def __call__(self, interval, function, args=None):
        timer = ManualTimer(interval, function, args)
        self.created.append(timer)
        return timer

    @property
    def pending(self):
        return [t for t in self.created if t.started and not t.cancelled and not t.fired]


class FakeClock:
    def __init__(self):
        self.now = 1000.0

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


def run_now(func, *args):
    func(*args)


@pytest.fixture()
def transports():
    return TransportFactory()


@pytest.fixture()
def timers():
    return TimerFactory()


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def make_manager(transports, timers, clock):
    def factory(token_provider=None, **overrides):
        return ConnectionManager(
            'http://scoreboard.test',
            config=ConnectionConfig(**overrides),
            transport_factory=transports,
            token_provider=token_provider,
            timer_factory=timers,
            start_task=run_now,
            clock=clock,
            random_func=lambda: 0.0,
        )
    return factory


# ============ Client <-> server bridge ============

class TestClientTransport:
    """socketio.Client stand-in that talks to the app through a Flask-SocketIO test client."""

    __test__ = False

    def __init__(self, app):
        self.app = app
        self.handlers = {}
        self.client = None

    def on(self, event, handler):
        self.handlers[event] = handler

    def connect(self, url, transports=None, wait_timeout=None, auth=None):
        self.client = socketio.test_client(self.app, auth=auth)
        self._trigger('connect')
        self.pump()

    def emit(self, event, data=None):
        if data is None:
            self.client.emit(event)
        else:
            self.client.emit(event, data)
        self.pump()

    def pump(self):
        for packet in self.client.get_received():
            self._trigger(packet['name'], *packet['args'])

    def disconnect(self):
        if self.client is not None and self.client.is_connected():
            self.client.disconnect()
            self._trigger('disconnect', 'client disconnect')

    def _trigger(self, event, *args):
        handler = self.handlers.get(event)
        if handler is not None:
            handler(*args)


@pytest.fixture()
def bridged_manager(flask_app, timers):
    bridges = []

    def factory(room=None):
        def transport_factory():
            bridge = TestClientTransport(flask_app)
            bridges.append(bridge)
            return bridge

        return ConnectionManager(
            'http://scoreboard.test',
            transport_factory=transport_factory,
            token_provider=(lambda: {'room': room}) if room else None,
            timer_factory=timers,
            start_task=run_now,
        )

    yield factory
    for bridge in bridges:
        bridge.disconnect()
