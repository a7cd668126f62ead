import pytest

from impro.client.connection import (
    ConnectionState,
    ConnectionTimeout,
    SendResult,
    backoff_delay,
)
from impro.config import ConnectionConfig


def connected(manager, transports):
    manager.connect()
    transports.last.fire('connect')
    return transports.last


# ============ Connecting ============

def test_initial_state_is_reported_to_new_listeners(make_manager):
    manager = make_manager()
    states = []
    manager.on_connection_state_change(states.append)
    assert states == [ConnectionState.DISCONNECTED]
    assert manager.queue_length == 0


def test_connect_passes_token_and_timeout(make_manager, transports):
    manager = make_manager(token_provider=lambda: {'token': 'abc', 'room': 'finals'})
    manager.connect()

    assert manager.state == ConnectionState.CONNECTING
    url, kwargs = transports.last.connect_calls[0]
    assert url == 'http://scoreboard.test'
    assert kwargs == {'transports': ['websocket'], 'wait_timeout': 20.0,
                      'auth': {'token': 'abc', 'room': 'finals'}}

    transports.last.fire('connect')
    assert manager.state == ConnectionState.CONNECTED
    assert manager.reconnect_attempt == 0


def test_state_listener_sees_transitions_only(make_manager, transports):
    manager = make_manager()
    states = []
    manager.on_connection_state_change(states.append)
    connected(manager, transports)
    manager.disconnect()
    manager.disconnect()
    assert states == [
        ConnectionState.DISCONNECTED,
        ConnectionState.CONNECTING,
        ConnectionState.CONNECTED,
        ConnectionState.DISCONNECTED,
    ]

    manager.off_connection_state_change(states.append)
    manager.connect()
    assert states[-1] == ConnectionState.DISCONNECTED


# ============ Sending and queueing ============

def test_send_while_connected(make_manager, transports):
    manager = make_manager()
    transport = connected(manager, transports)

    assert manager.send('updateScore', {'teamId': 'team1', 'action': 1}) == SendResult.SENT
    assert manager.send('resetAll') == SendResult.SENT
    assert transport.emitted == [('updateScore', {'teamId': 'team1', 'action': 1}), ('resetAll', None)]


def test_send_while_disconnected_queues_or_drops(make_manager):
    manager = make_manager()
    assert manager.send('requestState', queue_if_disconnected=False) == SendResult.DROPPED
    assert manager.send('startGame') == SendResult.QUEUED
    assert manager.queue_length == 1

    manager.clear_queue()
    assert manager.queue_length == 0


def test_queue_drains_in_order_on_connect(make_manager, transports):
    manager = make_manager()
    manager.send('updateTeam', {'teamId': 'team1', 'updates': {'name': 'Blue'}})
    manager.send('updateScore', {'teamId': 'team1', 'action': 1})
    manager.send('updateScore', {'teamId': 'team1', 'action': -1})

    transport = connected(manager, transports)
    assert [name for name, _ in transport.emitted] == ['updateTeam', 'updateScore', 'updateScore']
    assert transport.emitted[2][1]['action'] == -1
    assert manager.queue_length == 0


def test_send_during_drain_lands_after_backlog(make_manager, transports):
    manager = make_manager()
    manager.send('updateTeam', {'teamId': 'team1', 'updates': {'name': 'Blue'}})
    manager.send('startGame')

    manager.connect()
    transport = transports.last
    emit = transport.emit

    def emit_and_send(event, data=None):
        emit(event, data)
        if event == 'updateTeam':
            assert manager.send('requestState', {}, queue_if_disconnected=False) == SendResult.QUEUED

    transport.emit = emit_and_send
    transport.fire('connect')

    assert [name for name, _ in transport.emitted] == ['updateTeam', 'startGame', 'requestState']
    assert manager.queue_length == 0
    assert manager.send('resetAll') == SendResult.SENT


def test_state_listener_send_on_connect_follows_backlog(make_manager, transports):
    manager = make_manager()
    manager.send('startGame')

    def on_state(state):
        if state == ConnectionState.CONNECTED:
            manager.send('requestState', {})

    manager.on_connection_state_change(on_state)
    transport = connected(manager, transports)
    assert [name for name, _ in transport.emitted] == ['startGame', 'requestState']


def test_stale_queued_operations_are_dropped(make_manager, transports, clock):
    manager = make_manager()
    manager.send('updateScore', {'teamId': 'team1', 'action': 1})
    clock.advance(301)
    manager.send('startGame')

    transport = connected(manager, transports)
    assert transport.emitted == [('startGame', None)]
    assert manager.queue_length == 0


@pytest.mark.parametrize('max_retries, remaining', [(0, 0), (3, 1)])
def test_failed_drain_retries_until_limit(make_manager, transports, max_retries, remaining):
    manager = make_manager()
    manager.send('startGame', max_retries=max_retries)

    manager.connect()
    transports.last.fail_emit = True
    transports.last.fire('connect')
    assert manager.queue_length == remaining


def test_failed_send_while_connected_is_queued(make_manager, transports):
    manager = make_manager()
    transport = connected(manager, transports)
    transport.fail_emit = True
    assert manager.send('startGame') == SendResult.QUEUED
    assert manager.queue_length == 1


# ============ Errors and reconnection ============

def test_connect_timeout_schedules_reconnect(make_manager, transports, timers):
    manager = make_manager()
    states = []
    manager.on_connection_state_change(states.append)
    manager.connect()

    connect_timer = timers.created[0]
    assert connect_timer.interval == 20.0
    connect_timer.fire()

    assert isinstance(manager.last_error, ConnectionTimeout)
    assert transports.last.closed
    assert states[-2:] == [ConnectionState.ERROR, ConnectionState.RECONNECTING]
    assert manager.reconnect_attempt == 1
    [reconnect_timer] = timers.pending
    assert reconnect_timer.interval == 1.0


def test_connect_exception_schedules_reconnect(make_manager, transports, timers):
    transports.connect_error = OSError('connection refused')
    manager = make_manager()
    manager.connect()

    assert isinstance(manager.last_error, OSError)
    assert manager.state == ConnectionState.RECONNECTING
    assert [t.interval for t in timers.pending] == [1.0]


def test_reconnect_timer_opens_new_transport(make_manager, transports, timers):
    manager = make_manager()
    first = connected(manager, transports)

    first.fire('disconnect', 'transport close')
    assert manager.state == ConnectionState.RECONNECTING
    timers.pending[0].fire()

    assert manager.state == ConnectionState.CONNECTING
    assert first.closed
    second = transports.last
    assert second is not first

    second.fire('connect')
    assert manager.state == ConnectionState.CONNECTED
    assert manager.reconnect_attempt == 0


def test_local_disconnect_does_not_reconnect(make_manager, transports, timers):
    manager = make_manager()
    transport = connected(manager, transports)
    transport.fire('disconnect', 'io client disconnect')
    assert manager.state == ConnectionState.DISCONNECTED
    assert timers.pending == []


def test_explicit_disconnect_ignores_late_events(make_manager, transports, timers):
    manager = make_manager()
    transport = connected(manager, transports)

    manager.disconnect()
    assert transport.closed
    assert manager.state == ConnectionState.DISCONNECTED

    transport.fire('disconnect', 'transport close')
    assert manager.state == ConnectionState.DISCONNECTED
    assert timers.pending == []


def test_gives_up_after_max_attempts(make_manager, transports, timers):
    transports.connect_error = OSError('connection refused')
    manager = make_manager(reconnection_attempts=2)
    manager.connect()

    delays = []
    while timers.pending:
        timer = timers.pending[0]
        delays.append(timer.interval)
        timer.fire()

    assert delays == [1.0, 1.5]
    assert len(transports.created) == 3
    assert manager.state == ConnectionState.DISCONNECTED


def test_late_connect_on_abandoned_transport_is_closed(make_manager, transports, timers):
    manager = make_manager()
    manager.connect()
    abandoned = transports.last
    timers.created[0].fire()
    abandoned.closed = False

    abandoned.fire('connect')
    assert abandoned.closed
    assert manager.state == ConnectionState.RECONNECTING


# ============ Backoff ============

def test_backoff_grows_and_caps():
    config = ConnectionConfig()
    no_jitter = lambda: 0.0
    assert backoff_delay(0, config, no_jitter) == 1.0
    assert backoff_delay(1, config, no_jitter) == 1.5
    assert backoff_delay(2, config, no_jitter) == pytest.approx(2.25)
    assert backoff_delay(50, config, no_jitter) == 30.0


def test_backoff_jitter_is_bounded():
    config = ConnectionConfig()
    assert backoff_delay(0, config, lambda: 1.0) == 1.5
    assert backoff_delay(50, config, lambda: 0.999) <= 45.0


# ============ Subscriptions ============

def test_subscriptions_survive_reconnects(make_manager, transports, timers):
    received = []
    manager = make_manager()
    manager.subscribe('updateState', received.append)

    first = connected(manager, transports)
    first.fire('updateState', {'v': 1})

    first.fire('disconnect', 'ping timeout')
    timers.pending[0].fire()
    second = transports.last
    second.fire('connect')
    second.fire('updateState', {'v': 2})
    first.fire('updateState', {'stale': True})

    assert received == [{'v': 1}, {'v': 2}]

    manager.unsubscribe('updateState', received.append)
    second.fire('updateState', {'v': 3})
    assert received == [{'v': 1}, {'v': 2}]


def test_failing_handler_does_not_break_dispatch(make_manager, transports):
    received = []
    manager = make_manager()

    def broken(data):
        raise KeyError('oops')

    manager.subscribe('updateState', broken)
    manager.subscribe('updateState', received.append)
    transport = connected(manager, transports)
    transport.fire('updateState', {'v': 1})
    assert received == [{'v': 1}]
