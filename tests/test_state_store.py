import pytest

from impro.core.models import default_state
from impro.core.state import RoomRegistry, ScoreboardStore
from impro.core.templates import DEFAULT_TEMPLATES
from impro.db import Database, MemorySnapshotStore, RoomSnapshotStore


@pytest.fixture()
def store():
    return ScoreboardStore('main')


def test_new_store_is_seeded_with_default_templates(store):
    assert store.state.rounds.templates == DEFAULT_TEMPLATES
    assert store.version == 0
    assert ScoreboardStore('bare', seed_templates=False).state.rounds.templates == ()


def test_apply_bumps_version_and_notifies(store):
    seen = []
    store.add_listener(lambda room, snapshot: seen.append((room, snapshot)))

    assert store.apply('updateTeam', {'teamId': 'team1', 'updates': {'name': 'Blue'}}) is True
    assert store.version == 1
    assert store.state.team1.name == 'Blue'
    assert seen == [('main', store.snapshot())]


def test_rejected_and_unknown_operations_do_not_notify(store):
    seen = []
    store.add_listener(lambda room, snapshot: seen.append(snapshot))

    assert store.apply('updateScore', {'teamId': 'team1', 'action': 0}) is False
    assert store.apply('teleport', {}) is False
    assert store.version == 0
    assert seen == []


def test_failing_operation_is_a_noop(store, monkeypatch):
    from impro.core import state as state_module

    def explode(state, payload):
        raise RuntimeError('boom')

    monkeypatch.setitem(state_module.OPERATIONS, 'updateScore', explode)
    before = store.state
    assert store.apply('updateScore', {'teamId': 'team1', 'action': 1}) is False
    assert store.state is before


def test_listeners_see_mutations_in_order(store):
    scores = []
    store.add_listener(lambda room, snapshot: scores.append(snapshot['team1']['score']))
    store.apply('setScoringMode', {'mode': 'manual'})
    for _ in range(3):
        store.apply('updateScore', {'teamId': 'team1', 'action': 1})
    assert scores == [0, 1, 2, 3]


def test_failing_listener_does_not_block_others(store):
    seen = []

    def broken(room, snapshot):
        raise ValueError('listener bug')

    store.add_listener(broken)
    store.add_listener(lambda room, snapshot: seen.append(room))
    assert store.apply('switchTeamEmojis') is True
    assert seen == ['main']

    store.remove_listener(broken)
    store.remove_listener(broken)


def test_snapshot_is_a_fresh_copy(store):
    snapshot = store.snapshot()
    snapshot['team1']['name'] = 'Hacked'
    assert store.state.team1.name == 'Blue Team'


def test_memory_store_persists_and_restores():
    backing = MemorySnapshotStore()
    store = ScoreboardStore('main', snapshot_store=backing)
    store.apply('updateTeam', {'teamId': 'team2', 'updates': {'name': 'Reds'}})
    store.apply('startGame')
    assert list(backing.events) == ['updateTeam', 'startGame']

    restored = ScoreboardStore('main', snapshot_store=backing)
    assert restored.version == 2
    assert restored.state.team2.name == 'Reds'
    assert restored.state.rounds.game_status == 'live'


def test_memory_store_keeps_recent_events_only():
    backing = MemorySnapshotStore()
    for version in range(1, MemorySnapshotStore.MAX_EVENTS + 11):
        backing.save({}, version, f'op{version}')
    assert len(backing.events) == MemorySnapshotStore.MAX_EVENTS
    assert backing.events[0] == 'op11'
    assert backing.version == MemorySnapshotStore.MAX_EVENTS + 10


def test_sqlite_store_persists_and_restores(tmp_path):
    db = Database(tmp_path / 'impro.db')
    store = ScoreboardStore('finals', snapshot_store=RoomSnapshotStore(db, 'finals'))
    store.apply('startGame')
    store.apply('startRound', {'config': {'type': 'musical'}})

    restored = ScoreboardStore('finals', snapshot_store=RoomSnapshotStore(Database(tmp_path / 'impro.db'), 'finals'))
    assert restored.version == 2
    assert restored.state.rounds.current.type == 'musical'
    assert restored.state.rounds.in_progress


def test_failing_persistence_still_applies():
    class BrokenStore:
        def load(self):
            return None

        def save(self, snapshot, version=0, action=None, payload=None):
            raise OSError('disk full')

    store = ScoreboardStore('main', snapshot_store=BrokenStore())
    assert store.apply('startGame') is True
    assert store.state.rounds.game_status == 'live'


def test_registry_creates_isolated_rooms():
    registry = RoomRegistry(team_names={'team1': 'Home'})
    assert registry.apply('a', 'updateTeam', {'teamId': 'team1', 'updates': {'name': 'Alpha'}})

    assert registry.get('a').state.team1.name == 'Alpha'
    assert registry.get('b').state.team1.name == 'Home'
    assert registry.get('a') is registry.get('a')
    assert registry.rooms() == ['a', 'b']


def test_registry_listeners_cover_later_rooms():
    registry = RoomRegistry()
    registry.get('early')
    seen = []

    def listener(room, snapshot):
        seen.append(room)

    registry.add_listener(listener)
    registry.apply('early', 'startGame')
    registry.apply('late', 'startGame')
    assert seen == ['early', 'late']

    registry.remove_listener(listener)
    registry.apply('late', 'finishGame')
    assert seen == ['early', 'late']


def test_registry_uses_store_factory():
    backings = {}

    def factory(room):
        backings[room] = MemorySnapshotStore()
        return backings[room]

    registry = RoomRegistry(store_factory=factory)
    registry.apply('x', 'resetAll')
    assert backings['x'].version == 1
    assert backings['x'].load()['team1']['name'] == default_state().team1.name
