import json

import pytest

from impro.db import Database, RoomSnapshotStore, get_data_dir, get_default_db_path


@pytest.fixture()
def db(tmp_path):
    return Database(tmp_path / 'impro.db')


def test_default_paths_live_in_data_dir():
    assert get_data_dir().name == 'impro'
    assert get_default_db_path() == get_data_dir() / 'impro.db'


def test_creates_missing_directories(tmp_path):
    path = tmp_path / 'nested' / 'dir' / 'impro.db'
    Database(path)
    assert path.exists()


def test_load_unknown_room_returns_none(db):
    assert db.load_snapshot('nobody') is None


def test_save_and_load_snapshot(db):
    db.save_snapshot('main', 1, {'team1': {'name': 'Blue'}})
    db.save_snapshot('main', 2, {'team1': {'name': 'Green'}})

    snapshot = db.load_snapshot('main')
    assert snapshot.version == 2
    assert snapshot.state == {'team1': {'name': 'Green'}}
    assert snapshot.updated_at is not None


def test_events_are_logged_oldest_first(db):
    db.save_snapshot('main', 1, {}, 'startGame')
    db.save_snapshot('main', 2, {}, 'updateScore', {'teamId': 'team1', 'action': 1})
    db.save_snapshot('main', 3, {})
    db.save_snapshot('other', 1, {}, 'resetAll')

    events = db.get_room_events('main')
    assert [e.action for e in events] == ['startGame', 'updateScore']
    assert [e.version for e in events] == [1, 2]
    assert json.loads(events[1].payload) == {'teamId': 'team1', 'action': 1}

    assert [e.action for e in db.get_room_events('main', limit=1)] == ['updateScore']


def test_list_and_delete_rooms(db):
    db.save_snapshot('a', 1, {})
    db.save_snapshot('b', 4, {}, 'startGame')

    rooms = {r.room: r for r in db.list_rooms()}
    assert set(rooms) == {'a', 'b'}
    assert rooms['b'].version == 4
    assert rooms['b'].state is None

    assert db.delete_room('b') is True
    assert db.delete_room('b') is False
    assert db.get_room_events('b') == []
    assert [r.room for r in db.list_rooms()] == ['a']


def test_invalid_json_snapshot_is_ignored(db):
    with db._get_conn() as conn:
        conn.execute("INSERT INTO room_snapshots (room, version, state) VALUES (?, ?, ?)",
                     ('broken', 3, '{not json'))
    assert db.load_snapshot('broken') is None


def test_corrupted_file_is_backed_up_and_recreated(tmp_path):
    path = tmp_path / 'impro.db'
    path.write_bytes(b'this is definitely not a sqlite database' * 100)

    db = Database(path)
    db.save_snapshot('main', 1, {'ok': True})

    assert db.load_snapshot('main').state == {'ok': True}
    assert list(tmp_path.glob('impro.corrupted.*.db'))


def test_room_snapshot_store_tracks_version(db):
    store = RoomSnapshotStore(db, 'main')
    assert store.load() is None
    assert store.version == 0

    store.save({'scoringMode': 'manual'}, 5, 'setScoringMode', {'mode': 'manual'})
    assert store.version == 5

    reopened = RoomSnapshotStore(db, 'main')
    assert reopened.load() == {'scoringMode': 'manual'}
    assert reopened.version == 5
