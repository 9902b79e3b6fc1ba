from datetime import datetime, timedelta, timezone

from tictactoe.services.games import rooms as rooms_module
from tictactoe.services.games.rooms import RoomRegistry, RoomState


def test_create_assigns_x_to_creator():
    registry = RoomRegistry()
    code, room = registry.create('sid-1', 'Alice')
    assert len(code) == 6
    assert code.isalnum() and code.upper() == code
    assert [p.symbol for p in room.players] == ['X']
    assert room.round_count == 0
    assert not room.is_active
    assert room.state == RoomState.WAITING_FOR_PLAYER2
    assert len(registry) == 1


def test_get_is_case_insensitive():
    registry = RoomRegistry()
    code, room = registry.create('sid-1', 'Alice')
    assert registry.get(code.lower()) is room
    assert registry.get(f'  {code} ') is room
    assert registry.get('') is None
    assert registry.get(None) is None


def test_code_is_rerolled_on_collision(monkeypatch):
    registry = RoomRegistry(code_length=4)
    picks = iter(['AAAA', 'AAAA', 'BBBB'])
    monkeypatch.setattr(rooms_module.random, 'choices', lambda alphabet, k: list(next(picks)))
    first, _ = registry.create('sid-1', 'Alice')
    second, _ = registry.create('sid-2', 'Bob')
    assert first == 'AAAA'
    assert second == 'BBBB'


def test_delete_marks_room_torn_down():
    registry = RoomRegistry()
    code, room = registry.create('sid-1', 'Alice')
    assert registry.delete(code) is room
    assert room.state == RoomState.TORN_DOWN
    assert registry.get(code) is None
    assert registry.delete(code) is None


def test_find_by_connection():
    registry = RoomRegistry()
    _, room = registry.create('sid-1', 'Alice')
    registry.create('sid-2', 'Bob')
    assert registry.find_by_connection('sid-1') is room
    assert registry.find_by_connection('nobody') is None


def test_idle_rooms_uses_creation_age():
    registry = RoomRegistry()
    _, old = registry.create('sid-1', 'Alice')
    _, fresh = registry.create('sid-2', 'Bob')
    now = datetime.now(timezone.utc)
    old.created_at = now - timedelta(minutes=31)
    assert registry.idle_rooms(now, 1800) == [old]


def test_linked_session_ids_and_clear():
    registry = RoomRegistry()
    _, a = registry.create('sid-1', 'Alice')
    registry.create('sid-2', 'Bob')
    a.session_id = 7
    assert registry.linked_session_ids() == {7}
    registry.clear()
    assert len(registry) == 0
    assert a.torn_down


def test_state_follows_round_lifecycle():
    registry = RoomRegistry()
    _, room = registry.create('sid-1', 'Alice')
    room.reset_round()
    assert room.state == RoomState.ACTIVE_ROUND
    room.is_active = False
    room.winner = 'X'
    assert room.state == RoomState.ROUND_OVER
    room.ready.add(room.players[0].player_id)
    assert room.state == RoomState.AWAITING_READY
