import threading
from datetime import datetime, timedelta, timezone

import pytest

from tictactoe import db
from tictactoe.errors import StateConflictError, ValidationError
from tictactoe.models import GameRound, GameSession
from tictactoe.services.games.rooms import RoomState


def _start(coordinator, first='Alice', second='Bob'):
    code = coordinator.create_room('sid-a', first).room_code
    coordinator.join_room('sid-b', code, second)
    return code


def _play(coordinator, code, positions):
    room = coordinator.registry.get(code)
    outcome = None
    for position in positions:
        sid = room.player_by_symbol(room.current_turn).connection_id
        outcome = coordinator.make_move(sid, code, position)
    return outcome


def _session(room):
    db.session.expire_all()
    return db.session.get(GameSession, room.session_id)


def test_create_room_ack(coordinator):
    outcome = coordinator.create_room('sid-a', '  Alice ')
    assert outcome.ack == {'success': True, 'room_code': outcome.room_code, 'assigned_symbol': 'X'}
    assert outcome.join
    room = coordinator.registry.get(outcome.room_code)
    assert room.players[0].name == 'Alice'
    assert room.round_count == 0
    assert not room.is_active


def test_create_room_requires_name(coordinator):
    with pytest.raises(ValidationError):
        coordinator.create_room('sid-a', '   ')
    assert len(coordinator.registry) == 0


def test_join_creates_session_and_broadcasts_ready(coordinator):
    code = coordinator.create_room('sid-a', 'Alice').room_code
    outcome = coordinator.join_room('sid-b', code, 'Bob')

    assert outcome.ack == {'success': True, 'room_code': code, 'assigned_symbol': 'O'}
    room = coordinator.registry.get(code)
    assert room.is_active and room.round_count == 1
    assert room.state == RoomState.ACTIVE_ROUND

    session = _session(room)
    assert session.player1_name == 'Alice'
    assert session.player2_name == 'Bob'
    assert session.total_rounds == 0
    assert session.session_type == 'guest'

    [ready] = outcome.broadcasts
    assert ready.event == 'game_ready'
    assert ready.to == code
    assert ready.payload['game_session']['id'] == session.id
    assert [p['symbol'] for p in ready.payload['players']] == ['X', 'O']


def test_join_rejections(coordinator):
    with pytest.raises(StateConflictError) as exc:
        coordinator.join_room('sid-b', 'NOPE00', 'Bob')
    assert exc.value.code == 'room_not_found'

    code = coordinator.create_room('sid-a', 'Alice').room_code
    with pytest.raises(ValidationError):
        coordinator.join_room('sid-b', code, 'Alice')
    coordinator.join_room('sid-b', code, 'Bob')
    with pytest.raises(StateConflictError) as exc:
        coordinator.join_room('sid-c', code, 'Carol')
    assert exc.value.code == 'room_full'
    assert len(coordinator.registry.get(code).players) == 2


def test_join_is_idempotent_for_session(coordinator):
    code = _start(coordinator)
    room = coordinator.registry.get(code)
    first_id = room.session_id
    coordinator.reconciler.ensure_created(room)
    assert room.session_id == first_id
    assert GameSession.query.count() == 1


def test_winning_round_is_reconciled(coordinator):
    code = _start(coordinator)
    outcome = _play(coordinator, code, [0, 3, 1, 4, 2])
    room = coordinator.registry.get(code)

    assert room.board == ['X', 'X', 'X', 'O', 'O', None, None, None, None]
    assert room.winner == 'X'
    assert not room.is_active
    assert room.state == RoomState.ROUND_OVER

    [made] = outcome.broadcasts
    assert made.event == 'move_made'
    assert made.payload['game_state']['winner'] == 'X'
    assert made.payload['game_session']['player1_wins'] == 1

    session = _session(room)
    assert session.player1_wins == 1
    assert session.player2_wins == 0
    assert session.total_rounds == 1
    [recorded] = session.rounds
    assert recorded.winner == 'player1'
    assert recorded.board == room.board
    assert [m['position'] for m in recorded.moves] == [0, 3, 1, 4, 2]


def test_draw_round_is_reconciled(coordinator):
    code = _start(coordinator)
    _play(coordinator, code, [0, 1, 2, 4, 3, 5, 7, 6, 8])
    room = coordinator.registry.get(code)
    assert room.winner is None
    assert room.is_draw
    session = _session(room)
    assert session.draws == 1
    assert session.total_rounds == 1


def test_non_terminal_move_does_not_touch_storage(coordinator, monkeypatch):
    code = _start(coordinator)
    calls = []
    monkeypatch.setattr(coordinator.reconciler, 'snapshot', lambda sid: calls.append(sid))
    monkeypatch.setattr(coordinator.reconciler, 'record_round', lambda *a: calls.append(a))
    outcome = _play(coordinator, code, [4])
    assert calls == []
    assert 'game_session' not in outcome.broadcasts[0].payload
    assert outcome.broadcasts[0].payload['position'] == 4


def test_occupied_cell_is_rejected_without_change(coordinator):
    code = _start(coordinator)
    _play(coordinator, code, [4])
    room = coordinator.registry.get(code)
    before = (list(room.board), room.current_turn)
    with pytest.raises(StateConflictError) as exc:
        coordinator.make_move('sid-b', code, 4)
    assert exc.value.code == 'invalid_target'
    assert exc.value.message == 'Position already taken'
    assert (room.board, room.current_turn) == before


def test_out_of_range_is_rejected_like_occupied(coordinator):
    code = _start(coordinator)
    for position in (-1, 9, 42):
        with pytest.raises(StateConflictError) as exc:
            coordinator.make_move('sid-a', code, position)
        assert exc.value.code == 'invalid_target'
    assert coordinator.registry.get(code).current_turn == 'X'


def test_turn_order_is_enforced(coordinator):
    code = _start(coordinator)
    with pytest.raises(StateConflictError) as exc:
        coordinator.make_move('sid-b', code, 0)
    assert exc.value.code == 'not_your_turn'
    with pytest.raises(StateConflictError) as exc:
        coordinator.make_move('stranger', code, 0)
    assert exc.value.code == 'not_your_turn'

    coordinator.make_move('sid-a', code, 0)
    room = coordinator.registry.get(code)
    assert room.current_turn == 'O'
    assert room.board[0] == 'X'


def test_move_without_active_round(coordinator):
    code = coordinator.create_room('sid-a', 'Alice').room_code
    with pytest.raises(StateConflictError) as exc:
        coordinator.make_move('sid-a', code, 0)
    assert exc.value.code == 'game_not_active'
    with pytest.raises(StateConflictError):
        coordinator.make_move('sid-a', 'ZZZZZZ', 0)


def test_no_moves_after_round_ends(coordinator):
    code = _start(coordinator)
    _play(coordinator, code, [0, 3, 1, 4, 2])
    with pytest.raises(StateConflictError) as exc:
        coordinator.make_move('sid-b', code, 8)
    assert exc.value.code == 'game_not_active'


def test_ready_from_both_starts_swapped_round(coordinator):
    code = _start(coordinator)
    _play(coordinator, code, [0, 3, 1, 4, 2])

    first = coordinator.player_ready('sid-a', code)
    assert [b.event for b in first.broadcasts] == ['player_ready_status']
    assert first.broadcasts[0].payload['ready_count'] == 1
    room = coordinator.registry.get(code)
    assert room.state == RoomState.AWAITING_READY

    second = coordinator.player_ready('sid-b', code)
    assert [b.event for b in second.broadcasts] == ['player_ready_status', 'new_round_started']

    assert room.round_count == 2
    assert room.board == [None] * 9
    assert room.current_turn == 'X'
    assert room.is_active
    assert not room.ready
    assert room.moves == []
    symbols = {p.name: p.symbol for p in room.players}
    assert symbols == {'Alice': 'O', 'Bob': 'X'}
    assert second.broadcasts[1].payload['game_session']['total_rounds'] == 1


def test_winner_maps_by_name_after_swap(coordinator):
    code = _start(coordinator)
    _play(coordinator, code, [0, 3, 1, 4, 2])
    coordinator.player_ready('sid-a', code)
    coordinator.player_ready('sid-b', code)
    # Bob now holds X and wins round two
    _play(coordinator, code, [0, 3, 1, 4, 2])
    coordinator.player_ready('sid-a', code)
    coordinator.player_ready('sid-b', code)
    _play(coordinator, code, [0, 1, 2, 4, 3, 5, 7, 6, 8])

    session = _session(coordinator.registry.get(code))
    assert session.player1_wins == 1
    assert session.player2_wins == 1
    assert session.draws == 1
    assert session.total_rounds == 3
    assert session.player1_wins + session.player2_wins + session.draws == session.total_rounds
    assert [r.winner for r in session.rounds] == ['player1', 'player2', 'draw']


def test_ready_requires_finished_round(coordinator):
    code = _start(coordinator)
    with pytest.raises(StateConflictError) as exc:
        coordinator.player_ready('sid-a', code)
    assert exc.value.code == 'round_in_progress'

    solo = coordinator.create_room('sid-c', 'Carol').room_code
    with pytest.raises(StateConflictError) as exc:
        coordinator.player_ready('sid-c', solo)
    assert exc.value.code == 'game_not_active'

    with pytest.raises(StateConflictError) as exc:
        coordinator.player_ready('stranger', code)
    assert exc.value.code == 'not_in_room'


def test_repeated_ready_counts_once(coordinator):
    code = _start(coordinator)
    _play(coordinator, code, [0, 3, 1, 4, 2])
    coordinator.player_ready('sid-a', code)
    again = coordinator.player_ready('sid-a', code)
    assert again.broadcasts[0].payload['ready_count'] == 1
    assert coordinator.registry.get(code).round_count == 1


def test_new_round_skips_handshake(coordinator):
    code = _start(coordinator)
    with pytest.raises(StateConflictError):
        coordinator.new_round('sid-a', code)
    _play(coordinator, code, [0, 3, 1, 4, 2])
    outcome = coordinator.new_round('sid-b', code)
    assert outcome.broadcasts[0].event == 'new_round_started'
    room = coordinator.registry.get(code)
    assert room.round_count == 2
    assert room.player_by_symbol('X').name == 'Bob'


def test_send_message(coordinator):
    code = _start(coordinator)
    outcome = coordinator.send_message('sid-b', code, '  gg  ')
    [chat] = outcome.broadcasts
    assert chat.event == 'new_message'
    assert chat.payload['message'] == 'gg'
    assert chat.payload['player_name'] == 'Bob'
    assert chat.payload['player_symbol'] == 'O'
    with pytest.raises(ValidationError):
        coordinator.send_message('sid-b', code, '   ')
    with pytest.raises(ValidationError):
        coordinator.send_message('sid-b', code, 'x' * 501)
    with pytest.raises(StateConflictError):
        coordinator.send_message('stranger', code, 'hi')


def test_disconnect_with_one_left_keeps_room(coordinator):
    code = _start(coordinator)
    outcome = coordinator.disconnect('sid-b')
    [left] = outcome.broadcasts
    assert left.event == 'player_disconnected'
    assert left.payload['player_name'] == 'Bob'
    assert left.skip_connection == 'sid-b'
    room = coordinator.registry.get(code)
    assert [p.name for p in room.players] == ['Alice']
    assert coordinator.disconnect('unknown-sid').broadcasts == []


def test_abandoned_room_deletes_empty_session(coordinator):
    code = _start(coordinator)
    room = coordinator.registry.get(code)
    session_id = room.session_id
    coordinator.disconnect('sid-a')
    coordinator.disconnect('sid-b')
    assert coordinator.registry.get(code) is None
    assert room.state == RoomState.TORN_DOWN
    db.session.expire_all()
    assert db.session.get(GameSession, session_id) is None


def test_played_session_survives_teardown(coordinator):
    code = _start(coordinator)
    _play(coordinator, code, [0, 3, 1, 4, 2])
    session_id = coordinator.registry.get(code).session_id
    coordinator.disconnect('sid-a')
    coordinator.disconnect('sid-b')
    db.session.expire_all()
    assert db.session.get(GameSession, session_id).total_rounds == 1
    assert GameRound.query.filter_by(session_id=session_id).count() == 1


def test_rejoin_rebinds_connection(coordinator):
    code = _start(coordinator)
    outcome = coordinator.rejoin_room('sid-b2', code, 'Bob', 'O')
    assert outcome.ack == {'success': True}
    assert outcome.broadcasts[0].to == 'sid-b2'
    room = coordinator.registry.get(code)
    assert room.player_by_symbol('O').connection_id == 'sid-b2'
    _play(coordinator, code, [0])
    coordinator.make_move('sid-b2', code, 4)
    assert room.board[4] == 'O'


def test_rejoin_late_join_into_open_seat(coordinator):
    code = _start(coordinator)
    _play(coordinator, code, [0])
    coordinator.disconnect('sid-b')
    outcome = coordinator.rejoin_room('sid-b2', code, 'Bob', 'O')
    assert outcome.broadcasts[0].to == code
    room = coordinator.registry.get(code)
    assert room.is_active
    assert room.board[0] == 'X'
    assert GameSession.query.count() == 1

    with pytest.raises(StateConflictError) as exc:
        coordinator.rejoin_room('sid-c', code, 'Carol', 'X')
    assert exc.value.code == 'room_full'


def test_new_opponent_replaces_unplayed_session(coordinator):
    code = _start(coordinator)
    room = coordinator.registry.get(code)
    old_id = room.session_id
    coordinator.disconnect('sid-b')
    coordinator.join_room('sid-c', code, 'Carol')
    assert room.session_id != old_id
    db.session.expire_all()
    assert db.session.get(GameSession, old_id) is None
    assert _session(room).player2_name == 'Carol'


def test_new_opponent_starts_a_fresh_round(coordinator):
    code = _start(coordinator)
    _play(coordinator, code, [0, 3, 1])
    coordinator.disconnect('sid-b')
    coordinator.join_room('sid-c', code, 'Carol')

    room = coordinator.registry.get(code)
    assert room.board == [None] * 9
    assert room.moves == []
    assert room.current_turn == 'X'
    assert room.is_active
    assert room.round_count == 1

    _play(coordinator, code, [2, 0, 4, 1, 6])
    session = _session(room)
    assert (session.player1_name, session.player2_name) == ('Alice', 'Carol')
    assert (session.player1_wins, session.total_rounds) == (1, 1)
    [recorded] = session.rounds
    assert recorded.winner == 'player1'
    assert [m['position'] for m in recorded.moves] == [2, 0, 4, 1, 6]


def test_late_join_after_finished_round_opens_next_round(coordinator):
    code = _start(coordinator)
    _play(coordinator, code, [0, 3, 1, 4, 2])
    coordinator.disconnect('sid-b')
    coordinator.rejoin_room('sid-c', code, 'Carol', 'O')

    room = coordinator.registry.get(code)
    assert room.round_count == 2
    assert room.is_active
    assert room.winner is None
    assert room.board == [None] * 9


def test_rejoin_with_remaining_players_name_is_invalid(coordinator):
    code = _start(coordinator)
    coordinator.disconnect('sid-b')
    with pytest.raises(ValidationError) as exc:
        coordinator.rejoin_room('sid-c', code, 'Alice', 'O')
    assert exc.value.message == 'Player names must be different'
    assert len(coordinator.registry.get(code).players) == 1


def test_serialized_holds_the_room_lock(coordinator):
    code = _start(coordinator)
    moved = threading.Event()

    def bob_moves():
        coordinator.make_move('sid-b', code, 4)
        moved.set()

    with coordinator.serialized(code) as room:
        coordinator.make_move('sid-a', code, 0)
        contender = threading.Thread(target=bob_moves)
        contender.start()
        assert not moved.wait(0.2)
        assert room.board[4] is None
    contender.join(timeout=5)
    assert moved.is_set()
    assert room.board[4] == 'O'

    with coordinator.serialized('NOPE00') as missing:
        assert missing is None
    with coordinator.serialized(connection_id='sid-a') as found:
        assert found is room


def test_evict_idle_cleans_up(coordinator):
    code = _start(coordinator)
    room = coordinator.registry.get(code)
    session_id = room.session_id
    later = datetime.now(timezone.utc) + timedelta(seconds=1801)
    assert coordinator.evict_idle(later) == [code]
    assert coordinator.registry.get(code) is None
    db.session.expire_all()
    assert db.session.get(GameSession, session_id) is None
    assert coordinator.evict_idle(later) == []


def test_storage_failure_keeps_room_playing(coordinator, monkeypatch):
    from sqlalchemy.exc import OperationalError

    def unavailable(**kwargs):
        raise OperationalError('INSERT', {}, Exception('database is down'))

    code = coordinator.create_room('sid-a', 'Alice').room_code
    monkeypatch.setattr('tictactoe.services.games.reconciliation.GameSession', unavailable)
    outcome = coordinator.join_room('sid-b', code, 'Bob')
    room = coordinator.registry.get(code)
    assert room.session_id is None
    assert 'game_session' not in outcome.broadcasts[0].payload
    monkeypatch.undo()

    last = _play(coordinator, code, [0, 3, 1, 4, 2])
    assert last.ack == {'success': True}
    assert room.winner == 'X'
    assert GameSession.query.count() == 0


def test_concurrent_moves_are_serialized(coordinator):
    code = _start(coordinator)
    barrier = threading.Barrier(2)
    results = []

    def attempt(position):
        barrier.wait()
        try:
            coordinator.make_move('sid-a', code, position)
            results.append('ok')
        except StateConflictError as exc:
            results.append(exc.code)

    threads = [threading.Thread(target=attempt, args=(p,)) for p in (0, 1)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert sorted(results) == ['not_your_turn', 'ok']
    room = coordinator.registry.get(code)
    assert room.board.count('X') == 1
    assert room.current_turn == 'O'


def test_shutdown_clears_registry(coordinator):
    _start(coordinator)
    coordinator.shutdown()
    assert len(coordinator.registry) == 0
