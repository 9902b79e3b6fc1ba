import pytest

from tictactoe.errors import ValidationError
from tictactoe.messages import (
    CreateRoom,
    JoinExistingRoom,
    JoinRoom,
    MakeMove,
    PlayerReady,
    SendMessage,
    parse_message,
)


def test_dict_payload_with_snake_case():
    msg = parse_message('join_room', ({'room_code': ' ab12cd ', 'player_name': 'Bob'},))
    assert msg == JoinRoom(room_code='AB12CD', player_name='Bob', auth_token=None)


def test_dict_payload_with_camel_case():
    msg = parse_message('join_existing_room', ({
        'roomCode': 'AB12CD',
        'playerName': 'Bob',
        'playerSymbol': 'o',
        'authToken': 'tok',
    },))
    assert msg == JoinExistingRoom(room_code='AB12CD', player_name='Bob', symbol='O', auth_token='tok')


def test_positional_payloads():
    assert parse_message('create_room', ('Alice',)) == CreateRoom(player_name='Alice')
    assert parse_message('create_room', ('Alice', 'tok')) == CreateRoom(player_name='Alice', auth_token='tok')
    assert parse_message('make_move', ('ab12cd', 4)) == MakeMove(room_code='AB12CD', position=4)
    assert parse_message('player_ready', ('ab12cd',)) == PlayerReady(room_code='AB12CD')
    assert parse_message('send_message', ('AB12CD', 'hi')) == SendMessage(room_code='AB12CD', message='hi')


def test_position_coercion():
    assert parse_message('make_move', ({'room_code': 'A', 'position': '7'},)).position == 7
    for bad in (True, 1.5, 'four', None):
        with pytest.raises(ValidationError):
            parse_message('make_move', ({'room_code': 'A', 'position': bad},))


def test_out_of_range_position_passes_parsing():
    # Range is a board rule, checked by the coordinator
    assert parse_message('make_move', ({'room_code': 'A', 'position': 12},)).position == 12


def test_missing_room_code():
    with pytest.raises(ValidationError):
        parse_message('make_move', ({'position': 1},))
    with pytest.raises(ValidationError):
        parse_message('player_ready', ({},))


def test_bad_symbol_and_shapes():
    with pytest.raises(ValidationError):
        parse_message('join_existing_room', ({'room_code': 'A', 'player_name': 'Bob', 'symbol': 'Z'},))
    with pytest.raises(ValidationError):
        parse_message('make_move', ())
    with pytest.raises(ValidationError):
        parse_message('unknown', ({},))


def test_empty_token_means_guest():
    assert parse_message('create_room', ({'player_name': 'Alice', 'auth_token': ''},)).auth_token is None
