from .protocol import (
    EndTurn,
    Move,
    ResetPositions,
    UseItem,
    decode,
    encode,
    notice,
    parse_action,
    to_all,
    to_slot,
)


def test_parse_known_actions():
    assert parse_action({"type": "move", "direction": "left"}) == Move("left")
    assert parse_action({"type": "use_item", "item": "Douse Fire"}) == UseItem("Douse Fire")
    assert parse_action({"type": "end_turn"}) == EndTurn()
    assert parse_action({"type": "reset_positions"}) == ResetPositions()


def test_hyphenated_aliases():
    assert parse_action({"type": "use-item", "item": "Douse Fire"}) == UseItem("Douse Fire")
    assert parse_action({"type": "end-turn"}) == EndTurn()
    assert parse_action({"type": "reset-positions"}) == ResetPositions()


def test_malformed_frames_are_dropped():
    bad = [
        None,
        "move",
        [],
        {},
        {"type": 7},
        {"type": "teleport"},
        {"type": "move"},
        {"type": "move", "direction": "north"},
        {"type": "move", "direction": 1},
        {"type": "use_item"},
        {"type": "use_item", "item": ""},
        {"type": "use_item", "item": ["Douse Fire"]},
    ]
    for data in bad:
        assert parse_action(data) is None, data


def test_notice_carries_expiry():
    msg = notice("door_message", "hello", unlocked=True)
    assert msg == {"type": "door_message", "message": "hello", "expires_in": 3, "unlocked": True}


def test_outbound_addressing():
    assert to_all({"type": "x"}).to is None
    assert to_all({"type": "x"}, exclude="player1").exclude == "player1"
    assert to_slot("player2", {"type": "x"}).to == "player2"


def test_codec():
    assert decode(encode({"type": "end_turn"})) == {"type": "end_turn"}
