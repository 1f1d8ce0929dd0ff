# Shared fixtures: a hand-driven clock, mock sockets and tiny test levels
import json

import pytest

from .game_room import GameRoom

# '.' floor, '#' wall, 'F' torch, 'W' pit, 'E' exit, ' ' nothing drawn
_OVERLAY_IDS = {"#": 1, "F": 7, "W": 41, "E": 49}


def ascii_tilemap(rows):
    """Two-layer Tiled document: floor everywhere drawn, hazards on top."""
    width, height = len(rows[0]), len(rows)
    ground, overlay = [], []
    for row in rows:
        for ch in row:
            ground.append(0 if ch == " " else 16)
            overlay.append(_OVERLAY_IDS.get(ch, 0))
    return {
        "width": width,
        "height": height,
        "layers": [
            {"name": "Ground", "type": "tilelayer", "data": ground},
            {"name": "Overlay", "type": "tilelayer", "data": overlay},
        ],
    }


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


class MockWebSocket:
    def __init__(self, id_val, incoming=()):
        self._id = id_val
        self.incoming = list(incoming)
        self.sent = []
        self.closed = False

    def __hash__(self):
        return self._id

    def __eq__(self, other):
        return isinstance(other, MockWebSocket) and self._id == other._id

    async def send(self, text):
        self.sent.append(json.loads(text))

    async def close(self):
        self.closed = True

    async def __aiter__(self):
        for raw in self.incoming:
            yield raw

    def of_type(self, kind):
        return [m for m in self.sent if m.get("type") == kind]


TEST_LEVELS = {
    # A torch at (2, 1) right next to player1's spawn
    "corridor": {
        "name": "Corridor",
        "tilemap": ascii_tilemap([
            "######",
            "#.F..#",
            "#....#",
            "######",
        ]),
        "win_condition": "exit",
        "starting_positions": {"player1": (1, 1), "player2": (4, 2)},
        "player_items": {"player1": "Douse Fire", "player2": "Douse Fire"},
    },
    "door": {
        "name": "Door Room",
        "tilemap": ascii_tilemap([
            "########",
            "#......#",
            "#......#",
            "########",
        ]),
        "win_condition": "door",
        "starting_positions": {"player1": (1, 1), "player2": (6, 1)},
        "player_items": {"player1": "Douse Fire", "player2": "Douse Fire"},
        "objects": {"key": (2, 1), "door": (5, 1)},
    },
    "exit": {
        "name": "Exit Hall",
        "tilemap": ascii_tilemap([
            "######",
            "#..E.#",
            "#..E.#",
            "######",
        ]),
        "win_condition": "exit",
        "starting_positions": {"player1": (2, 1), "player2": (2, 2)},
        "player_items": {"player1": "Douse Fire", "player2": "Douse Fire"},
    },
    "plates": {
        "name": "Plate Hall",
        "tilemap": ascii_tilemap([
            "#######",
            "#.....#",
            "##.#.##",
            "#.....#",
            "#######",
        ]),
        "win_condition": "exit",
        "starting_positions": {"player1": (2, 1), "player2": (4, 1)},
        "player_items": {"player1": "Douse Fire", "player2": "Douse Fire"},
        "objects": {
            "pressure_plates": [(1, 1), (5, 1)],
            "trap_doors": [(2, 2), (4, 2)],
        },
        "trap_wiring": [[0], [1]],
        "trap_groups": [
            {"name": "West gate", "traps": [0]},
            {"name": "East gate", "traps": [1]},
        ],
    },
    "den": {
        "name": "Slime Den",
        "tilemap": ascii_tilemap([
            "#######",
            "#.....#",
            "#.....#",
            "#######",
        ]),
        "win_condition": "exit",
        "starting_positions": {"player1": (1, 1), "player2": (5, 2)},
        "player_items": {"player1": "Douse Fire", "player2": "Douse Fire"},
        "objects": {
            "slimes": [(4, 1)],
            "snail": {"x": 3, "y": 2, "direction": -1, "range": 2},
        },
    },
    "secret": {
        "name": "Secret Items",
        "tilemap": ascii_tilemap([
            "#####",
            "#...#",
            "#####",
        ]),
        "win_condition": "exit",
        "starting_positions": {"player1": (1, 1), "player2": (3, 1)},
        "player_items": {"player1": "Douse Fire", "player2": "Build Bridge"},
    },
}


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def make_room(clock):
    def _make(*order, start_level=None, rng=None):
        order = list(order) or ["corridor"]
        levels = {name: TEST_LEVELS[name] for name in order}
        return GameRoom(levels=levels, level_order=order, clock=clock, rng=rng, start_level=start_level)
    return _make


@pytest.fixture()
def join_both():
    """Seat two mock sockets; returns (ws1, ws2)."""
    def _join(room):
        ws1, ws2 = MockWebSocket(1), MockWebSocket(2)
        room.assign_slot(ws1, room.accept_connection())
        room.assign_slot(ws2, room.accept_connection())
        return ws1, ws2
    return _join


@pytest.fixture()
def mock_ws():
    return MockWebSocket
