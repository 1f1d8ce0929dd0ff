# dungeon_server/levels.py - Level catalogue
import os

MAPS_DIR = os.getenv(
    "DUNGEON_MAPS_DIR", os.path.join(os.path.dirname(os.path.abspath(__file__)), "maps")
)

ITEM_TYPES = {
    "DOUSE_FIRE": "Douse Fire",
}

# Order in which levels are played. The last entry ends the game.
LEVEL_ORDER = ["level1", "level2"]

# Win modes
WIN_DOOR = "door"
WIN_EXIT = "exit"

# Each level lists one or more map variants, the objects placed on top of
# the grid, the spawn cells and the items handed out every turn.
#
# `trap_wiring[i]` names the pressure plates that hold trap door i open;
# a trap is open while any of its plates is pressed. `trap_groups` only
# shapes the summary notice sent when traps change.
LEVELS = {
    "level1": {
        "name": "Level 1: The Key and the Door",
        "maps": ["level1.json"],
        "win_condition": WIN_DOOR,
        "starting_positions": {
            "player1": (1, 6),
            "player2": (10, 2),
        },
        "player_items": {
            "player1": ITEM_TYPES["DOUSE_FIRE"],
            "player2": ITEM_TYPES["DOUSE_FIRE"],
        },
        "objects": {
            "key": (1, 2),
            "door": (9, 2),
            # First fire guards the key, second blocks the central gap
            "fires": [(2, 2), (6, 5)],
        },
    },
    "level2": {
        "name": "Level 2: Pressure and Peril",
        "maps": ["level2.json"],
        "win_condition": WIN_DOOR,
        "starting_positions": {
            "player1": (14, 12),
            "player2": (15, 12),
        },
        "player_items": {
            "player1": ITEM_TYPES["DOUSE_FIRE"],
            "player2": ITEM_TYPES["DOUSE_FIRE"],
        },
        "objects": {
            "key": (20, 5),
            "door": (7, 5),
            "fires": [(6, 6), (9, 5)],
            "pressure_plates": [(13, 12), (14, 8), (6, 9)],
            "trap_doors": [(14, 10), (17, 6), (17, 7)],
            "slimes": [(11, 6), (18, 8)],
            "snail": {"x": 15, "y": 5, "direction": -1, "range": 4},
        },
        "trap_wiring": [[0, 1], [2], [2]],
        "trap_groups": [
            {"name": "Middle path", "traps": [0]},
            {"name": "Right chamber", "traps": [1, 2]},
        ],
    },
}


def map_path(level, variant=0):
    maps = level.get("maps") or []
    if not maps:
        return None
    return os.path.join(MAPS_DIR, maps[variant % len(maps)])
