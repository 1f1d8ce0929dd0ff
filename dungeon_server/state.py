# dungeon_server/state.py
import copy

from . import tilemap
from .levels import map_path
from .tilemap import FLOOR, WALL, FIRE, CHASM


class GameState:
    """Authoritative world state for the 2-player dungeon game.

    GameRoom is the only writer. Anything leaving the process goes
    through `view_for`, which is the one place the secret inventory is
    read for a client.
    """

    SLOTS = ("player1", "player2")
    ACTIONS_PER_TURN = 2

    def __init__(self):
        self.grid = []
        self.width = 0
        self.height = 0
        # { slot_id : {"id":.., "x":.., "y":.., "facing":.., "connection":..} }
        self.players = {}
        self.starting_positions = {}

        self.started = False
        self.current_player = None
        self.actions_remaining = self.ACTIONS_PER_TURN
        self.turn_number = 0

        # { slot_id : item } - never sent to the partner
        self._inventory = {}

        self.key = None
        self.door = None
        self.fires = []
        self.pressure_plates = []
        self.trap_doors = []
        self.slimes = []
        self.snail = None

        self.level_id = None
        self.level_name = None
        self.map_variant = 0
        self.progression_index = 1
        self.won = False
        self.completed = False
        self.transition = None
        self.victory_time = None
        self.final_victory_time = None
        self.disconnected_player = None

    # ---- inventory -------------------------------------------------------

    def item_for(self, slot_id):
        return self._inventory.get(slot_id)

    def give_item(self, slot_id, item):
        self._inventory[slot_id] = item

    def clear_items(self):
        self._inventory = {}

    # ---- level loading ---------------------------------------------------

    def load_level(self, level_id, level, variant=0):
        """Replace grid, puzzle objects and spawn points with a fresh copy of `level`."""
        if level.get("tilemap") is not None:
            tm = tilemap.parse_tilemap(level["tilemap"])
        else:
            path = map_path(level, variant)
            tm = tilemap.load_tilemap(path) if path else tilemap.default_map()

        self.grid = [list(row) for row in tm.grid]
        self.width = tm.width
        self.height = tm.height
        self.level_id = level_id
        self.level_name = level.get("name", level_id)
        self.map_variant = variant

        objects = level.get("objects", {})
        key = objects.get("key")
        self.key = {"x": key[0], "y": key[1], "held_by": None} if key else None
        door = objects.get("door")
        self.door = {"x": door[0], "y": door[1], "unlocked": False} if door else None
        self.fires = [{"x": x, "y": y, "doused": False} for x, y in objects.get("fires", [])]
        self.pressure_plates = [
            {"x": x, "y": y, "pressed": False} for x, y in objects.get("pressure_plates", [])
        ]
        self.trap_doors = [{"x": x, "y": y, "open": False} for x, y in objects.get("trap_doors", [])]
        self.slimes = [
            {"x": x, "y": y, "stunned": False, "stun_turns": 0, "facing": None}
            for x, y in objects.get("slimes", [])
        ]
        snail = objects.get("snail")
        if snail:
            self.snail = {
                "x": snail["x"],
                "y": snail["y"],
                "direction": snail.get("direction", -1),
                "range": snail.get("range", 4),
                "anchor_x": snail["x"],
                "last_interaction_turn": -1,
            }
        else:
            self.snail = None

        # Fire objects always sit on fire cells until doused
        for fire in self.fires:
            if self.in_bounds(fire["x"], fire["y"]):
                self.grid[fire["y"]][fire["x"]] = FIRE

        self.starting_positions = self._resolve_starting_positions(level)
        self.ensure_safe_starting_positions()

        print(f"[MAP] Loaded {self.level_name} ({self.width}x{self.height}) variant {variant}")
        for row in tilemap.render_ascii(self.grid, max_rows=10):
            print(f"[MAP]   {row}")

    def _resolve_starting_positions(self, level):
        configured = level.get("starting_positions")
        if configured:
            return {slot: tuple(pos) for slot, pos in configured.items()}
        floors = [
            (x, y)
            for y in range(self.height)
            for x in range(self.width)
            if self.grid[y][x] == FLOOR
        ]
        if len(floors) >= 2:
            # First and last floor cells keep the players apart
            return {"player1": floors[0], "player2": floors[-1]}
        return {"player1": (1, 1), "player2": (self.width - 2, self.height - 2)}

    def ensure_safe_starting_positions(self):
        for slot, (x, y) in self.starting_positions.items():
            if not self.in_bounds(x, y):
                continue
            tile = self.grid[y][x]
            if tile != FLOOR:
                print(f"[MAP] WARNING: {slot} spawn ({x}, {y}) is {tilemap.TILE_NAMES.get(tile)}; converting to FLOOR")
                self.grid[y][x] = FLOOR
                for fire in self.fires:
                    if (fire["x"], fire["y"]) == (x, y):
                        fire["doused"] = True

    def start_position(self, slot_id):
        return self.starting_positions.get(slot_id, (1, 1))

    # ---- queries ---------------------------------------------------------

    def in_bounds(self, x, y):
        return 0 <= x < self.width and 0 <= y < self.height

    def tile_at(self, x, y):
        if not self.in_bounds(x, y):
            return None
        return self.grid[y][x]

    def fire_at(self, x, y):
        for fire in self.fires:
            if fire["x"] == x and fire["y"] == y and not fire["doused"]:
                return fire
        return None

    def closed_trap_at(self, x, y):
        for trap in self.trap_doors:
            if trap["x"] == x and trap["y"] == y and not trap["open"]:
                return trap
        return None

    def slime_at(self, x, y, exclude=None):
        for slime in self.slimes:
            if slime is not exclude and slime["x"] == x and slime["y"] == y:
                return slime
        return None

    def player_at(self, x, y):
        for slot_id, p in self.players.items():
            if p["x"] == x and p["y"] == y:
                return slot_id
        return None

    def terrain_blocks(self, x, y):
        """Why (x, y) cannot be entered by terrain alone, or None if it can."""
        tile = self.tile_at(x, y)
        if tile is None:
            return "out of bounds"
        if tile == WALL:
            return "wall"
        if tile in (FIRE, CHASM):
            return "hazard"
        if self.fire_at(x, y):
            return "fire"
        if self.closed_trap_at(x, y):
            return "trap"
        return None

    def other_slot(self, slot_id):
        return self.SLOTS[1] if slot_id == self.SLOTS[0] else self.SLOTS[0]

    # ---- copies ----------------------------------------------------------

    def clone(self):
        """Deep copy that shares the live connection handles."""
        memo = {}
        for p in self.players.values():
            conn = p.get("connection")
            if conn is not None:
                memo[id(conn)] = conn
        return copy.deepcopy(self, memo)


def view_for(state, slot_id):
    """Build the snapshot one recipient is allowed to see.

    Carries the viewer's own item only; the inventory map and
    connection handles never leave the server.
    """
    players = {
        sid: {"id": sid, "x": p["x"], "y": p["y"], "facing": p.get("facing")}
        for sid, p in state.players.items()
    }
    return {
        "type": "game_state",
        "grid": [list(row) for row in state.grid],
        "width": state.width,
        "height": state.height,
        "players": players,
        "started": state.started,
        "current_player": state.current_player,
        "actions_remaining": state.actions_remaining,
        "turn_number": state.turn_number,
        "your_player_id": slot_id,
        "your_item": state.item_for(slot_id),
        "level_id": state.level_id,
        "level_name": state.level_name,
        "map_variant": state.map_variant,
        "progression_index": state.progression_index,
        "won": state.won,
        "completed": state.completed,
        "transition": dict(state.transition) if state.transition else None,
        "victory_time": state.victory_time,
        "final_victory_time": state.final_victory_time,
        "disconnected_player": dict(state.disconnected_player) if state.disconnected_player else None,
        "key": dict(state.key) if state.key else None,
        "door": dict(state.door) if state.door else None,
        "fires": [dict(f) for f in state.fires],
        "pressure_plates": [dict(p) for p in state.pressure_plates],
        "trap_doors": [dict(t) for t in state.trap_doors],
        "slimes": [dict(s) for s in state.slimes],
        "snail": dict(state.snail) if state.snail else None,
    }
