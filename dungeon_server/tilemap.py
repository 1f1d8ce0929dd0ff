# dungeon_server/tilemap.py - Tiled map ingestion into the logical grid
import json
from collections import namedtuple

# Logical tile codes
FLOOR = 0
WALL = 1
FIRE = 2
CHASM = 3
EXIT = 4

TILE_NAMES = {FLOOR: "FLOOR", WALL: "WALL", FIRE: "FIRE", CHASM: "CHASM", EXIT: "EXIT"}
TILE_CHARS = {FLOOR: ".", WALL: "#", FIRE: "F", CHASM: "W", EXIT: "E"}

# Tileset id -> logical tile. Ids not listed here are floor decorations.
TILE_ID_TO_TYPE = {
    # Brick walls
    1: WALL, 5: WALL, 6: WALL, 8: WALL, 9: WALL, 10: WALL,
    12: WALL, 13: WALL, 15: WALL, 29: WALL, 30: WALL, 34: WALL,
    # Cracked floor
    16: FLOOR, 17: FLOOR, 18: FLOOR, 19: FLOOR, 23: FLOOR, 25: FLOOR, 26: FLOOR,
    # Torches
    2: FIRE, 7: FIRE,
    # Barrels and pots over the pit
    41: CHASM, 42: CHASM,
    # Pressure plate art, drawn over floor
    28: FLOOR,
    # Rubble floor that looks like a pit
    43: FLOOR, 44: FLOOR,
    # Chest / stairway
    49: EXIT,
}

TileMap = namedtuple("TileMap", ["grid", "width", "height"])


def default_map():
    """Small bordered room used whenever a level file cannot be read."""
    grid = [
        [1, 1, 1, 1, 1, 1, 1, 1, 1, 1, 1, 1],
        [1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1],
        [1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1],
        [1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1],
        [1, 0, 0, 0, 0, 4, 0, 0, 0, 0, 0, 1],
        [1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1],
        [1, 0, 0, 0, 0, 0, 0, 0, 0, 0, 0, 1],
        [1, 1, 1, 1, 1, 1, 1, 1, 1, 1, 1, 1],
    ]
    return TileMap(grid, 12, 8)


def _is_int(value):
    return isinstance(value, int) and not isinstance(value, bool)


def _paint(grid, painted, x, y, tile_id):
    """Overwrite one cell if the tile id is non-empty and inside the map."""
    if not _is_int(tile_id) or tile_id <= 0:
        return
    if 0 <= y < len(grid) and 0 <= x < len(grid[0]):
        grid[y][x] = TILE_ID_TO_TYPE.get(tile_id, FLOOR)
        painted[y][x] = True


def parse_tilemap(data):
    """Flatten a layered Tiled document into a grid of logical tiles.

    Layers are applied in declared order and the highest non-empty tile
    wins. A cell no layer draws on is void and becomes a wall. Both flat
    `data` layers and infinite-map `chunks` layers are understood.
    Malformed documents yield the built-in fallback map.
    """
    try:
        if not isinstance(data, dict):
            raise ValueError("tilemap is not an object")
        width = data.get("width")
        height = data.get("height")
        layers = data.get("layers")
        if not _is_int(width) or not _is_int(height) or width <= 0 or height <= 0:
            raise ValueError("tilemap width/height missing or invalid")
        if not isinstance(layers, list) or not layers:
            raise ValueError("tilemap has no layers")

        grid = [[FLOOR for _ in range(width)] for _ in range(height)]
        painted = [[False for _ in range(width)] for _ in range(height)]

        for layer in layers:
            if not isinstance(layer, dict):
                continue
            if layer.get("type", "tilelayer") != "tilelayer":
                continue
            if isinstance(layer.get("data"), list):
                for i, tile_id in enumerate(layer["data"]):
                    _paint(grid, painted, i % width, i // width, tile_id)
            elif isinstance(layer.get("chunks"), list):
                for chunk in layer["chunks"]:
                    cw = chunk.get("width")
                    if not _is_int(cw) or cw <= 0:
                        continue
                    cx, cy = chunk.get("x", 0), chunk.get("y", 0)
                    for i, tile_id in enumerate(chunk.get("data") or []):
                        _paint(grid, painted, cx + i % cw, cy + i // cw, tile_id)

        for y in range(height):
            for x in range(width):
                if not painted[y][x]:
                    grid[y][x] = WALL

        print(f"[MAP] Parsed tilemap: {width}x{height}")
        return TileMap(grid, width, height)
    except Exception as e:
        print(f"[MAP] Invalid tilemap ({e}); using fallback map")
        return default_map()


def load_tilemap(path):
    """Read a .json/.tmj file from disk; unreadable files fall back too."""
    try:
        with open(path, "r", encoding="utf-8") as fh:
            data = json.load(fh)
    except (OSError, ValueError) as e:
        print(f"[MAP] Failed to load tilemap from {path}: {e}; using fallback map")
        return default_map()
    return parse_tilemap(data)


def render_ascii(grid, max_rows=None):
    rows = grid if max_rows is None else grid[:max_rows]
    return ["".join(TILE_CHARS.get(t, "?") for t in row) for row in rows]
