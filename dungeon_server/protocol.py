# dungeon_server/protocol.py
import json
from collections import namedtuple

DIRECTIONS = {
    "up": (0, -1),
    "down": (0, 1),
    "left": (-1, 0),
    "right": (1, 0),
}

# Client-side notices fade after this many seconds
NOTICE_SECONDS = 3

# Inbound actions. Anything the parser cannot map to one of these is dropped.
Move = namedtuple("Move", ["direction"])
UseItem = namedtuple("UseItem", ["item"])
EndTurn = namedtuple("EndTurn", [])
ResetPositions = namedtuple("ResetPositions", [])

# One outbound frame. `to` is a slot id or None for every connected slot;
# `exclude` drops one slot from a broadcast.
Outbound = namedtuple("Outbound", ["payload", "to", "exclude"])


def encode(msg: dict) -> str:
    """Convert a Python dict to a JSON string."""
    return json.dumps(msg)


def decode(text: str) -> dict:
    """Convert a JSON string back to a Python dict."""
    return json.loads(text)


def parse_action(data):
    """Map a decoded client frame onto an action tuple, or None if malformed."""
    if not isinstance(data, dict):
        return None
    kind = data.get("type")
    if not isinstance(kind, str):
        return None
    kind = kind.strip().lower().replace("-", "_")

    if kind == "move":
        direction = data.get("direction")
        if not isinstance(direction, str) or direction not in DIRECTIONS:
            return None
        return Move(direction)
    if kind == "use_item":
        item = data.get("item")
        if not isinstance(item, str) or not item:
            return None
        return UseItem(item)
    if kind == "end_turn":
        return EndTurn()
    if kind == "reset_positions":
        return ResetPositions()
    return None


def message(kind: str, **fields) -> dict:
    msg = {"type": kind}
    msg.update(fields)
    return msg


def notice(kind: str, text: str, **fields) -> dict:
    """A transient informational message the client shows for a few seconds."""
    return message(kind, message=text, expires_in=NOTICE_SECONDS, **fields)


def to_all(payload, exclude=None):
    return Outbound(payload, None, exclude)


def to_slot(slot_id, payload):
    return Outbound(payload, slot_id, None)
