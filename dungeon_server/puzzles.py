# dungeon_server/puzzles.py - Key, door, fire, plate and trap rules
from .protocol import notice, to_all, to_slot
from .tilemap import FIRE, FLOOR

SLIME_STUN_TURNS = 3


def neighbours(x, y):
    """Orthogonal neighbours in up, down, left, right order."""
    return [(x, y - 1), (x, y + 1), (x - 1, y), (x + 1, y)]


def is_adjacent(ax, ay, bx, by):
    return abs(ax - bx) + abs(ay - by) == 1


def player_label(slot_id):
    return "Player " + slot_id[-1] if slot_id else "Someone"


def pick_up_key(state, slot_id):
    """Arriving on the key's cell takes it; costs nothing."""
    key = state.key
    player = state.players[slot_id]
    if key and key["held_by"] is None and (player["x"], player["y"]) == (key["x"], key["y"]):
        key["held_by"] = slot_id
        print(f"[ROOM] {slot_id} picked up the key")
        return True
    return False


def door_interaction(state, slot_id):
    door, key = state.door, state.key
    if not door or not key:
        return []
    player = state.players[slot_id]
    if not is_adjacent(player["x"], player["y"], door["x"], door["y"]):
        return []
    if door["unlocked"]:
        return []
    if key["held_by"] == slot_id:
        door["unlocked"] = True
        print(f"[ROOM] {slot_id} unlocked the door")
        return [to_all(notice("door_message", f"{player_label(slot_id)} unlocked the door!", unlocked=True))]
    if key["held_by"] is None:
        print(f"[ROOM] {slot_id} reached the door without the key")
        return [to_slot(slot_id, notice("door_message", "You need the key to unlock this door! Find it first."))]
    return []


def douse_adjacent(state, slot_id):
    """Apply a Douse Fire item to every orthogonal neighbour.

    A slime on a neighbouring cell takes the effect instead of the
    cell's fire. Returns (used, outbound).
    """
    out = []
    used = False
    player = state.players[slot_id]
    for x, y in neighbours(player["x"], player["y"]):
        if not state.in_bounds(x, y):
            continue

        slime = state.slime_at(x, y)
        if slime and not slime["stunned"]:
            slime["stunned"] = True
            slime["stun_turns"] = SLIME_STUN_TURNS
            print(f"[ROOM] {slot_id} stunned slime at ({x}, {y}) for {SLIME_STUN_TURNS} turns")
            out.append(to_all(notice(
                "slime_message",
                f"Slime stunned! Slime is immobilized for {SLIME_STUN_TURNS} turns.",
                player_id=slot_id,
            )))
            used = True
            continue

        fire = state.fire_at(x, y)
        if fire:
            fire["doused"] = True
            state.grid[y][x] = FLOOR
            print(f"[ROOM] {slot_id} doused fire at ({x}, {y})")
            used = True
        elif state.grid[y][x] == FIRE:
            state.grid[y][x] = FLOOR
            print(f"[ROOM] {slot_id} doused fire tile at ({x}, {y})")
            used = True
    return used, out


def update_pressure_plates(state, level):
    """Recompute plates from player positions, then traps from the wiring table."""
    out = []
    if not state.pressure_plates:
        return out

    occupied = {(p["x"], p["y"]): sid for sid, p in state.players.items()}
    for i, plate in enumerate(state.pressure_plates):
        was_pressed = plate["pressed"]
        on_plate = occupied.get((plate["x"], plate["y"]))
        plate["pressed"] = on_plate is not None
        if plate["pressed"] == was_pressed:
            continue
        if plate["pressed"]:
            print(f"[ROOM] Pressure plate {i + 1} activated by {on_plate} at ({plate['x']}, {plate['y']})")
            out.append(to_all(notice(
                "pressure_plate_message",
                f"Pressure plate {i + 1} activated by {player_label(on_plate)}!",
                plate=i,
                is_pressed=True,
            )))
        else:
            print(f"[ROOM] Pressure plate {i + 1} deactivated at ({plate['x']}, {plate['y']})")
            out.append(to_all(notice(
                "pressure_plate_message",
                f"Pressure plate {i + 1} deactivated",
                plate=i,
                is_pressed=False,
            )))

    if update_trap_doors(state, level):
        out.append(to_all(trap_summary(state, level)))
    return out


def update_trap_doors(state, level):
    """Returns True if any trap door changed state."""
    wiring = level.get("trap_wiring") or []
    changed = False
    for i, trap in enumerate(state.trap_doors):
        plates = wiring[i] if i < len(wiring) else []
        should_open = any(
            0 <= p < len(state.pressure_plates) and state.pressure_plates[p]["pressed"]
            for p in plates
        )
        if trap["open"] != should_open:
            trap["open"] = should_open
            changed = True
            state_word = "disabled (safe to pass)" if should_open else "activated (blocks movement)"
            print(f"[ROOM] Trap {i + 1} {state_word} at ({trap['x']}, {trap['y']})")
    return changed


def trap_summary(state, level):
    groups = level.get("trap_groups") or [
        {"name": "Path", "traps": list(range(len(state.trap_doors)))}
    ]
    opened, closed = [], []
    for group in groups:
        traps = [state.trap_doors[i] for i in group["traps"] if i < len(state.trap_doors)]
        if traps and all(t["open"] for t in traps):
            opened.append(group["name"])
        else:
            closed.append(group["name"])

    if not closed:
        text = "All paths unlocked!"
    elif not opened:
        text = "All paths blocked! Find the pressure plates."
    else:
        text = f"{', '.join(opened)} unlocked! {', '.join(closed)} still blocked."
    return notice("trap_state_message", text, is_open=bool(opened), open_paths=opened)
