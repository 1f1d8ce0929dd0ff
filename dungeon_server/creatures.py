# dungeon_server/creatures.py - Slime pursuit and the wandering snail
import random

from .protocol import message, notice, to_all
from .tilemap import WALL

SLIME_ACTIVATION_RANGE = 2
SNAIL_TALK_RANGE = 1
SNAIL_LINES = ["Good Day, crawler.", "Where is my key...."]


def chebyshev(ax, ay, bx, by):
    """Chess-king distance"""
    return max(abs(ax - bx), abs(ay - by))


def nearest_player(state, x, y):
    best, best_dist = None, None
    for slot_id in state.SLOTS:
        p = state.players.get(slot_id)
        if p is None:
            continue
        d = chebyshev(x, y, p["x"], p["y"])
        if best_dist is None or d < best_dist:
            best, best_dist = slot_id, d
    return best, best_dist


def _steps_toward(slime, target):
    """Candidate single steps, horizontal axis first."""
    steps = []
    if target["x"] > slime["x"]:
        steps.append((1, 0, "right"))
    elif target["x"] < slime["x"]:
        steps.append((-1, 0, "left"))
    if target["y"] > slime["y"]:
        steps.append((0, 1, "down"))
    elif target["y"] < slime["y"]:
        steps.append((0, -1, "up"))
    return steps


def update_slimes(state):
    """Advance every slime by one turn. Returns outbound messages."""
    out = []
    for i, slime in enumerate(state.slimes):
        if slime["stunned"]:
            slime["stun_turns"] = max(0, slime["stun_turns"] - 1)
            if slime["stun_turns"] == 0:
                slime["stunned"] = False
                print(f"[AI] Slime {i} is no longer stunned")
            else:
                print(f"[AI] Slime {i} stunned for {slime['stun_turns']} more turns")
            continue

        target_id, dist = nearest_player(state, slime["x"], slime["y"])
        if target_id is None or dist > SLIME_ACTIVATION_RANGE:
            continue

        target = state.players[target_id]
        for dx, dy, facing in _steps_toward(slime, target):
            nx, ny = slime["x"] + dx, slime["y"] + dy
            occupant = state.player_at(nx, ny)
            if occupant is not None:
                slime["facing"] = facing
                out.extend(_attack(state, i, slime, occupant))
                break
            if state.terrain_blocks(nx, ny) or state.slime_at(nx, ny, exclude=slime):
                continue
            slime["x"], slime["y"] = nx, ny
            slime["facing"] = facing
            print(f"[AI] Slime {i} moved to ({nx}, {ny}) facing {facing}")
            break
        else:
            print(f"[AI] Slime {i} could not move (blocked path)")
    return out


def _attack(state, index, slime, slot_id):
    """Slime strikes an adjacent player, who is sent back to their spawn."""
    player = state.players[slot_id]
    hit_at = {"x": player["x"], "y": player["y"]}
    sx, sy = state.start_position(slot_id)
    player["x"], player["y"] = sx, sy
    player["facing"] = None
    print(f"[AI] Slime {index} struck {slot_id}; respawned at ({sx}, {sy})")

    out = [to_all(message("slime_attack", slime=index, target=slot_id, **hit_at))]
    # Everyone but the struck player
    if state.other_slot(slot_id) in state.players:
        out.append(to_all(notice(
            "partner_died",
            "Your partner was caught by a slime and is back at the start!",
            player_id=slot_id,
        ), exclude=slot_id))
    return out


def update_snail(state, rng=random):
    """One snail tick: greet a nearby player, then shuffle along the patrol line."""
    snail = state.snail
    if not snail:
        return []
    out = []

    near = [
        sid for sid, p in state.players.items()
        if chebyshev(snail["x"], snail["y"], p["x"], p["y"]) <= SNAIL_TALK_RANGE
    ]
    if near and snail["last_interaction_turn"] != state.turn_number:
        line = rng.choice(SNAIL_LINES)
        print(f'[AI] Snail says: "{line}"')
        out.append(to_all(notice(
            "snail_message",
            f'Snail: "{line}"',
            snail_pos={"x": snail["x"], "y": snail["y"]},
        )))
        snail["last_interaction_turn"] = state.turn_number

    new_x = snail["x"] + snail["direction"]
    left_bound = snail["anchor_x"] - snail["range"]
    right_bound = snail["anchor_x"] + 1
    if (
        new_x <= left_bound
        or new_x >= right_bound
        or not state.in_bounds(new_x, snail["y"])
        or state.grid[snail["y"]][new_x] == WALL
    ):
        snail["direction"] *= -1
    else:
        snail["x"] = new_x
    return out
