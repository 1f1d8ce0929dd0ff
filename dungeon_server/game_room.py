# dungeon_server/game_room.py
import os
import random
import time

from . import creatures, puzzles
from .levels import ITEM_TYPES, LEVEL_ORDER, LEVELS, WIN_DOOR, WIN_EXIT
from .protocol import (
    DIRECTIONS,
    EndTurn,
    Move,
    ResetPositions,
    UseItem,
    message,
    notice,
    to_slot,
)
from .scheduler import Scheduler
from .state import GameState, view_for
from .tilemap import EXIT


class GameRoom:
    """The single shared dungeon two players cooperate in.

    Owns the GameState and is the only thing that mutates it. Every entry
    point (a connection event, a client action, a timer firing) runs to
    completion and returns the outbound messages it produced; delivering
    them is the transport's job.
    """

    MAX_PLAYERS = 2

    GRACE_SECONDS = float(os.getenv("DUNGEON_GRACE_SECS", "30"))
    # The snail re-arms itself, so its period never drops below one tick
    MIN_SNAIL_STEP_SECONDS = 0.05
    SNAIL_STEP_SECONDS = max(MIN_SNAIL_STEP_SECONDS, float(os.getenv("DUNGEON_SNAIL_SECS", "2")))
    TRANSITION_SECONDS = float(os.getenv("DUNGEON_TRANSITION_SECS", "3"))
    # Celebration before the transition starts, by win mode
    WIN_DELAY_SECONDS = {WIN_DOOR: 2.0, WIN_EXIT: 5.0}
    FINAL_CELEBRATION_SECONDS = 5.0

    def __init__(self, levels=None, level_order=None, clock=time.monotonic, rng=None, start_level=None):
        self.levels = levels if levels is not None else LEVELS
        self.level_order = list(level_order if level_order is not None else LEVEL_ORDER)
        self.rng = rng or random.Random()
        self.scheduler = Scheduler(clock)
        self.state = GameState()
        self.created_at = time.time()

        start = start_level or os.getenv("DUNGEON_START_LEVEL") or self.level_order[0]
        if start not in self.levels:
            print(f"[ROOM] Unknown start level '{start}', using {self.level_order[0]}")
            start = self.level_order[0]
        self.state.progression_index = self._progression_of(start)
        self._load_level(start)

    # ---- helpers ---------------------------------------------------------

    @property
    def level(self):
        return self.levels[self.state.level_id]

    def _progression_of(self, level_id):
        try:
            return self.level_order.index(level_id) + 1
        except ValueError:
            return 1

    def _next_level(self, level_id):
        """Level that follows `level_id`, or None when it was the last one."""
        try:
            idx = self.level_order.index(level_id)
        except ValueError:
            return None
        return self.level_order[idx + 1] if idx + 1 < len(self.level_order) else None

    def _schedule(self, key, delay, callback, *args):
        """Schedule a timer whose faults are logged instead of escaping the tick.

        A callback that raises leaves the state as it was before it ran.
        """
        def fire():
            backup = self.state.clone()
            try:
                return callback(*args)
            except Exception as e:
                self.state = backup
                print(f"[TIMER] Error in '{key}' timer: {e}")
                return []
        self.scheduler.schedule(key, delay, fire)

    def is_full(self):
        """Check if room is at maximum capacity"""
        return len(self.state.players) >= self.MAX_PLAYERS

    def is_empty(self):
        """Check if room has no players"""
        return len(self.state.players) == 0

    def connection_for(self, slot_id):
        player = self.state.players.get(slot_id)
        return player["connection"] if player else None

    def broadcast_state(self):
        """One redacted snapshot per connected player."""
        return [to_slot(sid, view_for(self.state, sid)) for sid in self.state.players]

    def tick(self):
        """Run due timers; returns what they produced."""
        return self.scheduler.run_due()

    # ---- connections -----------------------------------------------------

    def accept_connection(self):
        """First free slot id, or None when the game is full."""
        for slot_id in GameState.SLOTS:
            if slot_id not in self.state.players:
                return slot_id
        return None

    def assign_slot(self, connection, slot_id):
        s = self.state
        x, y = s.start_position(slot_id)
        s.players[slot_id] = {
            "id": slot_id,
            "x": x,
            "y": y,
            "facing": None,
            "connection": connection,
        }

        if s.disconnected_player and s.disconnected_player["slot_id"] == slot_id:
            print(f"[ROOM] {slot_id} reconnected! Resuming game...")
            s.disconnected_player = None
            self.scheduler.cancel(f"grace:{slot_id}")
        else:
            print(f"[ROOM] {slot_id} joined fresh")

        out = [to_slot(slot_id, message("slot_assignment", player_id=slot_id))]
        out.extend(puzzles.update_pressure_plates(s, self.level))
        self._start_game_if_ready()
        out.extend(self.broadcast_state())
        return out

    def release_slot(self, slot_id, connection=None):
        s = self.state
        player = s.players.get(slot_id)
        if player is None:
            return []
        if connection is not None and player["connection"] is not connection:
            return []

        del s.players[slot_id]
        print(f"[ROOM] {slot_id} disconnected from game")

        if s.started:
            s.started = False
            s.current_player = None
            s.clear_items()
            s.won = False
            s.transition = None
            for key in ("snail", "level_won", "level_transition", "final_celebration"):
                self.scheduler.cancel(key)
            s.disconnected_player = {
                "slot_id": slot_id,
                "disconnected_at": time.time(),
                "was_in_game": True,
            }
            self._schedule(f"grace:{slot_id}", self.GRACE_SECONDS, self._on_grace_expired, slot_id)
            print(f"[ROOM] Game paused: waiting {self.GRACE_SECONDS:.0f}s for {slot_id} to reconnect")
        else:
            print(f"[ROOM] {slot_id} left while waiting - no active game disrupted")

        out = puzzles.update_pressure_plates(s, self.level)
        out.extend(self.broadcast_state())
        return out

    def _on_grace_expired(self, slot_id):
        s = self.state
        if not s.disconnected_player or s.disconnected_player["slot_id"] != slot_id:
            return []
        print(f"[ROOM] Auto-cleanup: {slot_id} didn't reconnect within {self.GRACE_SECONDS:.0f}s")
        s.disconnected_player = None
        s.progression_index = 1
        s.completed = False
        s.final_victory_time = None
        self._load_level(self.level_order[0])
        return self.broadcast_state()

    def _start_game_if_ready(self):
        s = self.state
        if len(s.players) < self.MAX_PLAYERS or s.started:
            return False
        s.started = True
        s.current_player = GameState.SLOTS[0]
        s.actions_remaining = GameState.ACTIONS_PER_TURN
        self._issue_items()
        self._start_snail()
        print(f"[ROOM] Game started! {s.current_player}'s turn.")
        return True

    def _issue_items(self):
        configured = self.level.get("player_items") or {}
        for slot_id in GameState.SLOTS:
            item = configured.get(slot_id) or self.rng.choice(list(ITEM_TYPES.values()))
            self.state.give_item(slot_id, item)

    # ---- levels ----------------------------------------------------------

    def _load_level(self, level_id, variant=0):
        """Load a level in place: new grid and objects, players back at spawn."""
        s = self.state
        s.load_level(level_id, self.levels[level_id], variant)
        s.won = False
        s.victory_time = None
        s.transition = None
        s.actions_remaining = GameState.ACTIONS_PER_TURN
        for slot_id, p in s.players.items():
            p["x"], p["y"] = s.start_position(slot_id)
            p["facing"] = None
        puzzles.update_pressure_plates(s, self.level)
        self.scheduler.cancel("snail")
        if s.started:
            self._start_snail()

    def _start_snail(self):
        if self.state.snail:
            delay = max(self.MIN_SNAIL_STEP_SECONDS, self.SNAIL_STEP_SECONDS)
            self._schedule("snail", delay, self._snail_tick)

    def _snail_tick(self):
        s = self.state
        if not s.started or not s.snail:
            return []
        out = creatures.update_snail(s, self.rng)
        self._start_snail()
        out.extend(self.broadcast_state())
        return out

    # ---- actions ---------------------------------------------------------

    def apply(self, slot_id, action):
        """Validate and apply one client action.

        Illegal or malformed actions return no messages and leave the
        state alone. A fault while applying restores the previous state
        and tells only the sender.
        """
        if slot_id not in self.state.players or action is None:
            return []
        backup = self.state.clone()
        try:
            if isinstance(action, Move):
                return self._move(slot_id, action.direction)
            if isinstance(action, UseItem):
                return self._use_item(slot_id, action.item)
            if isinstance(action, EndTurn):
                return self._end_turn(slot_id)
            if isinstance(action, ResetPositions):
                return self._reset_positions(slot_id)
            return []
        except Exception as e:
            self.state = backup
            kind = type(action).__name__
            print(f"[ROOM] Error processing {kind} for {slot_id}: {e}")
            return [to_slot(slot_id, message("game_error", message=f"{kind} processing failed", error=str(e)))]

    def _can_act(self, slot_id, what):
        s = self.state
        if not s.started:
            print(f"[ROOM] {what} rejected: game not started")
            return False
        if s.current_player != slot_id:
            print(f"[ROOM] {what} rejected: not {slot_id}'s turn (current: {s.current_player})")
            return False
        return True

    def _move(self, slot_id, direction):
        s = self.state
        if direction not in DIRECTIONS or not self._can_act(slot_id, "Move"):
            return []
        player = s.players[slot_id]
        dx, dy = DIRECTIONS[direction]
        nx, ny = player["x"] + dx, player["y"] + dy

        blocked = s.terrain_blocks(nx, ny)
        if blocked == "trap":
            print(f"[ROOM] Move blocked: {slot_id} hit a closed trap at ({nx}, {ny})")
            return [to_slot(slot_id, notice(
                "trap_message", "Trap blocks your path! Someone must stand on a pressure plate."
            ))]
        if blocked:
            print(f"[ROOM] Move blocked: {slot_id} -> ({nx}, {ny}) is {blocked}")
            return []

        player["x"], player["y"] = nx, ny
        player["facing"] = direction
        print(f"[ROOM] {slot_id} moved to ({nx}, {ny}) facing {direction}")

        out = puzzles.update_pressure_plates(s, self.level)
        puzzles.pick_up_key(s, slot_id)
        out.extend(puzzles.door_interaction(s, slot_id))

        if not self._check_win():
            s.actions_remaining -= 1
            print(f"[ROOM] {slot_id} used 1 action, {s.actions_remaining} remaining")
            if s.actions_remaining <= 0:
                out.extend(self._switch_turn())
        out.extend(self.broadcast_state())
        return out

    def _use_item(self, slot_id, item):
        s = self.state
        if item not in ITEM_TYPES.values():
            print(f"[ROOM] Unknown item '{item}' from {slot_id}")
            return []
        if not self._can_act(slot_id, "Use item"):
            return []
        if s.item_for(slot_id) != item:
            print(f"[ROOM] Use item rejected: {slot_id} doesn't have {item}")
            return []

        player = s.players[slot_id]
        door, key = s.door, s.key
        if (
            door and key
            and key["held_by"] == slot_id
            and door["unlocked"]
            and puzzles.is_adjacent(player["x"], player["y"], door["x"], door["y"])
        ):
            print(f"[ROOM] {slot_id} is escaping through the door!")
            out = [to_slot(slot_id, notice(
                "door_message", "You escaped! Checking if your partner is ready..."
            ))]
            if self._check_win():
                out.extend(self.broadcast_state())
            return out

        used, out = puzzles.douse_adjacent(s, slot_id)
        if not used:
            print(f"[ROOM] {slot_id} tried to use {item} but no valid targets found")
            return []

        s.actions_remaining -= 1
        print(f"[ROOM] {slot_id} used 1 action (item), {s.actions_remaining} remaining")
        if s.actions_remaining <= 0:
            out.extend(self._switch_turn(reissue_items=True))
        out.extend(self.broadcast_state())
        return out

    def _end_turn(self, slot_id):
        if not self._can_act(slot_id, "End turn"):
            return []
        print(f"[ROOM] {slot_id} ended their turn early ({self.state.actions_remaining} actions left)")
        out = self._switch_turn()
        out.extend(self.broadcast_state())
        return out

    def _reset_positions(self, slot_id):
        s = self.state
        print(f"[ROOM] Reset positions triggered by {slot_id}")
        s.ensure_safe_starting_positions()
        for sid, p in s.players.items():
            p["x"], p["y"] = s.start_position(sid)
        out = puzzles.update_pressure_plates(s, self.level)
        out.extend(self.broadcast_state())
        return out

    def _switch_turn(self, reissue_items=False):
        """Hand the turn over, then let the creatures act."""
        s = self.state
        s.current_player = s.other_slot(s.current_player)
        s.actions_remaining = GameState.ACTIONS_PER_TURN
        s.turn_number += 1
        print(f"[ROOM] Turn switched to: {s.current_player}")

        out = creatures.update_slimes(s)
        out.extend(puzzles.update_pressure_plates(s, self.level))
        if reissue_items:
            self._issue_items()
        return out

    # ---- winning ---------------------------------------------------------

    def _both_at_door(self):
        s = self.state
        door, key = s.door, s.key
        if not door or not door["unlocked"] or not key or key["held_by"] not in s.players:
            return False
        if len(s.players) < self.MAX_PLAYERS:
            return False
        return all(
            (p["x"], p["y"]) == (door["x"], door["y"])
            or puzzles.is_adjacent(p["x"], p["y"], door["x"], door["y"])
            for p in s.players.values()
        )

    def _both_on_exit(self):
        s = self.state
        if len(s.players) < self.MAX_PLAYERS:
            return False
        return all(s.tile_at(p["x"], p["y"]) == EXIT for p in s.players.values())

    def _check_win(self):
        """Detect the level's win condition once; schedules the progression."""
        s = self.state
        if s.won or not s.started:
            return False
        mode = self.level.get("win_condition", WIN_DOOR)
        reached = self._both_at_door() if mode == WIN_DOOR else self._both_on_exit()
        if not reached:
            return False

        s.won = True
        s.victory_time = time.time()
        print(f"[ROOM] Level {s.level_id} completed!")
        delay = self.WIN_DELAY_SECONDS.get(mode, 2.0)
        self._schedule("level_won", delay, self._on_level_won, s.level_id)
        return True

    def _on_level_won(self, level_id):
        s = self.state
        if not s.won or s.level_id != level_id:
            return []
        upcoming = self._next_level(level_id)
        if upcoming:
            print(f"[ROOM] Advancing from {level_id} to {upcoming}")
            s.transition = {
                "is_transitioning": True,
                "from_level": level_id,
                "to_level": upcoming,
                "started_at": time.time(),
                "message": f"{self.levels[level_id].get('name', level_id)} complete! Advancing...",
            }
            self._schedule(
                "level_transition", self.TRANSITION_SECONDS, self._finish_transition, level_id, upcoming
            )
        else:
            print("[ROOM] GAME COMPLETED! Every level mastered!")
            s.completed = True
            s.final_victory_time = time.time()
            s.transition = {
                "is_transitioning": True,
                "from_level": level_id,
                "to_level": "complete",
                "started_at": time.time(),
                "message": "Congratulations! You have completed Dungeon Escape Duo!",
            }
            self._schedule("final_celebration", self.FINAL_CELEBRATION_SECONDS, self._end_celebration)
        return self.broadcast_state()

    def _finish_transition(self, from_level, to_level):
        s = self.state
        if not s.transition or s.level_id != from_level or s.transition.get("to_level") != to_level:
            return []
        s.progression_index = self._progression_of(to_level)
        self._load_level(to_level)
        if len(s.players) == self.MAX_PLAYERS:
            s.started = True
            s.current_player = GameState.SLOTS[0]
            s.actions_remaining = GameState.ACTIONS_PER_TURN
            self._issue_items()
            self._start_snail()
        print(f"[ROOM] {s.level_name} ready! Players reset to starting positions.")
        return self.broadcast_state()

    def _end_celebration(self):
        s = self.state
        if not s.completed or not s.transition:
            return []
        s.transition = None
        return self.broadcast_state()

    # ---- reporting -------------------------------------------------------

    def get_stats(self):
        s = self.state
        return {
            "level_id": s.level_id,
            "players": sorted(s.players),
            "max_players": self.MAX_PLAYERS,
            "started": s.started,
            "current_player": s.current_player,
            "actions_remaining": s.actions_remaining,
            "turn_number": s.turn_number,
            "won": s.won,
            "completed": s.completed,
            "pending_timers": len(self.scheduler),
            "created_at": self.created_at,
        }
