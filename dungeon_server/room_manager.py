# dungeon_server/room_manager.py
import asyncio
from typing import Dict, Optional

import websockets

from .game_room import GameRoom
from .protocol import decode, encode, message, parse_action


class RoomManager:
    """Binds websockets to the dungeon's two player slots.

    Owns the transport side: which socket fills which slot, delivering
    the messages the room produces, and driving the room's timers.
    """

    TICK_SECONDS = 0.05  # 20 Hz timer resolution
    REJECT_CLOSE_DELAY = 0.1

    def __init__(self, room: Optional[GameRoom] = None):
        self.room = room
        self.player_to_slot: Dict[int, str] = {}  # id(websocket) -> slot id
        self._tick_task = None

    def _ensure_room(self) -> GameRoom:
        if self.room is None:
            self.room = GameRoom()
        return self.room

    async def start(self):
        """Start the timer loop"""
        self._ensure_room()
        self._tick_task = asyncio.create_task(self._tick_loop())
        print("[ROOM] Room Manager started")

    async def stop(self):
        if self._tick_task:
            self._tick_task.cancel()
            self._tick_task = None
        if self.room is not None:
            self.room.scheduler.cancel_all()
        print("[ROOM] Room Manager stopped")

    async def add_player(self, websocket) -> Optional[str]:
        """Seat a new connection, or turn it away if both slots are taken."""
        room = self._ensure_room()
        player_id = id(websocket)
        if player_id in self.player_to_slot:
            return self.player_to_slot[player_id]

        slot_id = room.accept_connection()
        if slot_id is None:
            print(f"[ROOM] Connection {player_id} rejected: Game is full")
            try:
                await websocket.send(encode(message("connection_rejected", reason="Game is full")))
                # Give the client a moment to read the rejection before closing
                await asyncio.sleep(self.REJECT_CLOSE_DELAY)
                await websocket.close()
            except websockets.ConnectionClosed:
                pass
            return None

        self.player_to_slot[player_id] = slot_id
        print(f"[ROOM] Assigned {slot_id} to connection {player_id}")
        await self.deliver(room.assign_slot(websocket, slot_id))
        return slot_id

    async def remove_player(self, websocket):
        slot_id = self.player_to_slot.pop(id(websocket), None)
        if slot_id is None or self.room is None:
            return
        await self.deliver(self.room.release_slot(slot_id, websocket))

    async def handle_player_input(self, websocket, raw):
        """Decode one frame and hand it to the room as the sender's action."""
        slot_id = self.player_to_slot.get(id(websocket))
        if slot_id is None or self.room is None:
            return
        try:
            data = decode(raw)
        except (TypeError, ValueError):
            print(f"[ROOM] Invalid JSON received from {slot_id}")
            return
        action = parse_action(data)
        if action is None:
            print(f"[ROOM] Ignoring malformed message from {slot_id}: {str(data)[:80]}")
            return
        await self.deliver(self.room.apply(slot_id, action))

    def slot_for(self, websocket) -> Optional[str]:
        return self.player_to_slot.get(id(websocket))

    async def deliver(self, outbound):
        """Send each outbound record to its recipient(s), in order."""
        if not outbound or self.room is None:
            return
        for payload, to, exclude in outbound:
            if to is not None:
                targets = [to]
            else:
                targets = [sid for sid in list(self.room.state.players) if sid != exclude]
            text = encode(payload)
            for slot_id in targets:
                ws = self.room.connection_for(slot_id)
                if ws is None:
                    continue
                try:
                    await ws.send(text)
                except websockets.ConnectionClosed:
                    # The handler's finally block releases the slot
                    print(f"[ROOM] Send to {slot_id} failed: connection closed")

    def get_room_stats(self) -> Dict:
        room = self._ensure_room()
        stats = room.get_stats()
        stats["connections"] = len(self.player_to_slot)
        return stats

    async def _tick_loop(self):
        try:
            while True:
                if self.room is not None:
                    await self.deliver(self.room.tick())
                await asyncio.sleep(self.TICK_SECONDS)
        except asyncio.CancelledError:
            pass


# Global room manager instance; the room itself is built on first use
room_manager = RoomManager()
