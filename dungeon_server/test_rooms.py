# Test the room manager against mock websockets
import asyncio
import json

import websockets

from .protocol import to_all
from .room_manager import RoomManager


class ClosedWebSocket:
    """A socket whose peer has already gone away."""

    def __init__(self):
        self.closed = False

    async def send(self, text):
        raise websockets.ConnectionClosed(None, None)

    async def close(self):
        self.closed = True


def _manager(make_room):
    manager = RoomManager(make_room("corridor"))
    manager.REJECT_CLOSE_DELAY = 0
    return manager


def test_first_two_connections_get_slots(make_room, mock_ws):
    async def scenario():
        manager = _manager(make_room)
        ws1, ws2 = mock_ws(1), mock_ws(2)

        assert await manager.add_player(ws1) == "player1"
        assert ws1.of_type("slot_assignment") == [{"type": "slot_assignment", "player_id": "player1"}]
        assert await manager.add_player(ws2) == "player2"

        # Everyone gets their own view of the started game
        latest1 = ws1.of_type("game_state")[-1]
        latest2 = ws2.of_type("game_state")[-1]
        assert latest1["your_player_id"] == "player1"
        assert latest2["your_player_id"] == "player2"
        assert latest1["started"] and latest2["started"]
        assert manager.slot_for(ws2) == "player2"

    asyncio.run(scenario())


def test_third_connection_is_rejected(make_room, mock_ws):
    async def scenario():
        manager = _manager(make_room)
        await manager.add_player(mock_ws(1))
        await manager.add_player(mock_ws(2))

        ws3 = mock_ws(3)
        assert await manager.add_player(ws3) is None
        assert ws3.sent == [{"type": "connection_rejected", "reason": "Game is full"}]
        assert ws3.closed
        assert manager.slot_for(ws3) is None
        assert manager.get_room_stats()["connections"] == 2

    asyncio.run(scenario())


def test_move_reaches_both_players(make_room, mock_ws):
    async def scenario():
        manager = _manager(make_room)
        ws1, ws2 = mock_ws(1), mock_ws(2)
        await manager.add_player(ws1)
        await manager.add_player(ws2)
        before1, before2 = len(ws1.sent), len(ws2.sent)

        await manager.handle_player_input(ws1, json.dumps({"type": "move", "direction": "down"}))
        assert len(ws1.sent) == before1 + 1
        assert len(ws2.sent) == before2 + 1
        state = ws2.sent[-1]
        assert state["players"]["player1"]["y"] == 2
        assert state["actions_remaining"] == 1

    asyncio.run(scenario())


def test_bad_frames_are_ignored(make_room, mock_ws):
    async def scenario():
        manager = _manager(make_room)
        ws1, ws2 = mock_ws(1), mock_ws(2)
        await manager.add_player(ws1)
        await manager.add_player(ws2)
        before = len(ws1.sent)

        for raw in ("not json", "[1, 2]", json.dumps({"type": "fly"}), json.dumps({"type": "move"})):
            await manager.handle_player_input(ws1, raw)
        # Out of turn
        await manager.handle_player_input(ws2, json.dumps({"type": "end-turn"}))
        # Unknown socket
        await manager.handle_player_input(mock_ws(9), json.dumps({"type": "end_turn"}))

        assert len(ws1.sent) == before
        assert manager.room.state.current_player == "player1"

    asyncio.run(scenario())


def test_disconnect_is_broadcast(make_room, mock_ws):
    async def scenario():
        manager = _manager(make_room)
        ws1, ws2 = mock_ws(1), mock_ws(2)
        await manager.add_player(ws1)
        await manager.add_player(ws2)

        await manager.remove_player(ws2)
        state = ws1.sent[-1]
        assert state["type"] == "game_state"
        assert not state["started"]
        assert state["disconnected_player"]["slot_id"] == "player2"
        assert "player2" not in state["players"]
        assert manager.slot_for(ws2) is None

        # A newcomer takes the freed slot
        ws3 = mock_ws(3)
        assert await manager.add_player(ws3) == "player2"
        assert ws3.of_type("game_state")[-1]["started"]

    asyncio.run(scenario())


def test_send_failure_does_not_stop_delivery(make_room, mock_ws):
    async def scenario():
        manager = _manager(make_room)
        gone = ClosedWebSocket()
        ws2 = mock_ws(2)
        await manager.add_player(gone)
        await manager.add_player(ws2)
        assert ws2.of_type("game_state")

        await manager.handle_player_input(gone, json.dumps({"type": "end_turn"}))
        assert ws2.sent[-1]["current_player"] == "player2"

    asyncio.run(scenario())


def test_tick_loop_delivers_timer_output(make_room, mock_ws, clock):
    async def scenario():
        manager = RoomManager(make_room("den"))
        manager.TICK_SECONDS = 0.01
        ws1, ws2 = mock_ws(1), mock_ws(2)
        await manager.add_player(ws1)
        await manager.add_player(ws2)
        before = len(ws1.sent)

        await manager.start()
        clock.advance(2.0)
        await asyncio.sleep(0.05)
        await manager.stop()

        assert len(ws1.sent) > before
        assert ws1.sent[-1]["snail"]["x"] == 2

    asyncio.run(scenario())


def test_broadcast_skips_excluded_slot(make_room, mock_ws):
    async def scenario():
        manager = _manager(make_room)
        ws1, ws2 = mock_ws(1), mock_ws(2)
        await manager.add_player(ws1)
        await manager.add_player(ws2)

        await manager.deliver([to_all({"type": "partner_died"}, exclude="player2")])
        assert ws1.sent[-1] == {"type": "partner_died"}
        assert ws2.of_type("partner_died") == []

    asyncio.run(scenario())
