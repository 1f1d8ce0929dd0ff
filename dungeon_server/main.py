# dungeon_server/main.py - Two-player cooperative dungeon server
import asyncio
import argparse
import os

import websockets

from .protocol import encode, message
from .room_manager import room_manager

# Rate limiting config
RATE = float(os.getenv("DUNGEON_INPUT_RPS", "10"))
BURST = float(os.getenv("DUNGEON_INPUT_BURST", "5"))


async def handle_client(websocket, path=None):
    """Handle one client connection for its whole lifetime.

    Compatible with websockets versions that pass either (websocket) or
    (websocket, path).
    """
    print("[SVR] Client connected")

    try:
        slot_id = await room_manager.add_player(websocket)
        if not slot_id:
            return

        tokens = BURST
        last_refill = asyncio.get_event_loop().time()
        warn_cooldown = 0.0

        async for raw in websocket:
            try:
                # Refill token bucket
                now = asyncio.get_event_loop().time()
                elapsed = now - last_refill
                last_refill = now
                tokens = min(BURST, tokens + elapsed * RATE)
                if tokens >= 1.0:
                    tokens -= 1.0
                    await room_manager.handle_player_input(websocket, raw)
                else:
                    # Drop excess input and occasionally warn
                    if now >= warn_cooldown:
                        print(f"[RateLimit] Dropping input from {slot_id} due to rate limit")
                        try:
                            await websocket.send(encode(message("rate_limit", message="Too many inputs; slowing down.")))
                        except websockets.ConnectionClosed:
                            pass
                        warn_cooldown = now + 1.0  # warn at most once per second
            except Exception as e:
                print(f"[SVR] Error handling input from {slot_id}: {e}")

    except websockets.ConnectionClosedOK:
        print("[SVR] Client disconnected normally")
    except websockets.ConnectionClosedError as e:
        print(f"[SVR] Client disconnected with error: {e}")
    except Exception as e:
        print(f"[SVR] Unexpected error in handle_client: {e}")
    finally:
        await room_manager.remove_player(websocket)
        print("[SVR] Client connection cleaned up")


async def status_reporter(interval: float = 30.0):
    """Periodically report server status"""
    try:
        while True:
            await asyncio.sleep(interval)
            stats = room_manager.get_room_stats()
            if stats["players"]:
                print("=== SERVER STATUS ===")
                print(f"Level: {stats['level_id']}  Players: {len(stats['players'])}/{stats['max_players']}")
                if stats["started"]:
                    print(f"Turn {stats['turn_number']}: {stats['current_player']} ({stats['actions_remaining']} actions left)")
                else:
                    print("Waiting for players")
                print(f"Pending timers: {stats['pending_timers']}")
                print("====================")
    except asyncio.CancelledError:
        pass


async def main(host: str = "0.0.0.0", port: int = 8765):
    """Main server function"""
    print("Dungeon Escape Duo Server")
    print("=========================")

    await room_manager.start()
    status_task = asyncio.create_task(status_reporter())

    try:
        async with websockets.serve(handle_client, host, port):
            print(f"\n[SVR] Server running on ws://{host}:{port}")
            print("[SVR] The first two connections play; later ones are turned away")
            print("Press Ctrl+C to stop the server\n")
            await asyncio.Event().wait()  # Wait indefinitely
    finally:
        status_task.cancel()
        await room_manager.stop()
        print("[SVR] Server stopped")


def cli():
    try:
        parser = argparse.ArgumentParser(description="Dungeon Escape Duo Server")
        parser.add_argument("--host", default=os.getenv("DUNGEON_SERVER_HOST", "0.0.0.0"), help="Interface to bind")
        parser.add_argument("--port", type=int, default=int(os.getenv("DUNGEON_SERVER_PORT", "8765")), help="Port to bind the game server on")
        args = parser.parse_args()
        asyncio.run(main(host=args.host, port=args.port))
    except KeyboardInterrupt:
        print("\nServer stopped")
    except Exception as e:
        print(f"Fatal error: {e}")


if __name__ == "__main__":
    cli()
