import asyncio
import json
import logging
import os
import time
from dataclasses import dataclass, field
from typing import Dict, Optional

from websockets.asyncio.server import ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from .constants import AUTOSAVE_INTERVAL_MS, TICK_INTERVAL_SECONDS
from .game_engine import GameEngine
from .message_handlers import MessageRouter

WEBSOCKET_HOST: str = os.environ.get("HOST", "0.0.0.0")
WEBSOCKET_PORT: int = int(os.environ.get("PORT", 8765))

LOGGER = logging.getLogger(__name__)


@dataclass
class GameSession:
    """One browser tab: its own engine plus tick-loop bookkeeping."""

    engine: GameEngine
    last_tick: float = field(default_factory=time.monotonic)
    last_autosave_slot: int = 0
    crash_pending: bool = False


class WebSocketServer:
    def __init__(self) -> None:
        self.sessions: Dict[ServerConnection, GameSession] = {}
        self.broadcast_task: Optional[asyncio.Task] = None
        self.message_router = MessageRouter()

    def create_session(self, websocket: ServerConnection) -> GameSession:
        session = GameSession(engine=GameEngine())

        def _on_crash(engine: GameEngine) -> None:
            # Reboot waits for the client to acknowledge the crash notice
            session.crash_pending = True

        session.engine.on_crash = _on_crash
        self.sessions[websocket] = session
        return session

    async def handler(self, websocket: ServerConnection) -> None:
        session = self.create_session(websocket)
        LOGGER.info("Session opened (%d active)", len(self.sessions))
        try:
            async for raw in websocket:
                try:
                    msg = json.loads(raw)
                except ValueError:
                    LOGGER.warning("Discarding undecodable message")
                    continue
                if not isinstance(msg, dict):
                    LOGGER.warning("Discarding non-object message")
                    continue
                await self.message_router.route_message(websocket, msg, session.engine)
        except ConnectionClosed:
            pass
        finally:
            self.sessions.pop(websocket, None)
            LOGGER.info("Session closed (%d active)", len(self.sessions))

    async def start(self) -> None:
        async with serve(self.handler, WEBSOCKET_HOST, WEBSOCKET_PORT, ping_interval=20, ping_timeout=20):
            self.broadcast_task = asyncio.create_task(self._broadcast_loop())
            await asyncio.Future()

    def advance_session(self, session: GameSession, now: float) -> None:
        """Tick one session by the wall time since its last tick; the engine clamps the delta."""
        elapsed_ms = (now - session.last_tick) * 1000.0
        session.last_tick = now
        session.engine.tick(elapsed_ms)

    def autosave_due(self, session: GameSession) -> bool:
        slot = int(session.engine.state.game_time // AUTOSAVE_INTERVAL_MS)
        if slot > session.last_autosave_slot:
            session.last_autosave_slot = slot
            return True
        return False

    async def _broadcast_loop(self) -> None:
        while True:
            await asyncio.sleep(TICK_INTERVAL_SECONDS)
            now = time.monotonic()

            for websocket, session in list(self.sessions.items()):
                await self._broadcast_session(websocket, session, now)

    async def _broadcast_session(self, websocket: ServerConnection, session: GameSession, now: float) -> None:
        self.advance_session(session, now)
        engine = session.engine

        if session.crash_pending:
            session.crash_pending = False
            await self.message_router.send_safe(
                websocket,
                json.dumps({"type": "systemCrash", "crashCount": engine.state.crash_count}),
            )

        await self.message_router.send_safe(websocket, json.dumps(engine.to_tick_message()))

        if self.autosave_due(session):
            payload = {"type": "autosave", **engine.save()}
            await self.message_router.send_safe(websocket, json.dumps(payload))


async def main() -> None:
    server = WebSocketServer()
    LOGGER.info("WebSocket server starting on ws://%s:%s", WEBSOCKET_HOST, WEBSOCKET_PORT)
    await server.start()


def run() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(name)s %(message)s")
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        LOGGER.info("Shutting down.")


if __name__ == "__main__":
    run()
