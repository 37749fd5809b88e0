import json
import logging
from typing import Any, Dict, Optional

from websockets.asyncio.server import ServerConnection
from websockets.exceptions import ConnectionClosed

from .game_engine import GameEngine
from .models import Connection, Node
from .node_types import NODE_TYPES

LOGGER = logging.getLogger(__name__)


def _node_payload(node: Optional[Node]) -> Optional[Dict[str, Any]]:
    return node.to_dict() if node is not None else None


def _connection_payload(connection: Optional[Connection]) -> Optional[Dict[str, Any]]:
    return connection.to_dict() if connection is not None else None


def _jsonable_result(result: Dict[str, Any]) -> Dict[str, Any]:
    """Swap engine objects in a command result for their wire payloads."""
    payload = dict(result)
    if "node" in payload and isinstance(payload["node"], Node):
        payload["node"] = _node_payload(payload["node"])
    if "connection" in payload:
        payload["connection"] = _connection_payload(payload["connection"])
    if "connections" in payload:
        payload["connections"] = [_connection_payload(c) for c in payload["connections"]]
    return payload


class MessageRouter:
    """Routes websocket messages to the engine owned by the sending session."""

    def __init__(self) -> None:
        self.handlers = {
            "requestInit": self.handle_request_init,
            "addNode": self.handle_add_node,
            "previewNode": self.handle_preview_node,
            "deleteNode": self.handle_delete_node,
            "createConnection": self.handle_create_connection,
            "prestige": self.handle_prestige,
            "unlockModule": self.handle_unlock_module,
            "buyUpgrade": self.handle_buy_upgrade,
            "togglePause": self.handle_toggle_pause,
            "acknowledgeCrash": self.handle_acknowledge_crash,
            "save": self.handle_save,
            "load": self.handle_load,
        }

    async def route_message(
        self,
        websocket: ServerConnection,
        msg: Dict[str, Any],
        engine: GameEngine,
    ) -> None:
        msg_type = msg.get("type")
        handler = self.handlers.get(msg_type)
        if handler is None:
            LOGGER.warning("Ignoring unknown message type %r", msg_type)
            return
        await handler(websocket, msg, engine)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def handle_request_init(self, websocket, msg: Dict[str, Any], engine: GameEngine) -> None:
        await self.send_safe(websocket, json.dumps(engine.to_init_message()))

    async def handle_add_node(self, websocket, msg: Dict[str, Any], engine: GameEngine) -> None:
        node_type = msg.get("nodeType")
        if str(node_type) in NODE_TYPES and not engine.is_node_type_unlocked(node_type):
            result = {"success": False, "message": "Node type is locked"}
        else:
            result = engine.add_node(node_type, msg.get("x"), msg.get("y"))
        await self._reply(websocket, "addNode", result)

    async def handle_preview_node(self, websocket, msg: Dict[str, Any], engine: GameEngine) -> None:
        result = engine.preview_node(msg.get("nodeType"), msg.get("x"), msg.get("y"))
        await self._reply(websocket, "previewNode", result)

    async def handle_delete_node(self, websocket, msg: Dict[str, Any], engine: GameEngine) -> None:
        result = engine.delete_node(msg.get("nodeId"))
        await self._reply(websocket, "deleteNode", result)

    async def handle_create_connection(self, websocket, msg: Dict[str, Any], engine: GameEngine) -> None:
        result = engine.create_connection(msg.get("fromId"), msg.get("toId"))
        await self._reply(websocket, "createConnection", result)

    async def handle_prestige(self, websocket, msg: Dict[str, Any], engine: GameEngine) -> None:
        await self._reply(websocket, "prestige", engine.prestige())

    async def handle_unlock_module(self, websocket, msg: Dict[str, Any], engine: GameEngine) -> None:
        result = engine.unlock_module(msg.get("moduleKey"))
        await self._reply(websocket, "unlockModule", result)

    async def handle_buy_upgrade(self, websocket, msg: Dict[str, Any], engine: GameEngine) -> None:
        await self._reply(websocket, "buyUpgrade", engine.buy_upgrade(msg.get("upgradeKey")))

    async def handle_toggle_pause(self, websocket, msg: Dict[str, Any], engine: GameEngine) -> None:
        await self._reply(websocket, "togglePause", engine.toggle_pause())

    async def handle_acknowledge_crash(self, websocket, msg: Dict[str, Any], engine: GameEngine) -> None:
        await self._reply(websocket, "acknowledgeCrash", engine.acknowledge_crash())

    async def handle_save(self, websocket, msg: Dict[str, Any], engine: GameEngine) -> None:
        await self._reply(websocket, "save", engine.save())

    async def handle_load(self, websocket, msg: Dict[str, Any], engine: GameEngine) -> None:
        await self._reply(websocket, "load", engine.load(msg.get("save")))

    # ------------------------------------------------------------------
    # Transport helpers
    # ------------------------------------------------------------------

    async def _reply(self, websocket, msg_type: str, result: Dict[str, Any]) -> None:
        payload = _jsonable_result(result)
        payload["type"] = f"{msg_type}Result"
        await self.send_safe(websocket, json.dumps(payload))

    async def send_safe(self, websocket: Optional[ServerConnection], payload: str) -> None:
        if websocket is None:
            return
        try:
            await websocket.send(payload)
        except ConnectionClosed:
            LOGGER.debug("Dropped message for closed connection")
