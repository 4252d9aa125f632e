import logging

from starlette.websockets import WebSocket

logger = logging.getLogger(__name__)


class ConnectionRegistry:
    """Open WebSocket connections by user id; a user may have several."""

    def __init__(self):
        self._connections: dict[int, set[WebSocket]] = {}

    def add(self, user_id: int, websocket: WebSocket):
        self._connections.setdefault(user_id, set()).add(websocket)
        logger.debug(f"[Live] User {user_id} connected ({len(self._connections[user_id])} open)")

    def remove(self, user_id: int, websocket: WebSocket):
        sockets = self._connections.get(user_id)
        if not sockets:
            return
        sockets.discard(websocket)
        if not sockets:
            del self._connections[user_id]

    def is_connected(self, user_id: int) -> bool:
        return bool(self._connections.get(user_id))

    def connected_users(self) -> list[int]:
        return list(self._connections)

    async def send(self, user_id: int, payload: dict) -> int:
        """Send ``payload`` to every socket of ``user_id``; returns how many took it.

        Sockets that fail are dropped. Raises ConnectionError only when the
        user had sockets and none of them accepted the message.
        """
        sockets = list(self._connections.get(user_id, ()))
        delivered = 0
        for websocket in sockets:
            try:
                await websocket.send_json(payload)
                delivered += 1
            except Exception as e:
                logger.warning(f"[Live] Dropping socket for user {user_id}: {e}")
                self.remove(user_id, websocket)
        if sockets and not delivered:
            raise ConnectionError(f"no live socket of user {user_id} accepted the message")
        return delivered

    async def close_all(self):
        for user_id, sockets in list(self._connections.items()):
            for websocket in list(sockets):
                try:
                    await websocket.close(code=1001)
                except Exception as e:
                    logger.debug(f"[Live] Close failed for user {user_id}: {e}")
        self._connections.clear()
