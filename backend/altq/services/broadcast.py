"""
Live broadcast gateway.

Fans queue events out to connected WebSocket clients. The registry keeps
exactly one live connection per authenticated user; anonymous connections
are kept too and receive broadcasts for the salons they subscribed to.

Delivery is best effort: a send to a closed or broken socket is logged and
dropped. Clients re-fetch authoritative state over REST when they reconnect,
so nothing is queued or retried here.
"""

import asyncio
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from altq.errors import TransientDispatchError
from altq.utils.timezone import isoformat_utc, utc_now


class MessageType(str, Enum):
    """Server-to-client message types."""
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"
    AUTH_ERROR = "auth_error"
    SUBSCRIBED = "subscribed"
    PONG = "pong"
    ERROR = "error"
    QUEUE_UPDATE = "queue_update"
    QUEUE_JOIN = "queue_join"
    QUEUE_POSITION_UPDATE = "queue_position_update"
    QUEUE_NOTIFICATION = "queue_notification"
    CUSTOMER_ARRIVED = "customer_arrived"
    SERVICE_STARTING = "service_starting"
    SERVICE_COMPLETED = "service_completed"
    NO_SHOW = "no_show"
    NOTIFICATION = "notification"
    LIVE_VIEWERS_UPDATE = "live_viewers_update"


def build_message(message_type: MessageType, **payload: Any) -> dict[str, Any]:
    """Wrap a payload in the common envelope (type + timestamp)."""
    return {
        "type": message_type.value,
        **payload,
        "timestamp": isoformat_utc(utc_now()),
    }


@dataclass(eq=False)
class ClientConnection:
    """
    One open socket plus what we know about it.

    ``socket`` is anything with ``async send_json(data)`` and
    ``async close(code, reason)``, normally a FastAPI ``WebSocket``.
    """
    socket: Any
    connection_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    user_id: Optional[str] = None
    subscriptions: set[str] = field(default_factory=set)

    @property
    def is_authenticated(self) -> bool:
        return self.user_id is not None

    @property
    def viewer_id(self) -> str:
        """Identity used for live-viewer tracking."""
        return self.user_id or f"anon:{self.connection_id}"


class ConnectionRegistry:
    """In-process registry of open connections, owned by one event loop."""

    def __init__(self):
        self._connections: set[ClientConnection] = set()
        self._by_user: dict[str, ClientConnection] = {}

    def connect(self, conn: ClientConnection) -> None:
        self._connections.add(conn)

    def authenticate(self, conn: ClientConnection, user_id: str) -> Optional[ClientConnection]:
        """
        Bind a connection to a user.

        Returns the user's previous connection, if there was a different one.
        It is removed from the registry; closing it is up to the caller.
        """
        previous = self._by_user.get(user_id)
        if previous is conn:
            previous = None
        elif previous is not None:
            self._connections.discard(previous)

        if conn.user_id and conn.user_id != user_id:
            # Re-authenticating as somebody else
            if self._by_user.get(conn.user_id) is conn:
                del self._by_user[conn.user_id]

        conn.user_id = user_id
        self._connections.add(conn)
        self._by_user[user_id] = conn
        return previous

    def disconnect(self, conn: ClientConnection) -> bool:
        """
        Forget a connection.

        Returns True if it was still the current connection of its user,
        i.e. the user has no live connection anymore.
        """
        self._connections.discard(conn)
        if conn.user_id and self._by_user.get(conn.user_id) is conn:
            del self._by_user[conn.user_id]
            return True
        return False

    def get(self, user_id: str) -> Optional[ClientConnection]:
        return self._by_user.get(user_id)

    def is_connected(self, user_id: str) -> bool:
        return user_id in self._by_user

    def salon_audience(self, salon_id: str) -> list[ClientConnection]:
        """Connections that receive broadcasts for a salon."""
        return [
            conn for conn in self._connections
            if conn.is_authenticated or salon_id in conn.subscriptions
        ]

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @property
    def authenticated_count(self) -> int:
        return len(self._by_user)


class BroadcastGateway:
    """Sends typed queue events through a ``ConnectionRegistry``."""

    def __init__(self, registry: ConnectionRegistry):
        self.registry = registry

    async def _send(self, conn: ClientConnection, message: dict[str, Any]) -> bool:
        try:
            await conn.socket.send_json(message)
            return True
        except Exception as e:
            error = TransientDispatchError(
                f"{message.get('type')} to connection {conn.connection_id} failed: {e}"
            )
            print(f"Broadcast: {error}", flush=True)
            return False

    async def broadcast_to_salon(
        self,
        salon_id: str,
        message_type: MessageType,
        **payload: Any,
    ) -> int:
        """
        Send a salon-scoped message.

        Recipients filter by ``salon_id`` client-side. Returns the number of
        successful sends.
        """
        salon_id = str(salon_id)
        message = build_message(message_type, salon_id=salon_id, **payload)
        audience = self.registry.salon_audience(salon_id)
        if not audience:
            return 0
        results = await asyncio.gather(*(self._send(conn, message) for conn in audience))
        return sum(1 for ok in results if ok)

    async def send_to_user(
        self,
        user_id: str,
        message_type: MessageType,
        **payload: Any,
    ) -> bool:
        """
        Send a message to one user's live connection.

        Returns whether a send was attempted, not whether it was received.
        """
        user_id = str(user_id)
        conn = self.registry.get(user_id)
        if conn is None:
            return False
        await self._send(conn, build_message(message_type, user_id=user_id, **payload))
        return True

    # -------------------------------------------------------------------------
    # Typed events
    # -------------------------------------------------------------------------

    async def queue_updated(self, salon_id: str, queues: list[dict], **extra: Any) -> int:
        """Full snapshot of a salon's active queue."""
        return await self.broadcast_to_salon(
            salon_id, MessageType.QUEUE_UPDATE, data={"queues": queues, **extra}
        )

    async def queue_joined(self, salon_id: str, entry: dict) -> int:
        """Single new-entry announcement (voice / visual alert on the dashboard)."""
        return await self.broadcast_to_salon(salon_id, MessageType.QUEUE_JOIN, data=entry)

    async def positions_updated(self, salon_id: str, queues: list[dict]) -> int:
        return await self.broadcast_to_salon(
            salon_id, MessageType.QUEUE_POSITION_UPDATE, queues=queues
        )

    async def customer_arrived(self, salon_id: str, **data: Any) -> int:
        return await self.broadcast_to_salon(salon_id, MessageType.CUSTOMER_ARRIVED, **data)

    async def viewer_count(self, salon_id: str, count: int) -> int:
        return await self.broadcast_to_salon(
            salon_id, MessageType.LIVE_VIEWERS_UPDATE, count=count
        )

    async def queue_notification(self, user_id: str, **data: Any) -> bool:
        return await self.send_to_user(user_id, MessageType.QUEUE_NOTIFICATION, **data)

    async def service_starting(self, user_id: str, **data: Any) -> bool:
        return await self.send_to_user(user_id, MessageType.SERVICE_STARTING, **data)

    async def service_completed(self, user_id: str, **data: Any) -> bool:
        return await self.send_to_user(user_id, MessageType.SERVICE_COMPLETED, **data)

    async def no_show(self, user_id: str, **data: Any) -> bool:
        return await self.send_to_user(user_id, MessageType.NO_SHOW, **data)
