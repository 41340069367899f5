"""
Best-effort user notifications.

A notification is fire-and-forget: if it cannot be delivered it is logged
and the lifecycle operation that triggered it carries on.
"""

from typing import Any

from altq.errors import TransientDispatchError
from altq.services.broadcast import BroadcastGateway, MessageType


class Notifier:
    """Delivers in-app notifications over the user's live connection."""

    def __init__(self, gateway: BroadcastGateway):
        self.gateway = gateway

    async def notify(self, user_id: Any, title: str, description: str, **data: Any) -> bool:
        """
        Notify a user.

        Returns True if the notification went out to a live connection.
        Never raises.
        """
        try:
            delivered = await self.gateway.send_to_user(
                str(user_id),
                MessageType.NOTIFICATION,
                data={"title": title, "description": description, **data},
            )
        except Exception as e:
            print(f"Notifier: {TransientDispatchError(f'{title!r} to {user_id}: {e}')}", flush=True)
            return False

        if not delivered:
            print(f"Notifier: {user_id} offline, dropped {title!r}", flush=True)
        return delivered
