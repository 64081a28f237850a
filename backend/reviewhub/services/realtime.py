"""In-process change notifications for the remote backend.

Writers publish ``(table, event, row)`` after their transaction commits;
subscribers registered for that table (and, optionally, an equality filter
on the row) are awaited in registration order. A failing subscriber is
logged and skipped so it never fails the write that triggered it.
"""
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Mapping, Optional
from uuid import uuid4

from reviewhub.lib.logging import get_logger


logger = get_logger(__name__)


ChangeCallback = Callable[[str, dict], Awaitable[None]]

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"


@dataclass
class _Subscription:
    table: str
    where: Mapping[str, Any]
    callback: ChangeCallback
    id: str = field(default_factory=lambda: uuid4().hex)

    def matches(self, table: str, row: Mapping[str, Any]) -> bool:
        if table != self.table:
            return False
        return all(row.get(column) == value for column, value in self.where.items())


class RealtimeHub:
    """Fan-out of committed changes to table subscribers."""

    def __init__(self):
        self._subscriptions: dict[str, _Subscription] = {}

    def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        where: Optional[Mapping[str, Any]] = None,
    ) -> Callable[[], None]:
        """Register a callback; returns an idempotent unsubscribe function."""
        subscription = _Subscription(table=table, where=dict(where or {}), callback=callback)
        self._subscriptions[subscription.id] = subscription
        logger.debug(f"Subscribed {subscription.id} to {table} where {subscription.where}")

        def unsubscribe() -> None:
            if self._subscriptions.pop(subscription.id, None) is not None:
                logger.debug(f"Unsubscribed {subscription.id} from {table}")

        return unsubscribe

    async def publish(self, table: str, event: str, row: Mapping[str, Any]) -> None:
        # Snapshot: callbacks may unsubscribe while we iterate
        for subscription in list(self._subscriptions.values()):
            if not subscription.matches(table, row):
                continue
            try:
                await subscription.callback(event, dict(row))
            except Exception as e:
                logger.error(
                    f"Realtime subscriber {subscription.id} on {table} failed: {e}",
                    exc_info=True,
                )

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)
