"""Chat rooms and messages with presence counting and inactive-room cleanup.

Rooms and messages created while the remote backend is unavailable are kept
on this device and merged into every listing and subscription delivery.
"""
from datetime import datetime, timedelta
from typing import Callable, Optional

from pydantic import ValidationError

from reviewhub.lib.logging import get_logger
from reviewhub.lib.metrics import get_metrics_collector
from reviewhub.services.local_store import (
    CHAT_MESSAGES_NAMESPACE,
    CHAT_ROOMS_NAMESPACE,
    LocalStore,
)
from reviewhub.services.realtime import INSERT
from reviewhub.services.records import (
    RECORD_SCHEMA_VERSION,
    ChatMessage,
    ChatMessageDraft,
    ChatRoom,
    ChatRoomDraft,
    Source,
    WriteResult,
    is_local_id,
    normalize_chat_message,
    normalize_chat_room,
    utcnow,
)
from reviewhub.services.remote_backend import (
    RemoteBackend,
    RemoteBackendError,
    RemoteUnavailableError,
)


logger = get_logger(__name__)


ROOMS_TABLE = "chat_rooms"
MESSAGES_TABLE = "chat_messages"

DEFAULT_INACTIVITY = timedelta(minutes=30)

RoomsCallback = Callable[[list[ChatRoom]], None]
MessagesCallback = Callable[[list[ChatMessage]], None]


def _noop() -> None:
    pass


def merge_messages(
    remote: list[ChatMessage],
    local: list[ChatMessage],
    limit: Optional[int] = None,
) -> list[ChatMessage]:
    """Oldest-first union of both tiers, keeping only the newest ``limit``."""
    merged = sorted(remote + local, key=lambda message: message.created_at)
    if limit is not None and len(merged) > limit:
        return merged[-limit:]
    return merged


class ChatRepository:
    """Remote-first persistence for chat rooms and messages."""

    def __init__(
        self,
        backend: Optional[RemoteBackend],
        local_store: LocalStore,
        inactivity: timedelta = DEFAULT_INACTIVITY,
    ):
        self.backend = backend
        self.local_store = local_store
        self.inactivity = inactivity
        self.metrics = get_metrics_collector()

    # ----- internals -----

    def _remote_ready(self) -> bool:
        return self.backend is not None and self.backend.is_online()

    def _remote_failed(self, entity: str, operation: str, error: Optional[Exception] = None) -> None:
        kind = "rejected" if error is not None and not isinstance(error, RemoteUnavailableError) else "unavailable"
        self.metrics.increment_remote_errors(entity, operation, kind)
        logger.warning(
            f"Remote {operation} of {entity} failed ({kind})",
            extra={"entity": entity, "operation": operation, "error": str(error) if error else None},
        )

    def _fell_back(self, entity: str, operation: str) -> None:
        self.metrics.increment_fallback(entity, operation)
        logger.warning(f"Serving {operation} of {entity} from local storage")

    def _local_rooms(self) -> list[ChatRoom]:
        rooms = []
        for record in self.local_store.load_all(CHAT_ROOMS_NAMESPACE):
            try:
                rooms.append(normalize_chat_room(record, Source.LOCAL))
            except ValidationError as e:
                logger.warning(f"Skipping unreadable local room {record.get('id')}: {e}")
        return rooms

    def _local_messages(self, room_id: str) -> list[ChatMessage]:
        messages = []
        for record in self.local_store.load_all(CHAT_MESSAGES_NAMESPACE):
            if record.get("room_id", record.get("roomId")) != room_id:
                continue
            try:
                messages.append(normalize_chat_message(record, Source.LOCAL))
            except ValidationError as e:
                logger.warning(f"Skipping unreadable local message {record.get('id')}: {e}")
        return messages

    async def _remote_rooms(self) -> list[ChatRoom]:
        rows = await self.backend.select(ROOMS_TABLE, order_by="last_activity", descending=True)
        return [normalize_chat_room(row, Source.REMOTE) for row in rows]

    @staticmethod
    def _with_local_rooms(remote: list[ChatRoom], local: list[ChatRoom]) -> list[ChatRoom]:
        seen = {room.id for room in remote}
        return remote + [room for room in local if room.id not in seen]

    # ----- rooms -----

    async def create_chat_room(self, draft: ChatRoomDraft, created_by: Optional[str] = None) -> WriteResult:
        now = utcnow()
        values = {
            **draft.model_dump(),
            "created_by": created_by,
            "created_at": now,
            "last_activity": now,
        }

        if self._remote_ready():
            try:
                row = await self.backend.insert(ROOMS_TABLE, {**values, "active_users": 0})
                logger.info(f"Chat room {row['id']} created remotely")
                return WriteResult(success=True, id=row["id"], source=Source.REMOTE)
            except RemoteBackendError as e:
                self._remote_failed("chat_room", "create", e)
        else:
            self._remote_failed("chat_room", "create")

        self._fell_back("chat_room", "create")
        # The creator is the one user present in a device-local room
        room_id = self.local_store.append_one(
            CHAT_ROOMS_NAMESPACE,
            {
                **values,
                "created_at": now.isoformat(),
                "last_activity": now.isoformat(),
                "active_users": 1,
                "schema_version": RECORD_SCHEMA_VERSION,
            },
        )
        if room_id is None:
            return WriteResult(success=False, source=Source.LOCAL, error="Could not save the room on this device")
        return WriteResult(success=True, id=room_id, source=Source.LOCAL)

    async def get_chat_room(self, room_id: str) -> Optional[ChatRoom]:
        if is_local_id(room_id):
            return next((room for room in self._local_rooms() if room.id == room_id), None)
        if not self._remote_ready():
            return None
        try:
            rows = await self.backend.select(ROOMS_TABLE, {"id": room_id})
        except RemoteBackendError as e:
            self._remote_failed("chat_room", "read", e)
            return None
        return normalize_chat_room(rows[0], Source.REMOTE) if rows else None

    async def get_chat_rooms(self) -> list[ChatRoom]:
        """Remote rooms by recent activity, then rooms held on this device."""
        remote: list[ChatRoom] = []
        if self._remote_ready():
            try:
                remote = await self._remote_rooms()
            except RemoteBackendError as e:
                self._remote_failed("chat_room", "list", e)
        return self._with_local_rooms(remote, self._local_rooms())

    async def subscribe_to_chat_rooms(self, callback: RoomsCallback) -> Callable[[], None]:
        """Deliver the room list now and again after every remote room change.

        Returns a function that stops further deliveries.
        """
        if not self._remote_ready():
            callback(self._local_rooms())
            return _noop

        async def deliver() -> None:
            try:
                remote = await self._remote_rooms()
            except RemoteBackendError as e:
                self._remote_failed("chat_room", "subscribe", e)
                remote = []
            callback(self._with_local_rooms(remote, self._local_rooms()))

        async def on_change(event: str, row: dict) -> None:
            await deliver()

        try:
            unsubscribe = self.backend.subscribe(ROOMS_TABLE, None, on_change)
        except RemoteBackendError as e:
            self._remote_failed("chat_room", "subscribe", e)
            callback(self._local_rooms())
            return _noop

        await deliver()
        return unsubscribe

    async def join_chat_room(self, room_id: str) -> bool:
        return await self._adjust_presence(room_id, 1, "join")

    async def leave_chat_room(self, room_id: str) -> bool:
        return await self._adjust_presence(room_id, -1, "leave")

    async def _adjust_presence(self, room_id: str, delta: int, operation: str) -> bool:
        # Presence is only tracked for remote rooms
        if is_local_id(room_id):
            return False
        if not self._remote_ready():
            self._remote_failed("chat_room", operation)
            return False
        try:
            row = await self.backend.increment(
                ROOMS_TABLE,
                room_id,
                "active_users",
                delta,
                floor=0,
                patch={"last_activity": utcnow()},
            )
        except RemoteBackendError as e:
            self._remote_failed("chat_room", operation, e)
            return False
        if row is None:
            logger.warning(f"Cannot {operation} chat room {room_id}: not found")
            return False
        return True

    async def delete_chat_room(self, room_id: str) -> bool:
        """Delete a room and all of its messages."""
        if is_local_id(room_id):
            if not any(room.id == room_id for room in self._local_rooms()):
                return False
            removed = self.local_store.remove_where(
                CHAT_ROOMS_NAMESPACE, lambda record: record.get("id") == room_id
            )
            self.local_store.remove_where(
                CHAT_MESSAGES_NAMESPACE, lambda record: record.get("room_id", record.get("roomId")) == room_id
            )
            return removed

        if not self._remote_ready():
            self._remote_failed("chat_room", "delete")
            return False
        try:
            await self.backend.delete(MESSAGES_TABLE, {"room_id": room_id})
            deleted = await self.backend.delete(ROOMS_TABLE, {"id": room_id})
        except RemoteBackendError as e:
            self._remote_failed("chat_room", "delete", e)
            return False
        return deleted > 0

    async def cleanup_inactive_rooms(self, now: Optional[datetime] = None) -> int:
        """Delete empty rooms whose last activity is older than the inactivity window.

        Returns the number of rooms removed.
        """
        if not self._remote_ready():
            logger.debug("Skipping room cleanup: remote backend unavailable")
            return 0

        cutoff = (now or utcnow()) - self.inactivity
        deleted = 0
        try:
            stale = await self.backend.select(ROOMS_TABLE, {"last_activity__lt": cutoff, "active_users": 0})
            for row in stale:
                # Re-checked in the DELETE so a user joining meanwhile keeps the room
                removed = await self.backend.delete(ROOMS_TABLE, {"id": row["id"], "active_users": 0})
                if removed:
                    await self.backend.delete(MESSAGES_TABLE, {"room_id": row["id"]})
                    deleted += removed
        except RemoteBackendError as e:
            self._remote_failed("chat_room", "cleanup", e)
            logger.error(f"Room cleanup aborted after {deleted} deletions: {e}")

        if deleted:
            self.metrics.increment_rooms_cleaned(deleted)
        logger.info(f"Cleaned up {deleted} inactive chat rooms", extra={"cutoff": cutoff.isoformat()})
        return deleted

    # ----- messages -----

    async def send_chat_message(self, room_id: str, draft: ChatMessageDraft) -> WriteResult:
        now = utcnow()
        values = {**draft.model_dump(), "room_id": room_id, "created_at": now}

        if not is_local_id(room_id):
            if self._remote_ready():
                try:
                    row = await self.backend.insert(MESSAGES_TABLE, values)
                except RemoteBackendError as e:
                    self._remote_failed("chat_message", "create", e)
                else:
                    try:
                        await self.backend.update(ROOMS_TABLE, room_id, {"last_activity": now})
                    except RemoteBackendError as e:
                        logger.warning(f"Message {row['id']} stored but room activity not updated: {e}")
                    return WriteResult(success=True, id=row["id"], source=Source.REMOTE)
            else:
                self._remote_failed("chat_message", "create")
            self._fell_back("chat_message", "create")

        message_id = self.local_store.append_one(
            CHAT_MESSAGES_NAMESPACE,
            {**values, "created_at": now.isoformat(), "schema_version": RECORD_SCHEMA_VERSION},
        )
        if message_id is None:
            return WriteResult(success=False, source=Source.LOCAL, error="Could not save the message on this device")
        if is_local_id(room_id):
            self.local_store.update_where(
                CHAT_ROOMS_NAMESPACE,
                lambda record: record.get("id") == room_id,
                lambda record: record.update(last_activity=now.isoformat()),
            )
        return WriteResult(success=True, id=message_id, source=Source.LOCAL)

    async def get_chat_messages(
        self,
        room_id: str,
        limit: int = 50,
        before_id: Optional[str] = None,
    ) -> list[ChatMessage]:
        """Up to ``limit`` messages, oldest first.

        With ``before_id`` only remote messages older than that message are
        returned; device-held messages belong to the newest page.
        """
        local = [] if before_id else self._local_messages(room_id)
        if is_local_id(room_id) or not self._remote_ready():
            return merge_messages([], local, limit)

        where: dict = {"room_id": room_id}
        try:
            if before_id:
                anchor = await self.backend.select(MESSAGES_TABLE, {"id": before_id})
                if anchor:
                    where["created_at__lt"] = anchor[0]["created_at"]
            rows = await self.backend.select(
                MESSAGES_TABLE, where, order_by="created_at", descending=True, limit=limit
            )
        except RemoteBackendError as e:
            self._remote_failed("chat_message", "list", e)
            rows = []

        remote = [normalize_chat_message(row, Source.REMOTE) for row in reversed(rows)]
        return merge_messages(remote, local, limit)

    async def subscribe_to_chat_messages(
        self,
        room_id: str,
        callback: MessagesCallback,
        limit: int = 100,
    ) -> Callable[[], None]:
        """Deliver the room's recent messages now and after every new remote message."""
        if is_local_id(room_id) or not self._remote_ready():
            callback(merge_messages([], self._local_messages(room_id), limit))
            return _noop

        async def deliver() -> None:
            try:
                rows = await self.backend.select(MESSAGES_TABLE, {"room_id": room_id}, order_by="created_at")
            except RemoteBackendError as e:
                self._remote_failed("chat_message", "subscribe", e)
                rows = []
            remote = [normalize_chat_message(row, Source.REMOTE) for row in rows]
            callback(merge_messages(remote, self._local_messages(room_id), limit))

        async def on_change(event: str, row: dict) -> None:
            if event == INSERT:
                await deliver()

        try:
            unsubscribe = self.backend.subscribe(MESSAGES_TABLE, {"room_id": room_id}, on_change)
        except RemoteBackendError as e:
            self._remote_failed("chat_message", "subscribe", e)
            callback(merge_messages([], self._local_messages(room_id), limit))
            return _noop

        await deliver()
        return unsubscribe
