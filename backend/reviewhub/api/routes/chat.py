"""Chat room and message routes, plus a WebSocket stream of a room's messages."""
import asyncio
from typing import Optional

from fastapi import APIRouter, Depends, Query, WebSocket, WebSocketDisconnect, status
from pydantic import BaseModel, Field

from reviewhub.api.dependencies import get_chat_repository, get_optional_user, is_demo_admin
from reviewhub.api.middleware.error_handler import AppException, ForbiddenException, NotFoundException
from reviewhub.api.responses import author_name, with_notice
from reviewhub.lib.logging import get_logger
from reviewhub.lib.settings import settings
from reviewhub.services.auth_service import Identity
from reviewhub.services.chat_repository import ChatRepository
from reviewhub.services.permissions import is_admin
from reviewhub.services.records import ChatMessage, ChatMessageDraft, ChatRoom, ChatRoomDraft


logger = get_logger(__name__)

router = APIRouter(prefix="/chat", tags=["Chat"])


class MessageCreateRequest(BaseModel):
    content: str = Field(..., min_length=1)
    author: Optional[str] = Field(None, max_length=255)


class PresenceResponse(BaseModel):
    room_id: str
    success: bool


@router.get("/rooms", response_model=list[ChatRoom])
async def list_rooms(repository: ChatRepository = Depends(get_chat_repository)):
    return await repository.get_chat_rooms()


@router.post("/rooms", status_code=status.HTTP_201_CREATED)
async def create_room(
    request: ChatRoomDraft,
    user: Optional[Identity] = Depends(get_optional_user),
    repository: ChatRepository = Depends(get_chat_repository),
):
    result = await repository.create_chat_room(request, created_by=user.id if user else None)
    if not result.success:
        raise AppException(result.error or "Could not create room", status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return with_notice(result.source, id=result.id)


@router.get("/rooms/{room_id}", response_model=ChatRoom)
async def get_room(room_id: str, repository: ChatRepository = Depends(get_chat_repository)):
    room = await repository.get_chat_room(room_id)
    if room is None:
        raise NotFoundException("Chat room", room_id)
    return room


@router.delete("/rooms/{room_id}")
async def delete_room(
    room_id: str,
    user: Optional[Identity] = Depends(get_optional_user),
    demo_admin: bool = Depends(is_demo_admin),
    repository: ChatRepository = Depends(get_chat_repository),
):
    """Delete a room and its messages (admins and the room's creator only)."""
    room = await repository.get_chat_room(room_id)
    if room is None:
        raise NotFoundException("Chat room", room_id)
    is_creator = user is not None and room.created_by == user.id
    if not (is_admin(user, demo_admin) or is_creator):
        raise ForbiddenException("Only admins and the room's creator can delete it")

    if not await repository.delete_chat_room(room_id):
        raise AppException("Room could not be deleted", status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return with_notice(room.source, id=room_id, success=True)


@router.post("/rooms/{room_id}/join", response_model=PresenceResponse)
async def join_room(room_id: str, repository: ChatRepository = Depends(get_chat_repository)):
    return PresenceResponse(room_id=room_id, success=await repository.join_chat_room(room_id))


@router.post("/rooms/{room_id}/leave", response_model=PresenceResponse)
async def leave_room(room_id: str, repository: ChatRepository = Depends(get_chat_repository)):
    return PresenceResponse(room_id=room_id, success=await repository.leave_chat_room(room_id))


@router.get("/rooms/{room_id}/messages", response_model=list[ChatMessage])
async def list_messages(
    room_id: str,
    limit: int = Query(50, ge=1, le=500),
    before_id: Optional[str] = Query(None, description="Only messages older than this one"),
    repository: ChatRepository = Depends(get_chat_repository),
):
    return await repository.get_chat_messages(room_id, limit=limit, before_id=before_id)


@router.post("/rooms/{room_id}/messages", status_code=status.HTTP_201_CREATED)
async def send_message(
    room_id: str,
    request: MessageCreateRequest,
    user: Optional[Identity] = Depends(get_optional_user),
    repository: ChatRepository = Depends(get_chat_repository),
):
    draft = ChatMessageDraft(
        content=request.content,
        author=author_name(user, request.author),
        user_id=user.id if user else None,
        avatar_url=user.avatar_url if user else None,
    )
    result = await repository.send_chat_message(room_id, draft)
    if not result.success:
        raise AppException(result.error or "Could not send message", status_code=status.HTTP_503_SERVICE_UNAVAILABLE)
    return with_notice(result.source, id=result.id)


@router.websocket("/rooms/{room_id}/ws")
async def stream_messages(
    websocket: WebSocket,
    room_id: str,
    repository: ChatRepository = Depends(get_chat_repository),
):
    """Push the room's recent messages as a JSON list on connect and after every new message."""
    await websocket.accept()
    loop = asyncio.get_running_loop()
    updates: asyncio.Queue = asyncio.Queue()

    def deliver(messages: list[ChatMessage]) -> None:
        # Writers may publish from another event loop or thread
        loop.call_soon_threadsafe(updates.put_nowait, messages)

    unsubscribe = await repository.subscribe_to_chat_messages(
        room_id, deliver, limit=settings.chat_messages_limit
    )

    async def send_updates() -> None:
        while True:
            messages = await updates.get()
            await websocket.send_json([message.model_dump(mode="json") for message in messages])

    async def wait_for_disconnect() -> None:
        try:
            while True:
                await websocket.receive_text()
        except WebSocketDisconnect:
            return

    sender = asyncio.create_task(send_updates())
    receiver = asyncio.create_task(wait_for_disconnect())
    try:
        done, pending = await asyncio.wait({sender, receiver}, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        for task in done:
            if not task.cancelled() and task.exception() is not None:
                logger.info(f"Message stream for room {room_id} closed: {task.exception()}")
    finally:
        unsubscribe()
        logger.debug(f"Message stream for room {room_id} ended")
