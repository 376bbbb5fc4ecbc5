"""Chat endpoint routes for the homework assistant.

Provides:
- POST /api/chat - Send a message (or ask for a quiz)
- GET /api/chat/messages - List messages of one session
- GET /api/chat/sessions - List the caller's session ids
- GET /api/chat/children/{child_user_id}/messages - Parent view of a child's session
- DELETE /api/chat/session - Delete a whole session
- DELETE /api/chat/message - Delete one turn
"""
import logging
from typing import Optional, Union

from fastapi import APIRouter, Depends, File, Form, HTTPException, Query, UploadFile, status
from pydantic import BaseModel

from app.config import Settings
from app.core import keys
from app.core.deps import (
    get_chat_service,
    get_current_principal,
    get_quiz_service,
    get_settings,
    get_store,
)
from app.core.errors import NotFoundError
from app.core.guard import authorize_owner, authorize_parent_view
from app.models.chat import (
    ChatMessage,
    ChatMode,
    Difficulty,
    ImageAttachment,
    Principal,
    QuizQuestion,
)
from app.services.chat_service import ChatService
from app.services.quiz_service import QuizService
from app.services.session_store import SessionStore

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/chat", tags=["chat"])


class ChatResponse(BaseModel):
    """Response model for a chat turn."""
    response: str
    timestamp: str


class QuizResponse(BaseModel):
    """Response model for a generated quiz."""
    quiz: list[QuizQuestion]
    timestamp: str


class MessageResponse(BaseModel):
    """Response model for a single stored message."""
    role: str
    text: str
    sortKeyTimestamp: str
    turnId: Optional[str] = None


class MessageListResponse(BaseModel):
    items: list[MessageResponse]


class SessionListResponse(BaseModel):
    sessions: list[str]


class DeleteResponse(BaseModel):
    deletedCount: int


def _message_list(messages: list[ChatMessage]) -> MessageListResponse:
    return MessageListResponse(
        items=[
            MessageResponse(
                role=msg.role.value,
                text=msg.text,
                sortKeyTimestamp=msg.timestamp,
                turnId=msg.turn_id,
            )
            for msg in messages
        ]
    )


def _read_image(image: Optional[UploadFile], settings: Settings) -> Optional[ImageAttachment]:
    """
    Validate and read an uploaded image.

    Raises:
        HTTPException: 400 if the upload is not an image or is too large
    """
    if image is None or not image.filename:
        return None

    content_type = image.content_type or ""
    if not content_type.startswith("image/"):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Only image uploads are allowed",
        )

    content = image.file.read(settings.MAX_IMAGE_BYTES + 1)
    if len(content) > settings.MAX_IMAGE_BYTES:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Image is too large",
        )
    return ImageAttachment(content=content, mime_type=content_type)


@router.post("", response_model=Union[ChatResponse, QuizResponse])
def send_chat_message(
    message: str = Form(...),
    family_id: str = Form(..., alias="familyId", min_length=1),
    user_id: str = Form(..., alias="userId", min_length=1),
    session_id: str = Form(..., alias="sessionId", min_length=1),
    mode: ChatMode = Form(default=ChatMode.CHAT),
    difficulty: Difficulty = Form(default=Difficulty.MEDIUM),
    image: Optional[UploadFile] = File(default=None),
    principal: Principal = Depends(get_current_principal),
    settings: Settings = Depends(get_settings),
    chat_service: ChatService = Depends(get_chat_service),
    quiz_service: QuizService = Depends(get_quiz_service),
) -> Union[ChatResponse, QuizResponse]:
    """
    Send a message to the homework assistant.

    Flow:
    1. Verify token scope matches familyId/userId
    2. Validate message and optional image
    3. Quiz mode: generate and return a quiz (not stored)
    4. Chat mode: run the turn and return the assistant reply

    Raises:
        HTTPException: 400 for an empty message or a bad image
        HTTPException: 401/403 from the auth checks
    """
    authorize_owner(principal, family_id, user_id)

    if not message.strip():
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Message cannot be empty",
        )

    attachment = _read_image(image, settings)

    if mode == ChatMode.QUIZ:
        quiz = quiz_service.generate_quiz(message, difficulty, attachment)
        return QuizResponse(quiz=quiz, timestamp=keys.format_timestamp(keys.utc_now()))

    turn = chat_service.send_message(family_id, user_id, session_id, message, attachment)
    return ChatResponse(response=turn.response, timestamp=turn.timestamp)


@router.get("/messages", response_model=MessageListResponse)
def list_messages(
    family_id: str = Query(..., alias="familyId", min_length=1),
    user_id: str = Query(..., alias="userId", min_length=1),
    session_id: str = Query(..., alias="sessionId", min_length=1),
    principal: Principal = Depends(get_current_principal),
    store: SessionStore = Depends(get_store),
) -> MessageListResponse:
    """List all messages in a session, oldest first."""
    authorize_owner(principal, family_id, user_id)
    return _message_list(store.list_messages(family_id, user_id, session_id))


@router.get("/sessions", response_model=SessionListResponse)
def list_sessions(
    family_id: str = Query(..., alias="familyId", min_length=1),
    user_id: str = Query(..., alias="userId", min_length=1),
    principal: Principal = Depends(get_current_principal),
    store: SessionStore = Depends(get_store),
) -> SessionListResponse:
    """List the caller's session ids."""
    authorize_owner(principal, family_id, user_id)
    return SessionListResponse(sessions=store.list_sessions(family_id, user_id))


@router.get("/children/{child_user_id}/messages", response_model=MessageListResponse)
def list_child_messages(
    child_user_id: str,
    session_id: str = Query(..., alias="sessionId", min_length=1),
    principal: Principal = Depends(get_current_principal),
    store: SessionStore = Depends(get_store),
) -> MessageListResponse:
    """
    Parent view of one of their children's sessions.

    Raises:
        HTTPException: 403 if caller is not a parent or the child is not in the family
    """
    authorize_parent_view(principal, child_user_id, store)
    return _message_list(store.list_messages(principal.family_id, child_user_id, session_id))


@router.delete("/session", response_model=DeleteResponse)
def delete_session(
    family_id: str = Query(..., alias="familyId", min_length=1),
    user_id: str = Query(..., alias="userId", min_length=1),
    session_id: str = Query(..., alias="sessionId", min_length=1),
    principal: Principal = Depends(get_current_principal),
    store: SessionStore = Depends(get_store),
) -> DeleteResponse:
    """
    Delete every message in a session.

    Raises:
        HTTPException: 404 if the session has no messages
    """
    authorize_owner(principal, family_id, user_id)
    try:
        deleted = store.delete_all(family_id, keys.session_prefix(user_id, session_id))
    except NotFoundError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Session not found",
        )
    return DeleteResponse(deletedCount=deleted)


@router.delete("/message", response_model=DeleteResponse)
def delete_turn(
    family_id: str = Query(..., alias="familyId", min_length=1),
    user_id: str = Query(..., alias="userId", min_length=1),
    session_id: str = Query(..., alias="sessionId", min_length=1),
    timestamp: str = Query(..., min_length=1),
    principal: Principal = Depends(get_current_principal),
    store: SessionStore = Depends(get_store),
) -> DeleteResponse:
    """
    Delete one turn: the user message at timestamp and its assistant reply.

    deletedCount is the number of messages that existed and were removed.

    Raises:
        HTTPException: 400 if timestamp is not in the stored format
    """
    authorize_owner(principal, family_id, user_id)
    try:
        keys.parse_timestamp(timestamp)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid timestamp",
        )
    return DeleteResponse(deletedCount=store.delete_turn(family_id, user_id, session_id, timestamp))
