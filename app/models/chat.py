"""Chat domain models.

Models:
- Principal: verified identity carried by an access token
- ChatMessage: one stored message (user or assistant)
- ChatTurn: the user/assistant pair written for one request
- QuizQuestion: one multiple-choice item returned by the quiz generator
- ImageAttachment: uploaded homework image, inlined as a data URL
"""
import base64
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.core import keys


class Role(str, Enum):
    PARENT = "parent"
    CHILD = "child"


class MessageRole(str, Enum):
    USER = "user"
    ASSISTANT = "assistant"


class ChatMode(str, Enum):
    CHAT = "chat"
    QUIZ = "quiz"


class Difficulty(str, Enum):
    EASY = "easy"
    MEDIUM = "medium"
    HARD = "hard"


class Principal(BaseModel):
    """
    Identity decoded from a verified access token.

    Immutable for the lifetime of the token; never persisted.
    """
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    user_id: str = Field(alias="userId")
    username: str
    role: Role
    family_id: str = Field(alias="familyId")


class ChatMessage(BaseModel):
    """
    Stored chat message.

    Ownership: partitioned by family_id, sort key scoped by user and session.
    Both messages of a turn carry the same turn_id.
    """
    family_id: str
    user_id: str
    session_id: str
    role: MessageRole
    text: str
    timestamp: str
    turn_id: Optional[str] = None

    @property
    def sort_key(self) -> str:
        return keys.message_sort_key(self.user_id, self.session_id, self.timestamp)

    def to_item(self) -> dict[str, Any]:
        item = {
            "pk": keys.partition_key(self.family_id),
            "sk": self.sort_key,
            "role": self.role.value,
            "text": self.text,
            "timestamp": self.timestamp,
        }
        if self.turn_id:
            item["turnId"] = self.turn_id
        return item

    @classmethod
    def from_item(cls, item: dict[str, Any], user_id: str) -> "ChatMessage":
        sort_key = item["sk"]
        return cls(
            family_id=item["pk"],
            user_id=user_id,
            session_id=keys.session_id_from_sort_key(user_id, sort_key),
            role=MessageRole(item["role"]),
            text=item.get("text") or "",
            timestamp=item.get("timestamp") or keys.timestamp_from_sort_key(sort_key),
            turn_id=item.get("turnId"),
        )


class ChatTurn(BaseModel):
    """One user message and the assistant reply produced for it."""
    user_message: ChatMessage
    assistant_message: ChatMessage

    @property
    def timestamp(self) -> str:
        return self.user_message.timestamp

    @property
    def response(self) -> str:
        return self.assistant_message.text


class QuizQuestion(BaseModel):
    """Multiple-choice quiz item, in the shape the frontend renders."""
    question: str
    options: list[str]
    correctAnswer: str
    explanation: str


class ImageAttachment(BaseModel):
    """Homework image uploaded with a chat turn."""
    content: bytes
    mime_type: str

    def data_url(self) -> str:
        encoded = base64.b64encode(self.content).decode("ascii")
        return f"data:{self.mime_type};base64,{encoded}"
