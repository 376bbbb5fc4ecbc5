"""Chat service layer for the homework assistant.

Handles:
- Building the model context (system prompt, text, optional image, age hint)
- Up to two model rounds per turn, executing tool calls in between
- Persisting the user/assistant pair of a completed turn
"""
import json
import logging
import uuid
from datetime import date
from typing import Any, Dict, Optional

from openai import OpenAI, OpenAIError

from app.config import Settings
from app.core import keys
from app.core.errors import UpstreamError
from app.models.chat import ChatMessage, ChatTurn, ImageAttachment, MessageRole
from app.services.session_store import SessionStore
from app.tools.registry import ToolRegistry

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = (
    "You are a friendly and patient homework helper for children. "
    "When you get an image, look at it carefully and describe what you see. "
    "Your goal is to help children understand and learn, not just hand them the answers. "
    "Explain things in a simple and fun way and use emojis now and then. "
    "Ask follow-up questions that help the child think for themselves, and encourage them when they try. "
    "Answer in the language the child writes in. "
    "You have tools for calculations, translation, spelling checks and looking up facts; use them when they fit."
)

DEFAULT_IMAGE_PROMPT = "What do you see in this picture of my homework?"

EMPTY_REPLY_TEXT = "Oops, I could not come up with an answer. Please try again!"


def age_from_birth_date(birth_date: str, today: Optional[date] = None) -> int:
    """
    Whole years between a YYYY-MM-DD birth date and today.

    Raises:
        ValueError: If the date cannot be parsed or lies in the future
    """
    born = date.fromisoformat(birth_date)
    today = today or date.today()
    age = today.year - born.year - ((today.month, today.day) < (born.month, born.day))
    if age < 0:
        raise ValueError(f"Birth date in the future: {birth_date}")
    return age


class ChatService:
    """Service layer for chat turns."""

    def __init__(
        self,
        client: OpenAI,
        store: SessionStore,
        tools: ToolRegistry,
        settings: Settings,
    ):
        """Initialize chat service with its collaborators."""
        self.client = client
        self.store = store
        self.tools = tools
        self.settings = settings

    def send_message(
        self,
        family_id: str,
        user_id: str,
        session_id: str,
        message_text: str,
        image: Optional[ImageAttachment] = None,
    ) -> ChatTurn:
        """
        Process one user turn.

        Flow:
        1. Build system prompt and user content
        2. Call the model with tools attached
        3. If the reply requests tools, run them in order and call the model
           once more with tool use disabled
        4. Store user message and assistant reply as one turn
        5. Return the turn

        Args:
            family_id: Family partition of the caller
            user_id: Caller's user id
            session_id: Caller-supplied session id
            message_text: User message
            image: Optional homework image

        Returns:
            ChatTurn with both stored messages

        Raises:
            UpstreamError: If the model provider fails (nothing is stored)
            StoreError: If persisting the turn fails
        """
        timestamp = keys.format_timestamp(keys.utc_now())

        system_prompt = self._build_system_prompt(family_id, user_id)
        messages: list[Dict[str, Any]] = [
            {"role": "system", "content": system_prompt},
            {"role": "user", "content": self._build_user_content(message_text, image)},
        ]

        reply_text = self._run_completion(messages, has_image=image is not None, user_id=user_id)

        turn = self._persist_turn(
            family_id, user_id, session_id, timestamp, message_text, reply_text
        )

        logger.info(
            f"Chat turn processed: family={family_id}, user={user_id}, "
            f"session={session_id}, timestamp={timestamp}, turn={turn.user_message.turn_id}"
        )
        return turn

    def _build_system_prompt(self, family_id: str, user_id: str) -> str:
        """
        System prompt, personalised with the user's age when it is known.

        Profile lookup problems are logged and otherwise ignored.
        """
        try:
            profile = self.store.get_user_profile(family_id, user_id)
            birth_date = (profile or {}).get("birthDate")
            if birth_date:
                age = age_from_birth_date(str(birth_date))
                return (
                    f"{SYSTEM_PROMPT} The child you are helping is {age} years old; "
                    "adapt words and explanations to that age."
                )
        except Exception as e:
            logger.warning(f"Skipping age personalisation for user={user_id}: {str(e)}")
        return SYSTEM_PROMPT

    def _build_user_content(
        self, message_text: str, image: Optional[ImageAttachment]
    ) -> list[Dict[str, Any]]:
        """User content parts: text, plus the image as a data URL."""
        if image is None:
            return [{"type": "text", "text": message_text}]
        return [
            {"type": "text", "text": message_text or DEFAULT_IMAGE_PROMPT},
            {"type": "image_url", "image_url": {"url": image.data_url()}},
        ]

    def _run_completion(
        self,
        messages: list[Dict[str, Any]],
        has_image: bool,
        user_id: str,
    ) -> str:
        """
        Run at most two model rounds and return the final text.

        The second round only happens when the first asks for tools, and it
        runs with tool use disabled so tool calls never chain.
        """
        tools_list = self.tools.get_tool_schemas()

        assistant_message = self._create_completion(
            model=self.settings.OPENAI_VISION_MODEL if has_image else self.settings.OPENAI_MODEL,
            messages=messages,
            tools=tools_list,
            tool_choice="auto",
            max_tokens=self.settings.OPENAI_MAX_TOKENS,
        )

        if assistant_message.tool_calls:
            messages.append({
                "role": "assistant",
                "content": assistant_message.content or "",
                "tool_calls": [
                    {
                        "id": call.id,
                        "type": "function",
                        "function": {
                            "name": call.function.name,
                            "arguments": call.function.arguments,
                        },
                    }
                    for call in assistant_message.tool_calls
                ],
            })

            for tool_result in self._execute_tool_calls(assistant_message.tool_calls, user_id):
                messages.append({
                    "role": "tool",
                    "tool_call_id": tool_result["tool_call_id"],
                    "content": tool_result["content"],
                })

            assistant_message = self._create_completion(
                model=self.settings.OPENAI_MODEL,
                messages=messages,
                tools=tools_list,
                tool_choice="none",
                max_tokens=self.settings.OPENAI_FOLLOWUP_MAX_TOKENS,
            )

        return assistant_message.content or EMPTY_REPLY_TEXT

    def _create_completion(self, **kwargs: Any) -> Any:
        """
        One chat completions call.

        Raises:
            UpstreamError: On any provider error or an empty choice list
        """
        try:
            response = self.client.chat.completions.create(
                temperature=self.settings.OPENAI_TEMPERATURE,
                timeout=self.settings.OPENAI_TIMEOUT,
                **kwargs,
            )
        except OpenAIError as e:
            raise UpstreamError(f"Model provider call failed: {str(e)}") from e

        if not response.choices:
            raise UpstreamError("Model provider returned no choices")
        return response.choices[0].message

    def _execute_tool_calls(self, tool_calls: list[Any], user_id: str) -> list[Dict[str, str]]:
        """
        Execute tool calls in request order.

        Failures become diagnostic text in the result slot, so the turn
        still completes.

        Returns:
            List of dicts with tool_call_id and content
        """
        results = []

        for tool_call in tool_calls:
            tool_name = tool_call.function.name
            try:
                tool_args = json.loads(tool_call.function.arguments or "{}")
                if not isinstance(tool_args, dict):
                    raise ValueError("arguments must be a JSON object")
                content = self.tools.call_tool(tool_name, tool_args)
                logger.debug(f"Tool executed: user={user_id}, tool={tool_name}")

            except json.JSONDecodeError as e:
                content = f"Tool {tool_name} received invalid arguments: {str(e)}"
                logger.error(f"Failed to parse tool arguments: tool={tool_name}, error={str(e)}")

            except Exception as e:
                content = f"Tool {tool_name} failed: {str(e)}"
                logger.error(f"Tool execution error: user={user_id}, tool={tool_name}, error={str(e)}")

            results.append({"tool_call_id": tool_call.id, "content": content})

        return results

    def _persist_turn(
        self,
        family_id: str,
        user_id: str,
        session_id: str,
        timestamp: str,
        message_text: str,
        reply_text: str,
    ) -> ChatTurn:
        """Store user message at timestamp and reply one second later, as one unit."""
        turn_id = uuid.uuid4().hex
        user_msg = ChatMessage(
            family_id=family_id,
            user_id=user_id,
            session_id=session_id,
            role=MessageRole.USER,
            text=message_text,
            timestamp=timestamp,
            turn_id=turn_id,
        )
        assistant_msg = ChatMessage(
            family_id=family_id,
            user_id=user_id,
            session_id=session_id,
            role=MessageRole.ASSISTANT,
            text=reply_text,
            timestamp=keys.paired_timestamp(timestamp),
            turn_id=turn_id,
        )
        self.store.put_turn(user_msg, assistant_msg)
        return ChatTurn(user_message=user_msg, assistant_message=assistant_msg)
