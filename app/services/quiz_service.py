"""Quiz generation from a homework text or image.

Quizzes are returned to the caller directly and never stored.
"""
import json
import logging
import re
from typing import Any, Dict, Optional

from openai import OpenAI, OpenAIError
from pydantic import TypeAdapter, ValidationError

from app.config import Settings
from app.core.errors import QuizFormatError, UpstreamError
from app.models.chat import Difficulty, ImageAttachment, QuizQuestion

logger = logging.getLogger(__name__)

QUIZ_SIZE = 5

QUIZ_SYSTEM_PROMPT = f"""You are a teacher who writes quizzes for children.
Create exactly {QUIZ_SIZE} multiple-choice questions based on the homework.
{{difficulty}}
Write the quiz in the same language as the homework.
Return ONLY a JSON array in this format:
[
  {{{{
    "question": "Question",
    "options": ["A", "B", "C", "D"],
    "correctAnswer": "A",
    "explanation": "Short explanation"
  }}}}
]"""

DIFFICULTY_INSTRUCTIONS = {
    Difficulty.EASY: (
        "Difficulty: easy. Use short sentences and everyday words, ask about the "
        "most important facts only, and make the wrong options clearly different."
    ),
    Difficulty.MEDIUM: (
        "Difficulty: medium. Use the vocabulary of the homework and mix fact "
        "questions with questions that need a little reasoning."
    ),
    Difficulty.HARD: (
        "Difficulty: hard. Ask questions that need understanding and applying "
        "the material, use subject terms, and make the wrong options plausible."
    ),
}

IMAGE_QUIZ_PROMPT = "Create a quiz based on the homework in the image."

# Greedy: from the first "[" to the last "]" in the reply
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")

_QUESTIONS = TypeAdapter(list[QuizQuestion])


def build_quiz_prompt(difficulty: Difficulty) -> str:
    return QUIZ_SYSTEM_PROMPT.format(difficulty=DIFFICULTY_INSTRUCTIONS[difficulty])


def parse_quiz(reply: str) -> list[QuizQuestion]:
    """
    Parse the model reply into quiz questions.

    Prose around the JSON array is tolerated.

    Raises:
        QuizFormatError: If no JSON array of quiz questions can be read
    """
    match = _ARRAY_RE.search(reply)
    candidate = match.group(0) if match else reply
    try:
        data = json.loads(candidate)
    except json.JSONDecodeError as e:
        raise QuizFormatError(f"Quiz reply is not JSON: {str(e)}") from e

    try:
        return _QUESTIONS.validate_python(data)
    except ValidationError as e:
        raise QuizFormatError(f"Quiz reply has the wrong shape: {e.error_count()} errors") from e


class QuizService:
    """Single-round quiz generator."""

    def __init__(self, client: OpenAI, settings: Settings):
        self.client = client
        self.settings = settings

    def generate_quiz(
        self,
        message_text: str,
        difficulty: Difficulty = Difficulty.MEDIUM,
        image: Optional[ImageAttachment] = None,
    ) -> list[QuizQuestion]:
        """
        Ask the model for a quiz and parse it.

        Raises:
            UpstreamError: If the provider call fails
            QuizFormatError: If the reply cannot be parsed
        """
        if image is not None:
            content: list[Dict[str, Any]] = [
                {"type": "text", "text": IMAGE_QUIZ_PROMPT},
                {"type": "image_url", "image_url": {"url": image.data_url()}},
            ]
        else:
            content = [{"type": "text", "text": message_text}]

        try:
            response = self.client.chat.completions.create(
                model=self.settings.OPENAI_VISION_MODEL,
                messages=[
                    {"role": "system", "content": build_quiz_prompt(difficulty)},
                    {"role": "user", "content": content},
                ],
                max_tokens=self.settings.QUIZ_MAX_TOKENS,
                temperature=self.settings.OPENAI_TEMPERATURE,
                timeout=self.settings.OPENAI_TIMEOUT,
            )
        except OpenAIError as e:
            raise UpstreamError(f"Quiz generation failed: {str(e)}") from e

        if not response.choices:
            raise UpstreamError("Model provider returned no choices")

        questions = parse_quiz(response.choices[0].message.content or "")
        logger.info(f"Quiz generated: difficulty={difficulty.value}, questions={len(questions)}")
        return questions
