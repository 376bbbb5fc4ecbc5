"""Tool registry for the homework assistant.

Tools are keyed by the ToolName enum; the registry refuses to start if a
ToolName has no schema or no handler.
"""
from enum import Enum
from functools import partial
from typing import Any, Callable, Dict

import httpx

from app.config import Settings
from . import executors


class ToolName(str, Enum):
    CALCULATE = "calculate"
    TRANSLATE = "translate"
    CHECK_SPELLING = "check_spelling"
    SEARCH_INFORMATION = "search_information"


SUBJECTS = [
    "science",
    "biology",
    "physics",
    "chemistry",
    "history",
    "geography",
    "social studies",
]

# Function schemas in the OpenAI tools format
TOOLS: Dict[ToolName, Dict[str, Any]] = {
    ToolName.CALCULATE: {
        "name": ToolName.CALCULATE.value,
        "description": "Perform exact mathematical calculations. Use this to evaluate arithmetic expressions.",
        "parameters": {
            "type": "object",
            "properties": {
                "expression": {
                    "type": "string",
                    "description": "Expression to evaluate, e.g. '2+2', '5*8', 'sqrt(16)', '(10+5)*2'",
                },
            },
            "required": ["expression"],
        },
    },
    ToolName.TRANSLATE: {
        "name": ToolName.TRANSLATE.value,
        "description": "Translate text between Swedish and English",
        "parameters": {
            "type": "object",
            "properties": {
                "text": {"type": "string", "description": "Text to translate"},
                "from_language": {
                    "type": "string",
                    "enum": list(executors.LANGUAGE_CODES),
                    "description": "Language to translate from",
                },
                "to_language": {
                    "type": "string",
                    "enum": list(executors.LANGUAGE_CODES),
                    "description": "Language to translate to",
                },
            },
            "required": ["text", "from_language", "to_language"],
        },
    },
    ToolName.CHECK_SPELLING: {
        "name": ToolName.CHECK_SPELLING.value,
        "description": "Check the spelling of a word and suggest the correct spelling",
        "parameters": {
            "type": "object",
            "properties": {
                "word": {"type": "string", "description": "Word to check"},
            },
            "required": ["word"],
        },
    },
    ToolName.SEARCH_INFORMATION: {
        "name": ToolName.SEARCH_INFORMATION.value,
        "description": "Look up facts about science, history, geography and similar school subjects",
        "parameters": {
            "type": "object",
            "properties": {
                "query": {"type": "string", "description": "Question or search term"},
                "subject": {
                    "type": "string",
                    "enum": SUBJECTS,
                    "description": "Subject area of the search",
                },
            },
            "required": ["query", "subject"],
        },
    },
}


class UnknownToolError(ValueError):
    """The model asked for a tool that is not registered."""


class ToolArgumentError(ValueError):
    """Tool arguments are missing or of the wrong type."""


class ToolRegistry:
    """
    Registry of homework tools.

    Holds the shared HTTP client the network-backed tools use.
    """

    def __init__(self, http: httpx.Client, settings: Settings):
        """Initialize registry with an HTTP client and settings."""
        self.http = http
        self.settings = settings
        self._handlers: Dict[ToolName, Callable[..., str]] = {
            ToolName.CALCULATE: executors.calculate,
            ToolName.TRANSLATE: partial(executors.translate, http=http, settings=settings),
            ToolName.CHECK_SPELLING: partial(executors.check_spelling, http=http, settings=settings),
            ToolName.SEARCH_INFORMATION: partial(executors.search_information, http=http, settings=settings),
        }
        missing = [name.value for name in ToolName if name not in self._handlers or name not in TOOLS]
        if missing:
            raise RuntimeError(f"Tools without handler or schema: {missing}")

    def call_tool(self, tool_name: str, arguments: Dict[str, Any]) -> str:
        """
        Call a tool by name.

        Args:
            tool_name: Name the model used (e.g. 'calculate')
            arguments: Decoded JSON arguments

        Returns:
            Tool output text

        Raises:
            UnknownToolError: If tool not found
            ToolArgumentError: If a required argument is missing or not a string
        """
        try:
            name = ToolName(tool_name)
        except ValueError:
            raise UnknownToolError(f"Tool '{tool_name}' not found") from None

        schema = TOOLS[name]["parameters"]
        for field in schema["required"]:
            if field not in arguments:
                raise ToolArgumentError(f"Missing required argument: {field}")

        kwargs = {}
        for field in schema["properties"]:
            if field not in arguments:
                continue
            value = arguments[field]
            if not isinstance(value, str):
                raise ToolArgumentError(f"Argument '{field}' must be a string")
            kwargs[field] = value

        return self._handlers[name](**kwargs)

    def get_tool_schemas(self) -> list[Dict[str, Any]]:
        """Tool list for the chat completions API."""
        return [{"type": "function", "function": schema} for schema in TOOLS.values()]
