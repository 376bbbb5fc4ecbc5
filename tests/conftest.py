"""Shared fixtures: in-memory DynamoDB table, fake model client, test app."""
import copy
import re
from types import SimpleNamespace
from typing import Any, Optional

import httpx
import pytest
from botocore.exceptions import ClientError
from fastapi.testclient import TestClient

from app.config import Settings
from app.core import deps
from app.core.security import create_access_token
from app.main import app
from app.models.chat import Principal, Role
from app.services.chat_service import ChatService
from app.services.quiz_service import QuizService
from app.services.session_store import SessionStore
from app.tools.registry import ToolRegistry

TEST_SECRET = "test-secret-key-for-signing-tokens-0123456789"


def client_error(operation: str) -> ClientError:
    return ClientError(
        {"Error": {"Code": "InternalServerError", "Message": "boom"}},
        operation,
    )


class FakeBatchClient:
    """Stands in for table.meta.client; records every batch call."""

    def __init__(self, table: "FakeTable"):
        self.table = table
        self.batch_calls: list[list[dict[str, Any]]] = []

    def batch_write_item(self, RequestItems: dict[str, list[dict[str, Any]]]) -> dict[str, Any]:
        requests = RequestItems[self.table.name]
        if len(requests) > 25:
            raise client_error("BatchWriteItem")
        if "batch_write_item" in self.table.fail_on:
            raise client_error("BatchWriteItem")
        self.batch_calls.append(requests)
        for request in requests:
            key = request["DeleteRequest"]["Key"]
            self.table.items.pop((key["pk"], key["sk"]), None)
        return {"UnprocessedItems": {}}


class FakeTable:
    """
    In-memory DynamoDB table supporting the calls SessionStore makes.

    Queries return at most page_size items per page, like the real 1 MB limit.
    """

    def __init__(self, page_size: int = 10, name: str = "test-table"):
        self.name = name
        self.page_size = page_size
        self.items: dict[tuple[str, str], dict[str, Any]] = {}
        self.fail_on: set[str] = set()
        self.fail_query_after = 1
        self.fail_put_after = 1
        self.put_calls = 0
        self.query_calls: list[dict[str, Any]] = []
        self.get_calls: list[dict[str, Any]] = []
        self.deleted_keys: list[dict[str, str]] = []
        self.meta = SimpleNamespace(client=FakeBatchClient(self))

    @property
    def batch_calls(self) -> list[list[dict[str, Any]]]:
        return self.meta.client.batch_calls

    @property
    def store_calls(self) -> int:
        return (
            self.put_calls + len(self.query_calls) + len(self.get_calls)
            + len(self.deleted_keys) + len(self.batch_calls)
        )

    def put_item(self, Item: dict[str, Any]) -> dict[str, Any]:
        self.put_calls += 1
        if "put_item" in self.fail_on and self.put_calls >= self.fail_put_after:
            raise client_error("PutItem")
        self.items[(Item["pk"], Item["sk"])] = dict(Item)
        return {}

    def get_item(self, Key: dict[str, str]) -> dict[str, Any]:
        self.get_calls.append(Key)
        if "get_item" in self.fail_on:
            raise client_error("GetItem")
        item = self.items.get((Key["pk"], Key["sk"]))
        return {"Item": dict(item)} if item else {}

    def delete_item(self, Key: dict[str, str]) -> dict[str, Any]:
        if "delete_item" in self.fail_on:
            raise client_error("DeleteItem")
        self.deleted_keys.append(Key)
        self.items.pop((Key["pk"], Key["sk"]), None)
        return {}

    def query(self, **kwargs: Any) -> dict[str, Any]:
        self.query_calls.append(kwargs)
        if "query" in self.fail_on and len(self.query_calls) >= self.fail_query_after:
            raise client_error("Query")

        values = kwargs["ExpressionAttributeValues"]
        pk, prefix = values[":pk"], values[":sk"]
        matching = sorted(
            (item for (item_pk, sk), item in self.items.items() if item_pk == pk and sk.startswith(prefix)),
            key=lambda item: item["sk"],
        )
        start = kwargs.get("ExclusiveStartKey")
        if start:
            matching = [item for item in matching if item["sk"] > start["sk"]]

        page = matching[:self.page_size]
        result: dict[str, Any] = {"Items": [self._project(item, kwargs) for item in page]}
        if len(matching) > self.page_size:
            result["LastEvaluatedKey"] = {"pk": page[-1]["pk"], "sk": page[-1]["sk"]}
        return result

    @staticmethod
    def _project(item: dict[str, Any], kwargs: dict[str, Any]) -> dict[str, Any]:
        projection = kwargs.get("ProjectionExpression")
        if not projection:
            return dict(item)
        names = kwargs.get("ExpressionAttributeNames", {})
        fields = [names.get(part, part) for part in re.split(r"\s*,\s*", projection.strip())]
        return {field: item[field] for field in fields if field in item}


class FakeCompletions:
    """Replays queued chat completion replies and records a copy of each call."""

    def __init__(self) -> None:
        self.replies: list[Any] = []
        self.calls: list[dict[str, Any]] = []

    def create(self, **kwargs: Any) -> Any:
        self.calls.append(copy.deepcopy(kwargs))
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        return reply


class FakeOpenAI:
    def __init__(self) -> None:
        self.chat = SimpleNamespace(completions=FakeCompletions())

    @property
    def completions(self) -> FakeCompletions:
        return self.chat.completions


def completion(content: Optional[str] = None, tool_calls: Optional[list[Any]] = None) -> Any:
    """Build an object shaped like a ChatCompletion."""
    message = SimpleNamespace(content=content, tool_calls=tool_calls)
    return SimpleNamespace(choices=[SimpleNamespace(message=message)])


def tool_call(call_id: str, name: str, arguments: str) -> Any:
    return SimpleNamespace(
        id=call_id,
        type="function",
        function=SimpleNamespace(name=name, arguments=arguments),
    )


@pytest.fixture
def settings() -> Settings:
    test_settings = Settings()
    test_settings.JWT_SECRET = TEST_SECRET
    test_settings.JWT_ALGORITHM = "HS256"
    test_settings.OPENAI_MODEL = "text-model"
    test_settings.OPENAI_VISION_MODEL = "vision-model"
    test_settings.DEEPL_API_KEY = ""
    test_settings.WIKIPEDIA_LANGUAGE = "sv"
    test_settings.WIKIPEDIA_EXCERPT_CHARS = 500
    test_settings.MAX_IMAGE_BYTES = 1024
    return test_settings


@pytest.fixture
def table() -> FakeTable:
    return FakeTable()


@pytest.fixture
def store(table: FakeTable) -> SessionStore:
    return SessionStore(table)


@pytest.fixture
def openai_client() -> FakeOpenAI:
    return FakeOpenAI()


@pytest.fixture
def wiki_handler() -> dict[str, Any]:
    """Mutable response map for the mocked encyclopedia/translator HTTP calls."""
    return {"search": [], "suggestion": None, "summary": None, "translation": None}


@pytest.fixture
def http_client(wiki_handler: dict[str, Any]) -> httpx.Client:
    def handle(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/w/api.php":
            query: dict[str, Any] = {"search": wiki_handler["search"]}
            if wiki_handler["suggestion"]:
                query["searchinfo"] = {"suggestion": wiki_handler["suggestion"]}
            return httpx.Response(200, json={"query": query})
        if request.url.path.startswith("/api/rest_v1/page/summary/"):
            if wiki_handler["summary"] is None:
                return httpx.Response(404, json={})
            return httpx.Response(200, json={"extract": wiki_handler["summary"]})
        if request.url.path == "/v2/translate":
            return httpx.Response(200, json={"translations": [{"text": wiki_handler["translation"]}]})
        return httpx.Response(500)

    return httpx.Client(transport=httpx.MockTransport(handle))


@pytest.fixture
def tools(http_client: httpx.Client, settings: Settings) -> ToolRegistry:
    return ToolRegistry(http_client, settings)


@pytest.fixture
def chat_service(openai_client: FakeOpenAI, store: SessionStore, tools: ToolRegistry, settings: Settings) -> ChatService:
    return ChatService(openai_client, store, tools, settings)


@pytest.fixture
def quiz_service(openai_client: FakeOpenAI, settings: Settings) -> QuizService:
    return QuizService(openai_client, settings)


@pytest.fixture
def parent() -> Principal:
    return Principal(user_id="user#1", username="anna", role=Role.PARENT, family_id="family#1")


@pytest.fixture
def child() -> Principal:
    return Principal(user_id="user#2", username="olle", role=Role.CHILD, family_id="family#1")


@pytest.fixture
def make_auth(settings: Settings):
    def _make(principal: Principal, expires_minutes: Optional[int] = None) -> dict[str, str]:
        token = create_access_token(principal, expires_minutes=expires_minutes, settings=settings)
        return {"Authorization": f"Bearer {token}"}

    return _make


@pytest.fixture
def api(settings: Settings, store: SessionStore, chat_service: ChatService, quiz_service: QuizService):
    app.dependency_overrides[deps.get_settings] = lambda: settings
    app.dependency_overrides[deps.get_store] = lambda: store
    app.dependency_overrides[deps.get_chat_service] = lambda: chat_service
    app.dependency_overrides[deps.get_quiz_service] = lambda: quiz_service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
