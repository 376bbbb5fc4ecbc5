"""FastAPI application entry point for the family homework helper API."""
import logging
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from openai import OpenAI

from app.api.routes.chat import router as chat_router
from app.config import settings
from app.core.errors import NotFoundError, StoreError, UpstreamError
from app.services.chat_service import ChatService
from app.services.quiz_service import QuizService
from app.services.session_store import SessionStore, create_table_resource
from app.tools.registry import ToolRegistry

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Build the shared clients once and hand them to the services."""
    openai_client = OpenAI(api_key=settings.OPENAI_API_KEY)
    http_client = httpx.Client(timeout=settings.TOOL_HTTP_TIMEOUT)
    store = SessionStore(create_table_resource(settings))
    tools = ToolRegistry(http_client, settings)

    app.state.settings = settings
    app.state.store = store
    app.state.chat_service = ChatService(openai_client, store, tools, settings)
    app.state.quiz_service = QuizService(openai_client, settings)
    logger.info(f"Services ready: table={settings.DYNAMODB_TABLE}, model={settings.OPENAI_MODEL}")

    try:
        yield
    finally:
        http_client.close()
        openai_client.close()


app = FastAPI(
    title="Family Homework Helper API",
    description="Homework chat assistant with family-scoped chat history",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/health")
def health_check():
    """Health check endpoint."""
    return {"status": "ok"}


# Register chat routes
app.include_router(chat_router)


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """Report malformed or missing fields as 400 with field-level detail."""
    return JSONResponse(
        status_code=400,
        content={
            "detail": "Invalid request body",
            "issues": [
                {"loc": list(error["loc"]), "msg": error["msg"], "type": error["type"]}
                for error in exc.errors()
            ],
        },
    )


@app.exception_handler(NotFoundError)
async def not_found_exception_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content={"detail": "Not found"})


@app.exception_handler(StoreError)
async def store_exception_handler(request: Request, exc: StoreError):
    """Store failures abort the operation; the cause is logged, not returned."""
    logger.error(f"Store error on {request.method} {request.url.path}: {str(exc)}", exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.exception_handler(UpstreamError)
async def upstream_exception_handler(request: Request, exc: UpstreamError):
    """Model provider failures fail the request; nothing was stored."""
    logger.error(f"Upstream error on {request.method} {request.url.path}: {str(exc)}", exc_info=exc)
    return JSONResponse(status_code=500, content={"detail": "Internal server error"})


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception):
    """Handle unhandled exceptions with generic error response."""
    logger.exception(f"Unhandled exception: {str(exc)}")
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"}
    )
