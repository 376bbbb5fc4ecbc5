"""FastAPI dependencies: current principal and service instances.

Services are built once in the application lifespan and stored on
app.state; tests override these dependencies with fakes.
"""
import logging
from typing import Optional

from fastapi import Depends, Header, HTTPException, Request, status

from app.config import Settings
from app.core.security import InvalidTokenError, decode_access_token, parse_authorization_header
from app.models.chat import Principal
from app.services.chat_service import ChatService
from app.services.quiz_service import QuizService
from app.services.session_store import SessionStore

logger = logging.getLogger(__name__)


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_current_principal(
    authorization: Optional[str] = Header(default=None),
    settings: Settings = Depends(get_settings),
) -> Principal:
    """
    Verify the bearer token and return its principal.

    Raises:
        HTTPException: 401 for a missing, malformed, expired or forged token
    """
    try:
        token = parse_authorization_header(authorization)
        return decode_access_token(token, settings=settings)
    except InvalidTokenError as e:
        logger.info(f"Token rejected: {str(e)}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": "Bearer"},
        )


def get_store(request: Request) -> SessionStore:
    return request.app.state.store


def get_chat_service(request: Request) -> ChatService:
    return request.app.state.chat_service


def get_quiz_service(request: Request) -> QuizService:
    return request.app.state.quiz_service
