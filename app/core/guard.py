"""Tenant isolation checks.

Every route that touches stored messages calls one of these before any
store access. Failures carry no detail about which part of the check failed.
"""
import logging

from fastapi import HTTPException, status

from app.models.chat import Principal, Role
from app.services.session_store import SessionStore

logger = logging.getLogger(__name__)


def forbidden() -> HTTPException:
    return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Forbidden")


def authorize_owner(principal: Principal, family_id: str, user_id: str) -> None:
    """
    Require the request scope to be the principal's own family and user.

    Raises:
        HTTPException: 403 on any mismatch
    """
    if principal.user_id != user_id or principal.family_id != family_id:
        logger.warning(f"Scope mismatch rejected: principal={principal.user_id}")
        raise forbidden()


def authorize_parent_view(principal: Principal, child_user_id: str, store: SessionStore) -> None:
    """
    Allow a parent to read a child's messages within their own family.

    The child must exist as a child member of the parent's family.

    Raises:
        HTTPException: 403 if the principal is not a parent or the child
        is not in the family
    """
    if principal.role != Role.PARENT:
        logger.warning(f"Parent view rejected for non-parent: principal={principal.user_id}")
        raise forbidden()

    profile = store.get_user_profile(principal.family_id, child_user_id)
    if not profile or profile.get("role") != Role.CHILD.value:
        logger.warning(
            f"Parent view rejected: principal={principal.user_id}, child={child_user_id}"
        )
        raise forbidden()
