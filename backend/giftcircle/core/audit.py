"""Audit logging for security-relevant and social operations."""

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from fastapi import Request


logger = logging.getLogger("giftcircle.audit")

_SENSITIVE_KEYS = {"password", "token", "secret", "key", "authorization"}


class AuditAction(str, Enum):
    # Authentication
    LOGIN = "login"
    LOGOUT = "logout"
    LOGIN_FAILED = "login_failed"
    REGISTER = "register"
    PASSWORD_CHANGE = "password_change"

    # Wishlists
    WISHLIST_DELETE = "wishlist_delete"
    WISHLIST_RESTORE = "wishlist_restore"
    WISHLIST_PURGE = "wishlist_purge"
    EDITOR_GRANT = "editor_grant"
    EDITOR_REVOKE = "editor_revoke"

    # Claims
    CLAIM_CREATE = "claim_create"
    CLAIM_REMOVE = "claim_remove"
    CLAIM_SENT = "claim_sent"

    # Friendships
    FRIEND_REQUEST = "friend_request"
    FRIEND_ACCEPT = "friend_accept"
    FRIEND_IGNORE = "friend_ignore"
    FRIEND_REMOVE = "friend_remove"


def audit_log(
    action: AuditAction,
    request: Request | None = None,
    user_id: int | str | None = None,
    details: dict[str, Any] | None = None,
    success: bool = True,
) -> None:
    """
    Log an audit event.

    Args:
        action: The action being performed
        request: FastAPI request object (for IP, user agent)
        user_id: ID of the user performing the action
        details: Additional details about the action
        success: Whether the action was successful
    """
    event: dict[str, Any] = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "action": action.value,
        "success": success,
    }

    if user_id is not None:
        event["user_id"] = str(user_id)

    if request:
        client_host = request.client.host if request.client else None
        forwarded = request.headers.get("X-Forwarded-For")
        if forwarded:
            client_host = forwarded.split(",")[0].strip()
        event["ip"] = client_host
        event["user_agent"] = request.headers.get("User-Agent", "")[:200]
        event["request_id"] = request.headers.get("X-Request-Id", "")

    if details:
        event["details"] = {
            key: "***REDACTED***" if key in _SENSITIVE_KEYS else value
            for key, value in details.items()
        }

    if success:
        logger.info("AUDIT: %s", event)
    else:
        logger.warning("AUDIT: %s", event)


def audit_login_success(request: Request, user_id: int, email: str) -> None:
    audit_log(AuditAction.LOGIN, request=request, user_id=user_id, details={"email": email})


def audit_login_failed(request: Request, email: str, reason: str) -> None:
    audit_log(
        AuditAction.LOGIN_FAILED,
        request=request,
        details={"email": email, "reason": reason},
        success=False,
    )


def audit_register(request: Request, user_id: int, email: str) -> None:
    audit_log(AuditAction.REGISTER, request=request, user_id=user_id, details={"email": email})


def audit_wishlist_action(
    action: AuditAction,
    request: Request,
    user_id: int,
    wishlist_id: int,
    details: dict[str, Any] | None = None,
) -> None:
    event_details: dict[str, Any] = {"wishlist_id": wishlist_id}
    if details:
        event_details.update(details)
    audit_log(action, request=request, user_id=user_id, details=event_details)


def audit_claim_action(
    action: AuditAction,
    request: Request,
    user_id: int,
    item_id: int,
    wishlist_id: int,
) -> None:
    audit_log(
        action,
        request=request,
        user_id=user_id,
        details={"item_id": item_id, "wishlist_id": wishlist_id},
    )


def audit_friend_action(
    action: AuditAction,
    request: Request,
    user_id: int,
    other_user_id: int | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    event_details: dict[str, Any] = {}
    if other_user_id is not None:
        event_details["other_user_id"] = other_user_id
    if details:
        event_details.update(details)
    audit_log(action, request=request, user_id=user_id, details=event_details or None)
