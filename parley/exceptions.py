#   _____        _____  _      ______ __     __
#  |  __ \ /\   |  __ \| |    |  ____|\ \   / /
#  | |__) /  \  | |__) | |    | |__    \ \_/ /
#  |  ___/ /\ \ |  _  /| |    |  __|    \   /
#  | |  / ____ \| | \ \| |____| |____    | |
#  |_| /_/    \_\_|  \_\______|______|   |_|
#

# Exceptions - Typed failure reasons surfaced to callers of the graph, matchmaking and session services.

# --------------------------------------------------------------------------
#                                  Functions
# --------------------------------------------------------------------------
# ParleyError.to_dict: Serializes the error for HTTP and WebSocket responses.

# --------------------------------------------------------------------------
#                            Variables and others
# --------------------------------------------------------------------------
# ParleyError: Base class, carries code, status_code and debugging context.
# NotFoundError: Edge, session, ticket or user absent.
# ConflictError: Duplicate edge or username collision.
# AlreadySearchingError: User already holds a matchmaking ticket.
# ForbiddenError: Caller is not a participant of the target resource.
# InvalidSessionError: Session unknown or already ended.
# StoreUnavailableError: Storage infrastructure failure.
# ValidationError: Malformed input (empty text, bad username).

# --------------------------------------------------------------------------
#                                   imports
# --------------------------------------------------------------------------
# typing: Type hints.

from typing import Any, Dict, Optional


class ParleyError(Exception):
    """
    Base exception for all Parley domain errors.

    Attributes:
        message: Human-readable error message
        context: Additional context for debugging
    """

    code = "error"
    status_code = 400

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)

    def __str__(self) -> str:
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            return f"{self.message} ({context_str})"
        return self.message

    def to_dict(self) -> dict:
        return {"code": self.code, "detail": self.message}


class NotFoundError(ParleyError):
    code = "not_found"
    status_code = 404


class ConflictError(ParleyError):
    code = "conflict"
    status_code = 409


class AlreadySearchingError(ParleyError):
    code = "already_searching"
    status_code = 409

    def __init__(self, user_id: str):
        super().__init__("Already searching for a partner", context={"user_id": user_id})
        self.user_id = user_id


class ForbiddenError(ParleyError):
    code = "forbidden"
    status_code = 403


class InvalidSessionError(ParleyError):
    code = "invalid_session"
    status_code = 410

    def __init__(self, session_id: str, reason: str = "Session is not active"):
        super().__init__(reason, context={"session_id": session_id})
        self.session_id = session_id


class StoreUnavailableError(ParleyError):
    code = "store_unavailable"
    status_code = 503


class ValidationError(ParleyError):
    code = "validation_error"
    status_code = 422
