"""Exception hierarchy shared by all pillars.

Request-level errors carry an HTTP-like ``status`` so the facade can fold them
into a ``ChatResponse`` without knowing which pillar raised them. Tool-level
errors never leave the dispatcher: they become failed ``ToolOutcome`` objects.
"""

from typing import Optional


class AdvisorbotError(Exception):
    """Base class for every error raised by the package."""

    status: int = 500
    conversation_id: Optional[int] = None

    def __init__(self, message: str = "", status: Optional[int] = None):
        super().__init__(message)
        if status is not None:
            self.status = status


class InvalidRequestError(AdvisorbotError):
    """The inbound payload is malformed (e.g. empty message)."""

    status = 400


class AuthenticationError(AdvisorbotError):
    """No caller identity was supplied by the authentication layer."""

    status = 401


class ConversationNotFoundError(AdvisorbotError):
    """The conversation does not exist or belongs to someone else."""

    status = 404


class RequestCancelled(AdvisorbotError):
    """The caller went away before the next LLM call."""

    status = 499


class LLMServiceError(AdvisorbotError):
    """The chat-completion service failed; the whole request is aborted."""

    status = 502


class ToolError(AdvisorbotError):
    """Base class for failures that are folded into a failed tool outcome."""


class AuthorizationError(ToolError):
    """A tool resolved a resource owned by a different caller."""

    status = 403


class ToolTimeoutError(ToolError):
    """A tool handler did not finish within the configured timeout."""

    status = 504


class UnknownToolError(ToolError):
    """The model requested a tool that is not in the registry."""

    status = 404
