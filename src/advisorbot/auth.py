"""Caller identity and the ownership guard."""

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from .errors import AuthorizationError

audit_logger = logging.getLogger("advisorbot.audit")

Identity = Any


class Auth(ABC):
    """Interface for identifying the current user."""

    @abstractmethod
    def get_current_user_id(self, **kwargs) -> Optional[str]:
        """Determines and returns the ID of the current user."""
        pass


class SingleUser(Auth):
    """A simple auth manager for single-user apps."""

    def __init__(self, user_id: str = "advisor"):
        """Initialize with a user ID.

        Parameters
        ----------
        user_id : str, default="advisor"
            User identifier. Non-string values will be converted to strings
            to enforce the Auth interface contract.
        """
        self._user_id = str(user_id)

    def get_current_user_id(self, **kwargs) -> str:
        return self._user_id


def _normalize(identity: Identity) -> Optional[str]:
    if identity is None:
        return None
    text = str(identity).strip()
    return text or None


def verify_ownership(resource_owner_id: Identity, caller_id: Identity) -> bool:
    """Return True when ``caller_id`` owns the resource.

    Identities are compared as strings, so ``7`` and ``"7"`` match. A missing
    owner or caller never matches.
    """
    owner = _normalize(resource_owner_id)
    caller = _normalize(caller_id)
    if owner is None or caller is None:
        return False
    return owner == caller


def require_ownership(
    resource_owner_id: Identity, caller_id: Identity, resource: str = "resource"
) -> None:
    """Raise :class:`AuthorizationError` unless ``caller_id`` owns the resource.

    Every mismatch is written to the ``advisorbot.audit`` logger with both
    identities.
    """
    if verify_ownership(resource_owner_id, caller_id):
        return
    audit_logger.warning(
        "Ownership violation: caller=%s attempted to read %s owned by %s",
        caller_id,
        resource,
        resource_owner_id,
    )
    raise AuthorizationError(f"Not authorized to access {resource}")
