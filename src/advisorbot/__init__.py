"""
The main entrypoint for the Advisorbot package.

This module contains the primary Advisorbot class, which wires the pillars
(LLM provider, conversation store, tool registry, auth and engine) together
and exposes the chat and conversation-management operations.
"""

import logging
from typing import Any, List, Optional, Union

from . import auth, backend, engine, llm, store, tools
from .advisor_tools import build_registry
from .config import Settings, load_settings
from .errors import AdvisorbotError, AuthenticationError, ConversationNotFoundError
from .models import ChatMessage, ChatRequest, ChatResponse, Conversation

__all__ = ["Advisorbot", "ChatRequest", "ChatResponse", "Settings", "load_settings"]

logger = logging.getLogger(__name__)


class Advisorbot:
    """
    The assistant behind the advisory platform's chat.

    The constructor uses concrete default implementations for every pillar,
    making it easy to get started while remaining fully customizable.
    """

    def __init__(
        self,
        llm: Optional[llm.LLM] = None,
        store: Optional[store.Store] = None,
        tools: Optional[tools.Tool] = None,
        auth: Optional[auth.Auth] = None,
        engine: Optional[engine.Engine] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        """
        Initialize the assistant with configurable pillars.

        Parameters
        ----------
        llm : llm.LLM, optional
            LLM provider. Defaults to llm.OpenAI() using
            ``settings.standard_model``.
        store : store.Store, optional
            Conversation persistence. Defaults to store.InMemory().
        tools : tools.Tool, optional
            Tool registry. Defaults to the advisor tools bound to an empty
            backend.InMemory().
        auth : auth.Auth, optional
            Identifies the caller when ``chat`` is not given one.
            Defaults to auth.SingleUser().
        engine : engine.Engine, optional
            Request loop. Defaults to engine.Orchestrator(self).
        settings : Settings, optional
            Tunables. Defaults to :func:`load_settings`.

        Examples
        --------
        >>> app = Advisorbot(llm=llm.Echo())
        >>> app = Advisorbot(store=store.SQLite("advisorbot.db"))
        """
        llm_module = globals()["llm"]
        store_module = globals()["store"]
        tools_module = globals()["tools"]
        auth_module = globals()["auth"]
        engine_module = globals()["engine"]

        self.settings = settings if settings is not None else load_settings()
        self.llm = llm if llm is not None else llm_module.OpenAI(self.settings.standard_model)
        self.store = store if store is not None else store_module.InMemory()
        if tools is None:
            tools = build_registry(backend.InMemory(), timeout=self.settings.tool_timeout)
        elif isinstance(tools, tools_module.Registry) and tools.timeout is None:
            tools.timeout = self.settings.tool_timeout
        self.tools = tools
        self.auth = auth if auth is not None else auth_module.SingleUser()
        self.engine = engine if engine is not None else engine_module.Orchestrator(self)
        if self.engine.app is None:
            self.engine.app = self

    def _caller(self, caller_id: Any) -> Any:
        return caller_id if caller_id is not None else self.auth.get_current_user_id()

    async def chat(
        self, payload: Union[ChatRequest, dict], caller_id: Any = None, cancel_event=None
    ) -> ChatResponse:
        """Handle one chat request. Request and service errors become
        ``success=False`` responses carrying the error status."""
        caller = self._caller(caller_id)
        try:
            return await self.engine.handle_message(payload, caller, cancel_event=cancel_event)
        except AdvisorbotError as exc:
            logger.warning("Chat request failed with %s: %s", type(exc).__name__, exc)
            return ChatResponse(
                success=False,
                conversation_id=exc.conversation_id,
                error=str(exc) or type(exc).__name__,
                status=exc.status,
            )

    def _owned_conversation(self, caller_id: Any, conversation_id: int) -> Conversation:
        caller = self._caller(caller_id)
        if caller is None:
            raise AuthenticationError("Authentication required")
        conversation = self.store.get_conversation(conversation_id)
        if conversation is None or not auth.verify_ownership(conversation.owner_id, caller):
            raise ConversationNotFoundError("Conversation not found")
        return conversation

    def list_conversations(self, caller_id: Any = None) -> List[Conversation]:
        caller = self._caller(caller_id)
        if caller is None:
            raise AuthenticationError("Authentication required")
        return self.store.list_conversations(str(caller))

    def get_conversation_history(self, caller_id: Any, conversation_id: int) -> List[ChatMessage]:
        """Messages of a conversation owned by the caller, oldest first."""
        conversation = self._owned_conversation(caller_id, conversation_id)
        return self.store.list_messages(conversation.id)

    def delete_conversation(self, caller_id: Any, conversation_id: int) -> None:
        conversation = self._owned_conversation(caller_id, conversation_id)
        self.store.delete_conversation(conversation.id)
        logger.info("Deleted conversation %s", conversation.id)
