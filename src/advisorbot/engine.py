"""
The planning loop that turns one chat request into one ``ChatResponse``.

The engine asks the LLM for a reply, executes any tools it requests, feeds the
outcomes back, and repeats until the model answers in plain text or the step
ceiling is reached. It reads its collaborators from the owning app
(``app.llm``, ``app.store``, ``app.tools`` and ``app.settings``).
"""

import asyncio
import logging
import time
import weakref
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, List, Optional, Tuple, Union

from pydantic import ValidationError

from .assembler import assemble
from .auth import audit_logger, verify_ownership
from .config import DEFAULT_MAX_STEPS, Settings, log_event
from .errors import (
    AdvisorbotError,
    AuthenticationError,
    ConversationNotFoundError,
    InvalidRequestError,
    LLMServiceError,
    RequestCancelled,
)
from .models import (
    ASSISTANT_ROLE,
    SYSTEM_ROLE,
    TOOL_ROLE,
    USER_ROLE,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    PlanningState,
    PlanningStatus,
    ToolCall,
    ToolOutcome,
)

logger = logging.getLogger(__name__)

TITLE_LENGTH = 40

SYSTEM_PROMPT = """Sei l'assistente personale di un consulente finanziario.
Oggi è {today}.

Aiuti il consulente a gestire i suoi clienti, i suoi appuntamenti, le email e le
proposte di portafoglio usando gli strumenti a tua disposizione.
- Usa gli strumenti per recuperare i dati: non inventare clienti, appuntamenti o cifre.
- Per creare o modificare appuntamenti, inviare email o generare portafogli prepara
  i dati con lo strumento apposito: il consulente confermerà nel dialogo.
- Se uno strumento fallisce o mancano informazioni, spiegalo e chiedi i dati mancanti.
- Rispondi sempre in italiano, in modo conciso e professionale."""


def conversation_title(message: str) -> str:
    text = " ".join(message.split())
    if len(text) > TITLE_LENGTH:
        return text[:TITLE_LENGTH] + "..."
    return text


class Engine(ABC):
    """Interface for the request-handling loop."""

    def __init__(self, app: Any = None) -> None:
        self.app = app

    @abstractmethod
    async def handle_message(
        self,
        request: Union[ChatRequest, dict],
        caller_id: Any,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ChatResponse:
        """Runs one chat request for ``caller_id`` and returns the response."""
        pass


class Orchestrator(Engine):
    """Bounded tool-calling loop with per-conversation serialization."""

    MAX_AGENTIC_TURNS = DEFAULT_MAX_STEPS

    def __init__(self, app: Any = None, max_turns: Optional[int] = None) -> None:
        super().__init__(app)
        self.max_turns = max_turns
        self._locks: "weakref.WeakValueDictionary[int, asyncio.Lock]" = weakref.WeakValueDictionary()

    @property
    def settings(self) -> Settings:
        settings = getattr(self.app, "settings", None)
        return settings if isinstance(settings, Settings) else Settings()

    @property
    def turn_limit(self) -> int:
        return max(1, self.max_turns or self.settings.max_steps or self.MAX_AGENTIC_TURNS)

    # --- hooks ---

    def _before_llm_call(self, messages: List[ChatMessage]) -> List[ChatMessage]:
        return messages

    def _after_llm_call(self, response: Any) -> Any:
        return response

    def _before_save(self, state: PlanningState) -> PlanningState:
        return state

    # --- request validation ---

    def _validate(self, request: Union[ChatRequest, dict], caller_id: Any) -> ChatRequest:
        if caller_id is None or not str(caller_id).strip():
            raise AuthenticationError("Authentication required")
        if isinstance(request, ChatRequest):
            return request
        if not isinstance(request, dict):
            raise InvalidRequestError("Request body must be an object")
        try:
            return ChatRequest.model_validate(request)
        except ValidationError as exc:
            first = exc.errors()[0]
            field = ".".join(str(part) for part in first["loc"]) or "request"
            raise InvalidRequestError(f"Invalid {field}: {first['msg']}") from None

    def _open_conversation(self, request: ChatRequest, caller_id: Any) -> int:
        store = self.app.store
        if request.conversation_id is None:
            return store.create_conversation(str(caller_id), conversation_title(request.message))
        conversation = store.get_conversation(request.conversation_id)
        if conversation is None:
            raise ConversationNotFoundError("Conversation not found")
        if not verify_ownership(conversation.owner_id, caller_id):
            audit_logger.warning(
                "Ownership violation: caller=%s attempted to open conversation %s owned by %s",
                caller_id,
                conversation.id,
                conversation.owner_id,
            )
            raise ConversationNotFoundError("Conversation not found")
        return conversation.id

    def _lock_for(self, conversation_id: int) -> asyncio.Lock:
        lock = self._locks.get(conversation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[conversation_id] = lock
        return lock

    # --- loop ---

    def system_prompt(self) -> str:
        return SYSTEM_PROMPT.format(today=datetime.now().strftime("%A %d/%m/%Y"))

    async def _call_llm(
        self, messages: List[ChatMessage], model: str, tools: List[dict]
    ) -> Tuple[Optional[str], List[ToolCall]]:
        llm = self.app.llm
        settings = self.settings
        kwargs: dict = {"temperature": settings.temperature}
        if tools:
            kwargs.update(tools=tools, tool_choice="auto")
        try:
            response = await asyncio.wait_for(
                llm.generate_response(llm.format_messages(messages), model=model, **kwargs),
                settings.llm_timeout,
            )
            response = self._after_llm_call(response)
            text = llm.extract_content(response)
            tool_calls = llm.parse_tool_calls(response) or []
        except asyncio.TimeoutError:
            logger.error("LLM call timed out after %ss", settings.llm_timeout)
            raise LLMServiceError(
                f"LLM call timed out after {settings.llm_timeout:g}s", status=504
            ) from None
        except Exception as exc:
            logger.exception("LLM call failed")
            status = getattr(exc, "status_code", None)
            raise LLMServiceError(
                str(exc) or type(exc).__name__,
                status=status if isinstance(status, int) else None,
            ) from exc
        return text, tool_calls

    async def _dispatch(self, call: ToolCall, caller_id: Any) -> ToolOutcome:
        try:
            return await self.app.tools.dispatch(call, caller_id)
        except Exception as exc:
            logger.exception("Tool pillar failed on %s", call.function_name)
            return ToolOutcome(
                tool_call_id=call.id,
                tool_name=call.function_name,
                success=False,
                error=str(exc) or type(exc).__name__,
                error_type=type(exc).__name__,
            )

    async def _plan(
        self,
        history: List[ChatMessage],
        state: PlanningState,
        model: str,
        caller_id: Any,
        conversation_id: int,
        cancel_event: Optional[asyncio.Event],
    ) -> PlanningState:
        tools = self.app.tools.get_tools() or []
        system = ChatMessage(role=SYSTEM_ROLE, content=self.system_prompt())
        limit = self.turn_limit

        while state.step_count < limit:
            if cancel_event is not None and cancel_event.is_set():
                raise RequestCancelled("Request cancelled by the caller")

            state.status = PlanningStatus.AWAITING_MODEL
            messages = self._before_llm_call([system, *history, *state.messages])
            text, tool_calls = await self._call_llm(messages, model, tools)
            if text and text.strip():
                state.last_text = text

            if not tool_calls:
                state.final_text = text
                state.status = PlanningStatus.DONE
                return state

            state.status = PlanningStatus.EXECUTING_TOOLS
            state.messages.append(
                ChatMessage(
                    role=ASSISTANT_ROLE,
                    content=text or None,
                    conversation_id=conversation_id,
                    tool_calls=tool_calls,
                )
            )
            for call in tool_calls:
                outcome = await self._dispatch(call, caller_id)
                state.outcomes.append(outcome)
                state.messages.append(
                    ChatMessage(
                        role=TOOL_ROLE,
                        content=outcome.to_content(),
                        conversation_id=conversation_id,
                        tool_call_id=call.id,
                    )
                )
            state.step_count += 1
            log_event(
                logger,
                "planning_step",
                conversation_id=conversation_id,
                step=state.step_count,
                tools=[call.function_name for call in tool_calls],
                failures=sum(1 for o in state.outcomes[-len(tool_calls):] if not o.success),
            )

        state.status = PlanningStatus.CEILING_REACHED
        logger.warning(
            "Conversation %s reached the step ceiling (%s) without a final answer",
            conversation_id,
            limit,
        )
        return state

    def _commit(self, conversation_id: int, state: PlanningState, response: ChatResponse) -> None:
        store = self.app.store
        for message in state.messages:
            store.append_message(
                conversation_id,
                message.role,
                message.content,
                tool_call_id=message.tool_call_id,
                tool_calls=message.tool_calls,
            )
        store.append_message(
            conversation_id,
            ASSISTANT_ROLE,
            response.response,
            tool_results=[o.model_dump(mode="json") for o in state.outcomes] or None,
        )

    async def handle_message(self, request, caller_id, cancel_event=None):
        request = self._validate(request, caller_id)
        conversation_id = self._open_conversation(request, caller_id)
        model = self.settings.model_for_tier(request.model_tier)
        started = time.monotonic()

        async with self._lock_for(conversation_id):
            store = self.app.store
            store.append_message(conversation_id, USER_ROLE, request.message)
            history = store.list_messages(conversation_id)
            log_event(
                logger,
                "request_started",
                conversation_id=conversation_id,
                caller_id=caller_id,
                model=model,
                history=len(history),
            )

            try:
                state = await self._plan(
                    history, PlanningState(), model, caller_id, conversation_id, cancel_event
                )
            except AdvisorbotError as exc:
                # The user turn is already stored under this id.
                exc.conversation_id = conversation_id
                raise
            state = self._before_save(state)
            response = assemble(state, conversation_id, model)
            self._commit(conversation_id, state, response)

        log_event(
            logger,
            "request_finished",
            conversation_id=conversation_id,
            status=state.status.value,
            steps=state.step_count,
            tool_calls=len(state.outcomes),
            failed_tools=sum(1 for o in state.outcomes if not o.success),
            side_effects=[kind for kind, value in response.side_effects if value is not None],
            duration_ms=round((time.monotonic() - started) * 1000, 1),
        )
        return response
