"""
Defines the core Pydantic data models for the application.

These models serve as the formal, validated data contract between all other pillars,
aligning with conventions from industry-standard libraries like the OpenAI SDK.
"""

import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

# --- Constants ---
USER_ROLE = "user"
ASSISTANT_ROLE = "assistant"
SYSTEM_ROLE = "system"
TOOL_ROLE = "tool"
Role = Literal[USER_ROLE, ASSISTANT_ROLE, SYSTEM_ROLE, TOOL_ROLE]

MEETING_EFFECT = "meeting"
EMAIL_EFFECT = "email"
PORTFOLIO_EFFECT = "portfolio"
SideEffectKind = Literal[MEETING_EFFECT, EMAIL_EFFECT, PORTFOLIO_EFFECT]

ModelTier = Literal["standard", "advanced"]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class PlanningStatus(str, Enum):
    AWAITING_MODEL = "awaiting_model"
    EXECUTING_TOOLS = "executing_tools"
    DONE = "done"
    CEILING_REACHED = "ceiling_reached"


# --- Models ---
class ToolCall(BaseModel):
    """A tool invocation requested by the model inside an assistant turn."""

    id: str
    function_name: str
    function_args: Union[str, Dict[str, Any], None] = None


class ChatMessage(BaseModel):
    """Represents a single message within a conversation."""

    role: Role
    content: Optional[str] = None
    id: Optional[int] = None
    conversation_id: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow)
    tool_call_id: Optional[str] = None
    tool_calls: Optional[List[ToolCall]] = None
    tool_results: Optional[List[Dict[str, Any]]] = None

    @model_validator(mode="after")
    def _tool_message_has_call_id(self) -> "ChatMessage":
        if self.role == TOOL_ROLE and not self.tool_call_id:
            raise ValueError("tool messages must carry a tool_call_id")
        return self


class Conversation(BaseModel):
    """A thread of messages owned by exactly one caller identity."""

    id: int
    owner_id: str
    title: str = ""
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class SideEffectDirective(BaseModel):
    """Tells the client to present an interactive UI artifact."""

    kind: SideEffectKind
    payload: Dict[str, Any] = Field(default_factory=dict)


class HandlerResult(BaseModel):
    """What a tool handler returns: ``{success, payload|error, side_effect?}``."""

    model_config = ConfigDict(extra="forbid", alias_generator=to_camel, populate_by_name=True)

    success: bool = True
    payload: Any = None
    error: Optional[str] = None
    side_effect: Optional[Dict[str, Any]] = None


class ToolOutcome(BaseModel):
    """The normalized result of exactly one ``ToolCall``."""

    tool_call_id: str
    tool_name: str
    success: bool
    payload: Any = None
    error: Optional[str] = None
    error_type: Optional[str] = None
    side_effects: List[SideEffectDirective] = Field(default_factory=list)

    def to_content(self) -> str:
        """Render the outcome as the body of a ``tool`` message."""
        body: Dict[str, Any] = {"success": self.success}
        if self.success:
            body["payload"] = self.payload
        else:
            body["error"] = self.error
            if self.error_type:
                body["error_type"] = self.error_type
            if self.payload is not None:
                body["details"] = self.payload
        return json.dumps(body, default=str, ensure_ascii=False)


class PlanningState(BaseModel):
    """Per-request scratch state of the planning loop. Never persisted."""

    step_count: int = 0
    status: PlanningStatus = PlanningStatus.AWAITING_MODEL
    messages: List[ChatMessage] = Field(default_factory=list)
    outcomes: List[ToolOutcome] = Field(default_factory=list)
    final_text: Optional[str] = None
    last_text: Optional[str] = None

    @property
    def directives(self) -> List[SideEffectDirective]:
        return [effect for outcome in self.outcomes for effect in outcome.side_effects]


class _CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        protected_namespaces=(),
    )


class ChatRequest(_CamelModel):
    """Inbound chat payload. The caller identity never comes from here."""

    message: str
    conversation_id: Optional[int] = None
    model_tier: ModelTier = "standard"

    @field_validator("message")
    @classmethod
    def _message_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("message must not be empty")
        return value


class SideEffects(_CamelModel):
    meeting: Optional[Dict[str, Any]] = None
    email: Optional[Dict[str, Any]] = None
    portfolio: Optional[Dict[str, Any]] = None


class ChatResponse(_CamelModel):
    """Outbound payload. ``success`` is False only for request/service errors."""

    success: bool
    response: str = ""
    conversation_id: Optional[int] = None
    model: Optional[str] = None
    side_effects: SideEffects = Field(default_factory=SideEffects)
    tool_outcomes: List[ToolOutcome] = Field(default_factory=list)
    error: Optional[str] = None
    status: Optional[int] = None
