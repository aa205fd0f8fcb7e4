"""Tests for the core data models."""

import json

import pytest
from advisorbot.models import (
    ASSISTANT_ROLE,
    MEETING_EFFECT,
    TOOL_ROLE,
    USER_ROLE,
    ChatMessage,
    ChatRequest,
    ChatResponse,
    PlanningState,
    PlanningStatus,
    SideEffectDirective,
    ToolCall,
    ToolOutcome,
)
from pydantic import ValidationError


class TestChatMessage:
    def test_user_message(self):
        message = ChatMessage(role=USER_ROLE, content="Ciao")
        assert message.content == "Ciao"
        assert message.created_at.tzinfo is not None

    def test_tool_message_requires_call_id(self):
        with pytest.raises(ValidationError, match="tool_call_id"):
            ChatMessage(role=TOOL_ROLE, content="{}")

    def test_assistant_message_with_tool_calls_and_no_content(self):
        message = ChatMessage(
            role=ASSISTANT_ROLE,
            tool_calls=[ToolCall(id="c1", function_name="searchClients", function_args="{}")],
        )
        assert message.content is None
        assert message.tool_calls[0].function_name == "searchClients"

    def test_invalid_role_rejected(self):
        with pytest.raises(ValidationError):
            ChatMessage(role="narrator", content="x")


class TestChatRequest:
    def test_accepts_camel_case_payload(self):
        request = ChatRequest.model_validate(
            {"message": "  ciao  ", "conversationId": 3, "modelTier": "advanced"}
        )
        assert request.message == "ciao"
        assert request.conversation_id == 3
        assert request.model_tier == "advanced"

    def test_defaults(self):
        request = ChatRequest(message="ciao")
        assert request.conversation_id is None
        assert request.model_tier == "standard"

    @pytest.mark.parametrize("message", ["", "   ", "\n\t"])
    def test_blank_message_rejected(self, message):
        with pytest.raises(ValidationError):
            ChatRequest(message=message)

    def test_unknown_tier_rejected(self):
        with pytest.raises(ValidationError):
            ChatRequest(message="ciao", model_tier="premium")


class TestToolOutcome:
    def test_success_content(self):
        outcome = ToolOutcome(
            tool_call_id="c1", tool_name="searchClients", success=True, payload={"count": 0}
        )
        assert json.loads(outcome.to_content()) == {"success": True, "payload": {"count": 0}}

    def test_failure_content_carries_error_and_details(self):
        outcome = ToolOutcome(
            tool_call_id="c1",
            tool_name="prepareMeetingData",
            success=False,
            error="Serve l'oggetto dell'appuntamento.",
            error_type=None,
            payload={"required_params": ["subject"]},
        )
        body = json.loads(outcome.to_content())
        assert body["success"] is False
        assert body["error"] == "Serve l'oggetto dell'appuntamento."
        assert body["details"] == {"required_params": ["subject"]}
        assert "error_type" not in body

    def test_non_ascii_kept_readable(self):
        outcome = ToolOutcome(tool_call_id="c1", tool_name="x", success=False, error="non è valida")
        assert "non è valida" in outcome.to_content()


class TestPlanningState:
    def test_defaults(self):
        state = PlanningState()
        assert state.step_count == 0
        assert state.status is PlanningStatus.AWAITING_MODEL
        assert state.final_text is None

    def test_directives_flatten_outcomes_in_order(self):
        first = SideEffectDirective(kind=MEETING_EFFECT, payload={"subject": "A"})
        second = SideEffectDirective(kind=MEETING_EFFECT, payload={"subject": "B"})
        state = PlanningState(
            outcomes=[
                ToolOutcome(tool_call_id="1", tool_name="t", success=True, side_effects=[first]),
                ToolOutcome(tool_call_id="2", tool_name="t", success=False),
                ToolOutcome(tool_call_id="3", tool_name="t", success=True, side_effects=[second]),
            ]
        )
        assert [d.payload["subject"] for d in state.directives] == ["A", "B"]


class TestChatResponse:
    def test_serializes_with_camel_case_keys(self):
        response = ChatResponse(success=True, response="Ecco", conversation_id=4)
        data = response.model_dump(by_alias=True)
        assert data["conversationId"] == 4
        assert data["sideEffects"] == {"meeting": None, "email": None, "portfolio": None}
        assert data["toolOutcomes"] == []
