"""Turns a finished planning state into the outbound ``ChatResponse``."""

from typing import Dict, List, Optional

from .models import ChatResponse, PlanningState, SideEffectDirective, SideEffects

FALLBACK_RESPONSE = (
    "Mi dispiace, non sono riuscito a completare la richiesta. "
    "Puoi riformulare la domanda?"
)


def fold_side_effects(directives: List[SideEffectDirective]) -> SideEffects:
    """One directive per kind; a later directive replaces an earlier one."""
    folded: Dict[str, dict] = {}
    for directive in directives:
        folded[directive.kind] = directive.payload
    return SideEffects(**folded)


def final_text(state: PlanningState) -> str:
    for text in (state.final_text, state.last_text):
        if text and text.strip():
            return text
    return FALLBACK_RESPONSE


def assemble(
    state: PlanningState, conversation_id: Optional[int], model: Optional[str] = None
) -> ChatResponse:
    return ChatResponse(
        success=True,
        response=final_text(state),
        conversation_id=conversation_id,
        model=model,
        side_effects=fold_side_effects(state.directives),
        tool_outcomes=list(state.outcomes),
    )
