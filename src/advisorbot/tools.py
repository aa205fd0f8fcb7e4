"""Tool registry and dispatcher.

A tool is a ``ToolSpec``: a model-facing name, a pydantic arguments model that
doubles as the JSON schema sent to the LLM, a handler, and optionally the kind
of UI side effect the tool can produce. ``Registry.dispatch`` always returns a
``ToolOutcome``; handler exceptions never escape it.
"""

import asyncio
import inspect
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Type

from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from .config import log_event
from .errors import ToolTimeoutError, UnknownToolError
from .models import HandlerResult, SideEffectDirective, SideEffectKind, ToolCall, ToolOutcome

logger = logging.getLogger(__name__)


class ToolArguments(BaseModel):
    """Base class for tool arguments. Model-facing keys are camelCase."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )


class NoArguments(ToolArguments):
    pass


class ParseFailurePolicy(str, Enum):
    """What to do when the model sends arguments that are not a JSON object."""

    USE_EMPTY_ARGUMENTS = "use_empty_arguments"
    REJECT = "reject"


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    handler: Callable[..., Any]
    arguments: Type[ToolArguments] = NoArguments
    side_effect: Optional[SideEffectKind] = None

    def schema(self) -> Dict[str, Any]:
        """OpenAI function-tool schema for this tool."""
        parameters = self.arguments.model_json_schema()
        parameters.pop("title", None)
        for prop in parameters.get("properties", {}).values():
            prop.pop("title", None)
        parameters.setdefault("properties", {})
        parameters.setdefault("required", [])
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": parameters,
            },
        }


class Tool(ABC):
    """Interface for executing agentic tools."""

    @abstractmethod
    def get_tools(self) -> List[Dict[str, Any]]:
        """Returns a list of tool specifications for the LLM."""
        return []

    @abstractmethod
    async def dispatch(self, tool_call: ToolCall, caller_id: Any) -> ToolOutcome:
        """Executes one tool call on behalf of ``caller_id``."""
        pass


class NoTool(Tool):
    """Default handler that provides no tools."""

    def get_tools(self) -> List[Dict[str, Any]]:
        return []

    async def dispatch(self, tool_call: ToolCall, caller_id: Any) -> ToolOutcome:
        return _unknown(tool_call)


def _unknown(tool_call: ToolCall) -> ToolOutcome:
    return ToolOutcome(
        tool_call_id=tool_call.id,
        tool_name=tool_call.function_name,
        success=False,
        error=f"unknown tool: {tool_call.function_name}",
        error_type=UnknownToolError.__name__,
    )


def _drain(task: "asyncio.Future[Any]") -> None:
    # Outlived its caller; retrieve the result so it is never reported as lost.
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.warning("Detached tool call finished with error: %s", exc)


class Registry(Tool):
    """Maps tool names to ``ToolSpec`` descriptors and dispatches calls."""

    def __init__(
        self,
        specs: Optional[Iterable[ToolSpec]] = None,
        parse_failure_policy: ParseFailurePolicy = ParseFailurePolicy.USE_EMPTY_ARGUMENTS,
        timeout: Optional[float] = None,
    ):
        self._registry: Dict[str, ToolSpec] = {}
        self.parse_failure_policy = parse_failure_policy
        self.timeout = timeout
        for spec in specs or []:
            self.register(spec)

    def register(self, spec: ToolSpec) -> ToolSpec:
        if not callable(spec.handler):
            raise ValueError(f"Handler for tool '{spec.name}' is not callable.")
        if spec.name in self._registry:
            raise ValueError(f"Tool '{spec.name}' is already registered.")
        self._registry[spec.name] = spec
        return spec

    def tool(
        self,
        name: str,
        description: str = "",
        arguments: Type[ToolArguments] = NoArguments,
        side_effect: Optional[SideEffectKind] = None,
    ):
        """Decorator form of :meth:`register`."""

        def decorator(handler):
            self.register(
                ToolSpec(
                    name=name,
                    description=description or inspect.getdoc(handler) or "",
                    handler=handler,
                    arguments=arguments,
                    side_effect=side_effect,
                )
            )
            return handler

        return decorator

    def get(self, name: str) -> Optional[ToolSpec]:
        return self._registry.get(name)

    @property
    def names(self) -> List[str]:
        return list(self._registry)

    def __contains__(self, name: str) -> bool:
        return name in self._registry

    def __len__(self) -> int:
        return len(self._registry)

    def get_tools(self) -> List[Dict[str, Any]]:
        return [spec.schema() for spec in self._registry.values()]

    # --- argument parsing ---

    def _decode(self, spec: ToolSpec, raw: Any) -> Dict[str, Any]:
        if raw is None or (isinstance(raw, str) and not raw.strip()):
            return {}
        if isinstance(raw, dict):
            return raw
        try:
            decoded = json.loads(raw)
        except (TypeError, ValueError) as exc:
            return self._on_parse_failure(spec, raw, str(exc))
        if not isinstance(decoded, dict):
            return self._on_parse_failure(spec, raw, "arguments are not a JSON object")
        return decoded

    def _on_parse_failure(self, spec: ToolSpec, raw: Any, reason: str) -> Dict[str, Any]:
        if self.parse_failure_policy is ParseFailurePolicy.REJECT:
            raise ValueError(f"Failed to parse arguments for {spec.name}: {reason}")
        logger.warning(
            "Failed to parse arguments for %s (%s); using empty arguments. Raw: %r",
            spec.name,
            reason,
            raw,
        )
        return {}

    @staticmethod
    def _field_keys(model: Type[ToolArguments], key: Any) -> Set[str]:
        for name, field in model.model_fields.items():
            if key in (name, field.alias):
                return {name, field.alias or name}
        return {str(key)}

    def parse_arguments(self, spec: ToolSpec, raw: Any) -> ToolArguments:
        """Best-effort parse: invalid fields are dropped, never the whole call."""
        values = self._decode(spec, raw)
        try:
            return spec.arguments.model_validate(values)
        except ValidationError as exc:
            bad: Set[str] = set()
            for error in exc.errors():
                if error["loc"]:
                    bad |= self._field_keys(spec.arguments, error["loc"][0])
            logger.warning("Dropping invalid arguments %s for %s", sorted(bad), spec.name)
            cleaned = {k: v for k, v in values.items() if k not in bad}
        try:
            return spec.arguments.model_validate(cleaned)
        except ValidationError:
            return spec.arguments.model_construct(**cleaned)

    # --- execution ---

    async def _invoke(self, spec: ToolSpec, args: ToolArguments, caller_id: Any) -> Any:
        async def call():
            result = spec.handler(args, caller_id)
            if inspect.isawaitable(result):
                result = await result
            return result

        task = asyncio.ensure_future(call())
        try:
            # Shielded: cancelling the request lets an in-flight tool finish.
            if self.timeout is None:
                return await asyncio.shield(task)
            return await asyncio.wait_for(asyncio.shield(task), self.timeout)
        except asyncio.TimeoutError:
            task.add_done_callback(_drain)
            raise ToolTimeoutError(f"{spec.name} timed out after {self.timeout:g}s") from None
        except asyncio.CancelledError:
            task.add_done_callback(_drain)
            raise

    def _normalize(self, spec: ToolSpec, tool_call: ToolCall, result: Any) -> ToolOutcome:
        if isinstance(result, HandlerResult):
            handled = result
        elif isinstance(result, dict):
            handled = HandlerResult.model_validate(result)
        elif result is None:
            raise ValueError(f"{spec.name} returned no result")
        else:
            handled = HandlerResult(payload=result)

        effects: List[SideEffectDirective] = []
        if handled.success and handled.side_effect is not None:
            if spec.side_effect:
                effects.append(SideEffectDirective(kind=spec.side_effect, payload=handled.side_effect))
            else:
                logger.warning("Tool %s flagged a side effect but declares none", spec.name)

        return ToolOutcome(
            tool_call_id=tool_call.id,
            tool_name=spec.name,
            success=handled.success,
            payload=handled.payload,
            error=None if handled.success else (handled.error or f"{spec.name} failed"),
            side_effects=effects,
        )

    async def dispatch(self, tool_call: ToolCall, caller_id: Any) -> ToolOutcome:
        spec = self._registry.get(tool_call.function_name)
        if spec is None:
            logger.warning("Model requested unknown tool %s", tool_call.function_name)
            return _unknown(tool_call)

        started = time.monotonic()
        try:
            args = self.parse_arguments(spec, tool_call.function_args)
            outcome = self._normalize(spec, tool_call, await self._invoke(spec, args, caller_id))
        except Exception as exc:
            logger.warning("Tool %s raised %s: %s", spec.name, type(exc).__name__, exc)
            outcome = ToolOutcome(
                tool_call_id=tool_call.id,
                tool_name=spec.name,
                success=False,
                error=str(exc) or type(exc).__name__,
                error_type=type(exc).__name__,
            )

        log_event(
            logger,
            "tool_dispatched",
            tool=spec.name,
            call_id=tool_call.id,
            caller_id=caller_id,
            success=outcome.success,
            error_type=outcome.error_type,
            duration_ms=round((time.monotonic() - started) * 1000, 1),
        )
        return outcome
