"""Concrete implementations for LLM providers."""

import json
import logging
import os
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import openai
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from .models import ASSISTANT_ROLE, TOOL_ROLE, USER_ROLE, ChatMessage, ToolCall

logger = logging.getLogger(__name__)

TRANSIENT_ERRORS = (openai.RateLimitError, openai.APITimeoutError, openai.APIConnectionError)


class LLM(ABC):
    """Abstract Base Class for all LLM providers."""

    default_model: str = ""

    @abstractmethod
    async def generate_response(
        self, messages: List[Dict[str, Any]], model: Optional[str] = None, **kwargs: Any
    ) -> Any:
        """Generates a response from the LLM provider.

        This method should return the provider's native, rich response object
        directly from their SDK.

        Parameters
        ----------
        messages : List[Dict[str, Any]]
            A list of message dictionaries, as produced by
            :meth:`format_messages`.
        model : str, optional
            The specific model to use for the generation.
        **kwargs : Any
            Provider-specific parameters (e.g., tools, tool_choice,
            temperature) to be passed directly to the SDK.

        Returns
        -------
        Any
            The provider's native, rich response object.
        """
        pass

    @abstractmethod
    def extract_content(self, response: Any) -> Optional[str]:
        """Extracts the text content from the provider's native response object.

        Returns None when the model answered only with tool calls.
        """
        pass

    def parse_tool_calls(self, response: Any) -> Optional[List[ToolCall]]:
        """Extracts tool-invocation requests. Providers without tools return None."""
        return None

    def format_messages(self, messages: List[ChatMessage]) -> List[Dict[str, Any]]:
        """Converts message models into the chat-completions wire format."""
        payload = []
        for message in messages:
            if message.role == TOOL_ROLE:
                payload.append(
                    {
                        "role": TOOL_ROLE,
                        "tool_call_id": message.tool_call_id,
                        "content": message.content or "",
                    }
                )
            elif message.role == ASSISTANT_ROLE and message.tool_calls:
                payload.append(
                    {
                        "role": ASSISTANT_ROLE,
                        "content": message.content or None,
                        "tool_calls": [_wire_tool_call(call) for call in message.tool_calls],
                    }
                )
            else:
                payload.append({"role": message.role, "content": message.content or ""})
        return payload


def _wire_tool_call(call: ToolCall) -> Dict[str, Any]:
    arguments = call.function_args
    if isinstance(arguments, dict):
        arguments = json.dumps(arguments)
    return {
        "id": call.id,
        "type": "function",
        "function": {"name": call.function_name, "arguments": arguments or "{}"},
    }


class OpenAI(LLM):
    def __init__(self, default_model: str = "gpt-4o-mini", client: Any = None, **client_kwargs: Any):
        self.client = client or openai.AsyncOpenAI(**client_kwargs)
        self.default_model = default_model

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        reraise=True,
    )
    async def generate_response(
        self, messages: List[Dict[str, Any]], model: Optional[str] = None, **kwargs: Any
    ) -> Any:
        return await self.client.chat.completions.create(
            messages=messages, model=model or self.default_model, **kwargs
        )

    def extract_content(self, response: Any) -> Optional[str]:
        return response.choices[0].message.content

    def parse_tool_calls(self, response: Any) -> Optional[List[ToolCall]]:
        tool_calls = getattr(response.choices[0].message, "tool_calls", None)
        if not tool_calls:
            return None
        parsed = []
        for call in tool_calls:
            kind = getattr(call, "type", "function")
            if kind != "function":
                logger.warning("Ignoring tool call %s of unsupported type %r", call.id, kind)
                continue
            parsed.append(
                ToolCall(
                    id=call.id,
                    function_name=call.function.name,
                    function_args=call.function.arguments,
                )
            )
        return parsed


class OpenRouter(OpenAI):
    """OpenAI-compatible provider routed through openrouter.ai."""

    def __init__(self, default_model: str = "openai/gpt-4o-mini", client: Any = None, **client_kwargs: Any):
        if client is None:
            client_kwargs.setdefault("base_url", "https://openrouter.ai/api/v1")
            client_kwargs.setdefault("api_key", os.environ["OPENROUTER_API_KEY"])
        super().__init__(default_model, client=client, **client_kwargs)

    async def generate_response(self, messages, model=None, **kwargs):
        kwargs.setdefault("extra_headers", {"X-Title": "Advisorbot"})
        return await super().generate_response(messages, model=model, **kwargs)


class Echo(LLM):
    """Offline provider that repeats the last user message. No tool calls."""

    def __init__(self, default_model: str = "echo-v1"):
        self.default_model = default_model

    async def generate_response(self, messages, model=None, **kwargs):
        user_prompt = next(
            (m["content"] for m in reversed(messages) if m.get("role") == USER_ROLE),
            "No message provided",
        )
        content = f"**Echo LLM - static response for testing**\n\n_Your prompt:_\n\n{user_prompt}"
        return {"content": content, "model": model or self.default_model}

    def extract_content(self, response: Any) -> Optional[str]:
        if isinstance(response, dict) and "content" in response:
            return response["content"]
        return str(response)
