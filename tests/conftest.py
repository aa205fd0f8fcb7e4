"""
Core pytest configuration and fixtures for Advisorbot testing.

This module provides shared test fixtures, configuration, and utilities
that support the pillar-based testing architecture.
"""

import asyncio
import tempfile
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
from advisorbot import Advisorbot
from advisorbot.advisor_tools import build_registry
from advisorbot.backend import InMemory as InMemoryBackend
from advisorbot.config import Settings
from advisorbot.llm import LLM
from advisorbot.models import ToolCall
from advisorbot.store import InMemory, SQLite

# Monday
NOW = datetime(2026, 10, 19, 9, 0)


# ===== LLM DOUBLES =====


class ScriptedLLM(LLM):
    """Replays canned responses and records every call it receives.

    A response is a dict ``{"content": ..., "tool_calls": [...]}`` or an
    exception instance, which is raised instead.
    """

    def __init__(self, responses: List[Any], delay: float = 0.0):
        self.responses = list(responses)
        self.delay = delay
        self.calls: List[Dict[str, Any]] = []
        self.default_model = "scripted"

    async def generate_response(self, messages, model=None, **kwargs):
        self.calls.append({"messages": messages, "model": model, **kwargs})
        if self.delay:
            await asyncio.sleep(self.delay)
        if not self.responses:
            raise AssertionError("unexpected LLM call")
        response = self.responses.pop(0)
        if isinstance(response, BaseException):
            raise response
        return response

    def extract_content(self, response):
        return response.get("content")

    def parse_tool_calls(self, response):
        return response.get("tool_calls")


def text_reply(content: Optional[str]) -> Dict[str, Any]:
    return {"content": content, "tool_calls": None}


def tool_reply(*calls: ToolCall, content: Optional[str] = None) -> Dict[str, Any]:
    return {"content": content, "tool_calls": list(calls)}


@pytest.fixture
def scripted_llm():
    """Factory for :class:`ScriptedLLM`."""
    return ScriptedLLM


@pytest.fixture
def replies():
    """Helpers that build scripted LLM responses."""

    class Replies:
        text = staticmethod(text_reply)
        tools = staticmethod(tool_reply)

        @staticmethod
        def call(name: str, args: Any = None, id: str = "call_1") -> ToolCall:
            return ToolCall(id=id, function_name=name, function_args=args)

    return Replies


# ===== DATA FIXTURES =====


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def backend() -> InMemoryBackend:
    """Advisor 7 owns Rossi and Bianchi and three meetings this week.

    Advisor 8 owns Verdi and one meeting this week.
    """
    data = InMemoryBackend(
        news=[
            {"title": "La BCE lascia invariati i tassi", "source": "Il Sole 24 Ore"},
            {"title": "Borse europee in rialzo", "source": "Reuters"},
        ]
    )
    rossi = data.add_client(
        "7", "Mario", "Rossi", email="mario.rossi@example.com", risk_profile="moderate"
    )
    bianchi = data.add_client(
        "7", "Giulia", "Bianchi", email="giulia.bianchi@example.com", risk_profile="growth"
    )
    verdi = data.add_client("8", "Luca", "Verdi", email="luca.verdi@example.com")
    data.add_meeting("7", "Revisione portafoglio", datetime(2026, 10, 19, 15, 0), client_id=rossi.id)
    data.add_meeting("7", "Primo incontro", datetime(2026, 10, 21, 10, 0), client_id=bianchi.id)
    data.add_meeting("7", "Firma contratto", datetime(2026, 10, 24, 11, 0), client_id=rossi.id)
    data.add_meeting("7", "Check-up annuale", datetime(2026, 11, 15, 10, 0), client_id=bianchi.id)
    data.add_meeting("8", "Consulenza", datetime(2026, 10, 20, 9, 0), client_id=verdi.id)
    return data


@pytest.fixture
def registry(backend, now):
    return build_registry(backend, timeout=1.0, clock=lambda: now)


# ===== DIRECTORY FIXTURES =====


@pytest.fixture
def temp_dir():
    """Temporary directory for file-based tests."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


# ===== PILLAR IMPLEMENTATION FIXTURES =====


@pytest.fixture
def all_store_implementations(temp_dir):
    """All store implementations for contract testing."""
    sqlite_store = SQLite(str(temp_dir / "test.db"))
    yield [("InMemory", InMemory()), ("SQLite", sqlite_store)]
    sqlite_store.close()


# ===== APP FIXTURES =====


@pytest.fixture
def make_app(registry):
    """
    Builds an Advisorbot with an in-memory store and the seeded registry.

    Keyword arguments other than the pillars are passed to ``Settings``.
    """

    def factory(llm, store=None, tools=None, auth=None, **settings):
        return Advisorbot(
            llm=llm,
            store=store if store is not None else InMemory(),
            tools=tools if tools is not None else registry,
            auth=auth,
            settings=Settings(**settings),
        )

    return factory


# ===== CONFIGURATION =====


def pytest_configure(config):
    """Pytest configuration."""
    config.addinivalue_line("markers", "integration: marks tests as integration tests")
    config.addinivalue_line("markers", "e2e: marks tests as end-to-end tests")
    config.addinivalue_line("markers", "slow: marks tests as slow-running")


def pytest_collection_modifyitems(config, items):
    """Automatically mark tests based on location."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)

        if "e2e" in str(item.fspath):
            item.add_marker(pytest.mark.e2e)
            item.add_marker(pytest.mark.slow)
