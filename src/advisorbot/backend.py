"""Business-data boundary consumed by the advisor tools.

The real platform backs these calls with its relational database and
services. ``InMemory`` is a self-contained implementation used for local
development and tests.
"""

import itertools
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


class Client(BaseModel):
    id: int
    advisor_id: str
    first_name: str
    last_name: str
    email: str = ""
    is_archived: bool = False
    is_onboarded: bool = False
    risk_profile: Optional[str] = None
    investment_horizon: Optional[str] = None
    investment_goals: List[str] = Field(default_factory=list)
    notes: Optional[str] = None

    @property
    def name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def summary(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "email": self.email}


class Meeting(BaseModel):
    id: int
    advisor_id: str
    client_id: Optional[int] = None
    subject: str
    date_time: datetime
    duration: int = 60
    location: str = "incontro"
    notes: str = ""


class Backend(ABC):
    """Interface for the platform services the tools delegate to."""

    @abstractmethod
    async def search_clients(
        self, advisor_id: str, query: str, limit: int = 10, include_archived: bool = False
    ) -> List[Client]:
        """Clients of ``advisor_id`` matching ``query`` by name or email."""
        pass

    @abstractmethod
    async def get_client(self, client_id: int) -> Optional[Client]:
        """Look up a client by id, whoever owns it."""
        pass

    @abstractmethod
    async def list_meetings(
        self,
        advisor_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        client_id: Optional[int] = None,
        limit: int = 50,
    ) -> List[Meeting]:
        """Meetings of ``advisor_id`` in ``[start, end]``, ordered by date."""
        pass

    @abstractmethod
    async def get_meeting(self, meeting_id: int) -> Optional[Meeting]:
        """Look up a meeting by id, whoever owns it."""
        pass

    @abstractmethod
    async def get_financial_news(self, max_results: int = 5) -> List[Dict[str, Any]]:
        pass

    @abstractmethod
    async def generate_portfolio(
        self,
        client: Client,
        risk_profile: Optional[str] = None,
        investment_horizon: Optional[str] = None,
        amount: Optional[float] = None,
    ) -> Dict[str, Any]:
        """Return a model portfolio proposal for ``client``."""
        pass

    @abstractmethod
    async def get_site_documentation(self) -> str:
        pass


_ALLOCATIONS = {
    "conservative": {"bonds": 70, "equities": 20, "cash": 10},
    "moderate": {"bonds": 50, "equities": 40, "cash": 10},
    "balanced": {"bonds": 40, "equities": 50, "cash": 10},
    "growth": {"bonds": 25, "equities": 70, "cash": 5},
    "aggressive": {"bonds": 10, "equities": 85, "cash": 5},
}

_DOCUMENTATION = (
    "Dalla dashboard puoi gestire i clienti, pianificare appuntamenti dal "
    "calendario, inviare email ai clienti e generare proposte di portafoglio. "
    "Le azioni preparate dall'assistente vanno sempre confermate nel dialogo."
)


class InMemory(Backend):
    """Keeps clients, meetings and news in plain lists."""

    def __init__(
        self,
        clients: Optional[List[Client]] = None,
        meetings: Optional[List[Meeting]] = None,
        news: Optional[List[Dict[str, Any]]] = None,
        documentation: str = _DOCUMENTATION,
    ):
        self.clients: List[Client] = list(clients or [])
        self.meetings: List[Meeting] = list(meetings or [])
        self.news: List[Dict[str, Any]] = list(news or [])
        self.documentation = documentation
        start = max([c.id for c in self.clients] + [m.id for m in self.meetings] + [0])
        self._ids = itertools.count(start + 1)

    def add_client(self, advisor_id: str, first_name: str, last_name: str, **fields) -> Client:
        client = Client(
            id=next(self._ids),
            advisor_id=str(advisor_id),
            first_name=first_name,
            last_name=last_name,
            **fields,
        )
        self.clients.append(client)
        return client

    def add_meeting(self, advisor_id: str, subject: str, date_time: datetime, **fields) -> Meeting:
        meeting = Meeting(
            id=next(self._ids),
            advisor_id=str(advisor_id),
            subject=subject,
            date_time=date_time,
            **fields,
        )
        self.meetings.append(meeting)
        return meeting

    async def search_clients(self, advisor_id, query, limit=10, include_archived=False):
        needle = (query or "").strip().lower()
        words = [w for w in needle.split() if len(w) >= 3]
        matches = []
        for client in self.clients:
            if client.advisor_id != str(advisor_id):
                continue
            if client.is_archived and not include_archived:
                continue
            first, last = client.first_name.lower(), client.last_name.lower()
            if needle and (needle in client.email.lower() or needle in client.name.lower()):
                matches.append(client)
            elif any(w in first or w in last for w in words):
                matches.append(client)
        return matches[:limit]

    async def get_client(self, client_id):
        return next((c for c in self.clients if c.id == client_id), None)

    async def list_meetings(self, advisor_id, start=None, end=None, client_id=None, limit=50):
        selected = [
            m
            for m in self.meetings
            if m.advisor_id == str(advisor_id)
            and (client_id is None or m.client_id == client_id)
            and (start is None or m.date_time >= start)
            and (end is None or m.date_time <= end)
        ]
        selected.sort(key=lambda m: m.date_time)
        return selected[:limit]

    async def get_meeting(self, meeting_id):
        return next((m for m in self.meetings if m.id == meeting_id), None)

    async def get_financial_news(self, max_results=5):
        return self.news[:max_results]

    async def generate_portfolio(self, client, risk_profile=None, investment_horizon=None, amount=None):
        profile = (risk_profile or client.risk_profile or "balanced").lower()
        allocation = _ALLOCATIONS.get(profile, _ALLOCATIONS["balanced"])
        proposal: Dict[str, Any] = {
            "client": client.summary(),
            "risk_profile": profile,
            "investment_horizon": investment_horizon or client.investment_horizon,
            "allocation": dict(allocation),
        }
        if amount:
            proposal["amounts"] = {k: round(amount * v / 100, 2) for k, v in allocation.items()}
        return proposal

    async def get_site_documentation(self):
        return self.documentation
