"""Tools exposed to the financial-advisor assistant.

Each handler receives its parsed arguments and the caller identity, delegates
to the ``Backend`` and runs every caller-scoped record through the ownership
guard before returning it. Handlers that prepare an action for the user (a
meeting, an email, a portfolio) never perform it: they return the data for a
confirmation dialog as a side effect.
"""

import logging
import re
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Tuple

from pydantic import ConfigDict, Field

from .auth import require_ownership
from .backend import Backend, Client, Meeting
from .models import EMAIL_EFFECT, MEETING_EFFECT, PORTFOLIO_EFFECT, HandlerResult
from .tools import NoArguments, ParseFailurePolicy, Registry, ToolArguments, ToolSpec

logger = logging.getLogger(__name__)

DEFAULT_MEETING_DURATION = 60
DEFAULT_MEETING_LOCATION = "incontro"
DEFAULT_EMAIL_SUBJECT = "Informazioni sui nostri servizi"
TIMEFRAMES = ("today", "week", "future", "past", "all")

_ITALIAN_DATE = re.compile(r"^\s*(\d{1,2})/(\d{1,2})/(\d{2,4})")
_CLOCK = re.compile(r"(\d{1,2})(?:[:.](\d{2}))?")


# --- Date helpers ---


def _local(value: datetime) -> datetime:
    if value.tzinfo is not None:
        return value.astimezone().replace(tzinfo=None)
    return value


def _is_date_only(text: str) -> bool:
    return "T" not in text and ":" not in text


def parse_datetime(text: str, now: Optional[datetime] = None) -> datetime:
    """Parse ISO, ``dd/mm/yyyy`` or "oggi"/"domani" with an optional hour.

    Raises
    ------
    ValueError
        When the text matches none of the supported forms.
    """
    now = now or datetime.now()
    text = (text or "").strip()
    if not text:
        raise ValueError("empty date")
    try:
        return _local(datetime.fromisoformat(text.replace("Z", "+00:00")))
    except ValueError:
        pass

    lowered = text.lower()
    match = _ITALIAN_DATE.match(text)
    if match:
        day, month, year = (int(part) for part in match.groups())
        if year < 100:
            year += 2000
        base = datetime(year, month, day)
        rest = text[match.end():]
    elif "dopodomani" in lowered:
        base = datetime.combine(now.date() + timedelta(days=2), datetime.min.time())
        rest = lowered.replace("dopodomani", "")
    elif "domani" in lowered:
        base = datetime.combine(now.date() + timedelta(days=1), datetime.min.time())
        rest = lowered.replace("domani", "")
    elif "oggi" in lowered:
        base = datetime.combine(now.date(), datetime.min.time())
        rest = lowered.replace("oggi", "")
    else:
        raise ValueError(f"unrecognized date: {text!r}")

    clock = _CLOCK.search(rest)
    if clock:
        hour = int(clock.group(1))
        minute = int(clock.group(2) or 0)
        base = base.replace(hour=hour, minute=minute)
    return base


def resolve_range(
    start_date: Optional[str],
    end_date: Optional[str],
    timeframe: Optional[str],
    now: datetime,
) -> Tuple[Optional[datetime], Optional[datetime]]:
    """Turn the model's date arguments into an inclusive ``(start, end)`` pair.

    Explicit dates win over ``timeframe``. A date-only start covers the whole
    day when no end is given.
    """
    day_start = datetime.combine(now.date(), datetime.min.time())
    end_of_day = timedelta(days=1) - timedelta(microseconds=1)

    start = end = None
    if start_date:
        start = parse_datetime(start_date, now)
        if _is_date_only(start_date):
            start = start.replace(hour=0, minute=0, second=0, microsecond=0)
    if end_date:
        end = parse_datetime(end_date, now)
        if _is_date_only(end_date):
            end = end.replace(hour=0, minute=0, second=0, microsecond=0) + end_of_day
    if start and not end:
        end = start.replace(hour=0, minute=0, second=0, microsecond=0) + end_of_day
    if start or end:
        return start, end

    timeframe = (timeframe or "all").lower()
    if timeframe not in TIMEFRAMES:
        raise ValueError(f"unknown timeframe {timeframe!r}")
    if timeframe == "today":
        return day_start, day_start + end_of_day
    if timeframe == "week":
        return day_start, day_start + timedelta(days=7) - timedelta(microseconds=1)
    if timeframe == "future":
        return now, None
    if timeframe == "past":
        return None, now
    return None, None


# --- Argument models ---


class SearchClientsArgs(ToolArguments):
    model_config = ConfigDict(json_schema_extra={"required": ["query"]})

    query: Optional[str] = Field(None, description="Nome, cognome o email da cercare")
    limit: int = Field(10, description="Numero massimo di risultati")
    include_archived: bool = Field(False, description="Includi clienti archiviati")


class ClientRefArgs(ToolArguments):
    client_id: Optional[int] = Field(None, description="ID del cliente")
    client_name: Optional[str] = Field(None, description="Nome, cognome o email del cliente")


class ClientContextArgs(ClientRefArgs):
    query: Optional[str] = Field(None, description="Cosa si vuole sapere del cliente")


class ClientNameArgs(ToolArguments):
    model_config = ConfigDict(json_schema_extra={"required": ["clientName"]})

    client_name: Optional[str] = Field(None, description="Nome, cognome o email del cliente")


class DateRangeArgs(ToolArguments):
    start_date: Optional[str] = Field(None, description="Data di inizio (YYYY-MM-DD)")
    end_date: Optional[str] = Field(None, description="Data di fine (YYYY-MM-DD)")
    timeframe: Optional[str] = Field(
        None, description="Periodo predefinito: today, week, future, past, all"
    )
    limit: int = Field(50, description="Numero massimo di risultati")


class PrepareMeetingArgs(ClientRefArgs):
    model_config = ConfigDict(json_schema_extra={"required": ["subject", "dateTime"]})

    subject: Optional[str] = Field(None, description="Oggetto dell'appuntamento")
    date_time: Optional[str] = Field(
        None, description="Data e ora (ISO, dd/mm/yyyy HH:MM o 'domani alle 15')"
    )
    duration: Optional[int] = Field(None, description="Durata in minuti (default 60)")
    location: Optional[str] = Field(None, description="Luogo dell'appuntamento")
    notes: Optional[str] = Field(None, description="Note aggiuntive")


class EditMeetingArgs(ToolArguments):
    model_config = ConfigDict(json_schema_extra={"required": ["meetingId"]})

    meeting_id: Optional[int] = Field(None, description="ID dell'appuntamento da modificare")
    subject: Optional[str] = None
    date_time: Optional[str] = None
    duration: Optional[int] = None
    location: Optional[str] = None
    notes: Optional[str] = None


class ComposeEmailArgs(ClientRefArgs):
    subject: Optional[str] = Field(None, description="Oggetto dell'email")
    topic: Optional[str] = Field(None, description="Argomento se il testo va generato")
    body: Optional[str] = Field(None, description="Testo dell'email, se già fornito")
    language: str = Field("italian", description="Lingua dell'email")


class PortfolioArgs(ClientRefArgs):
    risk_profile: Optional[str] = Field(
        None, description="conservative, moderate, balanced, growth, aggressive"
    )
    investment_horizon: Optional[str] = Field(None, description="Orizzonte temporale")
    amount: Optional[float] = Field(None, description="Importo da investire")


class NewsArgs(ToolArguments):
    max_results: int = Field(5, description="Numero massimo di notizie")


# --- Handlers ---


def _missing(message: str, *params: str) -> HandlerResult:
    return HandlerResult(success=False, error=message, payload={"required_params": list(params)})


def _meeting_view(meeting: Meeting, client: Optional[Client]) -> Dict[str, Any]:
    return {
        "id": meeting.id,
        "subject": meeting.subject,
        "date_time": meeting.date_time.isoformat(),
        "formatted_date": meeting.date_time.strftime("%d/%m/%Y"),
        "formatted_time": meeting.date_time.strftime("%H:%M"),
        "duration": meeting.duration,
        "location": meeting.location,
        "notes": meeting.notes,
        "client": client.summary() if client else None,
    }


class AdvisorTools:
    """The advisor tool handlers, bound to one ``Backend``."""

    def __init__(self, backend: Backend, clock: Callable[[], datetime] = datetime.now):
        self.backend = backend
        self.clock = clock

    async def _resolve_client(
        self, args: ClientRefArgs, caller_id: Any
    ) -> Tuple[Optional[Client], Optional[HandlerResult]]:
        if args.client_id is not None:
            client = await self.backend.get_client(args.client_id)
            if client is None:
                return None, HandlerResult(
                    success=False, error=f"Cliente con ID {args.client_id} non trovato."
                )
            require_ownership(client.advisor_id, caller_id, f"client {client.id}")
            return client, None

        if not args.client_name:
            return None, None

        name = args.client_name.strip()
        matches = await self.backend.search_clients(caller_id, name, limit=20)
        for client in matches:
            require_ownership(client.advisor_id, caller_id, f"client {client.id}")
        if len(matches) > 1:
            exact = [c for c in matches if c.name.lower() == name.lower()]
            if len(exact) == 1:
                matches = exact
        if not matches:
            return None, HandlerResult(
                success=False,
                error=f'Nessun cliente corrisponde a "{name}". Prova con un altro nome o email.',
            )
        if len(matches) > 1:
            logger.info(
                "Client name %r is ambiguous for caller %s (%d matches)", name, caller_id, len(matches)
            )
            return None, HandlerResult(
                success=False,
                error=f'Ho trovato {len(matches)} clienti che corrispondono a "{name}". '
                "Specifica quale cliente scegliere.",
                payload={"client_options": [c.summary() for c in matches]},
            )
        return matches[0], None

    async def _meeting_views(self, meetings: List[Meeting], caller_id: Any) -> List[Dict[str, Any]]:
        views = []
        clients: Dict[int, Optional[Client]] = {}
        for meeting in meetings:
            require_ownership(meeting.advisor_id, caller_id, f"meeting {meeting.id}")
            client = None
            if meeting.client_id is not None:
                if meeting.client_id not in clients:
                    clients[meeting.client_id] = await self.backend.get_client(meeting.client_id)
                client = clients[meeting.client_id]
                if client is not None:
                    require_ownership(client.advisor_id, caller_id, f"client {client.id}")
            views.append(_meeting_view(meeting, client))
        return views

    async def search_clients(self, args: SearchClientsArgs, caller_id: Any) -> HandlerResult:
        if not args.query:
            return _missing("Specifica cosa cercare.", "query")
        clients = await self.backend.search_clients(
            caller_id, args.query, limit=max(1, args.limit), include_archived=args.include_archived
        )
        found = []
        for client in clients:
            require_ownership(client.advisor_id, caller_id, f"client {client.id}")
            found.append({**client.summary(), "is_archived": client.is_archived})
        return HandlerResult(payload={"clients": found, "count": len(found)})

    async def get_client_context(self, args: ClientContextArgs, caller_id: Any) -> HandlerResult:
        client, failure = await self._resolve_client(args, caller_id)
        if failure:
            return failure
        if client is None:
            return _missing("Specifica il cliente.", "clientName")
        upcoming = await self.backend.list_meetings(
            caller_id, start=self.clock(), client_id=client.id, limit=5
        )
        return HandlerResult(
            payload={
                "client": client.model_dump(exclude={"advisor_id"}),
                "upcoming_meetings": await self._meeting_views(upcoming, caller_id),
                "query": args.query,
            }
        )

    async def get_meetings_by_date_range(self, args: DateRangeArgs, caller_id: Any) -> HandlerResult:
        try:
            start, end = resolve_range(args.start_date, args.end_date, args.timeframe, self.clock())
        except ValueError as exc:
            return HandlerResult(success=False, error=f"Intervallo di date non valido: {exc}")
        meetings = await self.backend.list_meetings(
            caller_id, start=start, end=end, limit=max(1, args.limit)
        )
        views = await self._meeting_views(meetings, caller_id)
        return HandlerResult(
            payload={
                "meetings": views,
                "count": len(views),
                "range": {
                    "start": start.isoformat() if start else None,
                    "end": end.isoformat() if end else None,
                },
            }
        )

    async def get_meetings_by_client_name(self, args: ClientNameArgs, caller_id: Any) -> HandlerResult:
        if not args.client_name:
            return _missing("Specifica il nome del cliente.", "clientName")
        client, failure = await self._resolve_client(ClientRefArgs(client_name=args.client_name), caller_id)
        if failure:
            return failure
        meetings = await self.backend.list_meetings(caller_id, client_id=client.id)
        views = await self._meeting_views(meetings, caller_id)
        return HandlerResult(payload={"client": client.summary(), "meetings": views, "count": len(views)})

    async def prepare_meeting_data(self, args: PrepareMeetingArgs, caller_id: Any) -> HandlerResult:
        if not args.subject:
            return _missing("Serve l'oggetto dell'appuntamento.", "subject")
        if not args.date_time:
            return _missing("Serve la data e l'ora dell'appuntamento.", "dateTime")
        client, failure = await self._resolve_client(args, caller_id)
        if failure:
            return failure
        if client is None:
            return _missing("Specifica il cliente dell'appuntamento.", "clientName")
        try:
            when = parse_datetime(args.date_time, self.clock())
        except ValueError:
            return HandlerResult(
                success=False, error=f'La data "{args.date_time}" non è valida.'
            )

        meeting = {
            "client_id": client.id,
            "client": client.summary(),
            "subject": args.subject,
            "date_time": when.isoformat(),
            "formatted_date": when.strftime("%d/%m/%Y"),
            "formatted_time": when.strftime("%H:%M"),
            "duration": args.duration or DEFAULT_MEETING_DURATION,
            "location": args.location or DEFAULT_MEETING_LOCATION,
            "notes": args.notes or "",
            "advisor_id": str(caller_id),
        }
        return HandlerResult(
            payload={"meeting": meeting, "message": f"Modulo appuntamento pronto per {client.name}."},
            side_effect=meeting,
        )

    async def prepare_edit_meeting(self, args: EditMeetingArgs, caller_id: Any) -> HandlerResult:
        if args.meeting_id is None:
            return _missing("Specifica l'appuntamento da modificare.", "meetingId")
        meeting = await self.backend.get_meeting(args.meeting_id)
        if meeting is None:
            return HandlerResult(success=False, error=f"Appuntamento {args.meeting_id} non trovato.")
        require_ownership(meeting.advisor_id, caller_id, f"meeting {meeting.id}")

        when = meeting.date_time
        if args.date_time:
            try:
                when = parse_datetime(args.date_time, self.clock())
            except ValueError:
                return HandlerResult(success=False, error=f'La data "{args.date_time}" non è valida.')
        views = await self._meeting_views([meeting], caller_id)
        updated = {
            **views[0],
            "meeting_id": meeting.id,
            "subject": args.subject or meeting.subject,
            "date_time": when.isoformat(),
            "formatted_date": when.strftime("%d/%m/%Y"),
            "formatted_time": when.strftime("%H:%M"),
            "duration": args.duration or meeting.duration,
            "location": args.location or meeting.location,
            "notes": args.notes if args.notes is not None else meeting.notes,
            "mode": "edit",
        }
        return HandlerResult(payload={"meeting": updated}, side_effect=updated)

    async def compose_email_data(self, args: ComposeEmailArgs, caller_id: Any) -> HandlerResult:
        topic = (args.topic or "").strip() or None
        subject = args.subject or (f"Informazioni su {topic}" if topic else DEFAULT_EMAIL_SUBJECT)
        client, failure = await self._resolve_client(args, caller_id)
        if failure:
            return failure
        if client is None and topic is None:
            return _missing(
                "Specifica il cliente destinatario o almeno l'argomento dell'email.",
                "clientName",
                "topic",
            )
        email = {
            "client": client.summary() if client else None,
            "subject": subject,
            "body": args.body,
            "topic": topic or subject,
            "language": args.language,
            "needs_generation": not args.body,
        }
        return HandlerResult(payload={"email": email}, side_effect=email)

    async def generate_portfolio(self, args: PortfolioArgs, caller_id: Any) -> HandlerResult:
        client, failure = await self._resolve_client(args, caller_id)
        if failure:
            return failure
        if client is None:
            return _missing("Specifica il cliente per cui generare il portafoglio.", "clientName")
        proposal = await self.backend.generate_portfolio(
            client,
            risk_profile=args.risk_profile,
            investment_horizon=args.investment_horizon,
            amount=args.amount,
        )
        return HandlerResult(payload={"portfolio": proposal}, side_effect=proposal)

    async def get_financial_news(self, args: NewsArgs, caller_id: Any) -> HandlerResult:
        articles = await self.backend.get_financial_news(min(max(1, args.max_results), 20))
        return HandlerResult(payload={"articles": articles, "count": len(articles)})

    async def get_site_documentation(self, args: NoArguments, caller_id: Any) -> HandlerResult:
        return HandlerResult(payload={"documentation": await self.backend.get_site_documentation()})

    def specs(self) -> List[ToolSpec]:
        return [
            ToolSpec(
                "searchClients",
                "Cerca clienti per nome, cognome o email.",
                self.search_clients,
                SearchClientsArgs,
            ),
            ToolSpec(
                "getClientContext",
                "Recupera il profilo di un cliente e i suoi prossimi appuntamenti.",
                self.get_client_context,
                ClientContextArgs,
            ),
            ToolSpec(
                "getMeetingsByDateRange",
                "Elenca gli appuntamenti in un intervallo di date o periodo "
                "(today, week, future, past, all).",
                self.get_meetings_by_date_range,
                DateRangeArgs,
            ),
            ToolSpec(
                "getMeetingsByClientName",
                "Elenca gli appuntamenti con un cliente.",
                self.get_meetings_by_client_name,
                ClientNameArgs,
            ),
            ToolSpec(
                "prepareMeetingData",
                "Prepara un nuovo appuntamento e apre il dialogo di conferma.",
                self.prepare_meeting_data,
                PrepareMeetingArgs,
                side_effect=MEETING_EFFECT,
            ),
            ToolSpec(
                "prepareEditMeeting",
                "Prepara la modifica di un appuntamento esistente e apre il dialogo di conferma.",
                self.prepare_edit_meeting,
                EditMeetingArgs,
                side_effect=MEETING_EFFECT,
            ),
            ToolSpec(
                "composeEmailData",
                "Prepara un'email per un cliente e apre il dialogo di invio.",
                self.compose_email_data,
                ComposeEmailArgs,
                side_effect=EMAIL_EFFECT,
            ),
            ToolSpec(
                "generatePortfolio",
                "Genera una proposta di portafoglio per un cliente e apre il dialogo.",
                self.generate_portfolio,
                PortfolioArgs,
                side_effect=PORTFOLIO_EFFECT,
            ),
            ToolSpec(
                "getFinancialNews",
                "Recupera le ultime notizie finanziarie.",
                self.get_financial_news,
                NewsArgs,
            ),
            ToolSpec(
                "getSiteDocumentation",
                "Spiega come usare le funzioni della piattaforma.",
                self.get_site_documentation,
            ),
        ]


def build_registry(
    backend: Backend,
    timeout: Optional[float] = None,
    parse_failure_policy: ParseFailurePolicy = ParseFailurePolicy.USE_EMPTY_ARGUMENTS,
    clock: Callable[[], datetime] = datetime.now,
) -> Registry:
    """Registry with every advisor tool bound to ``backend``."""
    tools = AdvisorTools(backend, clock=clock)
    return Registry(tools.specs(), parse_failure_policy=parse_failure_policy, timeout=timeout)
