"""
Interactive chat for local smoke testing.

Usage:
    python -m advisorbot                   # OpenAI, SQLite store, demo data
    python -m advisorbot --echo            # offline, no API key needed
    python -m advisorbot --tier advanced --db /tmp/chat.db
"""

import argparse
import asyncio
import json
from datetime import datetime, timedelta

from . import Advisorbot
from .advisor_tools import build_registry
from .auth import SingleUser
from .backend import InMemory as InMemoryBackend
from .config import configure_logging, load_settings
from .llm import Echo, OpenAI
from .store import SQLite


def demo_backend(advisor_id: str) -> InMemoryBackend:
    """A backend with a few clients and meetings for ``advisor_id``."""
    backend = InMemoryBackend(
        news=[
            {"title": "La BCE lascia invariati i tassi", "source": "Il Sole 24 Ore"},
            {"title": "Borse europee in rialzo", "source": "Reuters"},
        ]
    )
    rossi = backend.add_client(
        advisor_id, "Mario", "Rossi", email="mario.rossi@example.com", risk_profile="moderate"
    )
    bianchi = backend.add_client(
        advisor_id, "Giulia", "Bianchi", email="giulia.bianchi@example.com", risk_profile="growth"
    )
    backend.add_client("someone-else", "Luca", "Verdi", email="luca.verdi@example.com")
    tomorrow = datetime.now().replace(hour=10, minute=0, second=0, microsecond=0) + timedelta(days=1)
    backend.add_meeting(advisor_id, "Revisione portafoglio", tomorrow, client_id=rossi.id)
    backend.add_meeting(
        advisor_id, "Primo incontro", tomorrow + timedelta(days=2, hours=5), client_id=bianchi.id
    )
    return backend


async def repl(app: Advisorbot, tier: str) -> None:
    conversation_id = None
    print("Advisorbot. Scrivi 'exit' per uscire.")
    while True:
        try:
            message = input("> ").strip()
        except EOFError:
            break
        if message.lower() in ("exit", "quit"):
            break
        if not message:
            continue
        result = await app.chat(
            {"message": message, "conversationId": conversation_id, "modelTier": tier}
        )
        if not result.success:
            print(f"[errore {result.status}] {result.error}")
            continue
        conversation_id = result.conversation_id
        print(result.response)
        effects = result.side_effects.model_dump(exclude_none=True)
        if effects:
            print(json.dumps(effects, indent=2, ensure_ascii=False, default=str))


def main() -> None:
    parser = argparse.ArgumentParser(description="Chat with the advisor assistant")
    parser.add_argument("--echo", action="store_true", help="Use the offline Echo LLM")
    parser.add_argument("--db", default=None, help="SQLite database path")
    parser.add_argument("--user", default="advisor", help="Caller identity")
    parser.add_argument(
        "--tier", choices=["standard", "advanced"], default="standard", help="Model tier"
    )
    parser.add_argument("--env-file", default=None, help="Path to a .env file")
    args = parser.parse_args()

    settings = load_settings(args.env_file)
    configure_logging(settings.log_level)

    app = Advisorbot(
        llm=Echo() if args.echo else OpenAI(settings.standard_model),
        store=SQLite(args.db or settings.database_path),
        tools=build_registry(demo_backend(args.user), timeout=settings.tool_timeout),
        auth=SingleUser(args.user),
        settings=settings,
    )
    asyncio.run(repl(app, args.tier))


if __name__ == "__main__":
    main()
