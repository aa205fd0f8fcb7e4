"""Integration tests: the engine persisting through the SQLite store."""

import asyncio

from advisorbot.models import ASSISTANT_ROLE, TOOL_ROLE, USER_ROLE
from advisorbot.store import SQLite


def test_multi_step_request_survives_restart(make_app, scripted_llm, replies, temp_dir):
    path = str(temp_dir / "advisorbot.db")
    store = SQLite(path)
    llm = scripted_llm(
        [
            replies.tools(
                replies.call(
                    "prepareMeetingData",
                    '{"clientName": "Bianchi", "subject": "Revisione", "dateTime": "21/10/2026 10:00"}',
                )
            ),
            replies.text("Ho preparato l'appuntamento con Giulia Bianchi."),
        ]
    )
    app = make_app(llm, store=store)

    result = asyncio.run(app.chat({"message": "fissa un incontro con Bianchi"}, caller_id="7"))
    store.close()

    assert result.success is True
    assert result.side_effects.meeting["client"]["name"] == "Giulia Bianchi"

    reopened = SQLite(path)
    history = reopened.list_messages(result.conversation_id)
    assert [m.role for m in history] == [USER_ROLE, ASSISTANT_ROLE, TOOL_ROLE, ASSISTANT_ROLE]
    assert history[1].tool_calls[0].function_name == "prepareMeetingData"
    assert history[2].tool_call_id == history[1].tool_calls[0].id
    assert history[3].tool_results[0]["success"] is True
    assert history[3].content == "Ho preparato l'appuntamento con Giulia Bianchi."
    reopened.close()


def test_follow_up_replays_stored_tool_turns(make_app, scripted_llm, replies, temp_dir):
    store = SQLite(str(temp_dir / "advisorbot.db"))
    llm = scripted_llm(
        [
            replies.tools(replies.call("searchClients", '{"query": "Rossi"}')),
            replies.text("Ho trovato Mario Rossi."),
            replies.text("La sua email è mario.rossi@example.com."),
        ]
    )
    app = make_app(llm, store=store)

    first = asyncio.run(app.chat({"message": "cerca Rossi"}, caller_id="7"))
    asyncio.run(
        app.chat(
            {"message": "qual è la sua email?", "conversationId": first.conversation_id},
            caller_id="7",
        )
    )

    roles = [m["role"] for m in llm.calls[-1]["messages"]]
    assert roles == ["system", USER_ROLE, ASSISTANT_ROLE, TOOL_ROLE, ASSISTANT_ROLE, USER_ROLE]
    assert llm.calls[-1]["messages"][2]["tool_calls"][0]["function"]["name"] == "searchClients"
    store.close()


def test_service_error_leaves_only_user_message(make_app, scripted_llm, replies, temp_dir):
    store = SQLite(str(temp_dir / "advisorbot.db"))
    app = make_app(
        scripted_llm(
            [replies.tools(replies.call("searchClients", '{"query": "Rossi"}')), ConnectionError("down")]
        ),
        store=store,
    )

    result = asyncio.run(app.chat({"message": "cerca Rossi"}, caller_id="7"))

    assert result.success is False
    [conversation] = store.list_conversations("7")
    assert [m.role for m in store.list_messages(conversation.id)] == [USER_ROLE]
    store.close()


def test_delete_conversation_cascades(make_app, scripted_llm, replies, temp_dir):
    store = SQLite(str(temp_dir / "advisorbot.db"))
    app = make_app(scripted_llm([replies.text("Ciao")]), store=store)
    result = asyncio.run(app.chat({"message": "ciao"}, caller_id="7"))

    app.delete_conversation("7", result.conversation_id)

    assert store.list_messages(result.conversation_id) == []
    assert store.list_conversations("7") == []
    store.close()
