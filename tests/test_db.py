from datetime import datetime, timedelta, timezone

import pytest

from agentchat.db import Database


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "agentchat.db")
    database.initialize()
    return database


def test_initialize_is_repeatable(tmp_path):
    db = Database(tmp_path / "agentchat.db")
    db.initialize()
    db.initialize()

    assert db.create_conversation("user-1", "hello")


def test_conversation_and_messages_round_trip(db):
    conversation_id = db.create_conversation("user-1", "Weather question")
    db.add_message(conversation_id, "user", "hi", parts=[{"type": "text", "text": "hi"}])
    db.add_message(
        conversation_id,
        "assistant",
        "",
        tool_calls=[{"id": "c1", "type": "function", "function": {"name": "search_web", "arguments": "{}"}}],
    )
    db.add_message(conversation_id, "tool", "result", tool_call_id="c1")

    conversation = db.get_conversation(conversation_id)
    assert conversation.user_id == "user-1"
    assert conversation.title == "Weather question"
    assert conversation.message_count == 3

    messages = db.load_messages(conversation_id)
    assert [m.role for m in messages] == ["user", "assistant", "tool"]
    assert messages[0].parts == [{"type": "text", "text": "hi"}]
    assert messages[1].tool_calls[0]["id"] == "c1"
    assert messages[2].tool_call_id == "c1"


def test_get_missing_conversation(db):
    assert db.get_conversation("nope") is None


def test_messages_are_isolated_per_conversation(db):
    first = db.create_conversation("user-1", "one")
    second = db.create_conversation("user-1", "two")
    db.add_message(first, "user", "hello")

    assert db.count_messages(first) == 1
    assert db.load_messages(second) == []


def test_tool_execution_log(db):
    db.log_tool_execution("conv-1", "search_web", {"query": "x"}, {"answer": "y"}, True)
    db.log_tool_execution("conv-1", "execute_shell", {"command": "false"}, {"exit_code": 1}, False)

    rows = db.list_tool_executions("conv-1")
    assert [(r["tool_name"], r["succeeded"]) for r in rows] == [("search_web", 1), ("execute_shell", 0)]


def test_session_lookup_respects_expiry(db):
    now = datetime.now(timezone.utc)
    db.create_session("user-1", "token-live", now + timedelta(hours=1))
    db.create_session("user-2", "token-dead", now - timedelta(seconds=1))

    assert db.get_session_user("token-live") == "user-1"
    assert db.get_session_user("token-dead") is None
    assert db.get_session_user("unknown") is None


def test_user_settings(db):
    assert db.get_user_settings("user-1") == {}

    db.save_user_settings("user-1", system_message="Be brief.", tavily_api_key="tvly-1")

    assert db.get_user_settings("user-1") == {"system_message": "Be brief.", "tavily_api_key": "tvly-1"}


def test_default_skill_is_unique_per_user(db):
    for skill_id in ("s1", "s2"):
        db.insert_skill({"id": skill_id, "name": skill_id, "display_name": skill_id.upper(), "content": "c"})
    db.assign_skill_to_user("user-1", "s1", is_default=True, order_index=0)
    db.assign_skill_to_user("user-1", "s2", is_default=True, order_index=1)

    assert db.get_default_user_skill_row("user-1")["id"] == "s2"
    assert [row["id"] for row in db.get_user_skill_rows("user-1")] == ["s1", "s2"]


def test_activate_skill_records_previous_and_usage(db):
    for skill_id in ("s1", "s2"):
        db.insert_skill({"id": skill_id, "name": skill_id, "display_name": skill_id.upper(), "content": "c"})

    assert db.activate_skill("conv-1", "s1", "user-1", "manual", "pre-selected") is None
    assert db.activate_skill("conv-1", "s2", "user-1", "auto", "switch") == "s1"

    active = db.get_active_skill_row("conv-1")
    assert active["id"] == "s2"
    assert active["previous_skill_id"] == "s1"
    assert active["trigger_type"] == "auto"

    db.complete_skill_usage("conv-1", True, 42, 2, None)
    usage = db.list_skill_usage("conv-1")
    assert len(usage) == 2
    assert usage[0]["completed_at"] is None
    assert usage[1]["success"] == 1
    assert usage[1]["tokens_used"] == 42
    assert usage[1]["tool_calls_count"] == 2


def test_summaries_newest_first_and_searchable(db):
    db.save_summary("user-1", "conv-1", "Likes Python", 20)
    db.save_summary("user-1", "conv-2", "Planning a trip to Lisbon", 20)

    recent = db.get_recent_summaries("user-1", limit=5)
    assert [r["summary"] for r in recent] == ["Planning a trip to Lisbon", "Likes Python"]
    assert [r["summary"] for r in db.get_recent_summaries("user-1", 5, term="python")] == ["Likes Python"]
    assert db.get_summary_message_count("conv-1") == 20
