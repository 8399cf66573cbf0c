"""Tests for system prompt assembly."""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest

from agentchat.context import DEFAULT_SYSTEM_MESSAGE, ContextAssembler
from agentchat.db import Database
from agentchat.memory import SummaryMemoryService
from agentchat.models import AutoSwitchRules
from agentchat.retrieval import NO_RESULTS_SENTINEL, KeywordRetrievalService
from agentchat.skills import SkillRegistry

BASE = "You are a helpful AI assistant."


@pytest.fixture
def db(tmp_path):
    database = Database(tmp_path / "agentchat.db")
    database.initialize()
    return database


@pytest.fixture
def skills(db):
    return SkillRegistry(db)


@pytest.mark.asyncio
async def test_no_sources_returns_base_message(skills):
    assembled = await ContextAssembler(skills).build(BASE, "user-1", "conv-1", "hello", is_new_conversation=True)

    assert assembled.system_message == BASE
    assert assembled.active_skill is None


@pytest.mark.asyncio
async def test_empty_base_falls_back_to_default(skills):
    assembled = await ContextAssembler(skills).build("", "user-1", "conv-1", "hello")

    assert assembled.system_message == DEFAULT_SYSTEM_MESSAGE


@pytest.mark.asyncio
async def test_pre_selected_skill_beats_default(skills):
    default = skills.create_skill("default", "Default", "default content")
    chosen = skills.create_skill("chosen", "Chosen", "chosen content")
    skills.assign_skill_to_user(default.id, "user-1", is_default=True)

    assembled = await ContextAssembler(skills).build(
        BASE, "user-1", "conv-1", "hi", is_new_conversation=True, pre_selected_skill_id=chosen.id
    )

    assert assembled.active_skill.skill.id == chosen.id
    assert assembled.active_skill.trigger_type == "manual"
    assert assembled.system_message == f"# Active Skill: Chosen\n\nchosen content\n\n---\n\n{BASE}"


@pytest.mark.asyncio
async def test_default_skill_used_for_new_conversation(skills):
    default = skills.create_skill("default", "Default", "default content")
    skills.assign_skill_to_user(default.id, "user-1", is_default=True)

    assembled = await ContextAssembler(skills).build(BASE, "user-1", "conv-1", "hi", is_new_conversation=True)

    assert assembled.active_skill.skill.id == default.id
    assert assembled.active_skill.trigger_type == "auto"


@pytest.mark.asyncio
async def test_skills_not_activated_for_existing_conversation(skills):
    default = skills.create_skill("default", "Default", "default content")
    skills.assign_skill_to_user(default.id, "user-1", is_default=True)

    assembled = await ContextAssembler(skills).build(
        BASE, "user-1", "conv-1", "hi", is_new_conversation=False, pre_selected_skill_id=default.id
    )

    assert assembled.active_skill is None
    assert assembled.system_message == BASE


@pytest.mark.asyncio
async def test_existing_active_skill_is_kept(skills):
    kept = skills.create_skill("kept", "Kept", "kept content")
    other = skills.create_skill("other", "Other", "other content")
    skills.activate_skill(kept, "conv-1", "user-1", "manual")

    assembled = await ContextAssembler(skills).build(
        BASE, "user-1", "conv-1", "hi", is_new_conversation=True, pre_selected_skill_id=other.id
    )

    assert assembled.active_skill.skill.id == kept.id


@pytest.mark.asyncio
async def test_auto_switch_when_rules_match(skills):
    general = skills.create_skill("general", "General", "general content")
    coder = skills.create_skill("coder", "Coder", "coder content", auto_switch_rules=AutoSwitchRules(keywords=["python"]))
    skills.assign_skill_to_user(general.id, "user-1", is_default=True, order_index=0)
    skills.assign_skill_to_user(coder.id, "user-1", order_index=1)
    skills.activate_skill(general, "conv-1", "user-1", "auto")

    assembled = await ContextAssembler(skills).build(BASE, "user-1", "conv-1", "fix my Python script")

    assert assembled.active_skill.skill.id == coder.id
    assert assembled.active_skill.previous_skill_id == general.id
    assert "# Active Skill: Coder" in assembled.system_message


@pytest.mark.asyncio
async def test_no_auto_switch_without_active_skill(skills):
    coder = skills.create_skill("coder", "Coder", "coder content", auto_switch_rules=AutoSwitchRules(keywords=["python"]))
    skills.assign_skill_to_user(coder.id, "user-1")

    assembled = await ContextAssembler(skills).build(BASE, "user-1", "conv-1", "python help")

    assert assembled.active_skill is None


@pytest.mark.asyncio
async def test_full_layout_order(db, skills):
    skill = skills.create_skill("s", "Skill", "skill content")
    skills.activate_skill(skill, "conv-1", "user-1", "manual")
    db.save_summary("user-1", "old-conv", "User lives in Porto", 20)
    db.add_document_chunk("user-1", "trains.md", "Trains from Porto to Lisbon leave hourly")

    assembler = ContextAssembler(skills, memory=SummaryMemoryService(db), retrieval=KeywordRetrievalService(db))
    assembled = await assembler.build(BASE, "user-1", "conv-1", "trains Porto Lisbon")

    message = assembled.system_message
    memory_at = message.index("PREVIOUS CONVERSATION MEMORIES:")
    skill_at = message.index("# Active Skill: Skill")
    base_at = message.index(BASE)
    docs_at = message.index("RELEVANT KNOWLEDGE BASE CONTEXT:")
    assert memory_at < skill_at < base_at < docs_at
    assert "[Document 1: trains.md (Relevance: 100.0%)]" in message


@pytest.mark.asyncio
async def test_no_results_sentinel_is_not_appended(skills):
    retrieval = MagicMock()
    retrieval.get_relevant_context = AsyncMock(return_value=NO_RESULTS_SENTINEL)

    assembled = await ContextAssembler(skills, retrieval=retrieval).build(BASE, "user-1", "conv-1", "hello")

    assert assembled.system_message == BASE


@pytest.mark.asyncio
async def test_failing_sources_degrade_to_base_message(skills):
    memory = MagicMock()
    memory.get_recent_summaries = AsyncMock(side_effect=RuntimeError("memory down"))
    retrieval = MagicMock()
    retrieval.get_relevant_context = AsyncMock(side_effect=RuntimeError("vector store down"))
    broken_skills = MagicMock()
    broken_skills.get_active_skill.side_effect = RuntimeError("skills table locked")

    assembled = await ContextAssembler(broken_skills, memory=memory, retrieval=retrieval).build(
        BASE, "user-1", "conv-1", "hello", is_new_conversation=True
    )

    assert assembled.system_message == BASE
    assert assembled.active_skill is None
