"""Builds the enriched system prompt for one chat turn."""

from __future__ import annotations

import logging
from dataclasses import dataclass

from agentchat.memory import MemoryService
from agentchat.models import ActiveSkill
from agentchat.retrieval import RetrievalService, is_no_results
from agentchat.skills import SkillRegistry

LOGGER = logging.getLogger(__name__)

DEFAULT_SYSTEM_MESSAGE = "You are a helpful AI assistant."


@dataclass(slots=True)
class AssembledContext:
    system_message: str
    active_skill: ActiveSkill | None = None


class ContextAssembler:
    """Merges skill, memory and retrieved documents into the base system message.

    Final layout: ``memories``, then ``# Active Skill`` block, then the base
    message, then retrieved documents. Every source is optional; a failing
    source is logged and left out.
    """

    def __init__(
        self,
        skills: SkillRegistry,
        memory: MemoryService | None = None,
        retrieval: RetrievalService | None = None,
        memory_limit: int = 3,
        retrieval_limit: int = 3,
    ) -> None:
        self._skills = skills
        self._memory = memory
        self._retrieval = retrieval
        self._memory_limit = memory_limit
        self._retrieval_limit = retrieval_limit

    async def build(
        self,
        base_system_message: str,
        user_id: str,
        conversation_id: str,
        latest_user_text: str,
        is_new_conversation: bool = False,
        pre_selected_skill_id: str | None = None,
    ) -> AssembledContext:
        system_message = base_system_message or DEFAULT_SYSTEM_MESSAGE

        active = self._resolve_active_skill(user_id, conversation_id, is_new_conversation, pre_selected_skill_id)
        if active is not None:
            active = self._maybe_auto_switch(active, user_id, conversation_id, latest_user_text)

        if active is not None:
            try:
                skill_content = await self._skills.get_enriched_skill_content(
                    active.skill, user_id, latest_user_text
                )
                system_message = (
                    f"# Active Skill: {active.skill.display_name}\n\n{skill_content}\n\n---\n\n{system_message}"
                )
            except Exception:  # noqa: BLE001
                LOGGER.warning("Failed to load content for skill %s", active.skill.name, exc_info=True)

        if self._memory is not None:
            try:
                summaries = await self._memory.get_recent_summaries(user_id, self._memory_limit)
                if memory_context := self._memory.format_memory_context(summaries):
                    system_message = f"{memory_context}\n\n{system_message}"
            except Exception:  # noqa: BLE001
                LOGGER.warning("Memory load failed for user %s", user_id, exc_info=True)

        if self._retrieval is not None and latest_user_text.strip():
            try:
                documents = await self._retrieval.get_relevant_context(
                    latest_user_text, user_id, self._retrieval_limit
                )
                if not is_no_results(documents):
                    system_message = f"{system_message}\n\n{documents}"
            except Exception:  # noqa: BLE001
                LOGGER.warning("Document retrieval failed for user %s", user_id, exc_info=True)

        return AssembledContext(system_message=system_message, active_skill=active)

    def _resolve_active_skill(
        self,
        user_id: str,
        conversation_id: str,
        is_new_conversation: bool,
        pre_selected_skill_id: str | None,
    ) -> ActiveSkill | None:
        try:
            active = self._skills.get_active_skill(conversation_id)
            if active is not None or not is_new_conversation:
                return active

            if pre_selected_skill_id:
                skill = self._skills.get_skill(pre_selected_skill_id)
                if skill is not None:
                    return self._skills.activate_skill(
                        skill, conversation_id, user_id, "manual", "Pre-selected by user"
                    )
                LOGGER.warning("Pre-selected skill %s not found", pre_selected_skill_id)

            default_skill = self._skills.get_default_user_skill(user_id)
            if default_skill is not None:
                return self._skills.activate_skill(
                    default_skill, conversation_id, user_id, "auto", "Default skill activated"
                )
        except Exception:  # noqa: BLE001
            LOGGER.warning("Skill resolution failed for conversation %s", conversation_id, exc_info=True)
        return None

    def _maybe_auto_switch(
        self, active: ActiveSkill, user_id: str, conversation_id: str, latest_user_text: str
    ) -> ActiveSkill:
        try:
            candidate = self._skills.find_auto_switch(user_id, active.skill.id, latest_user_text)
            if candidate is not None:
                return self._skills.activate_skill(candidate, conversation_id, user_id, "auto", latest_user_text)
        except Exception:  # noqa: BLE001
            LOGGER.warning("Skill auto-switch failed for conversation %s", conversation_id, exc_info=True)
        return active
