"""Skill registry: lookup, activation, auto-switch rules and usage tracking."""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime
from typing import Any, Callable

from agentchat.db import Database
from agentchat.memory import SummaryMemoryService
from agentchat.models import ActiveSkill, AutoSwitchRules, Skill, TriggerType
from agentchat.retrieval import RetrievalService, is_no_results

LOGGER = logging.getLogger(__name__)


def _skill_from_row(row: dict[str, Any]) -> Skill:
    rules_json = row.get("auto_switch_rules_json")
    return Skill(
        id=row["id"],
        name=row["name"],
        display_name=row["display_name"],
        content=row["content"],
        description=row.get("description") or "",
        category=row.get("category") or "workflow",
        user_id=row.get("user_id"),
        learning_enabled=bool(row.get("learning_enabled")),
        rag_integration=bool(row.get("rag_integration")),
        auto_switch_rules=AutoSwitchRules.from_dict(json.loads(rules_json)) if rules_json else None,
    )


class SkillRegistry:
    """Resolves which skill shapes a conversation's system prompt."""

    def __init__(
        self,
        db: Database,
        memory: SummaryMemoryService | None = None,
        retrieval: RetrievalService | None = None,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._db = db
        self._memory = memory
        self._retrieval = retrieval
        self._clock = clock or datetime.now

    def create_skill(
        self,
        name: str,
        display_name: str,
        content: str,
        *,
        user_id: str | None = None,
        description: str = "",
        category: str = "workflow",
        learning_enabled: bool = False,
        rag_integration: bool = False,
        auto_switch_rules: AutoSwitchRules | None = None,
    ) -> Skill:
        skill = Skill(
            id=uuid.uuid4().hex,
            name=name,
            display_name=display_name,
            content=content,
            description=description,
            category=category,
            user_id=user_id,
            learning_enabled=learning_enabled,
            rag_integration=rag_integration,
            auto_switch_rules=auto_switch_rules,
        )
        self._db.insert_skill(
            {
                "id": skill.id,
                "user_id": user_id,
                "name": name,
                "display_name": display_name,
                "description": description,
                "content": content,
                "category": category,
                "learning_enabled": learning_enabled,
                "rag_integration": rag_integration,
                "auto_switch_rules": auto_switch_rules.to_dict() if auto_switch_rules else None,
            }
        )
        return skill

    def assign_skill_to_user(self, skill_id: str, user_id: str, is_default: bool = False, order_index: int = 0) -> None:
        """Attach a skill to a user; at most one assignment per user is the default."""

        self._db.assign_skill_to_user(user_id, skill_id, is_default, order_index)

    def get_skill(self, skill_id: str) -> Skill | None:
        row = self._db.get_skill_row(skill_id)
        return _skill_from_row(row) if row else None

    def get_user_skills(self, user_id: str) -> list[Skill]:
        """Enabled skills assigned to the user, in assignment order."""

        return [_skill_from_row(row) for row in self._db.get_user_skill_rows(user_id)]

    def get_default_user_skill(self, user_id: str) -> Skill | None:
        row = self._db.get_default_user_skill_row(user_id)
        return _skill_from_row(row) if row else None

    def get_active_skill(self, conversation_id: str) -> ActiveSkill | None:
        row = self._db.get_active_skill_row(conversation_id)
        if row is None:
            return None
        return ActiveSkill(
            skill=_skill_from_row(row),
            trigger_type=row["trigger_type"],
            previous_skill_id=row["previous_skill_id"],
            activated_at=datetime.fromisoformat(row["activated_at"]),
        )

    def activate_skill(
        self,
        skill: Skill,
        conversation_id: str,
        user_id: str,
        trigger_type: TriggerType,
        trigger_message: str | None = None,
    ) -> ActiveSkill:
        previous = self._db.activate_skill(conversation_id, skill.id, user_id, trigger_type, trigger_message)
        LOGGER.info(
            "Activated skill %s for conversation %s (trigger=%s, previous=%s)",
            skill.name,
            conversation_id,
            trigger_type,
            previous,
        )
        return ActiveSkill(skill=skill, trigger_type=trigger_type, previous_skill_id=previous)

    def deactivate_skill(self, conversation_id: str) -> None:
        self._db.deactivate_skill(conversation_id)

    def should_auto_activate(self, skill: Skill, message: str) -> bool:
        rules = skill.auto_switch_rules
        if rules is None:
            return False

        text = message.lower()
        if any(keyword.lower() in text for keyword in rules.keywords):
            return True
        if any(file_type.lower() in text for file_type in rules.file_types):
            return True
        if rules.time_hour is not None and self._clock().hour == rules.time_hour:
            return True
        return False

    def find_auto_switch(self, user_id: str, active_skill_id: str, message: str) -> Skill | None:
        """Return the first assigned skill, other than the active one, whose rules match."""

        for skill in self.get_user_skills(user_id):
            if skill.id == active_skill_id or skill.auto_switch_rules is None:
                continue
            if self.should_auto_activate(skill, message):
                return skill
        return None

    async def get_enriched_skill_content(self, skill: Skill, user_id: str, current_message: str | None = None) -> str:
        """Skill content with learned preferences and documentation prepended when enabled."""

        content = skill.content

        if skill.learning_enabled and self._memory is not None:
            memories = await self._memory.search_summaries(user_id, skill.name)
            if memories:
                lines = "\n".join(f"- {m}" for m in memories)
                content = f"## Learned Preferences\n\n{lines}\n\n{content}"

        if skill.rag_integration and current_message and self._retrieval is not None:
            documents = await self._retrieval.get_relevant_context(current_message, user_id)
            if not is_no_results(documents):
                content = f"## Relevant Documentation\n\n{documents}\n\n{content}"

        return content

    def complete_skill_usage(
        self,
        conversation_id: str,
        success: bool,
        tokens_used: int | None = None,
        tool_calls_count: int = 0,
        error_message: str | None = None,
    ) -> None:
        self._db.complete_skill_usage(conversation_id, success, tokens_used, tool_calls_count, error_message)
