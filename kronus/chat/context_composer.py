"""
Context Composer

Resolves the (ContextConfig, ToolAvailabilityConfig) pair from the active
skill set and the manual override flag:
- No skills, no override: the lean baseline
- Skills, no override: lean baseline OR-merged with every active skill patch
- Override: whatever the user edited directly, until the next skill toggle

This is the only writer of the live configuration pair.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable

from .logging_utils import should_log_feature
from .models import ContextConfig, ToolAvailabilityConfig
from .skill_registry import SkillInfo, SkillRegistry

logger = logging.getLogger(__name__)

LEAN_CONTEXT_CONFIG = ContextConfig()
LEAN_TOOLS_CONFIG = ToolAvailabilityConfig(journal=True, repository=True)

ALL_CONTEXT_CONFIG = ContextConfig(
    writings=True,
    portfolio_projects=True,
    skills=True,
    work_experience=True,
    education=True,
    journal_entries=True,
    linear_projects=True,
    linear_issues=True,
    linear_include_completed=False,
    slite_notes=True,
)
ALL_TOOLS_CONFIG = ToolAvailabilityConfig(
    journal=True,
    repository=True,
    linear=True,
    git=True,
    media=True,
    image_generation=True,
    web_search=True,
    slite=True,
)

SKILL_PROMPT_HEADER = (
    "\n\n## Active Skills\n\n"
    "The following skills are currently active, "
    "shaping your focus and capabilities:\n\n"
)


def merge_skill_configs(
    skills: Iterable[SkillInfo],
) -> tuple[ContextConfig, ToolAvailabilityConfig]:
    """OR-merge skill patches on top of the lean baseline."""
    context_flags: set[str] = set()
    tool_flags: set[str] = set()
    for skill in skills:
        context_flags |= skill.config.context_flags()
        tool_flags |= skill.config.tool_flags()
    return (
        LEAN_CONTEXT_CONFIG.with_flags(context_flags),
        LEAN_TOOLS_CONFIG.with_flags(tool_flags),
    )


def build_skill_prompt_section(skills: Iterable[SkillInfo]) -> str:
    """Render the "Active Skills" system-prompt block, or "" if none."""
    sections = [
        f"### Active Skill: {skill.title}\n{skill.content}"
        for skill in skills
        if skill.content
    ]
    if not sections:
        return ""
    return SKILL_PROMPT_HEADER + "\n\n---\n\n".join(sections)


def is_almighty_config(context: ContextConfig, tools: ToolAvailabilityConfig) -> bool:
    """True when every section and tool category is switched on."""
    wanted_context = ALL_CONTEXT_CONFIG.enabled()
    return wanted_context <= context.enabled() and tools == ALL_TOOLS_CONFIG


class ContextComposer:
    """Owns the live configuration pair for one session."""

    def __init__(self, registry: SkillRegistry) -> None:
        self.registry = registry
        self._active_slugs: list[str] = []
        self._manual_override = False
        self._manual_context = LEAN_CONTEXT_CONFIG
        self._manual_tools = LEAN_TOOLS_CONFIG

    @property
    def active_skill_slugs(self) -> list[str]:
        return list(self._active_slugs)

    @property
    def manual_override(self) -> bool:
        return self._manual_override

    @property
    def active_skills(self) -> list[SkillInfo]:
        return self.registry.resolve(self._active_slugs)

    @property
    def context_config(self) -> ContextConfig:
        return self.compose()[0]

    @property
    def tools_config(self) -> ToolAvailabilityConfig:
        return self.compose()[1]

    @property
    def mode(self) -> str:
        """One of "lean", "skills", "custom" or "almighty"."""
        context, tools = self.compose()
        if is_almighty_config(context, tools):
            return "almighty"
        if self._manual_override:
            return "custom"
        return "skills" if self._active_slugs else "lean"

    def compose(self) -> tuple[ContextConfig, ToolAvailabilityConfig]:
        """Resolve the current configuration pair."""
        if self._manual_override:
            return self._manual_context, self._manual_tools
        return merge_skill_configs(self.active_skills)

    def skill_prompt_section(self) -> str:
        return build_skill_prompt_section(self.active_skills)

    def activate_skill(self, slug: str) -> None:
        self._clear_override()
        if slug not in self._active_slugs:
            self._active_slugs.append(slug)
        self._log_composition(f"activated '{slug}'")

    def deactivate_skill(self, slug: str) -> None:
        self._clear_override()
        if slug in self._active_slugs:
            self._active_slugs.remove(slug)
        self._log_composition(f"deactivated '{slug}'")

    def toggle_skill(self, slug: str) -> bool:
        """Flip ``slug`` and return whether it is now active."""
        if slug in self._active_slugs:
            self.deactivate_skill(slug)
            return False
        self.activate_skill(slug)
        return True

    def clear_skills(self) -> None:
        """Back to the lean baseline: no skills, no override."""
        self._active_slugs.clear()
        self._manual_override = False
        self._manual_context = LEAN_CONTEXT_CONFIG
        self._manual_tools = LEAN_TOOLS_CONFIG

    def set_context_config(self, config: ContextConfig) -> None:
        """Direct user edit of the context sections; enables the override."""
        self._enter_override()
        self._manual_context = config

    def set_tools_config(self, config: ToolAvailabilityConfig) -> None:
        """Direct user edit of the tool categories; enables the override."""
        self._enter_override()
        self._manual_tools = config

    def _enter_override(self) -> None:
        if not self._manual_override:
            # Seed manual edits from what the user currently sees
            self._manual_context, self._manual_tools = self.compose()
            self._manual_override = True

    def _clear_override(self) -> None:
        if self._manual_override:
            logger.info("Skill toggled, discarding manual configuration override")
            self._manual_override = False

    def _log_composition(self, action: str) -> None:
        if not should_log_feature("chat", "skill_composition"):
            return
        context, tools = self.compose()
        logger.info(
            "Skills %s: active=%s context=%s tools=%s",
            action,
            self._active_slugs,
            sorted(context.enabled()),
            sorted(tools.enabled()),
        )
