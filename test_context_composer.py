#!/usr/bin/env python3
"""
Tests for skill composition: lean baseline, OR-merge, manual override.
"""

from kronus.chat.context_composer import (
    ALL_CONTEXT_CONFIG,
    ALL_TOOLS_CONFIG,
    LEAN_CONTEXT_CONFIG,
    LEAN_TOOLS_CONFIG,
    SKILL_PROMPT_HEADER,
    ContextComposer,
    build_skill_prompt_section,
    merge_skill_configs,
)
from kronus.chat.models import ContextConfig, ToolAvailabilityConfig
from kronus.chat.skill_registry import SkillConfig, SkillInfo


def test_no_skills_is_lean_baseline(skill_registry):
    composer = ContextComposer(skill_registry)

    assert composer.compose() == (LEAN_CONTEXT_CONFIG, LEAN_TOOLS_CONFIG)
    assert composer.mode == "lean"
    assert composer.tools_config.enabled() == {"journal", "repository"}
    assert composer.skill_prompt_section() == ""


def test_writing_then_tracker_merges_both_patches(skill_registry):
    composer = ContextComposer(skill_registry)

    composer.activate_skill("writing")
    composer.activate_skill("tracker")
    context, tools = composer.compose()

    assert context.enabled() == {"writings", "linear_projects", "linear_issues"}
    assert tools.enabled() == {"journal", "repository", "media", "linear"}
    assert composer.mode == "skills"


def test_composition_is_idempotent(skill_registry):
    composer = ContextComposer(skill_registry)
    composer.activate_skill("tracker")

    assert composer.compose() == composer.compose()
    composer.activate_skill("tracker")
    assert composer.active_skill_slugs == ["tracker"]


def test_merge_is_order_independent(skill_registry):
    writing, tracker = skill_registry.get("writing"), skill_registry.get("tracker")
    assert merge_skill_configs([writing, tracker]) == merge_skill_configs([tracker, writing])


def test_deactivating_skill_drops_only_its_flags(skill_registry):
    composer = ContextComposer(skill_registry)
    composer.activate_skill("writing")
    composer.activate_skill("tracker")

    assert composer.toggle_skill("tracker") is False

    context, tools = composer.compose()
    assert context.enabled() == {"writings"}
    assert "linear" not in tools.enabled()


def test_skill_patches_only_turn_flags_on():
    skill = SkillInfo(
        slug="quiet",
        title="Quiet",
        config=SkillConfig(soul={"writings": False}, tools={"journal": False}),
    )
    context, tools = merge_skill_configs([skill])

    assert context == LEAN_CONTEXT_CONFIG
    assert tools.journal is True


def test_manual_edit_seeds_from_current_composition(skill_registry):
    composer = ContextComposer(skill_registry)
    composer.activate_skill("writing")

    composer.set_tools_config(ToolAvailabilityConfig(git=True))

    assert composer.manual_override
    assert composer.mode == "custom"
    assert composer.tools_config.enabled() == {"git"}
    # Context half keeps what the skills had produced
    assert composer.context_config.writings is True


def test_toggling_skill_discards_manual_override(skill_registry):
    composer = ContextComposer(skill_registry)
    composer.set_context_config(ContextConfig(education=True))

    composer.toggle_skill("tracker")

    assert not composer.manual_override
    assert composer.context_config.education is False
    assert composer.context_config.linear_issues is True


def test_clear_skills_resets_everything(skill_registry):
    composer = ContextComposer(skill_registry)
    composer.activate_skill("writing")
    composer.set_tools_config(ALL_TOOLS_CONFIG)

    composer.clear_skills()

    assert composer.active_skill_slugs == []
    assert not composer.manual_override
    assert composer.compose() == (LEAN_CONTEXT_CONFIG, LEAN_TOOLS_CONFIG)


def test_almighty_mode(skill_registry):
    composer = ContextComposer(skill_registry)
    composer.set_context_config(ALL_CONTEXT_CONFIG)
    composer.set_tools_config(ALL_TOOLS_CONFIG)

    assert composer.mode == "almighty"


def test_unknown_active_slug_is_ignored(skill_registry):
    composer = ContextComposer(skill_registry)
    composer.activate_skill("ghost")

    assert composer.compose() == (LEAN_CONTEXT_CONFIG, LEAN_TOOLS_CONFIG)


def test_skill_prompt_section_in_priority_order(skill_registry):
    section = build_skill_prompt_section(
        skill_registry.resolve(["tracker", "writing"])
    )

    assert section.startswith(SKILL_PROMPT_HEADER)
    writing_at = section.index("### Active Skill: Writing")
    tracker_at = section.index("### Active Skill: Tracker")
    assert writing_at < tracker_at
    assert "\n\n---\n\n" in section


def test_configs_accept_either_casing_and_serialize_camel():
    config = ContextConfig.model_validate({"portfolioProjects": True, "work_experience": True})

    assert config.portfolio_projects and config.work_experience
    wire = config.to_wire()
    assert wire["portfolioProjects"] is True
    assert wire["linearIncludeCompleted"] is False
    assert ToolAvailabilityConfig(image_generation=True).to_wire()["imageGeneration"] is True
