#!/usr/bin/env python3
"""
Tests for the skill catalog: validation, ordering and loading sources.
"""

import httpx
import pytest
import yaml

from kronus.chat.skill_registry import (
    SkillCatalogError,
    SkillConfig,
    SkillInfo,
    SkillRegistry,
    load_skill_registry,
    parse_skill_catalog,
)

CATALOG = {
    "skills": [
        {
            "slug": "tracker",
            "title": "Tracker",
            "priority": 20,
            "config": {"soul": {"linearIssues": True}, "tools": {"linear": True}},
        },
        {"slug": "writing", "title": "Writing", "priority": 10},
    ]
}


def test_skill_config_resolves_camel_case_keys():
    config = SkillConfig(soul={"portfolioProjects": True}, tools={"imageGeneration": True})

    assert config.context_flags() == {"portfolio_projects"}
    assert config.tool_flags() == {"image_generation"}


def test_skill_config_rejects_unknown_flags():
    with pytest.raises(ValueError):
        SkillConfig(soul={"horoscopes": True})


def test_registry_orders_by_priority_then_title():
    registry = SkillRegistry(parse_skill_catalog(CATALOG))

    assert [s.slug for s in registry.skills()] == ["writing", "tracker"]
    assert "tracker" in registry
    assert len(registry) == 2


def test_duplicate_slugs_are_rejected():
    skill = SkillInfo(slug="dup", title="Dup")
    with pytest.raises(SkillCatalogError):
        SkillRegistry([skill, skill])


def test_malformed_catalog_raises():
    with pytest.raises(SkillCatalogError):
        parse_skill_catalog({"skills": [{"title": "no slug"}]})
    with pytest.raises(SkillCatalogError):
        parse_skill_catalog("not a list")


async def test_load_from_file(configuration, tmp_path):
    path = tmp_path / "skills.yaml"
    path.write_text(yaml.safe_dump(CATALOG))
    configuration.update_setting(["skills"], {"source": "file", "path": str(path)})

    registry = await load_skill_registry(configuration)

    assert registry.get("tracker").config.tool_flags() == {"linear"}


async def test_load_from_http(configuration):
    configuration.update_setting(
        ["skills"], {"source": "http", "url": "http://catalog.test/api/skills"}
    )
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, json=CATALOG))
    )

    registry = await load_skill_registry(configuration, client)

    assert len(registry) == 2
    await client.aclose()


async def test_failed_load_yields_empty_registry(configuration):
    configuration.update_setting(
        ["skills"], {"source": "http", "url": "http://catalog.test/api/skills"}
    )
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(lambda request: httpx.Response(503))
    )

    registry = await load_skill_registry(configuration, client)

    assert len(registry) == 0
    await client.aclose()
