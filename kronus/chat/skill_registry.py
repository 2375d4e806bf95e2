"""
Skill Registry

Catalog of named capability bundles. Each skill carries display metadata and
a true-only patch over the context and tool configurations. The catalog is
loaded from a YAML file or an HTTP endpoint; an unavailable catalog yields an
empty registry so composition falls back to the lean baseline.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING, Any

import httpx
import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .models import ContextConfig, FlagConfig, ToolAvailabilityConfig

if TYPE_CHECKING:
    from kronus.config import Configuration

logger = logging.getLogger(__name__)


class SkillCatalogError(Exception):
    """Raised when a skill catalog cannot be read or is malformed."""


def _validate_patch(
    patch: dict[str, bool], config_cls: type[FlagConfig]
) -> dict[str, bool]:
    resolved: dict[str, bool] = {}
    for key, value in patch.items():
        name = config_cls.field_for(key)
        if name is None:
            raise ValueError(f"unknown {config_cls.__name__} flag '{key}'")
        resolved[name] = bool(value)
    return resolved


class SkillConfig(BaseModel):
    """Partial flag patches applied when the skill is active."""

    model_config = ConfigDict(populate_by_name=True)

    soul: dict[str, bool] = Field(default_factory=dict)
    tools: dict[str, bool] = Field(default_factory=dict)

    @field_validator("soul")
    @classmethod
    def _check_soul(cls, v: dict[str, bool]) -> dict[str, bool]:
        return _validate_patch(v, ContextConfig)

    @field_validator("tools")
    @classmethod
    def _check_tools(cls, v: dict[str, bool]) -> dict[str, bool]:
        return _validate_patch(v, ToolAvailabilityConfig)

    def context_flags(self) -> set[str]:
        return {name for name, on in self.soul.items() if on}

    def tool_flags(self) -> set[str]:
        return {name for name, on in self.tools.items() if on}


class SkillInfo(BaseModel):
    """A user-toggleable skill."""

    id: int | None = None
    slug: str
    title: str
    description: str = ""
    icon: str = "Zap"
    color: str = "#00CED1"
    priority: int = 50
    content: str = ""
    config: SkillConfig = Field(default_factory=SkillConfig)


class SkillRegistry:
    """In-memory skill catalog keyed by slug."""

    def __init__(self, skills: Iterable[SkillInfo] = ()) -> None:
        self._skills: dict[str, SkillInfo] = {}
        for skill in skills:
            if skill.slug in self._skills:
                raise SkillCatalogError(f"Duplicate skill slug '{skill.slug}'")
            self._skills[skill.slug] = skill

    def __len__(self) -> int:
        return len(self._skills)

    def __contains__(self, slug: object) -> bool:
        return slug in self._skills

    def get(self, slug: str) -> SkillInfo | None:
        return self._skills.get(slug)

    def skills(self) -> list[SkillInfo]:
        """All skills ordered by priority, then title."""
        return sorted(self._skills.values(), key=lambda s: (s.priority, s.title))

    def resolve(self, slugs: Iterable[str]) -> list[SkillInfo]:
        """Look up ``slugs`` in priority order, skipping unknown ones."""
        found: list[SkillInfo] = []
        for slug in dict.fromkeys(slugs):
            skill = self._skills.get(slug)
            if skill is None:
                logger.warning("Ignoring unknown skill slug '%s'", slug)
                continue
            found.append(skill)
        return sorted(found, key=lambda s: (s.priority, s.title))


def parse_skill_catalog(data: Any) -> list[SkillInfo]:
    """Validate raw catalog data (a list, or a mapping with a ``skills`` key)."""
    if isinstance(data, dict):
        data = data.get("skills", [])
    if not isinstance(data, list):
        raise SkillCatalogError("Skill catalog must be a list of skills")
    try:
        return [SkillInfo.model_validate(item) for item in data]
    except ValidationError as e:
        raise SkillCatalogError(f"Invalid skill catalog: {e}") from e


async def load_skill_registry(
    configuration: Configuration, client: httpx.AsyncClient | None = None
) -> SkillRegistry:
    """Build the registry from the configured catalog source.

    Any failure is logged and results in an empty registry.

    Args:
        configuration: Application configuration (``skills`` section).
        client: Optional HTTP client for the ``http`` source.

    Returns:
        The loaded registry, possibly empty.
    """
    skills_conf = configuration.get_skills_config()
    source = skills_conf.get("source", "none")

    try:
        if source == "file":
            with open(skills_conf["path"]) as file:
                skills = parse_skill_catalog(yaml.safe_load(file))
        elif source == "http":
            skills = await _fetch_catalog(skills_conf["url"], client)
        else:
            return SkillRegistry()
        registry = SkillRegistry(skills)
    except (OSError, KeyError, yaml.YAMLError, httpx.HTTPError, SkillCatalogError) as e:
        logger.error(f"Skill catalog unavailable ({source}), continuing without skills: {e}")
        return SkillRegistry()

    logger.info("Loaded %d skills from %s catalog", len(registry), source)
    return registry


async def _fetch_catalog(
    url: str, client: httpx.AsyncClient | None
) -> list[SkillInfo]:
    owns_client = client is None
    http = client or httpx.AsyncClient(timeout=10.0)
    try:
        response = await http.get(url)
        response.raise_for_status()
        try:
            payload = response.json()
        except ValueError as e:
            raise SkillCatalogError(f"Skill catalog is not JSON: {e}") from e
        return parse_skill_catalog(payload)
    finally:
        if owns_client:
            await http.aclose()
