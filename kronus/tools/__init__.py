"""
Tool Handlers

Importing this package registers every handler on ``registry``.
"""

from __future__ import annotations

from . import git, image_generation, journal, linear, media, repository, slite, web_search
from .base import registry
from .service_client import ServiceClient, ToolServiceError

# Tool names the model gateway advertises, per category
TOOL_CATALOG: dict[str, tuple[str, ...]] = {
    "journal": (
        "journal_create_entry",
        "journal_get_entry",
        "journal_list_by_repository",
        "journal_list_repositories",
        "journal_edit_entry",
        "journal_regenerate_entry",
        "journal_upsert_project_summary",
        "journal_get_project_summary",
        "journal_list_project_summaries",
    ),
    "linear": (
        "linear_get_viewer",
        "linear_list_issues",
        "linear_list_projects",
        "linear_create_issue",
        "linear_update_issue",
        "linear_create_project",
        "linear_update_project",
        "linear_create_project_update",
        "linear_list_project_updates",
    ),
    "repository": (
        "repository_search_documents",
        "repository_get_document",
        "repository_create_document",
        "repository_update_document",
        "repository_list_skills",
        "repository_create_skill",
        "repository_update_skill",
        "repository_list_experience",
        "repository_create_experience",
        "repository_update_experience",
        "repository_list_education",
        "repository_create_education",
        "repository_update_education",
        "repository_list_portfolio_projects",
        "repository_get_portfolio_project",
        "repository_create_portfolio_project",
        "repository_update_portfolio_project",
    ),
    "media": ("save_image", "list_media", "get_media", "update_media"),
    "image_generation": ("replicate_generate_image",),
    "web_search": (
        "perplexity_search",
        "perplexity_ask",
        "perplexity_research",
        "perplexity_reason",
    ),
    "slite": (
        "slite_search_notes",
        "slite_get_note",
        "slite_create_note",
        "slite_update_note",
    ),
    "git": ("git_parse_url", "git_file_tree", "git_read_file"),
}

__all__ = [
    "TOOL_CATALOG",
    "ServiceClient",
    "ToolServiceError",
    "git",
    "image_generation",
    "journal",
    "linear",
    "media",
    "registry",
    "repository",
    "slite",
    "web_search",
]
