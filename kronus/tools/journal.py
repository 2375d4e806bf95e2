"""Journal tools: AI-written entries per commit and per-project summaries."""

from __future__ import annotations

from typing import Any
from urllib.parse import quote

from kronus.tool_router import ToolContext

from .base import pretty_json, registry, require, short_hash


@registry.tool("journal_create_entry", "journal", "Generate a journal entry for a commit")
async def journal_create_entry(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "repository", "commit_hash")
    await ctx.services.post("/api/kronus/generate", json=args)
    return (
        f"Created journal entry for {args['repository']}/{args.get('branch')} "
        f"({short_hash(args['commit_hash'])})"
    )


@registry.tool("journal_get_entry", "journal", "Fetch one journal entry by commit hash")
async def journal_get_entry(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "commit_hash")
    data = await ctx.services.get(
        f"/api/entries/{args['commit_hash']}", error_message="Entry not found"
    )
    return pretty_json(data)


@registry.tool("journal_regenerate_entry", "journal", "Regenerate a journal entry with new context")
async def journal_regenerate_entry(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "commit_hash")
    await ctx.services.post(
        "/api/kronus/generate",
        json={
            "commit_hash": args["commit_hash"],
            "new_context": args.get("new_context"),
            "edit_mode": True,
        },
    )
    return f"Regenerated entry {short_hash(args['commit_hash'])}"


@registry.tool("journal_list_by_repository", "journal", "List entries of a repository")
async def journal_list_by_repository(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "repository")
    data = await ctx.services.get(
        "/api/entries",
        params={
            "repository": args["repository"],
            "limit": args.get("limit") or 20,
            "offset": args.get("offset") or 0,
        },
    )
    return (
        f"Found {data.get('total', 0)} entries for {args['repository']}:\n"
        f"{pretty_json(data.get('entries', []))}"
    )


@registry.tool("journal_list_repositories", "journal", "List journaled repositories")
async def journal_list_repositories(ctx: ToolContext, args: dict[str, Any]) -> str:
    data = await ctx.services.get("/api/repositories")
    return f"Repositories: {pretty_json(data)}"


@registry.tool("journal_edit_entry", "journal", "Edit fields of a journal entry")
async def journal_edit_entry(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "commit_hash")
    updates = {k: v for k, v in args.items() if k != "commit_hash"}
    await ctx.services.patch(
        f"/api/entries/{args['commit_hash']}", json=updates, error_message="Update failed"
    )
    return f"Updated entry {short_hash(args['commit_hash'])}"


@registry.tool(
    "journal_upsert_project_summary", "journal", "Create or update a project summary"
)
async def journal_upsert_project_summary(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "repository")
    data = await ctx.services.put(
        f"/api/repositories/{quote(str(args['repository']), safe='')}",
        json={
            "git_url": args.get("git_url"),
            "summary": args.get("summary"),
            "purpose": args.get("purpose"),
            "architecture": args.get("architecture"),
            "key_decisions": args.get("key_decisions"),
            "technologies": args.get("technologies"),
            "status": args.get("status"),
        },
        error_message="Failed to upsert project summary",
    )
    verb = "created" if data.get("created") else "updated"
    return f"✅ Project summary for **{args['repository']}** has been {verb}"


@registry.tool("journal_get_project_summary", "journal", "Fetch the summary of one project")
async def journal_get_project_summary(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "repository")
    data = await ctx.services.get(
        "/api/entries", params={"repository": args["repository"], "summary": "true"}
    )
    return pretty_json(data)


@registry.tool("journal_list_project_summaries", "journal", "List every project summary")
async def journal_list_project_summaries(ctx: ToolContext, args: dict[str, Any]) -> str:
    data = await ctx.services.get("/api/repositories", params={"summaries": "true"})
    return pretty_json(data)
