"""Read-only GitHub/GitLab exploration tools."""

from __future__ import annotations

from typing import Any

from kronus.tool_router import ToolContext

from .base import registry, require


def _repo_params(args: dict[str, Any]) -> dict[str, Any]:
    require(args, "platform", "owner", "repo")
    return {
        "platform": args["platform"],
        "owner": args["owner"],
        "repo": args["repo"],
        "ref": args.get("ref") or "main",
    }


@registry.tool("git_parse_url", "git", "Split a repository URL into platform/owner/repo")
async def git_parse_url(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "url")
    data = await ctx.services.get(
        "/api/git", params={"action": "parse_url", "url": args["url"]}
    )
    return f"{data.get('platform')}: {data.get('owner')}/{data.get('repo')}"


@registry.tool("git_file_tree", "git", "List the files of a repository")
async def git_file_tree(ctx: ToolContext, args: dict[str, Any]) -> str:
    params = {"action": "file_tree", **_repo_params(args)}
    data = await ctx.services.get("/api/git", params=params)
    return (
        f"{params['owner']}/{params['repo']}@{params['ref']} "
        f"({data.get('count', 0)} files):\n{data.get('formatted', '')}"
    )


@registry.tool("git_read_file", "git", "Read one file from a repository")
async def git_read_file(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "path")
    params = {"action": "read_file", **_repo_params(args), "path": args["path"]}
    data = await ctx.services.get("/api/git", params=params)
    return f"**{data.get('path')}** @ {data.get('ref')}\n\n{data.get('content', '')}"
