"""Linear issue-tracker tools."""

from __future__ import annotations

from typing import Any

from kronus.tool_router import ToolContext

from .base import pretty_json, registry, require

LINEAR = "/api/integrations/linear"
PROJECT_HEALTH = ("onTrack", "atRisk", "offTrack")


@registry.tool("linear_get_viewer", "linear", "Current Linear user")
async def linear_get_viewer(ctx: ToolContext, args: dict[str, Any]) -> str:
    return pretty_json(await ctx.services.get(f"{LINEAR}/viewer"))


@registry.tool("linear_list_issues", "linear", "List Linear issues with filters")
async def linear_list_issues(ctx: ToolContext, args: dict[str, Any]) -> str:
    params = {
        key: args.get(key)
        for key in ("assigneeId", "teamId", "projectId", "query", "limit")
        if args.get(key)
    }
    if args.get("showAll"):
        params["showAll"] = "true"
    data = await ctx.services.get(f"{LINEAR}/issues", params=params)
    issues = data.get("issues") or []
    return f"Found {len(issues)} issues:\n{pretty_json(issues)}"


@registry.tool("linear_list_projects", "linear", "List Linear projects")
async def linear_list_projects(ctx: ToolContext, args: dict[str, Any]) -> str:
    data = await ctx.services.get(
        f"{LINEAR}/projects", params={"teamId": args.get("teamId")}
    )
    projects = data.get("projects") or []
    return f"Found {len(projects)} projects:\n{pretty_json(projects)}"


@registry.tool("linear_create_issue", "linear", "Create a Linear issue")
async def linear_create_issue(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "title")
    result = await ctx.services.post(
        f"{LINEAR}/issues", json=args, error_message="Failed to create issue"
    )
    return (
        f"✅ Created issue: {result.get('identifier')} - {result.get('title')}\n"
        f"URL: {result.get('url')}"
    )


@registry.tool("linear_update_issue", "linear", "Update a Linear issue")
async def linear_update_issue(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "issueId")
    updates = {k: v for k, v in args.items() if k != "issueId"}
    result = await ctx.services.patch(
        f"{LINEAR}/issues/{args['issueId']}",
        json=updates,
        error_message="Failed to update issue",
    )
    return f"✅ Updated issue: {result.get('identifier', args['issueId'])}"


@registry.tool("linear_create_project", "linear", "Create a Linear project")
async def linear_create_project(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "name")
    result = await ctx.services.post(
        f"{LINEAR}/projects", json=args, error_message="Failed to create project"
    )
    return f"✅ Created project: {result.get('name')}\nID: {result.get('id')}"


@registry.tool("linear_update_project", "linear", "Update a Linear project")
async def linear_update_project(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "projectId")
    updates = {k: v for k, v in args.items() if k != "projectId"}
    result = await ctx.services.patch(
        f"{LINEAR}/projects/{args['projectId']}",
        json=updates,
        error_message="Failed to update project",
    )
    return f"✅ Updated project: {result.get('name', args['projectId'])}"


@registry.tool("linear_create_project_update", "linear", "Post a Linear project status update")
async def linear_create_project_update(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "projectId", "body", "health")
    if args["health"] not in PROJECT_HEALTH:
        raise ValueError(f"health must be one of {', '.join(PROJECT_HEALTH)}")
    result = await ctx.services.post(
        f"{LINEAR}/projects/{args['projectId']}/updates",
        json={"body": args["body"], "health": args["health"]},
        error_message="Failed to create project update",
    )
    health = result.get("health", args["health"])
    return f"✅ Posted project update ({health})\nURL: {result.get('url')}"


@registry.tool("linear_list_project_updates", "linear", "List status updates of a Linear project")
async def linear_list_project_updates(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "projectId")
    data = await ctx.services.get(f"{LINEAR}/projects/{args['projectId']}/updates")
    updates = data.get("updates") or []
    return f"Found {len(updates)} project updates:\n{pretty_json(updates)}"
