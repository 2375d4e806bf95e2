"""Slite notes tools."""

from __future__ import annotations

from typing import Any

from kronus.tool_router import ToolContext

from .base import registry, require

SLITE = "/api/integrations/slite"


@registry.tool("slite_search_notes", "slite", "Search Slite notes")
async def slite_search_notes(ctx: ToolContext, args: dict[str, Any]) -> str:
    data = await ctx.services.get(
        f"{SLITE}/search",
        params={
            "query": args.get("query") or "",
            "parentNoteId": args.get("parentNoteId"),
            "hitsPerPage": args.get("hitsPerPage"),
        },
        error_message="Slite search failed",
    )
    hits = data.get("hits") or []
    if not hits:
        return "No Slite notes found."
    lines = [f"• [{hit.get('id')}] {hit.get('title')}" for hit in hits]
    return f"Found {len(hits)} note(s):\n" + "\n".join(lines)


@registry.tool("slite_get_note", "slite", "Read one Slite note")
async def slite_get_note(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "noteId")
    note = await ctx.services.get(
        f"{SLITE}/notes/{args['noteId']}", error_message="Note not found"
    )
    return f"**{note.get('title')}** (ID: {note.get('id')})\n\n{note.get('content', '')}"


@registry.tool("slite_create_note", "slite", "Create a Slite note")
async def slite_create_note(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "title")
    note = await ctx.services.post(
        f"{SLITE}/notes",
        json={
            "title": args["title"],
            "markdown": args.get("markdown"),
            "parentNoteId": args.get("parentNoteId"),
        },
        error_message="Failed to create note",
    )
    return f'✅ Created Slite note: "{note.get("title", args["title"])}"\nID: {note.get("id")}'


@registry.tool("slite_update_note", "slite", "Update a Slite note")
async def slite_update_note(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "noteId")
    updates = {k: v for k, v in args.items() if k != "noteId"}
    note = await ctx.services.patch(
        f"{SLITE}/notes/{args['noteId']}", json=updates, error_message="Failed to update note"
    )
    return f"✅ Updated Slite note: {note.get('title', args['noteId'])}"
