"""Repository tools: documents (writings, prompts, notes), CV entries and portfolio projects."""

from __future__ import annotations

import re
from typing import Any
from urllib.parse import quote

from kronus.tool_router import ToolContext

from .base import registry, require


def slugify(title: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")


@registry.tool("repository_search_documents", "repository", "Search documents")
async def repository_search_documents(ctx: ToolContext, args: dict[str, Any]) -> str:
    data = await ctx.services.get(
        "/api/documents",
        params={key: args.get(key) or None for key in ("type", "search", "limit", "offset")},
        error_message="Failed to search documents",
    )
    documents = data.get("documents") or []
    if not documents:
        return "No documents found."

    lines = []
    for doc in documents:
        tags = ", ".join((doc.get("metadata") or {}).get("tags") or [])
        suffix = f" [{tags}]" if tags else ""
        lines.append(f"• [{doc.get('id')}] {doc.get('title')} ({doc.get('type')}){suffix}")

    total = data.get("total", len(documents))
    if data.get("has_more"):
        next_offset = (data.get("offset") or 0) + len(documents)
        pagination = (
            f"\n\nShowing {len(documents)} of {total} documents. "
            f"Use offset={next_offset} to see more."
        )
    else:
        pagination = f"\n\nFound {total} total document(s)."
    return f"Found {len(documents)} document(s):\n" + "\n".join(lines) + pagination


@registry.tool("repository_get_document", "repository", "Read one document by id or slug")
async def repository_get_document(ctx: ToolContext, args: dict[str, Any]) -> str:
    if args.get("id"):
        path = f"/api/documents/{args['id']}"
    elif args.get("slug"):
        path = f"/api/documents/{quote(str(args['slug']), safe='')}"
    else:
        raise ValueError("Either id or slug is required")

    data = await ctx.services.get(path, error_message="Document not found")
    doc = data.get("document") or data
    output = (
        f"**{doc.get('title')}** (ID: {doc.get('id')})\n"
        f"Type: {doc.get('type')}\nSlug: {doc.get('slug')}\n\n{doc.get('content', '')}"
    )

    media_assets = doc.get("media_assets") or []
    if media_assets:
        output += f"\n\n---\n**Attached Media ({len(media_assets)}):**\n"
        for media in media_assets:
            alt = media.get("alt") or media.get("description") or media.get("filename")
            output += f"\n- **{media.get('filename')}** (ID: {media.get('id')})\n"
            if media.get("description"):
                output += f"  Description: {media['description']}\n"
            output += f"  ![{alt}]({media.get('url')})\n"
    return output


@registry.tool("repository_create_document", "repository", "Create a document")
async def repository_create_document(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "title", "content")
    slug = slugify(str(args["title"]))
    metadata = {**(args.get("metadata") or {}), "tags": args.get("tags") or []}
    data = await ctx.services.post(
        "/api/documents",
        json={
            "title": args["title"],
            "slug": slug,
            "type": args.get("type") or "writing",
            "content": args["content"],
            "metadata": metadata,
        },
        error_message="Failed to create document",
    )
    return f'✅ Created document: "{args["title"]}"\nID: {data.get("id")}\nSlug: {slug}'


@registry.tool("repository_update_document", "repository", "Update a document")
async def repository_update_document(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "id")
    path = f"/api/documents/{args['id']}"
    # Metadata is merged, so the current document is read first
    existing = await ctx.services.get(path, error_message="Document not found")
    existing_meta = existing.get("metadata") or {}

    update: dict[str, Any] = {}
    if args.get("title"):
        update["title"] = args["title"]
    if args.get("content"):
        update["content"] = args["content"]
    if args.get("tags") is not None or args.get("metadata"):
        tags = args.get("tags")
        update["metadata"] = {
            **existing_meta,
            **(args.get("metadata") or {}),
            "tags": tags if tags is not None else existing_meta.get("tags"),
        }

    await ctx.services.put(path, json=update, error_message="Failed to update document")
    return f'✅ Updated document #{args["id"]}: "{existing.get("title")}"'


@registry.tool("repository_list_skills", "repository", "List CV skills")
async def repository_list_skills(ctx: ToolContext, args: dict[str, Any]) -> str:
    data = await ctx.services.get("/api/cv", error_message="Failed to list skills")
    skills = data.get("skills") or []
    if args.get("category"):
        skills = [s for s in skills if s.get("category") == args["category"]]
    if not skills:
        return "No skills found."
    lines = [
        f"• {s.get('name')} [{s.get('category')}] - {s.get('magnitude')}/5 - "
        f"{s.get('description') or 'No description'}"
        for s in skills
    ]
    return f"Found {len(skills)} skill(s):\n" + "\n".join(lines)


@registry.tool("repository_create_skill", "repository", "Add a CV skill")
async def repository_create_skill(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "name", "category")
    await ctx.services.post(
        "/api/cv/skills",
        json={**args, "tags": args.get("tags") or []},
        error_message="Failed to create skill",
    )
    return (
        f"✅ Created new skill: {args['name']} ({args['category']}) - "
        f"{args.get('magnitude')}/5"
    )


@registry.tool("repository_update_skill", "repository", "Update a CV skill")
async def repository_update_skill(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "id")
    await ctx.services.put(
        f"/api/cv/skills/{args['id']}",
        json={
            key: args.get(key)
            for key in ("name", "category", "magnitude", "description", "tags")
        },
        error_message="Failed to update skill",
    )
    return f"✅ Updated skill: {args['id']}"


@registry.tool("repository_list_experience", "repository", "List CV work experience")
async def repository_list_experience(ctx: ToolContext, args: dict[str, Any]) -> str:
    data = await ctx.services.get("/api/cv", error_message="Failed to list experience")
    experience = data.get("experience") or []
    if not experience:
        return "No work experience found."
    lines = [
        f"• {e.get('title')} at {e.get('company')} "
        f"({e.get('dateStart')} - {e.get('dateEnd') or 'Present'})\n  {e.get('tagline') or ''}"
        for e in experience
    ]
    return f"Found {len(experience)} experience(s):\n" + "\n".join(lines)


@registry.tool("repository_create_experience", "repository", "Add CV work experience")
async def repository_create_experience(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "title", "company")
    await ctx.services.post(
        "/api/cv/experience",
        json={**args, "achievements": args.get("achievements") or []},
        error_message="Failed to create experience",
    )
    return f"✅ Created new work experience: {args['title']} at {args['company']}"


@registry.tool("repository_update_experience", "repository", "Update CV work experience")
async def repository_update_experience(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "id")
    data = await ctx.services.put(
        f"/api/cv/experience/{args['id']}",
        json={
            key: args.get(key)
            for key in ("title", "company", "tagline", "achievements", "dateStart", "dateEnd")
        },
        error_message="Failed to update experience",
    )
    return f"✅ Updated experience: {data.get('title') or args['id']}"


@registry.tool("repository_list_education", "repository", "List CV education")
async def repository_list_education(ctx: ToolContext, args: dict[str, Any]) -> str:
    data = await ctx.services.get("/api/cv", error_message="Failed to list education")
    education = data.get("education") or []
    if not education:
        return "No education found."
    lines = [
        f"• {e.get('degree')} in {e.get('field')} - {e.get('institution')} "
        f"({e.get('dateStart')} - {e.get('dateEnd')})"
        for e in education
    ]
    return f"Found {len(education)} education(s):\n" + "\n".join(lines)


@registry.tool("repository_create_education", "repository", "Add CV education")
async def repository_create_education(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "degree", "institution")
    await ctx.services.post(
        "/api/cv/education",
        json={
            **args,
            "focusAreas": args.get("focusAreas") or [],
            "achievements": args.get("achievements") or [],
        },
        error_message="Failed to create education",
    )
    return (
        f"✅ Created new education: {args['degree']} in {args.get('field')} "
        f"at {args['institution']}"
    )


@registry.tool("repository_update_education", "repository", "Update CV education")
async def repository_update_education(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "id")
    data = await ctx.services.put(
        f"/api/cv/education/{args['id']}",
        json={
            key: args.get(key)
            for key in ("degree", "field", "institution", "tagline", "focusAreas", "achievements")
        },
        error_message="Failed to update education",
    )
    return f"✅ Updated education: {data.get('degree') or args['id']}"


PORTFOLIO_FIELDS = (
    "title",
    "category",
    "company",
    "role",
    "status",
    "featured",
    "technologies",
    "tags",
    "description",
    "image_url",
)


@registry.tool("repository_list_portfolio_projects", "repository", "List portfolio projects")
async def repository_list_portfolio_projects(ctx: ToolContext, args: dict[str, Any]) -> str:
    featured = args.get("featured")
    data = await ctx.services.get(
        "/api/portfolio-projects",
        params={
            "featured": str(featured).lower() if featured is not None else None,
            "status": args.get("status") or None,
        },
        error_message="Failed to list portfolio projects",
    )
    projects = data.get("projects") if isinstance(data, dict) else data
    projects = projects or []
    entries = [
        f"- **{p.get('title')}** ({p.get('category')}) {'⭐' if p.get('featured') else ''}\n"
        f"  Status: {p.get('status')} | Technologies: {', '.join(p.get('technologies') or [])}"
        for p in projects
    ]
    return f"📁 **Portfolio Projects** ({len(projects)} found)\n\n" + "\n\n".join(entries)


@registry.tool("repository_get_portfolio_project", "repository", "Read one portfolio project")
async def repository_get_portfolio_project(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "id")
    data = await ctx.services.get(
        f"/api/portfolio-projects/{args['id']}",
        error_message="Failed to get portfolio project",
    )
    lines = [
        f"📁 **{data.get('title')}**\n",
        f"**Category:** {data.get('category')}",
        f"**Status:** {data.get('status')} {'⭐ Featured' if data.get('featured') else ''}",
    ]
    if data.get("company"):
        lines.append(f"**Company:** {data['company']}")
    if data.get("role"):
        lines.append(f"**Role:** {data['role']}")
    lines.append(f"**Technologies:** {', '.join(data.get('technologies') or [])}")
    if data.get("tags"):
        lines.append(f"**Tags:** {', '.join(data['tags'])}")
    output = "\n".join(lines)
    if data.get("description"):
        output += f"\n\n---\n\n{data['description']}"
    return output


@registry.tool("repository_create_portfolio_project", "repository", "Create a portfolio project")
async def repository_create_portfolio_project(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "title", "category")
    body = {key: args.get(key) for key in PORTFOLIO_FIELDS}
    body.update(
        status=args.get("status") or "active",
        featured=bool(args.get("featured")),
        technologies=args.get("technologies") or [],
        tags=args.get("tags") or [],
    )
    await ctx.services.post(
        "/api/portfolio-projects",
        json=body,
        error_message="Failed to create portfolio project",
    )
    return f"✅ Created portfolio project: **{args['title']}** ({args['category']})"


@registry.tool("repository_update_portfolio_project", "repository", "Update a portfolio project")
async def repository_update_portfolio_project(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "id")
    data = await ctx.services.put(
        f"/api/portfolio-projects/{args['id']}",
        json={key: args.get(key) for key in PORTFOLIO_FIELDS},
        error_message="Failed to update portfolio project",
    )
    return f"✅ Updated portfolio project: **{data.get('title') or args['id']}**"
