"""Media library tools and the shared asset persistence helper."""

from __future__ import annotations

import json
import logging
from typing import Any

from kronus.tool_router import ToolContext
from kronus.tools.service_client import ServiceClient

from .base import registry, require, short_hash

logger = logging.getLogger(__name__)


async def store_media_asset(
    services: ServiceClient,
    *,
    url: str,
    filename: str,
    description: str | None = None,
    prompt: str | None = None,
    model: str | None = None,
    tags: list[str] | None = None,
    commit_hash: str | None = None,
    document_id: int | None = None,
) -> dict[str, Any]:
    """Persist an image URL into the media library and return the stored asset."""
    return await services.post(
        "/api/media",
        json={
            "url": url,
            "filename": filename,
            "description": description,
            "prompt": prompt,
            "model": model,
            "tags": tags or [],
            "commit_hash": commit_hash,
            "document_id": document_id,
        },
        error_message="Failed to save image",
    )


def _link_labels(asset: dict[str, Any]) -> list[str]:
    links = []
    if asset.get("commit_hash"):
        links.append(f"Journal: {short_hash(asset['commit_hash'])}")
    if asset.get("document_id"):
        links.append(f"Document: #{asset['document_id']}")
    return links


@registry.tool("save_image", "media", "Save an image URL to the media library")
async def save_image(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "url", "filename")
    data = await store_media_asset(
        ctx.services,
        url=args["url"],
        filename=args["filename"],
        description=args.get("description"),
        prompt=args.get("prompt"),
        model=args.get("model"),
        tags=args.get("tags"),
        commit_hash=args.get("commit_hash"),
        document_id=args.get("document_id"),
    )
    links = _link_labels(data)
    link_info = f"\n• Linked to: {', '.join(links)}" if links else ""
    size_kb = round((data.get("file_size") or 0) / 1024)
    return (
        f"✅ Image saved to Media Library\n• ID: {data.get('id')}\n"
        f"• Filename: {data.get('filename')}\n• Size: {size_kb} KB{link_info}"
    )


@registry.tool("list_media", "media", "List media assets")
async def list_media(ctx: ToolContext, args: dict[str, Any]) -> str:
    data = await ctx.services.get(
        "/api/media",
        params={key: args.get(key) for key in ("commit_hash", "document_id", "limit")},
        error_message="Failed to list media",
    )
    assets = data.get("assets") or []
    if not assets:
        return "No media assets found."

    output = f"**Media Assets** ({data.get('total', len(assets))} found)\n\n"
    for asset in assets:
        links = _link_labels(asset)
        link_str = f" | {', '.join(links)}" if links else ""
        alt = asset.get("alt") or asset.get("description") or asset.get("filename")
        output += "---\n"
        output += f"**{asset.get('filename')}** (ID: {asset.get('id')}){link_str}\n"
        if asset.get("description"):
            output += f"{asset['description']}\n"
        output += f"\n![{alt}](/api/media/{asset.get('id')}/raw)\n\n"
    return output


@registry.tool("get_media", "media", "Read one media asset")
async def get_media(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "id")
    media = await ctx.services.get(f"/api/media/{args['id']}", error_message="Media not found")
    alt = media.get("alt") or media.get("description") or media.get("filename")

    output = f"**{media.get('filename')}** (ID: {media.get('id')})\n"
    for label, key in (("Description", "description"), ("Prompt", "prompt"), ("Model", "model")):
        if media.get(key):
            output += f"{label}: {media[key]}\n"
    tags = media.get("tags") or []
    if isinstance(tags, str):
        tags = json.loads(tags)
    if tags:
        output += f"Tags: {', '.join(tags)}\n"
    return output + f"\n![{alt}](/api/media/{media.get('id')}/raw)"


@registry.tool("update_media", "media", "Update media metadata and links")
async def update_media(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "id")
    await ctx.services.patch(
        f"/api/media/{args['id']}",
        json={
            key: args.get(key)
            for key in ("filename", "description", "tags", "commit_hash", "document_id")
        },
        error_message="Failed to update media",
    )
    labels = {
        "description": "description",
        "tags": "tags",
        "commit_hash": "journal link",
        "document_id": "document link",
        "filename": "filename",
    }
    modified = [label for key, label in labels.items() if args.get(key)]
    return (
        f"✅ Updated media asset #{args['id']}\n"
        f"Modified: {', '.join(modified) or 'no changes'}"
    )
