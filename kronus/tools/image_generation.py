"""Image generation tool; every generated image is persisted to the media library."""

from __future__ import annotations

import logging
import time
from typing import Any

import httpx

from kronus.tool_router import ToolContext
from kronus.tools.service_client import ToolServiceError

from .base import registry, require
from .media import store_media_asset

logger = logging.getLogger(__name__)

DEFAULT_IMAGE_MODEL = "black-forest-labs/flux-2-pro"


@registry.tool(
    "replicate_generate_image", "image_generation", "Generate images from a prompt"
)
async def replicate_generate_image(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "prompt")
    data = await ctx.services.post(
        "/api/replicate/generate-image",
        json={
            "prompt": args["prompt"],
            "model": args.get("model") or DEFAULT_IMAGE_MODEL,
            "width": args.get("width") or 1024,
            "height": args.get("height") or 1024,
            "num_outputs": args.get("num_outputs") or 1,
            "guidance_scale": args.get("guidance_scale"),
            "num_inference_steps": args.get("num_inference_steps"),
        },
        error_message="Failed to generate image",
    )

    images: list[str] = data.get("images") or []
    if not images:
        raise ValueError(
            "No images were generated. Please try again with a different prompt."
        )
    model = data.get("model")

    saved: list[dict[str, Any]] = []
    timestamp = int(time.time() * 1000)
    for index, image_url in enumerate(images, start=1):
        try:
            asset = await store_media_asset(
                ctx.services,
                url=image_url,
                filename=f"generated-{timestamp}-{index}.png",
                description="AI-generated image",
                prompt=str(args["prompt"]),
                model=model,
                tags=["ai-generated"],
            )
        except (ToolServiceError, httpx.HTTPError) as e:
            logger.error(f"Failed to save generated image {index}: {e}")
            continue
        saved.append({"id": asset.get("id"), "filename": asset.get("filename"), "url": image_url})

    ctx.payload.update(
        {
            "images": images,
            "model": model,
            "prompt": data.get("prompt", args["prompt"]),
            "saved_asset_ids": [asset["id"] for asset in saved],
        }
    )

    if saved:
        asset_list = "\n".join(f"• ID {a['id']}: {a['filename']}" for a in saved)
        return (
            f"✅ Generated {len(images)} image(s) using {model}\n\n"
            f"📁 Saved to Media Library:\n{asset_list}\n\n"
            "You can edit metadata (description, tags, links) using the "
            "update_media tool with the asset ID."
        )

    image_list = "\n".join(f"{i}. {url}" for i, url in enumerate(images, start=1))
    return f"✅ Generated {len(images)} image(s) using {model}:\n{image_list}"
