"""Perplexity-backed web search tools."""

from __future__ import annotations

from typing import Any

from kronus.tool_router import ToolContext

from .base import registry, require


@registry.tool("perplexity_search", "web_search", "Search the web")
async def perplexity_search(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "query")
    data = await ctx.services.post(
        "/api/perplexity",
        json={"action": "search", "query": args["query"]},
        error_message="Perplexity search failed",
    )
    return f"🔍 **Search Results**\n\n{data.get('result', '')}"


@registry.tool("perplexity_ask", "web_search", "Ask a question answered from the web")
async def perplexity_ask(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "question")
    data = await ctx.services.post(
        "/api/perplexity",
        json={"action": "ask", "question": args["question"]},
        error_message="Perplexity ask failed",
    )
    return f"💬 **Answer**\n\n{data.get('result', '')}"


@registry.tool("perplexity_research", "web_search", "Produce a researched report on a topic")
async def perplexity_research(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "topic")
    data = await ctx.services.post(
        "/api/perplexity",
        json={
            "action": "research",
            "topic": args["topic"],
            "strip_thinking": args.get("strip_thinking", True),
        },
        error_message="Perplexity research failed",
    )
    return f"📚 **Research Report**\n\n{data.get('result', '')}"


@registry.tool("perplexity_reason", "web_search", "Reason through a problem with web grounding")
async def perplexity_reason(ctx: ToolContext, args: dict[str, Any]) -> str:
    require(args, "problem")
    data = await ctx.services.post(
        "/api/perplexity",
        json={
            "action": "reason",
            "problem": args["problem"],
            "strip_thinking": args.get("strip_thinking", True),
        },
        error_message="Perplexity reasoning failed",
    )
    return f"🧠 **Reasoning Analysis**\n\n{data.get('result', '')}"
