"""
Token Budget Estimator

Approximates the token cost of the composed system context plus the
conversation transcript, and decides when to warn and when to offer
compression.

Conversation tokens use a fixed characters-per-token ratio over text parts
only. This is an approximation; no tokenizer is involved.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel

from .models import ContextConfig, Message

DEFAULT_CHARS_PER_TOKEN = 4


class ContextStats(BaseModel):
    """Per-section token costs reported by the stats collaborator."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore"
    )

    base_tokens: int = 6000
    writings_tokens: int = 0
    portfolio_projects_tokens: int = 0
    skills_tokens: int = 0
    work_experience_tokens: int = 0
    education_tokens: int = 0
    journal_entries_tokens: int = 0
    linear_projects_tokens: int = 0
    linear_projects_tokens_all: int = 0
    linear_issues_tokens: int = 0
    linear_issues_tokens_all: int = 0
    slite_notes_tokens: int = 0


FALLBACK_CONTEXT_STATS = ContextStats(
    base_tokens=6000,
    writings_tokens=50000,
    portfolio_projects_tokens=3000,
    skills_tokens=2000,
    work_experience_tokens=1500,
    education_tokens=500,
    journal_entries_tokens=15000,
)

# ContextConfig field -> ContextStats field
_SECTION_COSTS = {
    "writings": "writings_tokens",
    "portfolio_projects": "portfolio_projects_tokens",
    "skills": "skills_tokens",
    "work_experience": "work_experience_tokens",
    "education": "education_tokens",
    "journal_entries": "journal_entries_tokens",
    "slite_notes": "slite_notes_tokens",
}


class TokenBudget(BaseModel):
    context_tokens: int
    conversation_tokens: int
    total_tokens: int
    limit: int
    usage_ratio: float
    warning: bool
    compression_eligible: bool

    @property
    def usage_percent(self) -> float:
        return round(self.usage_ratio * 100, 1)


def estimate_text_tokens(text: str, chars_per_token: float = DEFAULT_CHARS_PER_TOKEN) -> int:
    return round(len(text) / chars_per_token)


class TokenBudgetEstimator:
    """Computes usage ratios against the active model's context ceiling."""

    def __init__(
        self,
        context_limits: Mapping[str, int],
        *,
        default_limit: int = 200000,
        warning_threshold: float = 0.7,
        compress_threshold: float = 0.85,
        chars_per_token: float = DEFAULT_CHARS_PER_TOKEN,
    ) -> None:
        if warning_threshold >= compress_threshold:
            raise ValueError("warning_threshold must be lower than compress_threshold")
        self.context_limits = dict(context_limits)
        self.default_limit = default_limit
        self.warning_threshold = warning_threshold
        self.compress_threshold = compress_threshold
        self.chars_per_token = chars_per_token

    def limit_for(self, model: str) -> int:
        return self.context_limits.get(model, self.default_limit)

    def estimate_context_tokens(self, config: ContextConfig, stats: ContextStats) -> int:
        """Base cost plus the cost of every enabled section."""
        total = stats.base_tokens
        for section, cost_field in _SECTION_COSTS.items():
            if getattr(config, section):
                total += getattr(stats, cost_field)

        include_completed = config.linear_include_completed
        if config.linear_projects:
            total += (
                stats.linear_projects_tokens_all
                if include_completed
                else stats.linear_projects_tokens
            )
        if config.linear_issues:
            total += (
                stats.linear_issues_tokens_all
                if include_completed
                else stats.linear_issues_tokens
            )
        return total

    def estimate_conversation_tokens(self, messages: Iterable[Message]) -> int:
        text = "".join(message.text() for message in messages)
        return estimate_text_tokens(text, self.chars_per_token)

    def estimate(
        self,
        config: ContextConfig,
        messages: Iterable[Message],
        model: str,
        stats: ContextStats = FALLBACK_CONTEXT_STATS,
    ) -> TokenBudget:
        """
        Estimate the full budget for one request.

        Args:
            config: Locked (or, before the first message, live) context config
            messages: Full transcript
            model: Active model name, selects the context ceiling
            stats: Per-section costs from the stats collaborator

        Returns:
            TokenBudget with usage ratio and threshold signals
        """
        context_tokens = self.estimate_context_tokens(config, stats)
        conversation_tokens = self.estimate_conversation_tokens(messages)
        total = context_tokens + conversation_tokens
        limit = self.limit_for(model)
        ratio = total / limit
        return TokenBudget(
            context_tokens=context_tokens,
            conversation_tokens=conversation_tokens,
            total_tokens=total,
            limit=limit,
            usage_ratio=ratio,
            warning=ratio >= self.warning_threshold,
            compression_eligible=ratio >= self.compress_threshold,
        )
