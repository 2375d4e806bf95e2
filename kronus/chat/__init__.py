"""
Chat Session Module

Session orchestration split into focused components: context composition,
confirmation gating, tool execution and token budgeting.
"""
