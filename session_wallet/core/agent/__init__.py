"""LLM tool surface: tool definitions, intent parsing and dispatch."""

from .dispatcher import IntentDispatcher, OutcomeStatus, ToolOutcome
from .intents import BalanceIntent, Intent, NoHandler, SwapIntent, TransferIntent, parse_intent
from .tools import ALL_TOOLS, ToolCall, ToolDefinition, ToolName, ToolResult, get_tool_definitions

__all__ = [
    "IntentDispatcher",
    "OutcomeStatus",
    "ToolOutcome",
    "BalanceIntent",
    "Intent",
    "NoHandler",
    "SwapIntent",
    "TransferIntent",
    "parse_intent",
    "ALL_TOOLS",
    "ToolCall",
    "ToolDefinition",
    "ToolName",
    "ToolResult",
    "get_tool_definitions",
]
