"""
Tool definitions exposed to the LLM layer.

The names and argument shapes are a stable contract: an agent prompt written
against ``transferSOL`` / ``transferETH`` / ``getBalance`` / ``swapTokens``
keeps working across releases.
"""

import json
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# =============================================================================
# Tool Calling Models
# =============================================================================

class ToolParameterType(str, Enum):
    """Supported parameter types for tool definitions"""
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    OBJECT = "object"


class ToolParameter(BaseModel):
    """Definition of a single tool parameter"""
    name: str
    type: ToolParameterType
    description: str
    required: bool = True
    enum: Optional[List[str]] = None


class ToolDefinition(BaseModel):
    """Definition of a tool that can be called by the LLM"""
    name: str
    description: str
    parameters: List[ToolParameter] = Field(default_factory=list)

    def _properties(self, upper: bool = False) -> Dict[str, Any]:
        properties = {}
        for param in self.parameters:
            prop: Dict[str, Any] = {
                "type": param.type.value.upper() if upper else param.type.value,
                "description": param.description,
            }
            if param.enum:
                prop["enum"] = param.enum
            properties[param.name] = prop
        return properties

    def _required(self) -> List[str]:
        return [param.name for param in self.parameters if param.required]

    def to_anthropic_format(self) -> Dict[str, Any]:
        """Convert to Anthropic's tool schema format"""
        return {
            "name": self.name,
            "description": self.description,
            "input_schema": {
                "type": "object",
                "properties": self._properties(),
                "required": self._required(),
            },
        }

    def to_gemini_format(self) -> Dict[str, Any]:
        """Convert to a Gemini function declaration"""
        declaration: Dict[str, Any] = {
            "name": self.name,
            "description": self.description,
            "parameters": {
                "type": "OBJECT",
                "properties": self._properties(upper=True),
            },
        }
        required = self._required()
        if required:
            declaration["parameters"]["required"] = required
        return declaration


class ToolCall(BaseModel):
    """A tool call requested by the LLM"""
    id: str
    name: str
    arguments: Dict[str, Any] = Field(default_factory=dict)


class ToolResult(BaseModel):
    """Result of executing a tool"""
    tool_call_id: str
    result: Any
    error: Optional[str] = None

    def to_anthropic_format(self) -> Dict[str, Any]:
        """Convert to Anthropic's tool_result format"""
        content = self.error if self.error else self.result
        if not isinstance(content, str):
            content = json.dumps(content)
        return {
            "type": "tool_result",
            "tool_use_id": self.tool_call_id,
            "content": content,
            "is_error": self.error is not None,
        }


# =============================================================================
# Session wallet tools
# =============================================================================

class ToolName(str, Enum):
    """Closed tool vocabulary."""
    TRANSFER_SOL = "transferSOL"
    TRANSFER_ETH = "transferETH"
    GET_BALANCE = "getBalance"
    SWAP_TOKENS = "swapTokens"


_REASON_DESCRIPTION = (
    "A brief reason for this transaction, inferred from the conversation context. "
    "Do NOT ask the user."
)

TRANSFER_SOL_TOOL = ToolDefinition(
    name=ToolName.TRANSFER_SOL.value,
    description=(
        "Transfer SOL from the session wallet to another address. Use this when the user "
        "wants to send or transfer funds on Solana. You MUST provide a clear reason."
    ),
    parameters=[
        ToolParameter(name="toAddress", type=ToolParameterType.STRING,
                      description="The destination Solana wallet address"),
        ToolParameter(name="amount", type=ToolParameterType.NUMBER,
                      description="The amount of SOL to transfer"),
        ToolParameter(name="reason", type=ToolParameterType.STRING,
                      description=_REASON_DESCRIPTION, required=False),
    ],
)

TRANSFER_ETH_TOOL = ToolDefinition(
    name=ToolName.TRANSFER_ETH.value,
    description=(
        "Transfer ETH from the session wallet to another address. Use this when the user "
        "wants to send or transfer funds on Ethereum or Sepolia. You MUST provide a clear reason."
    ),
    parameters=[
        ToolParameter(name="toAddress", type=ToolParameterType.STRING,
                      description="The destination Ethereum wallet address (0x...)"),
        ToolParameter(name="amount", type=ToolParameterType.NUMBER,
                      description="The amount of ETH to transfer"),
        ToolParameter(name="reason", type=ToolParameterType.STRING,
                      description=_REASON_DESCRIPTION, required=False),
    ],
)

GET_BALANCE_TOOL = ToolDefinition(
    name=ToolName.GET_BALANCE.value,
    description=(
        "Get the current balance of the session wallet for both Solana (SOL) and Ethereum (ETH). "
        "Use this when the user asks 'how much do I have?' or 'what is my balance?'."
    ),
)

SWAP_TOKENS_TOOL = ToolDefinition(
    name=ToolName.SWAP_TOKENS.value,
    description=(
        "Swap tokens on Solana using Jupiter Aggregator. Use this when the user wants to "
        "exchange one token for another (e.g. 'Buy USDC with SOL', 'Swap JUP to SOL')."
    ),
    parameters=[
        ToolParameter(name="inputToken", type=ToolParameterType.STRING,
                      description="The ticker symbol of the token to sell (e.g. 'SOL', 'USDC')."),
        ToolParameter(name="outputToken", type=ToolParameterType.STRING,
                      description="The ticker symbol of the token to buy (e.g. 'USDC', 'SOL')."),
        ToolParameter(name="amount", type=ToolParameterType.NUMBER,
                      description="The amount of input token to swap (float)."),
        ToolParameter(name="reason", type=ToolParameterType.STRING,
                      description="Inferred reason for the swap (e.g. 'User requested swap'). Do NOT ask user.",
                      required=False),
    ],
)

ALL_TOOLS: List[ToolDefinition] = [
    TRANSFER_SOL_TOOL,
    TRANSFER_ETH_TOOL,
    GET_BALANCE_TOOL,
    SWAP_TOKENS_TOOL,
]


def get_tool_definitions(format: str = "anthropic") -> List[Dict[str, Any]]:
    """All session wallet tools in the given provider format."""
    if format == "anthropic":
        return [tool.to_anthropic_format() for tool in ALL_TOOLS]
    if format == "gemini":
        return [tool.to_gemini_format() for tool in ALL_TOOLS]
    raise ValueError(f"Unknown tool format: {format}")


__all__ = [
    "ToolParameterType",
    "ToolParameter",
    "ToolDefinition",
    "ToolCall",
    "ToolResult",
    "ToolName",
    "TRANSFER_SOL_TOOL",
    "TRANSFER_ETH_TOOL",
    "GET_BALANCE_TOOL",
    "SWAP_TOKENS_TOOL",
    "ALL_TOOLS",
    "get_tool_definitions",
]
