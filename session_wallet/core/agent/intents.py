"""
Tool call → intent parsing.

Each tool in the closed vocabulary maps to one intent variant. Arguments are
validated here so that the spend guard only ever sees well-formed requests;
names outside the vocabulary become ``NoHandler``.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Mapping, Optional, Union

from ..chain_types import Chain
from ..errors import ValidationError
from ..execution.amounts import parse_amount, require_positive
from ...services.address import canonical_address
from .tools import ToolName


_TRANSFER_CHAINS = {
    ToolName.TRANSFER_SOL: Chain.SOLANA,
    ToolName.TRANSFER_ETH: Chain.ETHEREUM,
}


@dataclass(frozen=True)
class TransferIntent:
    chain: Chain
    recipient: str                              # Canonical form for the chain
    amount: Decimal
    reason: Optional[str] = None


@dataclass(frozen=True)
class BalanceIntent:
    pass


@dataclass(frozen=True)
class SwapIntent:
    input_token: str
    output_token: str
    amount: Decimal                             # Whole units of the input token
    reason: Optional[str] = None


@dataclass(frozen=True)
class NoHandler:
    tool_name: str


Intent = Union[TransferIntent, BalanceIntent, SwapIntent, NoHandler]


def parse_intent(tool_name: str, args: Optional[Mapping[str, Any]]) -> Intent:
    """
    Turn a raw tool call into a validated intent.

    Raises:
        ValidationError: Missing or malformed arguments for a known tool.
    """
    try:
        name = ToolName(tool_name)
    except ValueError:
        return NoHandler(tool_name=str(tool_name))

    args = args or {}
    if not isinstance(args, Mapping):
        raise ValidationError(f"Arguments for {name.value} must be an object")

    if name in _TRANSFER_CHAINS:
        chain = _TRANSFER_CHAINS[name]
        return TransferIntent(
            chain=chain,
            recipient=canonical_address(_required_str(args, "toAddress"), chain),
            amount=_amount(args),
            reason=_reason(args),
        )
    if name == ToolName.GET_BALANCE:
        return BalanceIntent()
    if name == ToolName.SWAP_TOKENS:
        return SwapIntent(
            input_token=_required_str(args, "inputToken").upper(),
            output_token=_required_str(args, "outputToken").upper(),
            amount=_amount(args),
            reason=_reason(args),
        )
    return NoHandler(tool_name=name.value)


def _required_str(args: Mapping[str, Any], field: str) -> str:
    value = args.get(field)
    if value is None:
        raise ValidationError(f"Missing required argument: {field}")
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"Argument {field} must be a non-empty string")
    return value.strip()


def _amount(args: Mapping[str, Any]) -> Decimal:
    if args.get("amount") is None:
        raise ValidationError("Missing required argument: amount")
    return require_positive(parse_amount(args["amount"]))


def _reason(args: Mapping[str, Any]) -> Optional[str]:
    reason = args.get("reason")
    if reason is None:
        return None
    reason = str(reason).strip()
    return reason or None


__all__ = [
    "TransferIntent",
    "BalanceIntent",
    "SwapIntent",
    "NoHandler",
    "Intent",
    "parse_intent",
]
