"""
Intent Dispatcher

Maps LLM tool calls onto session operations:

    transferSOL / transferETH  -> SessionManager.transfer
    getBalance                 -> SessionManager.balances
    swapTokens                 -> JupiterSwapService quote, then a guarded
                                  SessionManager.transfer of the swap payload

Every call produces exactly one ``ToolOutcome`` with a human-readable
``detail`` for the chat; failures never escape as exceptions.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Mapping, Optional, assert_never

from ..chain_types import Chain, native_symbol
from ..errors import (
    SecurityRejection,
    SessionWalletError,
    SwapQuoteError,
    ValidationError,
)
from ..execution.amounts import format_amount
from ..execution.models import PrebuiltTransaction
from ..policy.models import TransferRequest
from ..swap.jupiter import JupiterSwapService
from ..swap.models import JUPITER_PROGRAM_ID, resolve_token
from ..wallet.session_manager import SessionManager
from .intents import BalanceIntent, Intent, NoHandler, SwapIntent, TransferIntent, parse_intent
from .tools import ToolCall, ToolResult

logger = logging.getLogger(__name__)


class OutcomeStatus(str, Enum):
    APPROVED = "approved"
    REJECTED = "rejected"
    ERROR = "error"


@dataclass
class ToolOutcome:
    status: OutcomeStatus
    detail: str
    data: Dict[str, Any] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return self.status == OutcomeStatus.APPROVED

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status.value, "detail": self.detail, "data": self.data}


class IntentDispatcher:
    """
    Usage:
        dispatcher = IntentDispatcher(manager, swap_service)
        outcome = await dispatcher.dispatch("transferSOL", {"toAddress": "...", "amount": 0.01})
    """

    def __init__(self, manager: SessionManager, swap_service: Optional[JupiterSwapService] = None):
        self._manager = manager
        self._swap = swap_service

    async def dispatch(self, tool_name: str, args: Optional[Mapping[str, Any]] = None) -> ToolOutcome:
        try:
            intent = parse_intent(tool_name, args)
            return await self._execute(intent)
        except SecurityRejection as e:
            logger.info(f"{tool_name} blocked: {e.message}")
            return ToolOutcome(OutcomeStatus.REJECTED, e.message, data=e.rejection.to_dict())
        except (ValidationError, SwapQuoteError) as e:
            logger.info(f"{tool_name} rejected: {e.message}")
            return ToolOutcome(OutcomeStatus.REJECTED, f"Request rejected: {e.message}", data=e.to_dict())
        except SessionWalletError as e:
            logger.warning(f"{tool_name} failed: {e.message}")
            return ToolOutcome(OutcomeStatus.ERROR, f"Tool Error: {e.message}", data=e.to_dict())
        except Exception as e:  # noqa: BLE001
            logger.error(f"{tool_name} crashed: {e}", exc_info=True)
            return ToolOutcome(OutcomeStatus.ERROR, f"Tool Error: {e}")

    async def handle_call(self, call: ToolCall) -> ToolResult:
        """Run an LLM tool call and wrap the outcome for the provider."""
        outcome = await self.dispatch(call.name, call.arguments)
        if outcome.status == OutcomeStatus.ERROR:
            return ToolResult(tool_call_id=call.id, result=outcome.to_dict(), error=outcome.detail)
        return ToolResult(tool_call_id=call.id, result=outcome.to_dict())

    async def _execute(self, intent: Intent) -> ToolOutcome:
        if isinstance(intent, TransferIntent):
            return await self._transfer(intent)
        elif isinstance(intent, BalanceIntent):
            return await self._balance()
        elif isinstance(intent, SwapIntent):
            return await self._swap_tokens(intent)
        elif isinstance(intent, NoHandler):
            logger.warning(f"No handler for tool {intent.tool_name}")
            return ToolOutcome(OutcomeStatus.ERROR, f"Error: No handler for tool {intent.tool_name}")
        else:
            assert_never(intent)

    async def _transfer(self, intent: TransferIntent) -> ToolOutcome:
        receipt = await self._manager.transfer(TransferRequest(
            chain=intent.chain,
            recipient=intent.recipient,
            amount=intent.amount,
            reason=intent.reason,
        ))
        symbol = native_symbol(intent.chain)
        label = "Sig" if intent.chain == Chain.SOLANA else "Hash"
        return ToolOutcome(
            OutcomeStatus.APPROVED,
            f"{symbol} Transfer successful! {format_amount(receipt.amount)} {symbol} to "
            f"{receipt.to_address}. {label}: {receipt.tx_id}",
            data=receipt.to_dict(),
        )

    async def _balance(self) -> ToolOutcome:
        balances = await self._manager.balances()
        parts = []
        for chain, balance in balances.items():
            symbol = native_symbol(chain)
            parts.append(f"{format_amount(balance.amount)} {symbol}" if balance else f"{symbol} unavailable")
        return ToolOutcome(
            OutcomeStatus.APPROVED,
            "Session balance: " + ", ".join(parts),
            data={chain.value: (b.to_dict() if b else None) for chain, b in balances.items()},
        )

    async def _swap_tokens(self, intent: SwapIntent) -> ToolOutcome:
        if self._swap is None:
            raise ValidationError("Token swaps are not enabled for this session")
        input_token = resolve_token(intent.input_token)
        output_token = resolve_token(intent.output_token)
        if not (input_token.is_sol or output_token.is_sol):
            raise ValidationError(
                f"Swaps must buy or sell SOL so they count against the session limit "
                f"({input_token.symbol} -> {output_token.symbol})"
            )

        owner = self._manager.address(Chain.SOLANA)
        quote = await self._swap.get_quote(input_token.symbol, output_token.symbol, intent.amount)
        swap_tx = await self._swap.get_swap_transaction(quote, owner)

        summary = (
            f"{format_amount(quote.input_amount)} {input_token.symbol} -> "
            f"{format_amount(quote.output_amount)} {output_token.symbol}"
        )
        receipt = await self._manager.transfer(TransferRequest(
            chain=Chain.SOLANA,
            recipient=JUPITER_PROGRAM_ID,
            amount=quote.sol_value,
            reason=intent.reason or f"Swap {summary}",
            payload=PrebuiltTransaction(
                serialized=swap_tx.serialized,
                last_valid_block_height=swap_tx.last_valid_block_height,
                description=summary,
            ),
        ))
        return ToolOutcome(
            OutcomeStatus.APPROVED,
            f"Swap successful! {summary}. Sig: {receipt.tx_id}",
            data={"quote": quote.to_dict(), "receipt": receipt.to_dict()},
        )


__all__ = ["OutcomeStatus", "ToolOutcome", "IntentDispatcher"]
