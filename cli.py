#!/usr/bin/env python3
"""Simple CLI for operating the session wallet locally"""

import argparse
import asyncio
import json
import sys
from typing import Any, Dict, Optional

from session_wallet.config import settings
from session_wallet.core.chain_types import Chain
from session_wallet.core.errors import SessionWalletError
from session_wallet.core.wallet.models import RefundStatus
from session_wallet.logging_config import setup_logging
from session_wallet.runtime import get_runtime, shutdown_runtime


def _warn_if_ephemeral() -> None:
    if not settings.has_secret_store_dir:
        print("⚠️  SECRET_STORE_DIR is not set: session keys live in memory and vanish on exit")


def print_balances(balances: Dict[Chain, Any]) -> None:
    print("\n💰 Session Balances")
    print("=" * 50)
    for chain, balance in balances.items():
        if balance is None:
            print(f"{chain.value:<10} unavailable")
        else:
            print(f"{chain.value:<10} {balance.amount:>20} {balance.symbol:<4} {balance.address}")


async def cli_keys():
    """Start or restore the session and print its addresses"""
    _warn_if_ephemeral()
    runtime = get_runtime()
    keys = await runtime.manager.start()

    print("\n🔑 Session Addresses")
    print("=" * 50)
    for chain, address in keys.addresses().items():
        print(f"{chain.value:<10} {address}")

    print("\nLimits:")
    for chain, usage in runtime.manager.usage().items():
        print(
            f"  {chain.value:<10} max {usage.max_total} total, "
            f"{usage.max_per_transaction} per tx, {usage.remaining} remaining"
        )


async def cli_balances():
    runtime = get_runtime()
    await runtime.manager.start()
    print_balances(await runtime.manager.balances())


async def cli_tool(name: str, raw_args: str):
    """Dispatch a tool call exactly as the LLM would"""
    try:
        args = json.loads(raw_args) if raw_args else {}
    except json.JSONDecodeError as e:
        print(f"❌ Arguments must be a JSON object: {e}")
        return

    runtime = get_runtime()
    await runtime.manager.start()
    outcome = await runtime.dispatcher.dispatch(name, args)

    icon = {"approved": "✅", "rejected": "🛑"}.get(outcome.status.value, "❌")
    print(f"{icon} {outcome.detail}")


async def cli_revoke(sol_owner: Optional[str], eth_owner: Optional[str]):
    """Refund residual balances to the owner wallets and erase the keys"""
    runtime = get_runtime()
    if sol_owner:
        runtime.funding_signer.set_owner(Chain.SOLANA, sol_owner)
    if eth_owner:
        runtime.funding_signer.set_owner(Chain.ETHEREUM, eth_owner)

    await runtime.manager.start()
    result = await runtime.manager.revoke()

    if result.already_revoked:
        print("Session was already revoked")
        return

    print("\n🧹 Session Revoked")
    print("=" * 50)
    for chain, refund in result.refunds.items():
        if refund.status == RefundStatus.REFUNDED:
            print(f"{chain.value:<10} refunded {refund.amount} to {refund.to_address} ({refund.tx_id})")
        elif refund.status == RefundStatus.SKIPPED:
            print(f"{chain.value:<10} skipped: {refund.detail}")
        else:
            print(f"{chain.value:<10} ❌ refund failed: {refund.detail}")


def cli_serve(host: str, port: int):
    import uvicorn
    uvicorn.run(
        "session_wallet.main:app",
        host=host,
        port=port,
        log_level=settings.log_level.lower(),
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Agent Session Wallet CLI")
    subparsers = parser.add_subparsers(dest="command")

    subparsers.add_parser("keys", help="Start or restore the session and show its addresses")
    subparsers.add_parser("balances", help="Show session balances")

    tool_parser = subparsers.add_parser("tool", help="Dispatch a tool call (e.g. transferSOL)")
    tool_parser.add_argument("name", help="Tool name: transferSOL, transferETH, getBalance, swapTokens")
    tool_parser.add_argument("args", nargs="?", default="", help="Tool arguments as a JSON object")

    revoke_parser = subparsers.add_parser("revoke", help="Refund residual funds and erase the session keys")
    revoke_parser.add_argument("--sol-owner", help="Solana address that receives the SOL refund")
    revoke_parser.add_argument("--eth-owner", help="Ethereum address that receives the ETH refund")

    serve_parser = subparsers.add_parser("serve", help="Run the HTTP API")
    serve_parser.add_argument("--host", default=settings.host)
    serve_parser.add_argument("--port", type=int, default=settings.port)

    return parser


async def run(args: argparse.Namespace) -> None:
    try:
        if args.command == "keys":
            await cli_keys()
        elif args.command == "balances":
            await cli_balances()
        elif args.command == "tool":
            await cli_tool(args.name, args.args)
        elif args.command == "revoke":
            await cli_revoke(args.sol_owner, args.eth_owner)
    except SessionWalletError as e:
        print(f"❌ Error: {e.message}")
        sys.exit(1)
    finally:
        await shutdown_runtime()


def main():
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    # Interactive commands print results; keep their log lines readable
    setup_logging(json_logs=None if args.command == "serve" else False)

    if args.command == "serve":
        cli_serve(args.host, args.port)
    else:
        asyncio.run(run(args))


if __name__ == "__main__":
    main()
