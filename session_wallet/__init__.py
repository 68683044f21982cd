"""Disposable, spend-limited session wallets for LLM agents."""

__version__ = "0.1.0"
