"""
Logging setup for the wallet service and CLI.

structlog renders both its own events and stdlib ``logging`` records (the core
modules log through ``logging.getLogger(__name__)``). Any event field whose
name looks like key material is masked before rendering, so a careless
``logger.info(..., secret=...)`` can never put a session key on disk.
"""

import logging
import sys
from typing import Any, MutableMapping, Optional

import structlog

from .config import settings

REDACTED = "[redacted]"
SENSITIVE_FIELDS = frozenset(
    {"secret", "secret_key", "private_key", "seed", "keypair", "session_secret", "signing_key"}
)

# RPC polling and balance refreshes are chatty at INFO
NOISY_LOGGERS = ("uvicorn.access", "httpcore", "httpx")


def redact_key_material(
    _logger: Any, _method: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    for field in event_dict.keys() & SENSITIVE_FIELDS:
        event_dict[field] = REDACTED
    return event_dict


def setup_logging(log_level: Optional[str] = None, json_logs: Optional[bool] = None) -> None:
    """Route structlog and stdlib logging through one stdout handler.

    Args:
        log_level: Overrides ``settings.log_level``.
        json_logs: Force JSON (True) or console (False) rendering. Defaults to
            ``settings.log_json``; DEBUG level always renders for the console.
    """
    level = logging.getLevelName((log_level or settings.log_level).upper())
    if not isinstance(level, int):
        level = logging.INFO

    if json_logs is None:
        json_logs = settings.log_json and level > logging.DEBUG

    pre_chain: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        redact_key_material,
    ]

    renderer: structlog.types.Processor
    if json_logs:
        pre_chain.append(structlog.processors.format_exc_info)
        renderer = structlog.processors.JSONRenderer()
    else:
        renderer = structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())

    structlog.configure(
        processors=[*pre_chain, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(
        structlog.stdlib.ProcessorFormatter(
            foreign_pre_chain=pre_chain,
            processors=[structlog.stdlib.ProcessorFormatter.remove_processors_meta, renderer],
        )
    )

    root = logging.getLogger()
    root.handlers[:] = [handler]
    root.setLevel(level)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
