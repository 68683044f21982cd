import logging

import pytest
from starlette.requests import Request

from session_wallet.logging_config import REDACTED, redact_key_material, setup_logging
from session_wallet.middleware.logging_middleware import route_template


@pytest.fixture(autouse=True)
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_key_material_is_masked():
    event = {"event": "session_restored", "secret_key": "5Kd3...", "chain": "solana"}
    out = redact_key_material(None, "info", event)
    assert out["secret_key"] == REDACTED
    assert out["chain"] == "solana"


def test_setup_logging_installs_single_handler():
    setup_logging("warning", json_logs=True)
    setup_logging("warning", json_logs=True)

    root = logging.getLogger()
    assert len(root.handlers) == 1
    assert root.level == logging.WARNING
    assert logging.getLogger("httpx").level == logging.WARNING


def test_unknown_level_falls_back_to_info():
    setup_logging("verbose", json_logs=False)
    assert logging.getLogger().level == logging.INFO


def test_route_template_falls_back_to_raw_path():
    request = Request({"type": "http", "method": "GET", "path": "/session/transfers/solana/abc", "headers": []})
    assert route_template(request) == "/session/transfers/solana/abc"
