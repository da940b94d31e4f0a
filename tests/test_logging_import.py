"""
Logging: importable without circular imports, stderr only, JSON record shape.
"""

from __future__ import annotations

import json

import pytest


@pytest.fixture
def json_logs():
    from solxen_bridge.logging import configure_structlog

    configure_structlog(fmt="json")
    yield
    configure_structlog()


def test_logging_import():
    from solxen_bridge.logging import get_logger

    logger = get_logger("test")
    for method in ("debug", "info", "warning", "error"):
        assert hasattr(logger, method)
    logger.info("test_message", key="value")


def test_bind_obligation_logs_to_stderr(capsys):
    from solxen_bridge.logging import bind_obligation

    bind_obligation("B1").info("mint_tx_confirmed", tx_reference="sig")
    captured = capsys.readouterr()
    assert captured.out == ""
    assert "mint_tx_confirmed" in captured.err
    assert "B1" in captured.err


def test_json_record_shape(json_logs, capsys):
    from solxen_bridge.logging import bind_obligation

    bind_obligation("B7").warning("mint_submit_transient_error", tx_reference="sig-7", attempt=2)
    record = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
    assert record["event_type"] == "mint_submit_transient_error"
    assert record["burn_id"] == "B7"
    assert record["tx_reference"] == "sig-7"
    assert record["level"] == "warning"
    assert record["logger"] == "solxen_bridge.minter"
    assert "event" not in record
    assert record["timestamp"].endswith("Z")
