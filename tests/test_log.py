import json
import logging
import sys
from io import StringIO

from pool_health.log import LOGGER_NAME, setup_logger


def _lines(buffer):
    return [line for line in buffer.getvalue().splitlines() if line.strip()]


def test_logger_produces_json_output(mocker):
    buffer = StringIO()
    mocker.patch.object(sys, "stdout", buffer)

    logger = setup_logger("INFO")
    logging.getLogger(f"{LOGGER_NAME}.pipeline").debug("should not appear")
    logging.getLogger(f"{LOGGER_NAME}.pipeline").info("cycle done")

    lines = _lines(buffer)
    assert len(lines) == 1, f"Expected 1 log line, got {len(lines)}: {lines}"
    parsed = json.loads(lines[0])
    assert parsed["message"] == "cycle done"
    assert parsed["name"] == "pool_health.pipeline"
    for key in ("timestamp", "level", "name", "message"):
        assert key in parsed
    assert logger.level == logging.INFO


def test_setup_is_idempotent(mocker, tmp_path):
    mocker.patch.object(sys, "stdout", StringIO())
    setup_logger("debug", str(tmp_path / "logs" / "pool_health.log"))
    logger = setup_logger("warning", str(tmp_path / "logs" / "pool_health.log"))
    assert len(logger.handlers) == 2
    assert logger.level == logging.WARNING
    assert (tmp_path / "logs").is_dir()
    setup_logger("INFO")


def test_unknown_level_defaults_to_info(mocker):
    mocker.patch.object(sys, "stdout", StringIO())
    assert setup_logger("chatty").level == logging.INFO
