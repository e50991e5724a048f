"""
Tests for the structured logging setup and event log records.
"""

import json
import logging

import pytest

from aethercycle_core.events import EventLog
from aethercycle_core.logging_config import _HumanFormatter, _JSONFormatter, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


def _record(msg="hello", **extra):
    record = logging.LogRecord("aethercycle.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestFormatters:

    def test_json_formatter(self):
        line = _JSONFormatter().format(_record())
        data = json.loads(line)
        assert data["level"] == "INFO"
        assert data["logger"] == "aethercycle.test"
        assert data["msg"] == "hello"
        assert "event" not in data

    def test_json_formatter_lifts_event(self):
        line = _JSONFormatter().format(
            _record(event="FundsReleased", fields={"amount": 10 ** 24}))
        data = json.loads(line)
        assert data["event"] == "FundsReleased"
        assert data["fields"]["amount"] == 10 ** 24

    def test_human_formatter_plain(self):
        out = _HumanFormatter(colour=False).format(_record())
        assert "[INFO   ]" in out
        assert out.endswith("aethercycle.test: hello")
        assert "\033[" not in out


class TestSetupLogging:

    def test_unknown_format(self, restore_root_logger):
        with pytest.raises(ValueError):
            setup_logging(fmt="xml")

    def test_level_and_handlers(self, restore_root_logger):
        setup_logging(level="debug", fmt="json")
        root = restore_root_logger
        assert root.level == logging.DEBUG
        assert len(root.handlers) == 1
        assert isinstance(root.handlers[0].formatter, _JSONFormatter)
        assert logging.getLogger("aiohttp.access").level == logging.WARNING

    def test_events_reach_log_file(self, restore_root_logger, tmp_path):
        log_file = tmp_path / "logs" / "aethercycle.log"
        setup_logging(level="DEBUG", fmt="human", log_file=str(log_file))
        events = EventLog("engine", logging.getLogger("aethercycle.engine"))
        events.emit("CycleProcessed", 1_700_000_000, burned=5, caller="alice")
        for handler in restore_root_logger.handlers:
            handler.flush()
        lines = [json.loads(line) for line in log_file.read_text().splitlines()]
        record = [r for r in lines if r.get("event") == "CycleProcessed"][-1]
        assert record["logger"] == "aethercycle.engine"
        assert record["fields"] == {"burned": 5, "caller": "alice"}


class TestEventLog:

    def test_emit_and_query(self):
        log = EventLog("pool")
        log.emit("Staked", 1, account="a")
        log.emit("Withdrawn", 2, account="a")
        log.emit("Staked", 3, account="b")
        assert len(log) == 3
        assert [e["account"] for e in log.named("Staked")] == ["a", "b"]
        assert log.last("Withdrawn").timestamp == 2
        assert log.last().name == "Staked"
        assert [e.name for e in log.since(1)] == ["Withdrawn", "Staked"]
        assert log.recent(1)[0]["source"] == "pool"

    def test_bounded(self):
        log = EventLog("pool", max_events=2)
        for i in range(5):
            log.emit("Tick", i)
        assert [e.timestamp for e in log] == [3, 4]
