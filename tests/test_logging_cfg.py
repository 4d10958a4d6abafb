"""
Tests for structured logging helpers.
"""
import json
import logging

from quotekeeper.infra.logging_cfg import JsonFormatter, ThrottledFilter, build_logger, log_event


def _record(msg, level=logging.WARNING):
    return logging.LogRecord("quotebot", level, __file__, 1, msg, None, None)


class TestThrottledFilter:

    def test_repeats_of_noisy_event_suppressed(self):
        f = ThrottledFilter(cooldown_sec=30.0)
        msg = json.dumps({"event": "ws_reconnect_wait", "symbol": "BTC-USD"})
        assert f.filter(_record(msg))
        assert not f.filter(_record(msg))

    def test_other_events_pass(self):
        f = ThrottledFilter(cooldown_sec=30.0)
        msg = json.dumps({"event": "emergency_close"})
        assert f.filter(_record(msg))
        assert f.filter(_record(msg))

    def test_plain_text_passes(self):
        assert ThrottledFilter().filter(_record("Shutdown complete"))


def test_json_formatter_emits_one_json_object():
    line = JsonFormatter().format(_record('{"event": "cycle_end"}', logging.INFO))
    data = json.loads(line)
    assert data["level"] == "INFO"
    assert data["msg"] == '{"event": "cycle_end"}'


def test_log_event_serializes_decimals(caplog):
    from decimal import Decimal

    log = logging.getLogger("quotebot.test")
    with caplog.at_level(logging.INFO, logger="quotebot.test"):
        log_event(log, "quote_verified", price=Decimal("49890.00"))
    assert json.loads(caplog.records[-1].getMessage()) == {"event": "quote_verified", "price": "49890.00"}


def test_build_logger_is_idempotent(tmp_path):
    path = tmp_path / "bot.log"
    first = build_logger("quotebot.build", level="DEBUG", file_path=str(path), async_file=False)
    second = build_logger("quotebot.build", level="WARNING", file_path=str(path), async_file=False)
    assert first is second
    assert len(first.handlers) == 2
    assert first.level == logging.WARNING
    assert all(h.level == logging.WARNING for h in first.handlers)
    for h in first.handlers:
        h.close()
