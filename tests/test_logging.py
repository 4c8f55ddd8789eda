import json
import logging

import pytest

from sploit_core.obs.logging import JsonFormatter, setup_logging
from sploit_core.obs.tracing import trace_call


def _record(**extra):
    record = logging.LogRecord("sploit.scheduler.registry", logging.INFO, __file__, 1,
                               "Initiating scan", None, None)
    for k, v in extra.items():
        setattr(record, k, v)
    return record


def test_json_formatter_includes_structured_fields():
    out = json.loads(JsonFormatter().format(_record(scan_module="http_version", host="web1", port=80)))
    assert out["level"] == "info"
    assert out["logger"] == "sploit.scheduler.registry"
    assert out["msg"] == "Initiating scan"
    assert out["scan_module"] == "http_version"
    assert out["port"] == 80
    assert "session" not in out


def test_setup_logging_writes_file(tmp_path):
    log_file = tmp_path / "sploit.log"
    logger = setup_logging(str(log_file), debug=True)
    try:
        logging.getLogger("sploit.test").debug("hello")
        for h in logger.handlers:
            h.flush()
        lines = log_file.read_text().splitlines()
        assert json.loads(lines[-1])["msg"] == "hello"
        assert logger.level == logging.DEBUG
    finally:
        for h in list(logger.handlers):
            logger.removeHandler(h)
            h.close()


def test_trace_call_reraises_and_logs(caplog):
    @trace_call("job.fail")
    def fail():
        raise ValueError("nope")

    trace = logging.getLogger("sploit.trace")
    trace.addHandler(caplog.handler)
    try:
        with pytest.raises(ValueError):
            fail()
    finally:
        trace.removeHandler(caplog.handler)
    assert any(r.getMessage() == "error job.fail: nope" for r in caplog.records)


def test_trace_call_returns_value():
    @trace_call()
    def ok(x):
        return x * 2

    assert ok(21) == 42


def test_setup_logging_creates_log_directory(tmp_path):
    log_file = tmp_path / "var" / "log" / "sploit.log"
    logger = setup_logging(str(log_file))
    try:
        logging.getLogger("sploit.test").info("started")
        for h in logger.handlers:
            h.flush()
        assert log_file.exists()
    finally:
        for h in list(logger.handlers):
            logger.removeHandler(h)
            h.close()
