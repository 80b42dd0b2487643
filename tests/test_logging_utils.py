import io
import json
import logging

from solfarm_sync.logging_utils import JsonFormatter, configure_logging, warn_once_per


def test_warn_once_per_rate_limits(caplog):
    log = logging.getLogger("solfarm_sync.test")
    with caplog.at_level(logging.WARNING):
        assert warn_once_per(5, "k", "first %s", 1, logger=log) is True
        assert warn_once_per(5, "k", "second", logger=log) is False
        assert warn_once_per(5, "other", "third", logger=log) is True
    assert [r.getMessage() for r in caplog.records] == ["first 1", "third"]


def test_json_formatter_includes_extras():
    record = logging.LogRecord("x", logging.INFO, __file__, 1, "hello %s", ("world",), None)
    record.farm_id = "F1"
    payload = json.loads(JsonFormatter().format(record))
    assert payload["msg"] == "hello world"
    assert payload["farm_id"] == "F1"


def test_configure_logging_replaces_its_handlers():
    root = logging.getLogger()
    before = list(root.handlers)
    stream = io.StringIO()
    try:
        configure_logging(level="DEBUG", stream=stream)
        handler = configure_logging(level="INFO", stream=stream)
        ours = [h for h in root.handlers if getattr(h, "_solfarm_handler", False)]
        assert ours == [handler]
        logging.getLogger("solfarm_sync.test").info("visible")
        assert "visible" in stream.getvalue()
    finally:
        for h in list(root.handlers):
            if h not in before:
                root.removeHandler(h)
