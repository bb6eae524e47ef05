import io
import json
import logging

from veritaslog_app.logging_config import AuditLogger, StructuredFormatter, configure_logging, set_request_id


def capture(name):
    stream = io.StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    logger = logging.getLogger(name)
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    return stream


def test_audit_event_is_one_json_line():
    stream = capture("test.audit.registered")
    set_request_id("req-1")
    AuditLogger("test.audit.registered").log_registered("blob-1", "ab" * 32, 512, 2, log_id=7)

    entry = json.loads(stream.getvalue().strip())
    assert entry["event_type"] == "LOG_REGISTERED"
    assert entry["request_id"] == "req-1"
    assert entry["commitment"] == "ab" * 8
    assert entry["log_id"] == 7
    assert entry["level"] == "INFO"
    assert entry["message"].startswith("LOG_REGISTERED: ")


def test_mismatch_logged_as_warning():
    stream = capture("test.audit.verify")
    AuditLogger("test.audit.verify").verification_result("upload", False, "a" * 64, "b" * 64)

    entry = json.loads(stream.getvalue().strip())
    assert entry["level"] == "WARNING"
    assert entry["matched"] is False
    assert "where" in entry


def test_set_request_id_generates_when_blank():
    generated = set_request_id("  ")
    assert generated
    assert generated != "  "
    assert set_request_id("x" * 100) == "x" * 64


def test_configure_logging_replaces_handlers():
    root = logging.getLogger()
    saved = (root.level, list(root.handlers))
    try:
        stream = io.StringIO()
        configure_logging("warning", json_format=False, stream=stream)
        assert len(root.handlers) == 1
        assert root.level == logging.WARNING
        logging.getLogger("veritaslog.test").warning("hello")
        assert "WARNING [veritaslog.test] hello" in stream.getvalue()
    finally:
        for handler in list(root.handlers):
            root.removeHandler(handler)
        root.setLevel(saved[0])
        for handler in saved[1]:
            root.addHandler(handler)
