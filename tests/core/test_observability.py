import json
import logging

from sshauditor.core.errors import ExternalServiceError, PersistenceError
from sshauditor.core.observability import JsonLogFormatter, Timer, log_event


class _Collect(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.records = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


def test_log_event_renders_payload_as_top_level_json_keys():
    logger = logging.getLogger("sshauditor.test.events")
    handler = _Collect()
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    try:
        log_event(logger, "discovery report", total=3, new=1, updated=0)
    finally:
        logger.removeHandler(handler)

    line = json.loads(JsonLogFormatter().format(handler.records[0]))
    assert line["event"] == "discovery report"
    assert line["message"] == "discovery report"
    assert (line["total"], line["new"], line["updated"]) == (3, 1, 0)
    assert line["level"] == "info"
    assert "payload" not in line


def test_timer_reports_milliseconds():
    with Timer() as timer:
        pass

    assert timer.duration_ms >= 0


def test_errors_carry_operation_context():
    assert str(PersistenceError("database is locked", operation="commit")) == "commit: database is locked"
    err = ExternalServiceError("HTTP 503", backend="splunk")
    assert str(err) == "HTTP 503"
    assert err.backend == "splunk"
