import json
import logging

import pytest
import structlog
from pydantic import ValidationError

from dsb.logs import configure_logging
from dsb.models import CycleReport, DomainRecord


@pytest.fixture
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    for handler in root.handlers[:]:
        if handler not in handlers:
            root.removeHandler(handler)
    root.setLevel(level)
    structlog.reset_defaults()


def test_json_lines_without_timestamp(restore_logging, capsys):
    configure_logging("INFO", timestamps=False, fmt="json")
    structlog.get_logger("dsb.test").warning("publish_failed", domain="svc.example.com")
    structlog.get_logger("dsb.test").debug("hidden")
    lines = [line for line in capsys.readouterr().err.splitlines() if line.strip()]
    assert len(lines) == 1
    entry = json.loads(lines[0])
    assert entry["event"] == "publish_failed"
    assert entry["domain"] == "svc.example.com"
    assert entry["level"] == "warning"
    assert "timestamp" not in entry


def test_timestamps_on_by_default(restore_logging, capsys):
    configure_logging("DEBUG", fmt="json")
    structlog.get_logger("dsb.test").debug("cycle_complete")
    entry = json.loads(capsys.readouterr().err.strip().splitlines()[-1])
    assert "timestamp" in entry


def test_domain_record_needs_a_target():
    with pytest.raises(ValidationError):
        DomainRecord(domain="a.example.org", container_id="c", container_name="c", node="n")
    record = DomainRecord(domain="a.example.org", https="h:1", container_id="c", container_name="web", node="n")
    assert record.describe() == "a.example.org -> https=h:1 (web)"


def test_cycle_report_failures():
    assert CycleReport().ok
    report = CycleReport(publish_failures=1, unpublish_failures=2)
    assert report.failures == 3
    assert CycleReport(aborted=True).failures == 1
