"""Tests for log formatting."""

import json
import logging

import pytest

from stackdriver_exporter.utils.logging import JSONFormatter, ServiceContextFilter, TextFormatter


def make_record(msg="scrape finished", **extra):
    record = logging.LogRecord("stackdriver_exporter.handler", logging.INFO, __file__, 10, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.mark.unit
class TestFormatters:
    """Test JSON and text formatters."""

    def test_json_contains_extra_fields(self):
        record = make_record(project_id="p1")
        ServiceContextFilter("stackdriver-exporter").filter(record)

        payload = json.loads(JSONFormatter().format(record))

        assert payload['message'] == "scrape finished"
        assert payload['level'] == "INFO"
        assert payload['logger'] == "stackdriver_exporter.handler"
        assert payload['project_id'] == "p1"
        assert payload['service'] == "stackdriver-exporter"
        assert 'msg' not in payload

    def test_text_format(self):
        line = TextFormatter(use_colors=False).format(make_record())

        assert line.endswith("[INFO] stackdriver_exporter.handler: scrape finished")
