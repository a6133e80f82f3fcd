"""
Unit tests for job payload parsing.
"""

from datetime import datetime

import pytest

from queuectl.errors import ParseError, ValidationError
from queuectl.types.job import ExecutionResult, parse_job_spec


class TestParseJobSpec:
    """Tests for parse_job_spec."""

    def test_full_payload(self):
        spec = parse_job_spec(
            '{"id": "job1", "command": "sleep 2", "max_retries": 5, '
            '"backoff_base": 3, "priority": 7, "run_at": "2030-01-01T10:00:00Z"}'
        )

        assert spec.id == "job1"
        assert spec.command == "sleep 2"
        assert spec.max_retries == 5
        assert spec.backoff_base == 3
        assert spec.priority == 7
        assert spec.run_at == datetime(2030, 1, 1, 10, 0, 0)

    def test_minimal_payload(self):
        spec = parse_job_spec({"command": "  echo hi  "})

        assert spec.id is None
        assert spec.command == "echo hi"
        assert spec.max_retries is None
        assert spec.backoff_base is None
        assert spec.priority == 0
        assert spec.run_at is None

    def test_offset_run_at_normalized_to_utc(self):
        spec = parse_job_spec({"command": "true", "run_at": "2030-01-01T12:00:00+02:00"})
        assert spec.run_at == datetime(2030, 1, 1, 10, 0, 0)

    def test_blank_id_treated_as_missing(self):
        assert parse_job_spec({"id": "  ", "command": "true"}).id is None

    def test_numeric_id_accepted(self):
        """JSON numbers in string fields are kept as their text."""
        spec = parse_job_spec('{"id": 5, "command": "true"}')
        assert spec.id == "5"

    def test_unknown_fields_ignored(self):
        spec = parse_job_spec({"command": "true", "state": "completed", "attempts": 9})
        assert spec.command == "true"

    @pytest.mark.parametrize("raw", ["not json", "{", "[1, 2]", '"command"'])
    def test_parse_error(self, raw: str):
        with pytest.raises(ParseError):
            parse_job_spec(raw)

    @pytest.mark.parametrize(
        "raw",
        [
            {},
            {"command": None},
            {"command": "   "},
            {"command": "true", "max_retries": 0},
            {"command": "true", "backoff_base": 0},
            {"command": "true", "priority": "high"},
        ],
    )
    def test_validation_error(self, raw: dict):
        with pytest.raises(ValidationError):
            parse_job_spec(raw)

    def test_parse_error_is_validation_error(self):
        assert issubclass(ParseError, ValidationError)


def test_execution_result_success():
    assert ExecutionResult(exit_code=0).success is True
    assert ExecutionResult(exit_code=1).success is False
