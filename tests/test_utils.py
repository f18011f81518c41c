"""
Tests for gcplib/utils.py utility functions.

Covers:
- retry_with_backoff decorator
- setup_logging handler setup
- resource name helpers
- extra label parsing
- print_startup_summary output
- summarize_outcomes
"""
import logging
import os
import sys
import time
from unittest.mock import patch

import pytest

# Add parent directory to path for imports
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from gcplib.config import ExporterConfig
from gcplib.models import CollectionOutcome
from gcplib.utils import (
    bool_label,
    extra_label_values,
    last_segment,
    name_segment,
    parse_extra_labels,
    print_startup_summary,
    retry_with_backoff,
    setup_logging,
    summarize_outcomes,
    to_snake_case,
)

# =============================================================================
# retry_with_backoff Tests
# =============================================================================

class TestRetryWithBackoff:
    """Tests for retry_with_backoff decorator."""

    def test_success_first_try(self):
        calls = []

        @retry_with_backoff(max_attempts=3, min_wait=0, max_wait=0)
        def succeed():
            calls.append(1)
            return "ok"

        assert succeed() == "ok"
        assert len(calls) == 1

    def test_retries_then_succeeds(self):
        calls = []

        @retry_with_backoff(max_attempts=3, min_wait=0, max_wait=0)
        def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ConnectionError("flaky")
            return "ok"

        assert flaky() == "ok"
        assert len(calls) == 3

    def test_reraises_after_max_attempts(self):
        @retry_with_backoff(max_attempts=2, min_wait=0, max_wait=0)
        def always_fail():
            raise ConnectionError("down")

        with pytest.raises(ConnectionError):
            always_fail()

    def test_max_delay_stops_retries(self):
        calls = []

        @retry_with_backoff(max_attempts=10, min_wait=5, max_wait=5, max_delay=0.2)
        def always_fail():
            calls.append(1)
            raise ConnectionError("down")

        started = time.monotonic()
        with pytest.raises(ConnectionError):
            always_fail()
        assert time.monotonic() - started < 1.0
        assert len(calls) <= 2

    def test_only_listed_exceptions_retried(self):
        calls = []

        @retry_with_backoff(max_attempts=3, min_wait=0, max_wait=0, exceptions=(ConnectionError,))
        def wrong_error():
            calls.append(1)
            raise ValueError("not retryable")

        with pytest.raises(ValueError):
            wrong_error()
        assert len(calls) == 1


# =============================================================================
# setup_logging Tests
# =============================================================================

class TestSetupLogging:
    """Tests for setup_logging."""

    def test_single_handler(self):
        setup_logging("INFO")
        setup_logging("DEBUG")
        root = logging.getLogger()
        assert len(root.handlers) == 1
        assert root.level == logging.DEBUG

    def test_noisy_loggers_quieted(self):
        setup_logging("INFO")
        assert logging.getLogger("werkzeug").level == logging.WARNING

    def test_unknown_level_defaults_to_info(self):
        setup_logging("chatty")
        assert logging.getLogger().level == logging.INFO


# =============================================================================
# Resource Name Tests
# =============================================================================

class TestResourceNames:
    """Tests for last_segment and name_segment."""

    def test_last_segment(self):
        assert last_segment("projects/p/zones/us-central1-a") == "us-central1-a"
        assert last_segment("https://www.googleapis.com/compute/v1/zones/z1/") == "z1"
        assert last_segment("") == ""

    def test_name_segment(self):
        name = "projects/p/locations/us-east1/functions/f"
        assert name_segment(name, "locations") == "us-east1"
        assert name_segment(name, "projects") == "p"
        assert name_segment(name, "zones") == ""

    def test_name_segment_trailing_collection(self):
        assert name_segment("projects/p/locations", "locations") == ""

    def test_bool_label(self):
        assert bool_label(True) == "true"
        assert bool_label(False) == "false"
        assert bool_label(None) == "false"


# =============================================================================
# Extra Label Tests
# =============================================================================

class TestExtraLabels:
    """Tests for extra label parsing."""

    @pytest.mark.parametrize("value,expected", [
        ("team", "team"),
        ("costCenter", "cost_center"),
        ("team-name", "team_name"),
        ("HTTPPort", "h_t_t_p_port"),
        ("env.tier", "env_tier"),
    ])
    def test_to_snake_case(self, value, expected):
        assert to_snake_case(value) == expected

    def test_parse_extra_labels_keeps_order(self):
        assert list(parse_extra_labels("costCenter, team,costCenter").items()) == [
            ("costCenter", "label_cost_center"),
            ("team", "label_team"),
        ]

    def test_parse_extra_labels_empty(self):
        assert parse_extra_labels(None) == {}
        assert parse_extra_labels("") == {}

    def test_extra_label_values(self):
        extra = parse_extra_labels("team,costCenter")
        assert extra_label_values({"costCenter": "cc-1"}, extra) == ["", "cc-1"]
        assert extra_label_values(None, extra) == ["", ""]


# =============================================================================
# Console Output Tests
# =============================================================================

class TestPrintStartupSummary:
    """Tests for print_startup_summary."""

    def test_plain_output_when_not_tty(self, capsys):
        with patch('sys.stdout.isatty', return_value=False):
            print_startup_summary(ExporterConfig(project_filter="parent.id:1"), ["compute", "storage"], 3)

        out = capsys.readouterr().out
        assert "parent.id:1" in out
        assert "compute, storage" in out
        assert "Projects" in out

    def test_no_collectors(self, capsys):
        with patch('sys.stdout.isatty', return_value=False):
            print_startup_summary(ExporterConfig(), [])
        assert "(none)" in capsys.readouterr().out


class TestSummarizeOutcomes:
    """Tests for summarize_outcomes."""

    def test_counts_by_status(self):
        outcomes = {
            "a": CollectionOutcome.success(1),
            "b": CollectionOutcome.success(2),
            "c": CollectionOutcome.skipped("403"),
            "d": CollectionOutcome.failed(RuntimeError("x")),
        }
        assert summarize_outcomes(outcomes) == {"success": 2, "skipped": 1, "failed": 1}
