"""Tests for the auto-stop monitor."""

import pytest

from voltlink.auto_stop import AutoStopMonitor, AutoStopPolicy


@pytest.mark.unit
class TestAutoStopMonitor:
    """Test zero-power sample counting."""

    def test_fires_on_fourth_zero_sample(self):
        monitor = AutoStopMonitor()

        results = [monitor.observe(1, 0, elapsed) for elapsed in (61, 71, 81, 91)]

        assert results == [False, False, False, True]
        assert monitor.has_fired(1)

    def test_fires_only_once(self):
        """Test that later zero samples never fire again."""
        monitor = AutoStopMonitor()
        for elapsed in (61, 71, 81, 91):
            monitor.observe(1, 0, elapsed)

        assert not any(monitor.observe(1, 0, elapsed) for elapsed in range(100, 200, 10))

    def test_zero_samples_before_min_elapsed_do_not_count(self):
        monitor = AutoStopMonitor()

        for elapsed in (10, 20, 30, 40, 50, 60):
            assert monitor.observe(1, 0, elapsed) is False
        assert monitor.zero_count(1) == 0

    def test_non_zero_sample_resets_count(self):
        monitor = AutoStopMonitor()
        monitor.observe(1, 0, 61)
        monitor.observe(1, 0, 62)
        monitor.observe(1, 0, 63)

        monitor.observe(1, 3500, 64)

        assert monitor.zero_count(1) == 0
        assert monitor.observe(1, 0, 65) is False

    def test_sessions_are_independent(self):
        monitor = AutoStopMonitor(AutoStopPolicy(min_elapsed=0, zero_samples=2))

        monitor.observe(1, 0, 5)
        monitor.observe(2, 0, 5)

        assert monitor.observe(1, 0, 6) is True
        assert monitor.has_fired(2) is False

    def test_forget(self):
        monitor = AutoStopMonitor(AutoStopPolicy(min_elapsed=0, zero_samples=1))
        monitor.observe(1, 0, 5)

        monitor.forget(1)

        assert monitor.has_fired(1) is False
        assert monitor.zero_count(1) == 0
