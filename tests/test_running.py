"""Tests for neobridge.running module."""

import logging
import threading

import pytest

from neobridge.running import RunningTracker


class TestRunningTracker:
    """Tests for RunningTracker."""

    def test_initial_state(self):
        tracker = RunningTracker()
        assert tracker.quit_requested() is False
        assert tracker.exit_code() == 0

    def test_request_quit(self):
        tracker = RunningTracker()
        tracker.request_quit()
        assert tracker.quit_requested() is True
        assert tracker.exit_code() == 0

    def test_quit_with_code(self, caplog):
        tracker = RunningTracker()
        with caplog.at_level(logging.INFO, logger="neobridge.running"):
            tracker.quit_with_code(3, "backend crashed")
        assert tracker.quit_requested() is True
        assert tracker.exit_code() == 3
        assert "Quit with code 3: backend crashed" in caplog.text

    def test_last_write_wins(self):
        tracker = RunningTracker()
        tracker.quit_with_code(1, "first")
        tracker.quit_with_code(2, "second")
        assert tracker.exit_code() == 2

    @pytest.mark.parametrize("code", [-1, 256])
    def test_code_out_of_range(self, code):
        tracker = RunningTracker()
        with pytest.raises(ValueError):
            tracker.quit_with_code(code, "bad")
        assert tracker.quit_requested() is False

    def test_visible_across_threads(self):
        tracker = RunningTracker()
        thread = threading.Thread(target=tracker.quit_with_code, args=(7, "worker"))
        thread.start()
        thread.join()
        assert tracker.quit_requested() is True
        assert tracker.exit_code() == 7
