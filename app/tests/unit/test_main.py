"""Unit tests for the application entry point."""

import signal
from unittest.mock import MagicMock, patch

import pytest

import main

pytestmark = pytest.mark.unit


def _deliver_signal_on_register(signum, handler):
    # Fire each handler as soon as it is installed so main() does not block
    handler(signum, None)


class TestMain:
    """Tests for main()."""

    @patch("main.signal.signal", side_effect=_deliver_signal_on_register)
    @patch("main.scheduled_tasks")
    @patch("main.get_delivery_service")
    @patch("main.configure_logging")
    def test_starts_scheduler_and_stops_on_signal(
        self, mock_configure, mock_get_service, mock_tasks, mock_signal
    ):
        service = MagicMock()
        mock_get_service.return_value = service
        cease = MagicMock()
        mock_tasks.run_continuously.return_value = cease

        main.main()

        mock_configure.assert_called_once_with()
        mock_tasks.init.assert_called_once_with(service)
        mock_tasks.run_continuously.assert_called_once()
        cease.set.assert_called()
        registered = [c.args[0] for c in mock_signal.call_args_list]
        assert registered == [signal.SIGINT, signal.SIGTERM]

    @patch("main.signal.signal", side_effect=_deliver_signal_on_register)
    @patch("main.scheduled_tasks")
    @patch("main.get_delivery_service")
    @patch("main.configure_logging")
    @patch("main.logger")
    def test_logs_startup_and_shutdown(
        self, mock_logger, mock_configure, mock_get_service, mock_tasks, mock_signal
    ):
        main.main()

        events = [c.args[0] for c in mock_logger.info.call_args_list]
        assert events[0] == "application_startup"
        assert "application_shutdown" in events
