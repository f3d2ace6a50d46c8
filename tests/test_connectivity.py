"""Tests for ConnectivityMonitor."""

from unittest.mock import Mock, patch

from studytrack.sync.connectivity import ConnectivityMonitor


class TestConnectivityMonitor:
    """Tests for ConnectivityMonitor."""

    def setup_method(self):
        self.monitor = ConnectivityMonitor(online=True)

    def test_listener_called_on_change_only(self):
        listener = Mock()
        self.monitor.add_listener(listener)

        assert self.monitor.set_online(True) is False
        assert self.monitor.set_online(False) is True
        assert self.monitor.set_online(True) is True

        assert [c.args for c in listener.call_args_list] == [(False,), (True,)]
        assert self.monitor.is_online is True

    def test_failing_listener_does_not_block_others(self):
        """Test one broken listener cannot stop the others."""
        broken = Mock(side_effect=RuntimeError("boom"))
        healthy = Mock()
        self.monitor.add_listener(broken)
        self.monitor.add_listener(healthy)

        self.monitor.set_online(False)

        healthy.assert_called_once_with(False)

    def test_remove_listener(self):
        listener = Mock()
        self.monitor.add_listener(listener)
        self.monitor.remove_listener(listener)

        self.monitor.set_online(False)

        listener.assert_not_called()

    @patch("studytrack.sync.connectivity.socket.create_connection")
    def test_probe_success(self, mock_connect):
        assert self.monitor.probe() is True
        mock_connect.assert_called_once_with(("script.google.com", 443), timeout=5)

    @patch("studytrack.sync.connectivity.socket.create_connection")
    def test_probe_failure(self, mock_connect):
        mock_connect.side_effect = OSError("unreachable")

        assert self.monitor.probe() is False

    def test_polling_updates_state(self):
        """Test the poller pushes probe results into the state."""
        monitor = ConnectivityMonitor(online=True, poll_interval=0.01)
        listener = Mock()
        monitor.add_listener(listener)

        with patch.object(monitor, "probe", return_value=False):
            monitor.start_polling()
            try:
                for _ in range(100):
                    if not monitor.is_online:
                        break
                    monitor._stop_event.wait(0.01)
            finally:
                monitor.stop_polling()

        assert monitor.is_online is False
        listener.assert_called_with(False)
