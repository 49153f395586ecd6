# =============================================================================
# tests/unit/test_connection_manager.py
# Unit Tests for ConnectionMonitor
# =============================================================================

from unittest.mock import MagicMock

import pytest
import requests

from agri_core.offline import ConnectionMonitor, ConnectionStatus


class TestSignals:
    """Platform online/offline events"""

    def test_initial_state_unknown_is_not_online(self):
        monitor = ConnectionMonitor()

        assert monitor.status is ConnectionStatus.UNKNOWN
        assert not monitor.is_online

    def test_callbacks_fire_only_on_transition(self, monitor):
        seen = []
        monitor.register_callback(lambda state: seen.append(state.status))

        monitor.notify_online()          # already online
        monitor.notify_offline()
        monitor.notify_offline()
        monitor.notify_online()

        assert seen == [ConnectionStatus.OFFLINE, ConnectionStatus.ONLINE]

    def test_callback_errors_are_contained(self, monitor):
        good = MagicMock()
        monitor.register_callback(MagicMock(side_effect=RuntimeError("ui gone")))
        monitor.register_callback(good)

        monitor.notify_offline()

        good.assert_called_once()
        assert monitor.is_offline

    def test_unregister(self, monitor):
        callback = MagicMock()
        monitor.register_callback(callback)
        monitor.unregister_callback(callback)

        monitor.notify_offline()

        callback.assert_not_called()

    def test_force_offline(self, monitor):
        monitor.force_offline()

        assert monitor.is_offline
        assert monitor.get_status_display()["error"] == "forced offline"


class TestConnectivityChecks:
    """check_connection"""

    def test_reachable_supabase_is_online(self, monkeypatch):
        monitor = ConnectionMonitor(supabase_url="https://demo.supabase.co/", supabase_key="anon")
        get = MagicMock()
        monkeypatch.setattr(requests, "get", get)

        state = monitor.check_connection()

        assert state.status is ConnectionStatus.ONLINE
        assert get.call_args.args[0] == "https://demo.supabase.co/rest/v1/"
        assert get.call_args.kwargs["headers"] == {"apikey": "anon"}

    def test_supabase_down_but_internet_up_is_degraded(self, monkeypatch):
        monitor = ConnectionMonitor(supabase_url="https://demo.supabase.co", initially_online=True)
        monkeypatch.setattr(requests, "get", MagicMock(side_effect=requests.ConnectionError("refused")))
        monkeypatch.setattr(monitor, "_check_internet", lambda: True)

        state = monitor.check_connection()

        assert state.status is ConnectionStatus.DEGRADED
        assert not monitor.is_online
        assert "refused" in state.error_message

    def test_nothing_reachable_is_offline(self, monkeypatch):
        monitor = ConnectionMonitor(supabase_url="https://demo.supabase.co", initially_online=True)
        monkeypatch.setattr(requests, "get", MagicMock(side_effect=requests.Timeout()))
        monkeypatch.setattr(monitor, "_check_internet", lambda: False)

        assert monitor.check_connection().status is ConnectionStatus.OFFLINE

    @pytest.mark.parametrize("internet,expected", [
        (True, ConnectionStatus.ONLINE),
        (False, ConnectionStatus.OFFLINE),
    ])
    def test_without_backend_internet_decides(self, monkeypatch, internet, expected):
        monitor = ConnectionMonitor()
        monkeypatch.setattr(monitor, "_check_internet", lambda: internet)

        assert monitor.check_connection().status is expected
