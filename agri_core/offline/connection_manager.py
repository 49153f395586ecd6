# =============================================================================
# agri_core/offline/connection_manager.py
# Connection Status Detection and Management
# =============================================================================
"""
ConnectionMonitor - tracks online/offline state for the sync engine.

Two inputs drive the state:
- Platform signals: the host calls notify_online() / notify_offline() when
  its network stack reports a transition.
- Checks: check_connection() tries the Supabase REST endpoint (or well-known
  DNS hosts when no backend is configured), optionally on a background thread.

Callbacks run only on status transitions. Going offline never cancels an
in-flight drain; it only makes is_online false so new drain passes abort.
"""

from __future__ import annotations
import socket
import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Callable, List, Optional
import logging

import requests

from agri_core.errors import ErrorContext, safe_execute
from agri_core.offline.models import utc_now

logger = logging.getLogger(__name__)


class ConnectionStatus(Enum):
    """Connection status states."""
    ONLINE = "online"           # Remote service reachable
    OFFLINE = "offline"         # No connectivity
    DEGRADED = "degraded"       # Internet OK but Supabase unavailable
    UNKNOWN = "unknown"         # Initial state


@dataclass
class ConnectionState:
    """Current connection state with metadata."""
    status: ConnectionStatus = ConnectionStatus.UNKNOWN
    last_check: Optional[datetime] = None
    last_online: Optional[datetime] = None
    last_change: Optional[datetime] = None
    consecutive_failures: int = 0
    error_message: Optional[str] = None


class ConnectionMonitor:
    """
    Online/offline monitor with transition callbacks.

    Usage:
        monitor = ConnectionMonitor(supabase_url=settings.supabase_url)
        monitor.register_callback(lambda state: ...)
        monitor.notify_online()
    """

    # Well-known hosts for the internet check
    CHECK_HOSTS = [
        ("8.8.8.8", 53),        # Google DNS
        ("1.1.1.1", 53),        # Cloudflare DNS
    ]

    def __init__(
        self,
        supabase_url: Optional[str] = None,
        supabase_key: Optional[str] = None,
        initially_online: Optional[bool] = None,
        check_interval_online: float = 30.0,
        check_interval_offline: float = 10.0,
        connection_timeout: float = 5.0,
    ):
        self.supabase_url = supabase_url.rstrip("/") if supabase_url else None
        self.supabase_key = supabase_key
        self.check_interval_online = check_interval_online
        self.check_interval_offline = check_interval_offline
        self.connection_timeout = connection_timeout

        self._state = ConnectionState()
        if initially_online is not None:
            self._state.status = (
                ConnectionStatus.ONLINE if initially_online else ConnectionStatus.OFFLINE
            )
        self._callbacks: List[Callable[[ConnectionState], None]] = []
        self._state_lock = threading.Lock()
        self._monitor_thread: Optional[threading.Thread] = None
        self._stop_monitoring = threading.Event()

    @classmethod
    def from_settings(cls, settings, initially_online: Optional[bool] = None) -> ConnectionMonitor:
        return cls(
            supabase_url=settings.supabase_url,
            supabase_key=settings.supabase_key,
            initially_online=initially_online,
            check_interval_online=settings.check_interval_online,
            check_interval_offline=settings.check_interval_offline,
            connection_timeout=settings.connection_timeout,
        )

    @property
    def state(self) -> ConnectionState:
        """Get current connection state."""
        return self._state

    @property
    def status(self) -> ConnectionStatus:
        return self._state.status

    @property
    def is_online(self) -> bool:
        """True only when the remote service is reachable."""
        return self._state.status == ConnectionStatus.ONLINE

    @property
    def is_offline(self) -> bool:
        return not self.is_online

    # =========================================================================
    # STATE TRANSITIONS
    # =========================================================================

    def _set_status(self, status: ConnectionStatus, error: Optional[str] = None) -> bool:
        """Apply a status; notify callbacks on change. Returns True if it changed."""
        with self._state_lock:
            old_status = self._state.status
            now = utc_now()
            self._state.status = status
            self._state.error_message = error
            if status == ConnectionStatus.ONLINE:
                self._state.last_online = now
                self._state.consecutive_failures = 0
            else:
                self._state.consecutive_failures += 1
            changed = old_status != status
            if changed:
                self._state.last_change = now

        if changed:
            logger.info(f"Connection status changed: {old_status.value} -> {status.value}")
            self._notify_callbacks()
        return changed

    def notify_online(self) -> bool:
        """Platform 'online' event."""
        return self._set_status(ConnectionStatus.ONLINE)

    def notify_offline(self) -> bool:
        """Platform 'offline' event."""
        return self._set_status(ConnectionStatus.OFFLINE)

    def force_offline(self) -> None:
        """Force offline mode (for testing or user preference)."""
        self._set_status(ConnectionStatus.OFFLINE, error="forced offline")
        logger.info("Forced offline mode")

    # =========================================================================
    # CONNECTIVITY CHECKS
    # =========================================================================

    def check_connection(self) -> ConnectionState:
        """
        Check connectivity and update state.

        Returns:
            Updated ConnectionState
        """
        self._state.last_check = utc_now()

        if self.supabase_url:
            if self._check_supabase():
                self._set_status(ConnectionStatus.ONLINE)
            elif self._check_internet():
                self._set_status(ConnectionStatus.DEGRADED, error=self._state.error_message)
            else:
                self._set_status(ConnectionStatus.OFFLINE, error=self._state.error_message)
        elif self._check_internet():
            self._set_status(ConnectionStatus.ONLINE)
        else:
            self._set_status(ConnectionStatus.OFFLINE)

        return self._state

    def _check_internet(self) -> bool:
        for host, port in self.CHECK_HOSTS:
            try:
                with socket.create_connection((host, port), timeout=self.connection_timeout):
                    return True
            except OSError:
                continue
        return False

    def _check_supabase(self) -> bool:
        """Any HTTP answer from the REST endpoint counts as reachable."""
        headers = {"apikey": self.supabase_key} if self.supabase_key else {}
        try:
            requests.get(
                f"{self.supabase_url}/rest/v1/",
                headers=headers,
                timeout=self.connection_timeout,
            )
            return True
        except requests.exceptions.RequestException as e:
            self._state.error_message = str(e)
            logger.debug(f"Supabase check failed: {e}")
            return False

    def start_monitoring(self) -> None:
        """Start background connection checks."""
        if self._monitor_thread is not None and self._monitor_thread.is_alive():
            return

        self._stop_monitoring.clear()
        self._monitor_thread = threading.Thread(
            target=self._monitoring_loop,
            daemon=True,
            name="ConnectionMonitor"
        )
        self._monitor_thread.start()
        logger.debug("Connection monitoring started")

    def stop_monitoring(self) -> None:
        """Stop background connection checks."""
        self._stop_monitoring.set()
        if self._monitor_thread:
            self._monitor_thread.join(timeout=5)
            self._monitor_thread = None
        logger.debug("Connection monitoring stopped")

    def _monitoring_loop(self) -> None:
        while not self._stop_monitoring.is_set():
            with ErrorContext("Connection check"):
                self.check_connection()

            interval = (
                self.check_interval_online
                if self.is_online
                else self.check_interval_offline
            )
            if self._stop_monitoring.wait(timeout=interval):
                break

    # =========================================================================
    # CALLBACKS
    # =========================================================================

    def register_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        """
        Register a callback for connection status changes.

        Args:
            callback: Function called with ConnectionState when status changes
        """
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: Callable[[ConnectionState], None]) -> None:
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    def _notify_callbacks(self) -> None:
        for callback in list(self._callbacks):
            safe_execute(callback, self._state, error_message="Error in connection callback")

    def get_status_display(self) -> dict:
        """Get status information for UI display."""
        return {
            "status": self._state.status.value,
            "is_online": self.is_online,
            "last_check": self._state.last_check.isoformat() if self._state.last_check else None,
            "last_online": self._state.last_online.isoformat() if self._state.last_online else None,
            "failures": self._state.consecutive_failures,
            "error": self._state.error_message,
        }
