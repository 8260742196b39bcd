"""
Session Registry Module

Tracks logged-in sessions with idle and absolute timeouts. The ledger
engines never consult it; it is offered to the surrounding API layer so
session state lives in one bounded, lock-guarded place with an injectable
clock.
"""

from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
import secrets
import threading

from .logging_config import get_logger


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class SessionInfo:
    """One tracked session"""
    session_id: str
    user_id: str
    created_at: datetime
    last_activity: datetime
    remember_me: bool
    idle_timeout: timedelta
    absolute_timeout: timedelta

    def is_expired(self, now: datetime) -> bool:
        """
        Idle past the idle timeout, or (without remember-me) older than the
        absolute timeout.
        """
        if now - self.last_activity > self.idle_timeout:
            return True
        return not self.remember_me and now - self.created_at > self.absolute_timeout


class SessionRegistry:
    """Bounded map of active sessions, least recently used evicted first"""

    def __init__(
        self,
        idle_timeout: timedelta = timedelta(minutes=15),
        remember_me_idle_timeout: timedelta = timedelta(days=7),
        absolute_timeout: timedelta = timedelta(hours=24),
        max_sessions: int = 10000,
        clock: Callable[[], datetime] = utc_now
    ):
        if max_sessions < 1:
            raise ValueError("max_sessions must be positive")
        self.idle_timeout = idle_timeout
        self.remember_me_idle_timeout = remember_me_idle_timeout
        self.absolute_timeout = absolute_timeout
        self.max_sessions = max_sessions
        self._clock = clock
        self._sessions: "OrderedDict[str, SessionInfo]" = OrderedDict()
        self._lock = threading.Lock()
        self.logger = get_logger("core_ledger.sessions")

    def create(self, user_id: str, remember_me: bool = False,
               session_id: Optional[str] = None) -> SessionInfo:
        """Start tracking a session and return it"""
        now = self._clock()
        info = SessionInfo(
            session_id=session_id or secrets.token_urlsafe(24),
            user_id=user_id,
            created_at=now,
            last_activity=now,
            remember_me=remember_me,
            idle_timeout=self.remember_me_idle_timeout if remember_me else self.idle_timeout,
            absolute_timeout=self.absolute_timeout
        )
        with self._lock:
            self._sessions[info.session_id] = info
            self._sessions.move_to_end(info.session_id)
            while len(self._sessions) > self.max_sessions:
                evicted_id, _ = self._sessions.popitem(last=False)
                self.logger.info(f"Evicted least recently used session {evicted_id[:8]}")
        return info

    def is_valid(self, session_id: str) -> bool:
        """
        True if the session exists and has not expired; records activity.
        Expired sessions are removed.
        """
        now = self._clock()
        with self._lock:
            info = self._sessions.get(session_id)
            if info is None:
                return False
            if info.is_expired(now):
                del self._sessions[session_id]
                return False
            info.last_activity = now
            self._sessions.move_to_end(session_id)
            return True

    def touch(self, session_id: str) -> None:
        """Record activity without checking expiry"""
        with self._lock:
            info = self._sessions.get(session_id)
            if info is not None:
                info.last_activity = self._clock()
                self._sessions.move_to_end(session_id)

    def get(self, session_id: str) -> Optional[SessionInfo]:
        with self._lock:
            return self._sessions.get(session_id)

    def user_id_for(self, session_id: str) -> Optional[str]:
        info = self.get(session_id)
        return info.user_id if info else None

    def invalidate(self, session_id: str) -> None:
        with self._lock:
            self._sessions.pop(session_id, None)

    def cleanup_expired(self) -> int:
        """Drop every expired session, returning how many were removed"""
        now = self._clock()
        with self._lock:
            expired = [sid for sid, info in self._sessions.items() if info.is_expired(now)]
            for sid in expired:
                del self._sessions[sid]
        if expired:
            self.logger.info(f"Removed {len(expired)} expired sessions")
        return len(expired)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
