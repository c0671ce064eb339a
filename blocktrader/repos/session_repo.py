"""Session repository — keyed store for paper-trading sessions.

The store is volatile: a process restart loses every session.
"""

import threading
from typing import Optional, Protocol, runtime_checkable

from blocktrader.models.session import Session


@runtime_checkable
class SessionRepository(Protocol):
    """Storage interface the session manager depends on."""

    def get(self, session_id: str) -> Optional[Session]:
        ...

    def put(self, session: Session) -> None:
        ...

    def delete(self, session_id: str) -> bool:
        ...

    def list_by_user(self, user_id: str) -> list[Session]:
        ...

    def lock_for(self, session_id: str) -> threading.RLock:
        """Lock that serialises mutations of one session.

        Callers must re-read the session once they hold the lock.
        """
        ...


class InMemorySessionRepository:
    """Process-local ``SessionRepository`` guarded by a lock.

    Also hands out one re-entrant lock per session id so that concurrent
    update / stop / delete calls on the same session run one at a time.
    """

    def __init__(self) -> None:
        self._sessions: dict[str, Session] = {}
        self._session_locks: dict[str, threading.RLock] = {}
        self._lock = threading.Lock()

    # ── Write ────────────────────────────────────────────────────────────

    def put(self, session: Session) -> None:
        with self._lock:
            self._sessions[session.id] = session

    def delete(self, session_id: str) -> bool:
        """Remove a session.  Returns ``False`` if it was not stored."""
        with self._lock:
            self._session_locks.pop(session_id, None)
            return self._sessions.pop(session_id, None) is not None

    # ── Read ─────────────────────────────────────────────────────────────

    def get(self, session_id: str) -> Optional[Session]:
        with self._lock:
            return self._sessions.get(session_id)

    def list_by_user(self, user_id: str) -> list[Session]:
        """Sessions owned by *user_id*, oldest first."""
        with self._lock:
            sessions = [s for s in self._sessions.values() if s.user_id == user_id]
        return sorted(sessions, key=lambda s: s.start_time)

    def lock_for(self, session_id: str) -> threading.RLock:
        """Per-session lock.

        Ids that are not stored get a throwaway lock that is never
        registered, so callers racing a delete cannot leak entries.
        """
        with self._lock:
            lock = self._session_locks.get(session_id)
            if lock is None:
                lock = threading.RLock()
                if session_id in self._sessions:
                    self._session_locks[session_id] = lock
            return lock

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)
