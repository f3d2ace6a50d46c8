"""Usage session tracking per authenticated user."""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from .protocols import SinkProtocol
from .sink import SinkError, build_envelope

__all__ = ["Session", "SessionState", "SessionTracker", "synthesize_session_id"]

logger = logging.getLogger(__name__)

SESSION_TOOL_NAME = "session"


class SessionState(Enum):
    NO_SESSION = "no_session"
    ACTIVE = "active"
    ENDED = "ended"


@dataclass
class Session:
    """One continuous period of app use by one identity."""

    id: str
    owner: str
    started_at: datetime
    ended_at: Optional[datetime] = None
    last_activity_at: Optional[datetime] = None
    remote_issued: bool = False

    @property
    def is_open(self) -> bool:
        return self.ended_at is None


def synthesize_session_id(owner: str) -> str:
    """Local session id: email local-part plus epoch milliseconds."""
    return f"{owner.split('@')[0]}_{int(time.time() * 1000)}"


class SessionTracker:
    """NoSession -> Active -> Ended state machine.

    A session id is always assigned on start. The remote one is used when the
    collector returns a readable ``sessionId``; otherwise a local id is
    synthesized and stays authoritative for the session's lifetime.
    Session markers are sent once and never queued.
    """

    def __init__(self, sink: SinkProtocol):
        self.sink = sink
        self._session: Optional[Session] = None
        self._lock = threading.RLock()

    @property
    def state(self) -> SessionState:
        with self._lock:
            if self._session is None:
                return SessionState.NO_SESSION
            if self._session.is_open:
                return SessionState.ACTIVE
            return SessionState.ENDED

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def session_id(self) -> Optional[str]:
        """Id of the active session, or None."""
        with self._lock:
            if self._session is not None and self._session.is_open:
                return self._session.id
            return None

    def start(self, owner: str) -> Session:
        """Start a session for ``owner``.

        Returns the already active session if it belongs to the same owner.
        """
        with self._lock:
            current = self._session
            if current is not None and current.is_open:
                if current.owner == owner:
                    return current
                self.end("user_changed")

            now = datetime.now(timezone.utc)
            remote_id: Optional[str] = None
            try:
                result = self.sink.send(
                    build_envelope("start_session", SESSION_TOOL_NAME, owner, {}, now)
                )
                if result.accepted is not False:
                    remote_id = result.body.get("sessionId") or None
            except SinkError as e:
                logger.warning(f"Failed to start remote session: {e}")

            session = Session(
                id=str(remote_id) if remote_id else synthesize_session_id(owner),
                owner=owner,
                started_at=now,
                last_activity_at=now,
                remote_issued=bool(remote_id),
            )
            self._session = session
            source = "remote" if session.remote_issued else "local"
            logger.info(f"Session {session.id} started for {owner} ({source} id)")
            return session

    def touch(self, tool_name: str) -> None:
        """Record activity on the open session."""
        with self._lock:
            if self._session is None or not self._session.is_open:
                logger.debug(f"Usage of {tool_name} outside a session")
                return
            self._session.last_activity_at = datetime.now(timezone.utc)

    def end(self, reason: str = "unload") -> Optional[Session]:
        """End the active session and notify the collector once.

        Returns:
            The ended session, or None if no session was active
        """
        with self._lock:
            session = self._session
            if session is None or not session.is_open:
                return None
            session.ended_at = datetime.now(timezone.utc)

            try:
                self.sink.send(
                    build_envelope(
                        "end_session",
                        SESSION_TOOL_NAME,
                        session.owner,
                        {"reason": reason},
                        session.ended_at,
                        session_id=session.id,
                    )
                )
            except SinkError as e:
                logger.warning(f"Failed to end remote session {session.id}: {e}")

            duration = (session.ended_at - session.started_at).total_seconds()
            logger.info(f"Session {session.id} ended ({reason}, {duration:.0f}s)")
            return session
