"""Widget-facing data tracker.

One ``DataTracker`` is built by the application root and handed to every
widget. It persists tool saves and usage pings through the pending queue,
keeps the last-known state of each tool locally, and wraps the whole flow
in a usage session for the signed-in user.
"""

import json
import logging
from typing import Any, Optional

from .sync.connectivity import ConnectivityMonitor
from .sync.protocols import SinkProtocol, StoreProtocol
from .sync.queue import (
    ACTION_SAVE_DATA,
    ACTION_TRACK_USAGE,
    PENDING_QUEUE_KEY,
    EventQueue,
    EventRecord,
)
from .sync.scheduler import SyncScheduler
from .sync.session import SessionTracker
from .sync.sink import SinkError, build_envelope
from .sync.store import StoreUnavailableError

__all__ = ["DataTracker", "IDENTITY_OWNER", "IDENTITY_KEY"]

logger = logging.getLogger(__name__)

# Remembered sign-in lives outside any user's scope
IDENTITY_OWNER = ""
IDENTITY_KEY = "userEmail"


class DataTracker:
    """Records user actions for the current identity and syncs them."""

    def __init__(
        self,
        store: StoreProtocol,
        queue: EventQueue,
        sink: SinkProtocol,
        sessions: SessionTracker,
        scheduler: SyncScheduler,
        connectivity: ConnectivityMonitor,
        user_email: Optional[str] = None,
    ):
        self.store = store
        self.queue = queue
        self.sink = sink
        self.sessions = sessions
        self.scheduler = scheduler
        self.connectivity = connectivity
        self.user_email: Optional[str] = None
        if user_email:
            self.set_user(user_email)

    # -- identity ---------------------------------------------------------

    def set_user(self, email: str) -> None:
        """Attach an identity: restore its pending events and start a session."""
        if self.user_email and self.user_email != email:
            self.sessions.end("user_changed")
        self.user_email = email
        if email not in self.queue.owners():
            self.queue.restore(email)
        self.sessions.start(email)
        if not self.queue.is_empty(email):
            self.scheduler.notify_enqueued(email)

    def login(self, email: str) -> bool:
        """Remember the identity across restarts and attach it."""
        email = email.strip()
        if not email:
            return False
        try:
            self.store.set(IDENTITY_OWNER, IDENTITY_KEY, email.encode("utf-8"))
        except StoreUnavailableError as e:
            logger.warning(f"Could not remember sign-in: {e}")
        self.set_user(email)
        return True

    def logout(self) -> None:
        """End the session and forget the remembered identity.

        Pending events stay persisted under the old identity and are restored
        on its next sign-in.
        """
        self.sessions.end("logout")
        try:
            self.store.delete(IDENTITY_OWNER, IDENTITY_KEY)
        except StoreUnavailableError as e:
            logger.warning(f"Could not forget sign-in: {e}")
        logger.info(f"Logged out {self.user_email}")
        self.user_email = None

    def remembered_user(self) -> Optional[str]:
        """Identity saved by a previous ``login``, if any."""
        try:
            raw = self.store.get(IDENTITY_OWNER, IDENTITY_KEY)
        except StoreUnavailableError:
            return None
        return raw.decode("utf-8") if raw else None

    @property
    def session_id(self) -> Optional[str]:
        return self.sessions.session_id

    # -- recording --------------------------------------------------------

    def record(self, tool_name: str, payload: Any, action: str = ACTION_SAVE_DATA) -> bool:
        """Queue an event for delivery. Never waits on the network.

        Returns:
            False if no user is signed in

        Raises:
            TypeError: If the payload cannot be encoded as JSON
        """
        if not self.user_email:
            logger.debug(f"Ignoring {action} for {tool_name}: no user")
            return False
        record = EventRecord(
            tool_name=tool_name,
            payload=payload,
            action=action,
            session_id=self.session_id,
        )
        self.queue.enqueue(self.user_email, record)
        self.scheduler.notify_enqueued(self.user_email)
        return True

    def save_tool_data(self, tool_name: str, data: dict) -> bool:
        """Queue a tool save and keep it as the tool's last-known state."""
        if not self.user_email:
            return False
        if tool_name == PENDING_QUEUE_KEY:
            raise ValueError(f"{tool_name!r} is a reserved name")
        try:
            self.store.set(self.user_email, tool_name, json.dumps(data).encode("utf-8"))
        except StoreUnavailableError as e:
            logger.warning(f"Could not keep local snapshot of {tool_name}: {e}")
        return self.record(tool_name, data)

    def track_tool_usage(self, tool_name: str) -> bool:
        """Usage ping: keeps the session alive and queues a usage event."""
        if not self.user_email:
            return False
        self.sessions.touch(tool_name)
        return self.record(tool_name, {}, action=ACTION_TRACK_USAGE)

    def save_gpa_data(self, courses: list, gpa: float) -> bool:
        return self.save_tool_data("gpa", {"courses": courses, "gpa": gpa})

    def save_attendance_data(self, records: list) -> bool:
        return self.save_tool_data("attendance", {"records": records})

    def save_timer_data(
        self,
        session_type: str,
        duration: int,
        completed: bool,
        total_sessions: int,
        total_study_time: int,
    ) -> bool:
        return self.save_tool_data(
            "timer",
            {
                "sessionType": session_type,
                "duration": duration,
                "completed": completed,
                "totalSessions": total_sessions,
                "totalStudyTime": total_study_time,
            },
        )

    def save_grades_data(self, courses: list) -> bool:
        return self.save_tool_data("grades", {"courses": courses})

    def save_schedule_data(self, items: list) -> bool:
        return self.save_tool_data("schedule", {"items": items})

    def save_flashcards_data(self, decks: list) -> bool:
        return self.save_tool_data("flashcards", {"decks": decks})

    def save_expenses_data(self, expenses: list) -> bool:
        return self.save_tool_data("expenses", {"expenses": expenses})

    def save_reviews_data(self, reviews: list) -> bool:
        return self.save_tool_data("reviews", {"reviews": reviews})

    def save_chat_data(self, channel_name: str, channel_type: str, messages: list) -> bool:
        return self.save_tool_data(
            "chat",
            {"channelName": channel_name, "channelType": channel_type, "messages": messages},
        )

    # -- reading ----------------------------------------------------------

    def get_local_data(self, tool_name: Optional[str] = None) -> Any:
        """Last-known tool state from the local store.

        Returns the snapshot for ``tool_name``, or a dict of all snapshots.
        """
        if not self.user_email:
            return None
        try:
            names = [tool_name] if tool_name else self.store.names(self.user_email)
        except StoreUnavailableError:
            return None if tool_name else {}

        snapshots: dict = {}
        for name in names:
            if name == PENDING_QUEUE_KEY:
                continue
            try:
                raw = self.store.get(self.user_email, name)
                if raw is not None:
                    snapshots[name] = json.loads(raw.decode("utf-8"))
            except (StoreUnavailableError, ValueError, UnicodeDecodeError) as e:
                logger.error(f"Error reading local data for {name}: {e}")
        return snapshots.get(tool_name) if tool_name else snapshots

    def get_user_data(self, tool_name: Optional[str] = None) -> Any:
        """Ask the collector for stored data, falling back to local snapshots."""
        if not self.user_email:
            return None
        try:
            result = self.sink.send(
                build_envelope(
                    "get_user_data",
                    tool_name or "all",
                    self.user_email,
                    {},
                    session_id=self.session_id,
                )
            )
            if result.accepted is not False and "data" in result.body:
                return result.body["data"]
        except SinkError as e:
            logger.error(f"Error getting user data: {e}")
        return self.get_local_data(tool_name)

    def get_user_analytics(self) -> Any:
        """Ask the collector for usage analytics. None when unreadable."""
        if not self.user_email:
            return None
        try:
            result = self.sink.send(
                build_envelope(
                    "get_analytics",
                    "analytics",
                    self.user_email,
                    {},
                    session_id=self.session_id,
                )
            )
        except SinkError as e:
            logger.error(f"Error getting analytics: {e}")
            return None
        if result.accepted is False:
            return None
        return result.body.get("analytics")

    # -- lifecycle --------------------------------------------------------

    def flush(self):
        """Deliver pending events now."""
        if not self.user_email:
            return None
        return self.scheduler.flush(self.user_email, reason="manual")

    def start(self) -> None:
        """Start the periodic flush timer and connectivity listening."""
        self.scheduler.start()

    def stop(self) -> None:
        self.scheduler.stop()

    def on_unload(self) -> None:
        """Page/process is going away: end the session once, best-effort.

        Pending events are already persisted and will be restored on restart.
        """
        self.sessions.end("unload")

    def get_status(self) -> dict:
        """Get current sync status."""
        owner = self.user_email
        return {
            "user": owner,
            "session_id": self.session_id,
            "session_state": self.sessions.state.value,
            "online": self.connectivity.is_online,
            "queue_size": self.queue.size(owner) if owner else 0,
            "memory_only": self.queue.is_memory_only(owner) if owner else False,
            "syncing": self.scheduler.is_busy(owner) if owner else False,
        }
