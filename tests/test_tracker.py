"""Tests for the widget-facing DataTracker."""

import json

from studytrack.sync.connectivity import ConnectivityMonitor
from studytrack.sync.queue import PENDING_QUEUE_KEY, EventQueue
from studytrack.sync.scheduler import SyncScheduler
from studytrack.sync.session import SessionState, SessionTracker
from studytrack.sync.sink import SendResult
from studytrack.sync.store import MemoryStore
from studytrack.tracker import IDENTITY_KEY, IDENTITY_OWNER, DataTracker

from tests.fakes import RecordingSink


def build_tracker(store=None, sink=None, online=True) -> DataTracker:
    store = store or MemoryStore()
    sink = sink or RecordingSink()
    connectivity = ConnectivityMonitor(online=online)
    queue = EventQueue(store)
    return DataTracker(
        store=store,
        queue=queue,
        sink=sink,
        sessions=SessionTracker(sink),
        scheduler=SyncScheduler(queue, sink, connectivity),
        connectivity=connectivity,
    )


class TestDataTracker:
    """Tests for DataTracker."""

    def setup_method(self):
        self.store = MemoryStore()
        self.sink = RecordingSink()
        self.tracker = build_tracker(self.store, self.sink)

    def test_offline_records_sync_after_reconnect(self):
        """Three GPA saves offline are delivered in order once back online."""
        self.tracker.set_user("u1")
        self.tracker.connectivity.set_online(False)

        for _ in range(3):
            self.tracker.record("gpa", {"gpa": 3.8})

        assert self.tracker.queue.size("u1") == 3
        assert self.sink.sent_actions("save_data") == []

        self.tracker.connectivity.set_online(True)
        self.tracker.flush()

        saves = self.sink.sent_actions("save_data")
        assert len(saves) == 3
        assert all(e["toolName"] == "gpa" and e["data"] == {"gpa": 3.8} for e in saves)
        timestamps = [e["timestamp"] for e in saves]
        assert timestamps == sorted(timestamps)
        assert self.tracker.queue.size("u1") == 0

    def test_record_without_user_is_ignored(self):
        assert self.tracker.record("gpa", {"gpa": 3.0}) is False
        assert self.sink.attempts == []

    def test_record_online_delivers_immediately(self):
        """Test an enqueue while online triggers delivery."""
        self.tracker.set_user("alice@example.com")

        self.tracker.record("gpa", {"gpa": 3.5})

        saves = self.sink.sent_actions("save_data")
        assert len(saves) == 1
        assert saves[0]["userEmail"] == "alice@example.com"
        assert saves[0]["sessionId"] == self.tracker.session_id

    def test_set_user_starts_session(self):
        self.tracker.set_user("alice@example.com")

        assert self.tracker.sessions.state is SessionState.ACTIVE
        assert self.tracker.session_id.startswith("alice_")
        assert len(self.sink.sent_actions("start_session")) == 1

    def test_set_user_restores_and_flushes_persisted_events(self):
        """Test events left from a previous run are delivered on sign-in."""
        offline = build_tracker(self.store, RecordingSink(), online=False)
        offline.set_user("alice@example.com")
        offline.record("timer", {"duration": 25})

        self.tracker.set_user("alice@example.com")

        saves = self.sink.sent_actions("save_data")
        assert [e["toolName"] for e in saves] == ["timer"]
        assert self.tracker.queue.is_empty("alice@example.com")

    def test_save_tool_data_keeps_local_snapshot(self):
        """Test a tool save is queued and kept as last-known state."""
        self.tracker.set_user("alice@example.com")

        self.tracker.save_gpa_data([{"name": "Math", "grade": "A"}], 4.0)

        snapshot = json.loads(self.store.get("alice@example.com", "gpa"))
        assert snapshot == {"courses": [{"name": "Math", "grade": "A"}], "gpa": 4.0}
        assert self.sink.sent_actions("save_data")[0]["data"]["gpa"] == 4.0

    def test_tool_helpers_use_tool_names(self):
        self.tracker.set_user("alice@example.com")

        self.tracker.save_attendance_data([])
        self.tracker.save_timer_data("focus", 1500, True, 4, 6000)
        self.tracker.save_grades_data([])
        self.tracker.save_schedule_data([])
        self.tracker.save_flashcards_data([])
        self.tracker.save_expenses_data([])
        self.tracker.save_reviews_data([])
        self.tracker.save_chat_data("general", "public", [])

        tools = [e["toolName"] for e in self.sink.sent_actions("save_data")]
        assert tools == [
            "attendance",
            "timer",
            "grades",
            "schedule",
            "flashcards",
            "expenses",
            "reviews",
            "chat",
        ]
        timer = self.tracker.get_local_data("timer")
        assert timer["sessionType"] == "focus"
        assert timer["totalStudyTime"] == 6000

    def test_track_tool_usage_is_queued(self):
        """Test usage pings go through the durable queue."""
        self.tracker.set_user("alice@example.com")
        self.tracker.connectivity.set_online(False)

        self.tracker.track_tool_usage("flashcards")

        pending = self.tracker.queue.drain("alice@example.com")
        assert len(pending) == 1
        assert pending[0].action == "track_usage"
        assert pending[0].tool_name == "flashcards"

    def test_get_local_data_all_tools(self):
        self.tracker.set_user("alice@example.com")
        self.tracker.connectivity.set_online(False)
        self.tracker.save_grades_data([{"course": "Bio"}])
        self.tracker.save_expenses_data([{"amount": 5}])

        data = self.tracker.get_local_data()

        assert set(data) == {"grades", "expenses"}
        assert PENDING_QUEUE_KEY not in data

    def test_get_user_data_falls_back_to_local(self):
        """Test an unreadable collector answer falls back to local snapshots."""
        self.tracker.set_user("alice@example.com")
        self.tracker.save_grades_data([{"course": "Bio"}])

        data = self.tracker.get_user_data("grades")

        assert data == {"courses": [{"course": "Bio"}]}
        assert self.sink.sent_actions("get_user_data")[0]["toolName"] == "grades"

    def test_get_user_data_prefers_remote(self):
        self.sink.result = SendResult(accepted=True, body={"data": {"gpa": {"gpa": 3.1}}})
        self.tracker.set_user("alice@example.com")

        assert self.tracker.get_user_data() == {"gpa": {"gpa": 3.1}}

    def test_get_user_data_on_transport_error(self):
        self.tracker.set_user("alice@example.com")
        self.tracker.connectivity.set_online(False)
        self.tracker.save_grades_data([])
        self.sink.fail_first = len(self.sink.attempts) + 1

        assert self.tracker.get_user_data("grades") == {"courses": []}

    def test_get_user_analytics(self):
        self.tracker.set_user("alice@example.com")
        assert self.tracker.get_user_analytics() is None

        self.sink.result = SendResult(accepted=True, body={"analytics": {"sessions": 3}})
        assert self.tracker.get_user_analytics() == {"sessions": 3}

    def test_login_remembers_identity(self):
        """Test login persists the identity and logout forgets it."""
        assert self.tracker.login("  alice@example.com ") is True
        assert self.store.get(IDENTITY_OWNER, IDENTITY_KEY) == b"alice@example.com"
        assert self.tracker.remembered_user() == "alice@example.com"

        self.tracker.logout()

        assert self.tracker.remembered_user() is None
        assert self.tracker.user_email is None
        assert self.tracker.sessions.state is SessionState.ENDED
        assert len(self.sink.sent_actions("end_session")) == 1

    def test_login_rejects_blank(self):
        assert self.tracker.login("   ") is False

    def test_logout_keeps_pending_events(self):
        """Test events queued before logout survive for the next sign-in."""
        self.tracker.login("alice@example.com")
        self.tracker.connectivity.set_online(False)
        self.tracker.record("gpa", {"gpa": 2.9})

        self.tracker.logout()

        assert json.loads(self.store.get("alice@example.com", PENDING_QUEUE_KEY))

    def test_relogin_gets_fresh_session(self):
        self.tracker.login("alice@example.com")
        first = self.tracker.sessions.session
        self.tracker.logout()

        self.tracker.login("alice@example.com")

        assert self.tracker.sessions.session is not first
        assert self.tracker.sessions.state is SessionState.ACTIVE

    def test_on_unload_ends_session_once(self):
        self.tracker.set_user("alice@example.com")

        self.tracker.on_unload()
        self.tracker.on_unload()

        assert len(self.sink.sent_actions("end_session")) == 1

    def test_get_status(self):
        self.tracker.set_user("alice@example.com")
        self.tracker.connectivity.set_online(False)
        self.tracker.record("gpa", {})

        status = self.tracker.get_status()

        assert status["user"] == "alice@example.com"
        assert status["queue_size"] == 1
        assert status["online"] is False
        assert status["session_state"] == "active"
        assert status["syncing"] is False
