"""Remote collector adapter - posts JSON envelopes to a single endpoint."""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

import requests

from ..config import DEFAULT_COLLECTOR_URL

__all__ = [
    "CollectorSink",
    "SendResult",
    "SinkError",
    "SinkTransportError",
    "build_envelope",
]

logger = logging.getLogger(__name__)


class SinkError(Exception):
    """Collector sink error."""

    pass


class SinkTransportError(SinkError):
    """The request never left this machine (DNS, connection refused, timeout)."""

    pass


@dataclass
class SendResult:
    """Outcome of a send.

    ``accepted`` is None when the transport gives no readable answer, which is
    the normal case for an opaque collector.
    """

    accepted: Optional[bool] = None
    status_code: Optional[int] = None
    body: dict = field(default_factory=dict)

    @property
    def indeterminate(self) -> bool:
        return self.accepted is None


def build_envelope(
    action: str,
    tool_name: str,
    user_email: str,
    data: Any = None,
    timestamp: Optional[datetime] = None,
    session_id: Optional[str] = None,
) -> dict:
    """Build the JSON envelope the collector expects."""
    timestamp = timestamp or datetime.now(timezone.utc)
    envelope = {
        "action": action,
        "toolName": tool_name,
        "userEmail": user_email,
        "data": data if data is not None else {},
        "timestamp": timestamp.isoformat(),
    }
    if session_id:
        envelope["sessionId"] = session_id
    return envelope


class CollectorSink:
    """Fire-and-forget HTTP sink.

    Only failures observable on this side raise. In opaque mode every request
    that gets a response is reported as indeterminate, regardless of status.
    """

    USER_AGENT = "StudyTrack-Sync/1.0.0"

    def __init__(
        self,
        collector_url: str = DEFAULT_COLLECTOR_URL,
        timeout: int = 30,
        opaque: bool = True,
        session: Optional[requests.Session] = None,
    ):
        """Initialize the sink.

        Args:
            collector_url: Collector POST endpoint
            timeout: Request timeout in seconds
            opaque: Ignore response status and body
            session: Optional requests session (for dependency injection/testing)
        """
        self.collector_url = collector_url
        self.timeout = timeout
        self.opaque = opaque
        self._session = session or requests.Session()
        self._owns_session = session is None

    def _get_headers(self) -> dict:
        return {
            "Content-Type": "application/json",
            "User-Agent": self.USER_AGENT,
        }

    def send(self, envelope: dict) -> SendResult:
        """POST one envelope.

        Raises:
            SinkTransportError: If the collector could not be reached
        """
        try:
            response = self._session.post(
                self.collector_url,
                json=envelope,
                headers=self._get_headers(),
                timeout=self.timeout,
            )
        except requests.exceptions.ConnectionError as e:
            raise SinkTransportError("Cannot connect to collector") from e
        except requests.exceptions.Timeout as e:
            raise SinkTransportError("Request timed out") from e
        except requests.exceptions.RequestException as e:
            raise SinkTransportError(f"Request failed: {e}") from e

        if self.opaque:
            return SendResult()

        body: dict = {}
        try:
            parsed = response.json() if response.content else {}
            if isinstance(parsed, dict):
                body = parsed
        except ValueError:
            logger.debug(f"Collector returned non-JSON body ({response.status_code})")

        accepted = 200 <= response.status_code < 300
        if accepted and body.get("success") is False:
            accepted = False
        if not accepted:
            logger.warning(
                f"Collector rejected {envelope.get('action')} "
                f"({response.status_code}): {body.get('message', '')}"
            )
        return SendResult(accepted=accepted, status_code=response.status_code, body=body)

    def close(self) -> None:
        """Close the session if we own it."""
        if self._owns_session and self._session is not None:
            self._session.close()
            self._session = None

    def __enter__(self) -> "CollectorSink":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
