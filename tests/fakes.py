"""Test doubles shared by the sync tests."""

from studytrack.sync.sink import SendResult, SinkTransportError


class RecordingSink:
    """Sink that records every envelope and can fail the first N sends."""

    def __init__(self, fail_first: int = 0, result: SendResult = None):
        self.sent: list[dict] = []
        self.attempts: list[dict] = []
        self.fail_first = fail_first
        self.result = result or SendResult()
        self.closed = False

    def send(self, envelope: dict) -> SendResult:
        self.attempts.append(envelope)
        if len(self.attempts) <= self.fail_first:
            raise SinkTransportError("Cannot connect to collector")
        self.sent.append(envelope)
        return self.result

    def sent_actions(self, action: str) -> list[dict]:
        return [e for e in self.sent if e["action"] == action]

    def close(self) -> None:
        self.closed = True
