"""Protocol types for the sync components.

Defines the interfaces the queue, session tracker and scheduler require from
their collaborators, enabling easier testing and looser coupling.
"""

from typing import TYPE_CHECKING, Optional, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .sink import SendResult


@runtime_checkable
class StoreProtocol(Protocol):
    """Interface for the local durable key-value store."""

    def get(self, owner: str, name: str) -> Optional[bytes]: ...

    def set(self, owner: str, name: str, value: bytes) -> None: ...

    def delete(self, owner: str, name: str) -> None: ...

    def names(self, owner: str) -> list[str]: ...

    def close(self) -> None: ...


@runtime_checkable
class SinkProtocol(Protocol):
    """Interface for delivering envelopes to the remote collector."""

    def send(self, envelope: dict) -> "SendResult": ...

    def close(self) -> None: ...
