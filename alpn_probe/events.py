"""Connection lifecycle states as reported by the transport."""

from dataclasses import dataclass
from enum import Enum
from typing import Optional


class ConnectionState(Enum):
    SETUP = "setup"
    PREPARING = "preparing"
    WAITING = "waiting"
    READY = "ready"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def terminal(self) -> bool:
        return self in (ConnectionState.FAILED, ConnectionState.CANCELLED)


class PathStatus(Enum):
    SATISFIED = "satisfied"
    UNSATISFIED = "unsatisfied"


@dataclass(frozen=True)
class ConnectionEvent:
    """A single state transition; ``error`` is set for WAITING and FAILED."""

    state: ConnectionState
    error: Optional[BaseException] = None

    @classmethod
    def failed(cls, error: BaseException) -> "ConnectionEvent":
        return cls(ConnectionState.FAILED, error)

    @classmethod
    def waiting(cls, error: BaseException) -> "ConnectionEvent":
        return cls(ConnectionState.WAITING, error)
