from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Literal, Mapping

OperationKind = Literal["create", "update", "delete"]
OPERATION_KINDS: tuple[str, ...] = ("create", "update", "delete")


def utc_now_iso() -> str:
    return datetime.now(tz=timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass(frozen=True, slots=True)
class QueuedOperation:
    """A client-side write waiting for server confirmation."""

    operation: OperationKind
    entity_type: str
    payload: Any
    timestamp: str
    entity_id: str | None = None

    def __post_init__(self) -> None:
        if self.operation not in OPERATION_KINDS:
            raise ValueError(f"unknown operation: {self.operation!r}")
        if not self.entity_type:
            raise ValueError("entity_type is required")

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> "QueuedOperation":
        entity_id = data.get("entityId")
        return cls(
            operation=data.get("operation"),  # type: ignore[arg-type]
            entity_type=str(data.get("entityType") or ""),
            payload=data.get("payload"),
            timestamp=str(data.get("timestamp") or ""),
            entity_id=str(entity_id) if entity_id is not None else None,
        )

    def to_wire(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "operation": self.operation,
            "entityType": self.entity_type,
            "payload": self.payload,
            "timestamp": self.timestamp,
        }
        if self.entity_id is not None:
            data["entityId"] = self.entity_id
        return data


@dataclass(frozen=True, slots=True)
class DrainResult:
    success: bool
    processed: int
    failed: int
    server_changes: tuple[Any, ...] = ()
    next_sync_at: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "processed": self.processed,
            "failed": self.failed,
            "server_changes": list(self.server_changes),
            "next_sync_at": self.next_sync_at,
        }


@dataclass(frozen=True, slots=True)
class SyncState:
    """Derived view for the UI; recomputable from the queue and the last-sync marker."""

    last_sync_at: str | None
    pending_count: int


@dataclass(frozen=True, slots=True)
class CachedEntry:
    data: Any
    cached_at: str


__all__ = [
    "CachedEntry",
    "DrainResult",
    "OPERATION_KINDS",
    "OperationKind",
    "QueuedOperation",
    "SyncState",
    "utc_now_iso",
]
