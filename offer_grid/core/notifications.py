"""
Notification surface and activity log sink.
Both are outbound and best-effort: failures are logged, never raised to the orchestrator.
"""

from dataclasses import dataclass, field, asdict
from datetime import datetime
from typing import Any, Dict, List, Optional

from .schema import OfferRow
from ..util.logging import logger, sanitize_row_snapshot

BUSY_MESSAGE = "The sheet is busy, please try your edit again in a moment."


@dataclass
class Notification:
    """One advisory or prompt raised to the user."""
    kind: str  # advisory|mismatch_prompt|gap_prompt
    message: str
    title: str = ""
    details: Dict[str, Any] = field(default_factory=dict)
    created_at: datetime = field(default_factory=datetime.now)

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["created_at"] = self.created_at.isoformat()
        return data


class Notifier:
    """Base notification surface. Hosts override the hooks they render."""

    def advisory(self, message: str, title: str = "") -> None:
        logger.info(f"Advisory{f' [{title}]' if title else ''}: {message}")

    def prompt_bundle_mismatch(self, row: int, bundle_id: str, current: Dict[str, str],
                               expected: Dict[str, str]) -> None:
        logger.info(f"Bundle {bundle_id} mismatch at row {row}: current={current} expected={expected}")

    def prompt_bundle_gap(self, bundle_id: str) -> None:
        logger.info(f"Bundle {bundle_id} has a gap between its rows")


class RecordingNotifier(Notifier):
    """Keeps every notification in memory; used by tests and the HTTP surface."""

    def __init__(self):
        self.notifications: List[Notification] = []

    def advisory(self, message: str, title: str = "") -> None:
        super().advisory(message, title)
        self.notifications.append(Notification(kind="advisory", message=message, title=title))

    def prompt_bundle_mismatch(self, row: int, bundle_id: str, current: Dict[str, str],
                               expected: Dict[str, str]) -> None:
        super().prompt_bundle_mismatch(row, bundle_id, current, expected)
        self.notifications.append(Notification(
            kind="mismatch_prompt",
            message=f"Bundle {bundle_id}: quantity/term must match the other items.",
            title="Bundle Mismatch",
            details={"row": row, "bundle_id": bundle_id, "current": current, "expected": expected},
        ))

    def prompt_bundle_gap(self, bundle_id: str) -> None:
        super().prompt_bundle_gap(bundle_id)
        self.notifications.append(Notification(
            kind="gap_prompt",
            message=f"Bundle {bundle_id} items must be in adjacent rows.",
            title="Bundle Gap",
            details={"bundle_id": bundle_id},
        ))

    def advisories(self) -> List[str]:
        return [n.message for n in self.notifications if n.kind == "advisory"]

    def drain(self) -> List[Notification]:
        drained, self.notifications = self.notifications, []
        return drained


@dataclass
class ActivityEntry:
    """One status transition with full row snapshots."""
    row_number: int
    old_status: Optional[str]
    new_status: Optional[str]
    before: List[Any]
    after: List[Any]
    timestamp: datetime = field(default_factory=datetime.now)


class ActivityLog:
    """Fire-and-forget sink for status transitions."""

    def __init__(self, max_entries: int = 1000):
        self.entries: List[ActivityEntry] = []
        self.max_entries = max_entries

    def record_transition(self, row_number: int, old_status: Any, new_status: Any,
                          before: OfferRow, after: OfferRow) -> None:
        try:
            entry = ActivityEntry(
                row_number=row_number,
                old_status=old_status or None,
                new_status=new_status or None,
                before=list(before.to_dict().values()),
                after=list(after.to_dict().values()),
            )
            self._write(entry)
        except Exception as e:
            logger.error(f"Activity log write failed for row {row_number}: {e}")

    def _write(self, entry: ActivityEntry) -> None:
        self.entries.append(entry)
        if len(self.entries) > self.max_entries:
            del self.entries[0]
        logger.log_operation("activity.transition", "recorded", {
            "row": entry.row_number,
            "from": entry.old_status or "",
            "to": entry.new_status or "",
            "after": sanitize_row_snapshot(entry.after),
        })
