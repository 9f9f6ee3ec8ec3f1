"""
Execution Ledger

Append-only record of playbook run outcomes.
"""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from comply_agent.store.models import utcnow


class ExecutionOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"


@dataclass
class ExecutionLedgerEntry:
    """Outcome of one playbook run."""
    playbook_id: str
    result: ExecutionOutcome
    executed_at: datetime = field(default_factory=utcnow)
    incident_id: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "playbook_id": self.playbook_id,
            "executed_at": self.executed_at.isoformat(),
            "result": self.result.value,
            "incident_id": self.incident_id,
            "error": self.error,
        }


class ExecutionLedger:
    """Append-only ledger, read back as a most-recent suffix."""

    def __init__(self):
        self._lock = threading.Lock()
        self._entries: list[ExecutionLedgerEntry] = []

    def record(
        self,
        playbook_id: str,
        result: ExecutionOutcome,
        incident_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> ExecutionLedgerEntry:
        entry = ExecutionLedgerEntry(
            playbook_id=playbook_id,
            result=result,
            incident_id=incident_id,
            error=error,
        )
        with self._lock:
            self._entries.append(entry)
        return entry

    def recent(self, limit: int = 10) -> list[ExecutionLedgerEntry]:
        """Get the last ``limit`` entries, oldest first."""
        if limit <= 0:
            return []
        with self._lock:
            return self._entries[-limit:]

    def __len__(self) -> int:
        return len(self._entries)
