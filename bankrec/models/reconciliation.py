"""Audit and automatic-pass result models."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Dict, List, Optional
from uuid import uuid4

from .candidates import Candidate
from .enums import AuditAction


@dataclass
class AuditEntry:
    """An entry in the audit log."""
    id: str = field(default_factory=lambda: str(uuid4()))
    timestamp: datetime = field(default_factory=datetime.utcnow)

    # Action
    action: AuditAction = AuditAction.MATCH_COMMITTED

    # Context
    operation: Optional[str] = None
    transaction_ids: List[str] = field(default_factory=list)
    ledger_id: Optional[str] = None

    # Details
    message: str = ""
    details: Dict[str, Any] = field(default_factory=dict)

    # Outcome
    success: bool = True
    error_message: Optional[str] = None


@dataclass
class PlannedMatch:
    """A candidate accepted by the automatic pass."""
    transaction_id: str
    source: str
    candidate: Candidate
    applied: bool = False
    error: Optional[str] = None


@dataclass
class SourceReport:
    """Automatic-pass counts for one bank account."""
    source: str
    total: int = 0
    matched: int = 0
    unmatched: int = 0
    tie_breaks: int = 0  # matched rows whose top score was shared
    applied: int = 0
    failed: int = 0

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "matched": self.matched,
            "unmatched": self.unmatched,
            "tie_breaks": self.tie_breaks,
            "applied": self.applied,
            "failed": self.failed,
        }


@dataclass
class AutoReconcileReport:
    """Complete result of an automatic reconciliation pass."""
    dry_run: bool = True
    threshold: int = 0
    sources: Dict[str, SourceReport] = field(default_factory=dict)
    matches: List[PlannedMatch] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None

    @property
    def total_matched(self) -> int:
        return sum(r.matched for r in self.sources.values())

    @property
    def total_applied(self) -> int:
        return sum(r.applied for r in self.sources.values())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "dry_run": self.dry_run,
            "threshold": self.threshold,
            "sources": {k: v.to_dict() for k, v in self.sources.items()},
            "matches": [
                {
                    "transaction_id": m.transaction_id,
                    "source": m.source,
                    "candidate": m.candidate.to_dict(),
                    "applied": m.applied,
                    "error": m.error,
                }
                for m in self.matches
            ],
        }
