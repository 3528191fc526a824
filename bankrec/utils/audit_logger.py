"""
Audit trail of reconciliation decisions: commits, reverts, compensations and
automatic-pass selections.
"""

import json
from collections import Counter
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

import structlog

from ..config import Settings, get_settings
from ..models import AuditAction, AuditEntry

logger = structlog.get_logger()


def entry_to_dict(entry: AuditEntry) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "timestamp": entry.timestamp.isoformat(),
        "action": entry.action.value,
        "operation": entry.operation,
        "transaction_ids": list(entry.transaction_ids),
        "ledger_id": entry.ledger_id,
        "message": entry.message,
        "details": entry.details,
        "success": entry.success,
        "error_message": entry.error_message,
    }


class AuditLogger:
    """
    Per-run audit trail.
    Entries stay in memory for the run and are echoed to structlog as they arrive;
    failures are echoed at warning level.
    """

    def __init__(self, run_id: str = "session", settings: Optional[Settings] = None):
        self.run_id = run_id
        self.settings = settings or get_settings()
        self.entries: List[AuditEntry] = []

    def log(self, entry: AuditEntry) -> None:
        self.entries.append(entry)

        emit = logger.info if entry.success else logger.warning
        emit(
            entry.message,
            action=entry.action.value,
            operation=entry.operation,
            transaction_ids=entry.transaction_ids,
            ledger_id=entry.ledger_id,
            error=entry.error_message,
        )

    def get_entries(
        self,
        action_filter: Optional[AuditAction] = None,
        success_only: bool = False,
    ) -> List[AuditEntry]:
        """Entries in arrival order, optionally narrowed by action and outcome."""
        return [
            e for e in self.entries
            if (action_filter is None or e.action == action_filter)
            and (not success_only or e.success)
        ]

    def transaction_trail(self, transaction_id: str) -> List[AuditEntry]:
        """Every entry that mentions a bank transaction."""
        return [e for e in self.entries if transaction_id in e.transaction_ids]

    def export_to_file(self, output_path: Optional[Path] = None) -> Path:
        """Write the trail as JSON; defaults to reports_dir/audit_<run_id>.json."""
        path = Path(output_path) if output_path else self.settings.reports_dir / f"audit_{self.run_id}.json"
        path.parent.mkdir(parents=True, exist_ok=True)

        payload = {
            "run_id": self.run_id,
            "exported_at": datetime.utcnow().isoformat(),
            "total_entries": len(self.entries),
            "summary": self.summary(),
            "entries": [entry_to_dict(e) for e in self.entries],
        }
        path.write_text(
            json.dumps(payload, indent=2, ensure_ascii=False, default=str),
            encoding="utf-8",
        )

        logger.info("Audit trail exported", path=str(path), entries=len(self.entries))
        return path

    def summary(self) -> Dict[str, Any]:
        failures = [e for e in self.entries if not e.success]
        return {
            "total_entries": len(self.entries),
            "success_count": len(self.entries) - len(failures),
            "error_count": len(failures),
            "action_counts": dict(Counter(e.action.value for e in self.entries)),
        }
