"""
Migration report.

Collects per-table outcomes (append-only, safe for concurrent writers) and
the DDL failures of each phase, then renders them as JSON and Markdown.
Deterministic: outcomes are rendered sorted by (namespace, table).
"""

import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from core.schema_ir import TableOutcome

logger = logging.getLogger(__name__)


class MigrationReport:
    def __init__(self, source: str = None, destination: str = None):
        self.source = source
        self.destination = destination
        self.started_at = datetime.now()
        self.finished_at: Optional[datetime] = None
        self.warnings: List[str] = []
        self.ddl_failures: Dict[str, List[Dict[str, str]]] = {}
        self.ddl_applied: Dict[str, int] = {}
        self._outcomes: List[TableOutcome] = []
        self._lock = threading.Lock()

    def record(self, outcome: TableOutcome):
        with self._lock:
            self._outcomes.append(outcome)

    def record_phase(self, phase: str, applied: int, failures: List[Dict[str, str]]):
        with self._lock:
            self.ddl_applied[phase] = applied
            self.ddl_failures[phase] = list(failures)

    def add_warning(self, message: str):
        with self._lock:
            if message not in self.warnings:
                self.warnings.append(message)

    def finish(self):
        self.finished_at = datetime.now()

    @property
    def outcomes(self) -> List[TableOutcome]:
        with self._lock:
            return list(self._outcomes)

    @property
    def failed(self) -> List[TableOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    @property
    def succeeded(self) -> List[TableOutcome]:
        return [o for o in self.outcomes if o.succeeded]

    @property
    def has_failures(self) -> bool:
        return bool(self.failed) or any(self.ddl_failures.values())

    def summary(self) -> Dict[str, Any]:
        outcomes = self.outcomes
        return {
            'tables_attempted': len(outcomes),
            'tables_succeeded': sum(1 for o in outcomes if o.succeeded),
            'tables_failed': sum(1 for o in outcomes if not o.succeeded),
            'rows_copied': sum(o.rows_copied for o in outcomes),
            'ddl_applied': dict(self.ddl_applied),
            'ddl_failed': {phase: len(f) for phase, f in self.ddl_failures.items()},
            'warnings': len(self.warnings),
        }

    def to_dict(self) -> Dict[str, Any]:
        ordered = sorted(self.outcomes, key=lambda o: (o.namespace, o.table))
        return {
            'source': self.source,
            'destination': self.destination,
            'started_at': self.started_at.isoformat(),
            'finished_at': self.finished_at.isoformat() if self.finished_at else None,
            'summary': self.summary(),
            'tables': [o.to_dict() for o in ordered],
            'ddl_failures': self.ddl_failures,
            'warnings': list(self.warnings),
        }

    def to_markdown(self) -> str:
        summary = self.summary()
        lines = ["# Migration Report", ""]

        lines.append("## Summary")
        lines.append(f"- **Source**: {self.source or 'N/A'}")
        lines.append(f"- **Destination**: {self.destination or 'N/A'}")
        lines.append(f"- **Started**: {self.started_at.isoformat()}")
        if self.finished_at:
            lines.append(f"- **Duration**: {self.finished_at - self.started_at}")
        lines.append(f"- **Tables**: {summary['tables_succeeded']} succeeded, "
                     f"{summary['tables_failed']} failed")
        lines.append(f"- **Rows copied**: {summary['rows_copied']}")
        lines.append("")

        lines.append("## Tables")
        lines.append("| Namespace | Table | Status | Rows | Detail |")
        lines.append("| :--- | :--- | :--- | ---: | :--- |")
        for o in sorted(self.outcomes, key=lambda o: (o.namespace, o.table)):
            status = "OK" if o.succeeded else "FAILED"
            detail = (o.error_detail or "").replace("|", "\\|").replace("\n", " ")
            lines.append(f"| {o.namespace} | {o.table} | {status} | {o.rows_copied} | {detail} |")
        lines.append("")

        failed_ddl = [(phase, f) for phase, items in self.ddl_failures.items() for f in items]
        if failed_ddl:
            lines.append(f"## DDL Failures ({len(failed_ddl)})")
            for phase, f in failed_ddl:
                lines.append(f"- [{phase}] **{f['object']}**: {f['error_detail']}")
            lines.append("")

        if self.warnings:
            lines.append(f"## Warnings ({len(self.warnings)})")
            for w in self.warnings:
                lines.append(f"- {w}")
            lines.append("")

        return "\n".join(lines)

    def write(self, directory) -> Path:
        """Write migration_report.json and migration_report.md; returns the JSON path"""
        directory = Path(directory)
        directory.mkdir(parents=True, exist_ok=True)
        json_path = directory / "migration_report.json"
        with open(json_path, "w", encoding="utf-8") as f:
            json.dump(self.to_dict(), f, indent=2)
        with open(directory / "migration_report.md", "w", encoding="utf-8") as f:
            f.write(self.to_markdown())
        logger.info(f"Migration report written to {json_path}")
        return json_path
