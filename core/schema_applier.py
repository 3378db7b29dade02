"""
Schema applier: executes planned DDL one statement at a time.

There is no surrounding transaction. Each statement commits on its own so a
bad statement never rolls back objects that were already created, and a
failure never stops the remaining statements of the phase from running.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional

from core.errors import DdlError, sanitize_error
from core.events import EventKind, EventSink, LoggingEventSink, MigrationEvent
from core.schema_ir import DdlStatement

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DdlFailure:
    statement: DdlStatement
    error_detail: str

    def to_dict(self):
        return {
            'phase': self.statement.phase.value,
            'object': self.statement.object_name,
            'error_detail': self.error_detail,
        }


@dataclass
class ApplyResult:
    applied: int = 0
    failures: List[DdlFailure] = field(default_factory=list)

    @property
    def first_failure(self) -> Optional[DdlFailure]:
        return self.failures[0] if self.failures else None

    @property
    def succeeded(self) -> bool:
        return not self.failures


class SchemaApplier:
    def __init__(self, destination, sink: EventSink = None):
        self.destination = destination
        self.sink = sink or LoggingEventSink()

    def apply(self, statements: List[DdlStatement]) -> ApplyResult:
        result = ApplyResult()
        for statement in statements:
            try:
                self.destination.execute_ddl(statement.sql)
            except Exception as e:
                error = DdlError(sanitize_error(e), statement=statement.sql)
                logger.debug(f"Failed statement:\n{statement.sql}")
                result.failures.append(DdlFailure(statement=statement, error_detail=error.message))
                self.sink(MigrationEvent(
                    kind=EventKind.OBJECT_FAILED,
                    phase=statement.phase.value,
                    object_name=statement.object_name,
                    detail=error.message,
                ))
                continue

            result.applied += 1
            self.sink(MigrationEvent(
                kind=EventKind.OBJECT_CREATED,
                phase=statement.phase.value,
                object_name=statement.object_name,
            ))
        return result
