"""
Data mover: copies one table's rows from the source into the destination.

move_table() is the per-table failure boundary. Whatever goes wrong while a
table is copied (lost connection, coercion failure, constraint violation,
timeout) is rolled back and returned as a failed TableOutcome; it is never
raised to the caller.
"""

import datetime
import json
import logging
import time
from decimal import Decimal
from typing import Any, Dict, Iterator, List, Sequence

from core.errors import sanitize_error
from core.schema_ir import TableDescriptor, TableOutcome

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 1000
DEFAULT_BULK_TIMEOUT = 300  # seconds


def coerce_value(value: Any) -> Any:
    """Convert psycopg2 values into something pymssql can bind"""
    if value is None or isinstance(value, (str, int, float, bool, Decimal, bytes,
                                           datetime.date, datetime.time)):
        return value
    if isinstance(value, (memoryview, bytearray)):
        return bytes(value)
    if isinstance(value, (dict, list, tuple)):
        return json.dumps(value, default=str)
    if isinstance(value, datetime.timedelta):
        # interval -> TIME only holds values within one day
        if datetime.timedelta(0) <= value < datetime.timedelta(days=1):
            return (datetime.datetime.min + value).time()
        return str(value)
    # UUID, inet/cidr, ranges and anything else the driver hands back
    return str(value)


def coerce_row(row: Sequence[Any]) -> tuple:
    return tuple(coerce_value(v) for v in row)


class DataMover:
    """Moves rows table by table between one source reader and one destination"""

    def __init__(self, source, destination, namespace_map: Dict[str, str],
                 batch_size: int = DEFAULT_BATCH_SIZE, timeout: float = DEFAULT_BULK_TIMEOUT,
                 check_constraints: bool = False):
        self.source = source
        self.destination = destination
        self.namespace_map = namespace_map
        self.batch_size = batch_size
        self.timeout = timeout
        self.check_constraints = check_constraints

    def _coerced_batches(self, table: TableDescriptor) -> Iterator[List[tuple]]:
        for batch in self.source.stream_rows(table.namespace, table.name, table.column_names, self.batch_size):
            yield [coerce_row(row) for row in batch]

    def move_table(self, table: TableDescriptor) -> TableOutcome:
        started = time.monotonic()
        destination_ns = self.namespace_map.get(table.namespace, table.namespace)
        logger.info(f"Transferring data from {table.qualified_name} to {destination_ns}.{table.name}")

        try:
            rows = self.destination.bulk_load(
                destination_ns,
                table.name,
                table.column_names,
                self._coerced_batches(table),
                identity_insert=table.has_identity,
                check_constraints=self.check_constraints,
                timeout=self.timeout,
            )
        except Exception as e:
            detail = f"{type(e).__name__}: {sanitize_error(e)}"
            logger.error(f"Failed to transfer {table.qualified_name}: {detail}")
            self._end_source_transaction()
            return TableOutcome(
                namespace=table.namespace,
                table=table.name,
                succeeded=False,
                error_detail=detail,
                duration_seconds=time.monotonic() - started,
                error=e,
            )

        self._end_source_transaction()
        duration = time.monotonic() - started
        logger.info(f"Successfully transferred {rows} rows from {table.qualified_name} ({duration:.2f}s)")
        return TableOutcome(
            namespace=table.namespace,
            table=table.name,
            succeeded=True,
            rows_copied=rows,
            duration_seconds=duration,
        )

    def _end_source_transaction(self):
        # A failed read leaves the source transaction aborted; the next table needs a clean one
        connection = getattr(self.source, 'connection', None)
        if connection is None:
            return
        try:
            connection.rollback()
        except Exception as e:
            logger.warning(f"Could not reset source transaction: {sanitize_error(e)}")
