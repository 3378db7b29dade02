"""
pg2mssql Migration Orchestrator
===============================

Sequences one PostgreSQL -> SQL Server run:

    IDLE -> VALIDATING_CONNECTIONS -> READING_CATALOG -> PLANNING_DDL
         -> APPLYING_NAMESPACES -> APPLYING_TABLES -> APPLYING_FOREIGN_KEYS
         -> MOVING_DATA -> REPORTING -> DONE

Connectivity, catalog and planning errors are fatal and move the run to
FAILED before any DDL is issued. DDL and per-table data failures are
recorded in the MigrationReport and the run still reaches DONE.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from typing import Callable, List, Optional

from core.data_mover import DEFAULT_BATCH_SIZE, DEFAULT_BULK_TIMEOUT, DataMover
from core.ddl_planner import DEFAULT_NAMESPACE_SUFFIX, DdlPlanner, dependency_order
from core.errors import ConfigurationError, MigrationError, sanitize_error
from core.events import EventKind, EventSink, LoggingEventSink, MigrationEvent
from core.migration_report import MigrationReport
from core.schema_applier import SchemaApplier
from core.schema_ir import DdlPhase, DdlPlan, TableDescriptor, TableOutcome
from extensions.plugins.mssql_adapter import MSSQLDestination
from extensions.plugins.postgresql_adapter import PostgreSQLCatalogReader, is_system_namespace

logger = logging.getLogger(__name__)


class MigrationState(Enum):
    IDLE = "idle"
    VALIDATING_CONNECTIONS = "validating_connections"
    READING_CATALOG = "reading_catalog"
    PLANNING_DDL = "planning_ddl"
    APPLYING_NAMESPACES = "applying_namespaces"
    APPLYING_TABLES = "applying_tables"
    APPLYING_FOREIGN_KEYS = "applying_foreign_keys"
    MOVING_DATA = "moving_data"
    REPORTING = "reporting"
    DONE = "done"
    FAILED = "failed"


STATE_ORDER = [
    MigrationState.IDLE,
    MigrationState.VALIDATING_CONNECTIONS,
    MigrationState.READING_CATALOG,
    MigrationState.PLANNING_DDL,
    MigrationState.APPLYING_NAMESPACES,
    MigrationState.APPLYING_TABLES,
    MigrationState.APPLYING_FOREIGN_KEYS,
    MigrationState.MOVING_DATA,
    MigrationState.REPORTING,
    MigrationState.DONE,
]

PHASE_STATES = {
    DdlPhase.CREATE_NAMESPACES: MigrationState.APPLYING_NAMESPACES,
    DdlPhase.CREATE_TABLES: MigrationState.APPLYING_TABLES,
    DdlPhase.ADD_FOREIGN_KEYS: MigrationState.APPLYING_FOREIGN_KEYS,
}


class InvalidTransition(MigrationError):
    def __init__(self, current: MigrationState, requested: MigrationState):
        super().__init__(
            f"Illegal state transition {current.value} -> {requested.value}",
            details={'current': current.value, 'requested': requested.value}
        )


class MigrationOrchestrator:
    def __init__(self, provider, suffix: str = DEFAULT_NAMESPACE_SUFFIX,
                 batch_size: int = DEFAULT_BATCH_SIZE, timeout: float = DEFAULT_BULK_TIMEOUT,
                 workers: int = 1, check_constraints: bool = False,
                 namespaces: Optional[List[str]] = None, sink: EventSink = None,
                 report_dir=None,
                 reader_factory: Callable = PostgreSQLCatalogReader,
                 destination_factory: Callable = MSSQLDestination):
        self.provider = provider
        self.planner = DdlPlanner(suffix=suffix)
        self.batch_size = batch_size
        self.timeout = timeout
        self.workers = max(1, workers)
        self.check_constraints = check_constraints
        self.namespaces = namespaces
        self.sink = sink or LoggingEventSink()
        self.report_dir = report_dir
        self.reader_factory = reader_factory
        self.destination_factory = destination_factory

        self.state = MigrationState.IDLE
        self.tables: List[TableDescriptor] = []
        self.plan_result: Optional[DdlPlan] = None
        self.report: Optional[MigrationReport] = None

        self._source_conn = None
        self._destination_conn = None
        self._worker_local = threading.local()
        self._worker_conns = []
        self._worker_lock = threading.Lock()

    def close(self):
        """Close every connection this run opened."""
        with self._worker_lock:
            conns = [self._source_conn, self._destination_conn] + self._worker_conns
            self._worker_conns = []
        self._source_conn = None
        self._destination_conn = None
        for conn in conns:
            if conn is None:
                continue
            try:
                conn.close()
            except Exception as e:
                logger.warning(f"Error closing connection: {sanitize_error(e)}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def _transition(self, target: MigrationState):
        if target == MigrationState.FAILED:
            if self.state in (MigrationState.DONE, MigrationState.FAILED):
                raise InvalidTransition(self.state, target)
        elif self.state == MigrationState.FAILED or \
                STATE_ORDER.index(target) != STATE_ORDER.index(self.state) + 1:
            raise InvalidTransition(self.state, target)

        self.state = target
        self.sink(MigrationEvent(kind=EventKind.PHASE_ENTERED, phase=target.value))

    def _warn(self, message: str):
        self.report.add_warning(message)
        self.sink(MigrationEvent(kind=EventKind.WARNING, phase=self.state.value, detail=message))

    def plan(self) -> DdlPlan:
        """Validate connections, read the catalog and plan the DDL without touching the destination"""
        self._transition(MigrationState.VALIDATING_CONNECTIONS)
        self.report = MigrationReport(**self._report_targets())
        try:
            if self.namespaces is not None:
                system = [n for n in self.namespaces if is_system_namespace(n)]
                if system:
                    raise ConfigurationError(
                        f"System schemas cannot be migrated: {', '.join(system)}",
                        details={'namespaces': system}
                    )
            self.provider.validate()
            self._source_conn = self.provider.open_source_connection()

            self._transition(MigrationState.READING_CATALOG)
            reader = self.reader_factory(self._source_conn)
            namespaces = self.namespaces if self.namespaces is not None else reader.list_namespaces()
            self.tables = reader.read_catalog(namespaces)
            logger.info(f"Catalog read: {len(namespaces)} namespaces, {len(self.tables)} tables")

            self._transition(MigrationState.PLANNING_DDL)
            self.plan_result = self.planner.plan(self.tables, namespaces)
        except MigrationError as e:
            logger.error(f"Migration aborted during {self.state.value}: {sanitize_error(e)}")
            self._transition(MigrationState.FAILED)
            raise

        for warning in self.plan_result.warnings:
            self._warn(warning)
        return self.plan_result

    def run(self) -> MigrationReport:
        """Run every phase; returns the report once each table was attempted once"""
        plan = self.plan()

        try:
            self._destination_conn = self.provider.open_destination_connection()
        except MigrationError as e:
            logger.error(f"Migration aborted: {sanitize_error(e)}")
            self._transition(MigrationState.FAILED)
            raise
        applier = SchemaApplier(self.destination_factory(self._destination_conn), sink=self.sink)

        for phase, statements in plan.phases():
            self._transition(PHASE_STATES[phase])
            result = applier.apply(statements)
            self.report.record_phase(phase.value, result.applied, [f.to_dict() for f in result.failures])
            logger.info(f"{phase.value}: {result.applied} applied, {len(result.failures)} failed")

        self._transition(MigrationState.MOVING_DATA)
        ordered, order_warnings = dependency_order(self.tables)
        for warning in order_warnings:
            self._warn(warning)
        if self.workers > 1 and len(ordered) > 1:
            self._move_parallel(ordered)
        else:
            self._move_sequential(ordered)

        self._transition(MigrationState.REPORTING)
        self.report.finish()
        summary = self.report.summary()
        logger.info(
            f"Migration finished: {summary['tables_succeeded']}/{summary['tables_attempted']} tables, "
            f"{summary['rows_copied']} rows"
        )
        if self.report_dir is not None:
            self.report.write(self.report_dir)

        self._transition(MigrationState.DONE)
        return self.report

    def _report_targets(self) -> dict:
        describe = getattr(self.provider, 'describe', None)
        targets = describe() if callable(describe) else {}
        if not isinstance(targets, dict):
            return {}
        return {'source': targets.get('source'), 'destination': targets.get('destination')}

    def _new_mover(self, source_conn, destination_conn) -> DataMover:
        return DataMover(
            self.reader_factory(source_conn),
            self.destination_factory(destination_conn),
            namespace_map={ns.source_name: ns.destination_name for ns in self.plan_result.namespaces},
            batch_size=self.batch_size,
            timeout=self.timeout,
            check_constraints=self.check_constraints,
        )

    def _record(self, outcome: TableOutcome):
        self.report.record(outcome)
        if outcome.succeeded:
            self.sink(MigrationEvent(
                kind=EventKind.TABLE_MOVED,
                phase=MigrationState.MOVING_DATA.value,
                object_name=f"{outcome.namespace}.{outcome.table}",
                detail=f"{outcome.rows_copied} rows",
            ))
        else:
            self.sink(MigrationEvent(
                kind=EventKind.TABLE_FAILED,
                phase=MigrationState.MOVING_DATA.value,
                object_name=f"{outcome.namespace}.{outcome.table}",
                detail=outcome.error_detail,
            ))

    def _move_sequential(self, tables: List[TableDescriptor]):
        mover = self._new_mover(self._source_conn, self._destination_conn)
        for table in tables:
            self._record(mover.move_table(table))

    def _worker_mover(self) -> DataMover:
        mover = getattr(self._worker_local, 'mover', None)
        if mover is None:
            source_conn = self.provider.open_source_connection()
            with self._worker_lock:
                self._worker_conns.append(source_conn)
            destination_conn = self.provider.open_destination_connection()
            with self._worker_lock:
                self._worker_conns.append(destination_conn)
            mover = self._new_mover(source_conn, destination_conn)
            self._worker_local.mover = mover
        return mover

    def _move_one(self, table: TableDescriptor) -> TableOutcome:
        try:
            mover = self._worker_mover()
        except Exception as e:
            # No connections for this worker: the table still gets its single attempt recorded
            detail = f"{type(e).__name__}: {sanitize_error(e)}"
            logger.error(f"Failed to open worker connections for {table.qualified_name}: {detail}")
            return TableOutcome(namespace=table.namespace, table=table.name,
                                succeeded=False, error_detail=detail, error=e)
        return mover.move_table(table)

    def _move_parallel(self, tables: List[TableDescriptor]):
        logger.info(f"Moving {len(tables)} tables with {self.workers} workers")
        with ThreadPoolExecutor(max_workers=self.workers, thread_name_prefix="pg2mssql-mover") as pool:
            for outcome in pool.map(self._move_one, tables):
                self._record(outcome)
