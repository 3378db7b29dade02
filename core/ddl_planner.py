"""
DDL planner: turns catalog facts into three ordered phases of SQL Server DDL.

Phase order is the contract:
1. CREATE SCHEMA for every destination namespace
2. CREATE TABLE for every table of every namespace
3. ALTER TABLE ... ADD CONSTRAINT ... FOREIGN KEY, only once all tables exist

Foreign keys are a global third phase because a key may reference a table in
a namespace that is created later.
"""

import logging
from collections import OrderedDict
from typing import Dict, Iterable, List, Optional, Tuple

from core.errors import PlanningError
from core.safe_query_builder import IDENTIFIER_MAX_LENGTH, SafeQueryBuilder
from core.schema_ir import (
    DdlPhase, DdlPlan, DdlStatement, ForeignKeyDescriptor, Namespace, TableDescriptor
)
from core.type_registry import TypeMapper

logger = logging.getLogger(__name__)

DEFAULT_NAMESPACE_SUFFIX = "_new"

# Schemas SQL Server creates in every database
RESERVED_DESTINATION_NAMESPACES = frozenset({
    'dbo', 'guest', 'sys', 'information_schema',
    'db_owner', 'db_accessadmin', 'db_securityadmin', 'db_ddladmin',
    'db_backupoperator', 'db_datareader', 'db_datawriter',
    'db_denydatareader', 'db_denydatawriter',
})


def destination_namespace_name(source_name: str, suffix: str = DEFAULT_NAMESPACE_SUFFIX) -> str:
    return f"{source_name}{suffix}"


class DdlPlanner:
    """Builds a DdlPlan from TableDescriptors"""

    def __init__(self, suffix: str = DEFAULT_NAMESPACE_SUFFIX, builder: SafeQueryBuilder = None):
        self.suffix = suffix
        self.builder = builder or SafeQueryBuilder()

    def destination_namespace(self, source_name: str) -> str:
        return destination_namespace_name(source_name, self.suffix)

    def plan(self, tables: List[TableDescriptor], namespaces: Optional[List[str]] = None) -> DdlPlan:
        """Plan every statement; raises PlanningError on malformed catalog facts"""
        source_namespaces = list(namespaces or [])
        for table in tables:
            if table.namespace not in source_namespaces:
                source_namespaces.append(table.namespace)

        plan = DdlPlan(namespaces=self._derive_namespaces(source_namespaces))
        namespace_map = {ns.source_name: ns.destination_name for ns in plan.namespaces}

        for ns in plan.namespaces:
            plan.create_namespaces.append(DdlStatement(
                phase=DdlPhase.CREATE_NAMESPACES,
                object_name=ns.destination_name,
                sql=self._build(self.builder.create_schema, ns.destination_name),
            ))

        for table in tables:
            plan.create_tables.append(self._create_table(table, namespace_map[table.namespace], plan.warnings))

        plan.add_foreign_keys.extend(self._foreign_keys(tables, namespace_map, plan.warnings))

        logger.info(
            f"Planned {len(plan.create_namespaces)} namespaces, {len(plan.create_tables)} tables, "
            f"{len(plan.add_foreign_keys)} foreign keys"
        )
        return plan

    def _build(self, fn, *args, **kwargs) -> str:
        try:
            return fn(*args, **kwargs)
        except ValueError as e:
            raise PlanningError(str(e)) from e

    def _derive_namespaces(self, source_names: Iterable[str]) -> List[Namespace]:
        seen: Dict[str, str] = {}
        result = []
        for source_name in source_names:
            destination = self.destination_namespace(source_name)
            key = destination.casefold()
            if len(destination) > IDENTIFIER_MAX_LENGTH:
                raise PlanningError(
                    f"Destination namespace name too long: {destination}",
                    {'source': source_name, 'limit': IDENTIFIER_MAX_LENGTH}
                )
            if key in RESERVED_DESTINATION_NAMESPACES:
                raise PlanningError(
                    f"Destination namespace '{destination}' collides with a built-in SQL Server schema",
                    {'source': source_name}
                )
            # SQL Server's default collation is case-insensitive
            if key in seen:
                raise PlanningError(
                    f"Namespaces '{seen[key]}' and '{source_name}' both map to '{destination}'",
                    {'sources': [seen[key], source_name], 'destination': destination}
                )
            seen[key] = source_name
            result.append(Namespace(source_name=source_name, destination_name=destination))
        return result

    def _create_table(self, table: TableDescriptor, destination: str, warnings: List[str]) -> DdlStatement:
        if not table.columns:
            raise PlanningError(
                f"Table {table.qualified_name} has no columns",
                {'namespace': table.namespace, 'table': table.name}
            )

        pk_columns = table.primary_key_columns
        composite_pk = len(pk_columns) > 1
        clauses = []

        for column in table.columns:
            if not TypeMapper.is_mapped(column.source_type):
                msg = (f"Unmapped type '{column.source_type}' for {table.qualified_name}.{column.name}, "
                       f"using {TypeMapper.map(column.source_type)}")
                logger.warning(msg)
                warnings.append(msg)
            if column.default is not None:
                warnings.append(
                    f"DEFERRED: Default value '{column.default}' for {table.qualified_name}.{column.name} "
                    f"is not migrated"
                )

            identity = None
            if column.is_identity:
                start = 1 if column.identity_start is None else column.identity_start
                increment = 1 if column.identity_increment is None else column.identity_increment
                identity = (start, increment)

            clauses.append(self._build(
                self.builder.column_clause,
                column.name,
                TypeMapper.map_column(column),
                column.nullable,
                primary_key=column.is_primary_key and not composite_pk,
                identity=identity,
            ))

        if composite_pk:
            clauses.append(self._build(self.builder.primary_key_clause, [c.name for c in pk_columns]))

        return DdlStatement(
            phase=DdlPhase.CREATE_TABLES,
            object_name=f"{destination}.{table.name}",
            sql=self._build(self.builder.create_table, destination, table.name, clauses),
        )

    def _foreign_keys(self, tables: List[TableDescriptor], namespace_map: Dict[str, str],
                      warnings: List[str]) -> List[DdlStatement]:
        statements = []
        used_names: Dict[str, set] = {}

        for table in tables:
            destination = namespace_map[table.namespace]
            taken = used_names.setdefault(destination.casefold(), set())

            for constraint_name, parts in self._group_constraints(table).items():
                parts.sort(key=lambda fk: fk.position)
                referenced = {(fk.referenced_namespace or table.namespace, fk.referenced_table) for fk in parts}
                if len(referenced) != 1:
                    raise PlanningError(
                        f"Foreign key {constraint_name} on {table.qualified_name} references more than one table",
                        {'referenced': sorted(referenced)}
                    )
                ref_namespace, ref_table = referenced.pop()
                ref_destination = namespace_map.get(ref_namespace)
                if ref_destination is None:
                    ref_destination = self.destination_namespace(ref_namespace)
                    msg = (f"Foreign key {constraint_name} on {table.qualified_name} references "
                           f"{ref_namespace}.{ref_table}, which is not being migrated")
                    logger.warning(msg)
                    warnings.append(msg)

                name = self._unique_constraint_name(constraint_name, table.name, taken)
                if name != constraint_name:
                    warnings.append(
                        f"Foreign key {constraint_name} on {table.qualified_name} renamed to {name} "
                        f"(constraint names are unique per schema in SQL Server)"
                    )

                statements.append(DdlStatement(
                    phase=DdlPhase.ADD_FOREIGN_KEYS,
                    object_name=f"{destination}.{table.name}.{name}",
                    sql=self._build(
                        self.builder.add_foreign_key,
                        destination, table.name, name,
                        [fk.source_column for fk in parts],
                        ref_destination, ref_table,
                        [fk.referenced_column for fk in parts],
                    ),
                ))
        return statements

    @staticmethod
    def _group_constraints(table: TableDescriptor) -> "OrderedDict[str, List[ForeignKeyDescriptor]]":
        groups: "OrderedDict[str, List[ForeignKeyDescriptor]]" = OrderedDict()
        for fk in table.foreign_keys:
            groups.setdefault(fk.constraint_name, []).append(fk)
        return groups

    @staticmethod
    def _unique_constraint_name(name: str, table: str, taken: set) -> str:
        candidate = name
        if candidate.casefold() in taken:
            candidate = f"{name}_{table}"
            counter = 2
            while candidate.casefold() in taken:
                candidate = f"{name}_{table}_{counter}"
                counter += 1
        taken.add(candidate.casefold())
        return candidate


def dependency_order(tables: List[TableDescriptor]) -> Tuple[List[TableDescriptor], List[str]]:
    """Order tables parents-first by foreign key references.

    Self references are ignored; tables caught in a cycle keep catalog order
    and are appended after everything else. Returns (ordered, warnings).
    """
    key = lambda t: (t.namespace, t.name)
    by_key = OrderedDict((key(t), t) for t in tables)
    parents: Dict[tuple, set] = {k: set() for k in by_key}

    for table in tables:
        for fk in table.foreign_keys:
            ref = (fk.referenced_namespace or table.namespace, fk.referenced_table)
            if ref != key(table) and ref in by_key:
                parents[key(table)].add(ref)

    ordered: List[TableDescriptor] = []
    placed = set()
    progress = True
    while progress:
        progress = False
        for k, table in by_key.items():
            if k not in placed and parents[k] <= placed:
                ordered.append(table)
                placed.add(k)
                progress = True

    warnings = []
    for k, table in by_key.items():
        if k not in placed:
            warnings.append(f"Circular foreign key dependency involving {table.qualified_name}")
            logger.warning(warnings[-1])
            ordered.append(table)
    return ordered, warnings
