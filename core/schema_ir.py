from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from enum import Enum


@dataclass(frozen=True)
class Namespace:
    """A source schema and the destination schema it migrates into"""
    source_name: str
    destination_name: str


@dataclass(frozen=True)
class ColumnDescriptor:
    """Column definition as reported by the source catalog"""
    name: str
    source_type: str
    nullable: bool = True
    is_primary_key: bool = False
    is_identity: bool = False
    identity_start: Optional[int] = None
    identity_increment: Optional[int] = None
    default: Optional[str] = None  # reported, not emitted
    max_length: Optional[int] = None
    numeric_precision: Optional[int] = None
    numeric_scale: Optional[int] = None
    pk_position: Optional[int] = None


@dataclass(frozen=True)
class ForeignKeyDescriptor:
    """One column of a foreign key constraint"""
    constraint_name: str
    source_table: str
    source_column: str
    referenced_table: str
    referenced_column: str
    source_namespace: str = ""
    referenced_namespace: str = ""
    position: int = 1


@dataclass(frozen=True)
class TableDescriptor:
    """Table definition: columns in catalog order plus outgoing foreign keys"""
    namespace: str
    name: str
    columns: Tuple[ColumnDescriptor, ...] = ()
    foreign_keys: Tuple[ForeignKeyDescriptor, ...] = ()

    @property
    def qualified_name(self) -> str:
        return f"{self.namespace}.{self.name}"

    @property
    def column_names(self) -> List[str]:
        return [c.name for c in self.columns]

    @property
    def primary_key_columns(self) -> List[ColumnDescriptor]:
        keys = [c for c in self.columns if c.is_primary_key]
        return sorted(keys, key=lambda c: c.pk_position or 0)

    @property
    def has_identity(self) -> bool:
        return any(c.is_identity for c in self.columns)


class DdlPhase(Enum):
    CREATE_NAMESPACES = "create_namespaces"
    CREATE_TABLES = "create_tables"
    ADD_FOREIGN_KEYS = "add_foreign_keys"


@dataclass(frozen=True)
class DdlStatement:
    """One planned destination statement"""
    phase: DdlPhase
    object_name: str
    sql: str


@dataclass
class DdlPlan:
    """Three ordered phases of destination DDL"""
    create_namespaces: List[DdlStatement] = field(default_factory=list)
    create_tables: List[DdlStatement] = field(default_factory=list)
    add_foreign_keys: List[DdlStatement] = field(default_factory=list)
    namespaces: List[Namespace] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def phases(self) -> List[Tuple[DdlPhase, List[DdlStatement]]]:
        return [
            (DdlPhase.CREATE_NAMESPACES, self.create_namespaces),
            (DdlPhase.CREATE_TABLES, self.create_tables),
            (DdlPhase.ADD_FOREIGN_KEYS, self.add_foreign_keys),
        ]

    def all_statements(self) -> List[DdlStatement]:
        return self.create_namespaces + self.create_tables + self.add_foreign_keys

    def destination_for(self, source_namespace: str) -> Optional[str]:
        for ns in self.namespaces:
            if ns.source_name == source_namespace:
                return ns.destination_name
        return None


@dataclass(frozen=True)
class TableOutcome:
    """Result of moving one table's rows"""
    namespace: str
    table: str
    succeeded: bool
    error_detail: Optional[str] = None
    rows_copied: int = 0
    duration_seconds: float = 0.0
    error: Optional[BaseException] = field(default=None, compare=False, repr=False)

    def to_dict(self):
        return {
            'namespace': self.namespace,
            'table': self.table,
            'succeeded': self.succeeded,
            'error_detail': self.error_detail,
            'rows_copied': self.rows_copied,
            'duration_seconds': round(self.duration_seconds, 3),
        }
