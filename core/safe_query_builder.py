#!/usr/bin/env python3
"""
Safe Query Builder for pg2mssql
Builds destination (T-SQL) statements from catalog identifiers without raw interpolation.

Security is provided by:
1. Identifier quoting (brackets, with embedded ']' doubled)
2. Parameterized values (placeholders, values passed separately)
3. Length and character validation for identifiers

Source (PostgreSQL) queries are composed with psycopg2.sql.
"""

from typing import List, Sequence

from psycopg2 import sql as pg_sql

# SQL Server sysname limit
IDENTIFIER_MAX_LENGTH = 128

# SQL Server caps a single request at 2100 parameters
MAX_PARAMETERS = 2100

# Row constructors per INSERT ... VALUES are capped at 1000
MAX_ROWS_PER_INSERT = 1000


class SafeQueryBuilder:
    """Build T-SQL DDL and DML with quoted identifiers.

    Values use pymssql's %s placeholders and are passed separately.
    """

    PLACEHOLDER = '%s'

    @staticmethod
    def validate_identifier(identifier: str) -> bool:
        """Check an identifier can be quoted safely"""
        if not identifier or not isinstance(identifier, str):
            return False
        if len(identifier) > IDENTIFIER_MAX_LENGTH:
            return False
        if '\x00' in identifier:
            return False
        return True

    @classmethod
    def quote_identifier(cls, identifier: str) -> str:
        """Quote identifier for SQL Server: name -> [name], ] -> ]]"""
        if not cls.validate_identifier(identifier):
            raise ValueError(f"Invalid identifier: {identifier!r}")
        return '[' + identifier.replace(']', ']]') + ']'

    @classmethod
    def qualified_name(cls, namespace: str, name: str) -> str:
        return f"{cls.quote_identifier(namespace)}.{cls.quote_identifier(name)}"

    def _param_safe(self, text: str) -> str:
        # pymssql treats % as a substitution marker whenever params are passed
        return text.replace('%', '%%')

    # ---- DDL ----

    def create_schema(self, namespace: str) -> str:
        return f"CREATE SCHEMA {self.quote_identifier(namespace)}"

    def create_table(self, namespace: str, table: str, clauses: Sequence[str]) -> str:
        body = ",\n    ".join(clauses)
        return f"CREATE TABLE {self.qualified_name(namespace, table)} (\n    {body}\n)"

    def column_clause(self, name: str, type_literal: str, nullable: bool,
                      primary_key: bool = False, identity: tuple = None) -> str:
        parts = [self.quote_identifier(name), type_literal, "NULL" if nullable else "NOT NULL"]
        if primary_key:
            parts.append("PRIMARY KEY")
        if identity:
            start, increment = identity
            parts.append(f"IDENTITY({int(start)}, {int(increment)})")
        return " ".join(parts)

    def primary_key_clause(self, columns: Sequence[str]) -> str:
        cols = ", ".join(self.quote_identifier(c) for c in columns)
        return f"PRIMARY KEY ({cols})"

    def add_foreign_key(self, namespace: str, table: str, constraint_name: str,
                        columns: Sequence[str], ref_namespace: str, ref_table: str,
                        ref_columns: Sequence[str]) -> str:
        cols = ", ".join(self.quote_identifier(c) for c in columns)
        ref_cols = ", ".join(self.quote_identifier(c) for c in ref_columns)
        return (
            f"ALTER TABLE {self.qualified_name(namespace, table)}\n"
            f"    ADD CONSTRAINT {self.quote_identifier(constraint_name)}\n"
            f"    FOREIGN KEY ({cols})\n"
            f"    REFERENCES {self.qualified_name(ref_namespace, ref_table)} ({ref_cols})"
        )

    # ---- data loading ----

    def rows_per_insert(self, column_count: int) -> int:
        """Rows that fit in one INSERT given the parameter cap"""
        if column_count <= 0:
            raise ValueError("column_count must be positive")
        return max(1, min(MAX_ROWS_PER_INSERT, (MAX_PARAMETERS - 1) // column_count))

    def insert_values(self, namespace: str, table: str, columns: Sequence[str], row_count: int) -> str:
        """INSERT with row_count parameterized row constructors"""
        if row_count <= 0:
            raise ValueError("row_count must be positive")
        target = self._param_safe(self.qualified_name(namespace, table))
        cols = ", ".join(self._param_safe(self.quote_identifier(c)) for c in columns)
        row = "(" + ", ".join([self.PLACEHOLDER] * len(columns)) + ")"
        values = ", ".join([row] * row_count)
        return f"INSERT INTO {target} ({cols}) VALUES {values}"

    def set_identity_insert(self, namespace: str, table: str, enabled: bool) -> str:
        return f"SET IDENTITY_INSERT {self.qualified_name(namespace, table)} {'ON' if enabled else 'OFF'}"

    def nocheck_constraints(self, namespace: str, table: str) -> str:
        return f"ALTER TABLE {self.qualified_name(namespace, table)} NOCHECK CONSTRAINT ALL"

    def check_constraints(self, namespace: str, table: str) -> str:
        return f"ALTER TABLE {self.qualified_name(namespace, table)} CHECK CONSTRAINT ALL"


def source_select(namespace: str, table: str, columns: List[str]) -> pg_sql.Composed:
    """SELECT <columns> FROM <namespace>.<table> for the PostgreSQL source"""
    if columns:
        column_sql = pg_sql.SQL(", ").join(pg_sql.Identifier(c) for c in columns)
    else:
        column_sql = pg_sql.SQL("*")
    return pg_sql.SQL("SELECT {} FROM {}.{}").format(
        column_sql, pg_sql.Identifier(namespace), pg_sql.Identifier(table)
    )
