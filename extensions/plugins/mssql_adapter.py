#!/usr/bin/env python3
"""
pg2mssql SQL Server Adapter - Destination DDL execution and bulk loading

Provides:
- Connection configuration for pymssql
- Independent (self-committing) DDL statement execution
- Transactional per-table bulk loading with identity preservation,
  constraint handling and a wall-clock timeout
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Sequence
from urllib.parse import urlparse, unquote

import pymssql

from core.errors import BulkLoadTimeout, ConnectivityError, sanitize_error
from core.safe_query_builder import SafeQueryBuilder

logger = logging.getLogger(__name__)


@dataclass
class MSSQLConnectionConfig:
    """SQL Server connection configuration"""
    host: str = "localhost"
    port: int = 1433
    database: str = "master"
    user: str = "sa"
    password: str = ""
    login_timeout: int = 10
    query_timeout: int = 300  # seconds, applies to every statement
    appname: str = "pg2mssql"

    def to_connection_params(self) -> Dict[str, Any]:
        """Convert to pymssql connection parameters"""
        return {
            'server': self.host,
            'port': self.port,
            'database': self.database,
            'user': self.user,
            'password': self.password,
            'login_timeout': self.login_timeout,
            'timeout': self.query_timeout,
            'appname': self.appname,
            'autocommit': False,
        }


def create_config_from_url(database_url: str, **kwargs) -> MSSQLConnectionConfig:
    """Create destination config from an mssql:// URL"""
    parsed = urlparse(database_url)
    if parsed.scheme.split('+')[0] not in ('mssql', 'sqlserver'):
        raise ValueError(f"Not a SQL Server URL: {parsed.scheme}://")

    return MSSQLConnectionConfig(
        host=parsed.hostname or 'localhost',
        port=parsed.port or 1433,
        database=parsed.path.lstrip('/') or 'master',
        user=unquote(parsed.username) if parsed.username else 'sa',
        password=unquote(parsed.password) if parsed.password else '',
        **kwargs
    )


def connect(config: MSSQLConnectionConfig):
    """Open a pymssql connection to the destination"""
    try:
        conn = pymssql.connect(**config.to_connection_params())
        logger.info(f"Connected to SQL Server destination {config.host}:{config.port}/{config.database}")
        return conn
    except pymssql.Error as e:
        raise ConnectivityError(
            f"Failed to connect to SQL Server destination: {sanitize_error(e)}",
            {'host': config.host, 'database': config.database}
        ) from e


class MSSQLDestination:
    """Executes DDL and loads rows on one destination connection"""

    def __init__(self, connection, builder: SafeQueryBuilder = None):
        self.connection = connection
        self.builder = builder or SafeQueryBuilder()

    def execute_ddl(self, statement: str):
        """Run one statement and commit it on its own"""
        cursor = self.connection.cursor()
        try:
            cursor.execute(statement)
            self.connection.commit()
        except Exception:
            self.connection.rollback()
            raise
        finally:
            cursor.close()

    def bulk_load(self, namespace: str, table: str, columns: List[str],
                  batches: Iterable[Sequence[Sequence[Any]]], identity_insert: bool = False,
                  check_constraints: bool = False, timeout: float = 300.0) -> int:
        """Insert every batch into namespace.table inside a single transaction.

        Returns the number of rows written. Raises on the first failure after
        rolling the whole table back. pymssql's bulk_copy is not used because it
        commits outside this transaction and cannot keep source identity values.
        """
        deadline = time.monotonic() + timeout
        rows_per_insert = self.builder.rows_per_insert(len(columns))
        cursor = self.connection.cursor()
        identity_enabled = False
        copied = 0

        try:
            if not check_constraints:
                cursor.execute(self.builder.nocheck_constraints(namespace, table))
            if identity_insert:
                cursor.execute(self.builder.set_identity_insert(namespace, table, True))
                identity_enabled = True

            for batch in batches:
                if time.monotonic() > deadline:
                    raise BulkLoadTimeout(
                        f"Bulk load of {namespace}.{table} exceeded {timeout:.0f}s",
                        {'rows_copied': copied}
                    )
                for start in range(0, len(batch), rows_per_insert):
                    chunk = batch[start:start + rows_per_insert]
                    sql = self.builder.insert_values(namespace, table, columns, len(chunk))
                    params = tuple(value for row in chunk for value in row)
                    cursor.execute(sql, params)
                copied += len(batch)
                logger.debug(f"  Loaded {copied} rows into {namespace}.{table}")

            if identity_enabled:
                cursor.execute(self.builder.set_identity_insert(namespace, table, False))
                identity_enabled = False
            if not check_constraints:
                # Re-enabled without WITH CHECK: existing rows are not revalidated
                cursor.execute(self.builder.check_constraints(namespace, table))

            self.connection.commit()
            return copied
        except Exception:
            self.connection.rollback()
            if identity_enabled:
                self._reset_identity_insert(namespace, table)
            raise
        finally:
            cursor.close()

    def _reset_identity_insert(self, namespace: str, table: str):
        # IDENTITY_INSERT is session state and survives the rollback
        cursor = self.connection.cursor()
        try:
            cursor.execute(self.builder.set_identity_insert(namespace, table, False))
            self.connection.commit()
        except pymssql.Error as e:
            logger.warning(f"Could not reset IDENTITY_INSERT on {namespace}.{table}: {sanitize_error(e)}")
        finally:
            cursor.close()
