#!/usr/bin/env python3
"""
pg2mssql Test Configuration - PyTest Configuration and Fixtures

Shared fixtures: catalog facts for a small two-schema database and in-memory
stand-ins for the source reader, the destination and the connection provider.
"""

import os
import sys
import threading
from typing import Dict, List
from unittest.mock import MagicMock

import pytest

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.schema_ir import ColumnDescriptor, ForeignKeyDescriptor, TableDescriptor


def column(name, source_type='integer', nullable=True, pk_position=None, identity=False, **kwargs):
    return ColumnDescriptor(
        name=name,
        source_type=source_type,
        nullable=nullable,
        is_primary_key=pk_position is not None,
        is_identity=identity,
        identity_start=1 if identity else None,
        identity_increment=1 if identity else None,
        pk_position=pk_position,
        **kwargs
    )


def table(namespace, name, columns, foreign_keys=()):
    return TableDescriptor(namespace=namespace, name=name,
                           columns=tuple(columns), foreign_keys=tuple(foreign_keys))


def foreign_key(name, namespace, source_table, source_column, ref_namespace, ref_table, ref_column, position=1):
    return ForeignKeyDescriptor(
        constraint_name=name,
        source_table=source_table,
        source_column=source_column,
        referenced_table=ref_table,
        referenced_column=ref_column,
        source_namespace=namespace,
        referenced_namespace=ref_namespace,
        position=position,
    )


def build_sample_catalog() -> List[TableDescriptor]:
    """sales.customers, sales.orders -> sales.customers, billing.invoices -> sales.orders"""
    customers = table('sales', 'customers', [
        column('id', 'integer', nullable=False, pk_position=1, identity=True),
        column('name', 'character varying', nullable=False, max_length=200),
        column('email', 'text'),
    ])
    orders = table('sales', 'orders', [
        column('id', 'integer', nullable=False, pk_position=1, identity=True),
        column('customer_id', 'integer', nullable=False),
        column('total', 'numeric', numeric_precision=12, numeric_scale=2),
        column('placed_at', 'timestamp with time zone'),
    ], [
        foreign_key('orders_customer_id_fkey', 'sales', 'orders', 'customer_id',
                    'sales', 'customers', 'id'),
    ])
    invoices = table('billing', 'invoices', [
        column('invoice_no', 'bigint', nullable=False, pk_position=1),
        column('order_id', 'integer', nullable=False),
        column('payload', 'jsonb'),
    ], [
        foreign_key('invoices_order_id_fkey', 'billing', 'invoices', 'order_id',
                    'sales', 'orders', 'id'),
    ])
    return [customers, orders, invoices]


class FakeCatalogReader:
    """Serves fixed catalog facts and rows; stands in for PostgreSQLCatalogReader"""

    def __init__(self, connection, tables: List[TableDescriptor], rows: Dict[tuple, list] = None,
                 namespaces: List[str] = None):
        self.connection = connection
        self.tables = tables
        self.rows = rows or {}
        self.namespaces = namespaces

    def list_namespaces(self) -> List[str]:
        if self.namespaces is not None:
            return list(self.namespaces)
        names = []
        for t in self.tables:
            if t.namespace not in names:
                names.append(t.namespace)
        return names

    def read_catalog(self, namespaces=None) -> List[TableDescriptor]:
        return [t for t in self.tables if namespaces is None or t.namespace in namespaces]

    def stream_rows(self, namespace, table_name, columns, batch_size=1000):
        rows = self.rows.get((namespace, table_name), [])
        for start in range(0, len(rows), batch_size):
            yield rows[start:start + batch_size]


class FakeServer:
    """Shared destination state seen by every FakeDestination"""

    def __init__(self):
        self.ddl: List[str] = []
        self.loaded: Dict[tuple, list] = {}
        self.failing_ddl: List[str] = []
        self.failing_tables: Dict[tuple, Exception] = {}
        self.load_threads = set()
        self._lock = threading.Lock()

    def destination(self, connection):
        return FakeDestination(connection, self)


class FakeDestination:
    def __init__(self, connection, server: FakeServer):
        self.connection = connection
        self.server = server

    def execute_ddl(self, statement):
        for marker in self.server.failing_ddl:
            if marker in statement:
                raise RuntimeError(f"There is already an object named {marker} in the database.")
        with self.server._lock:
            self.server.ddl.append(statement)

    def bulk_load(self, namespace, table_name, columns, batches, identity_insert=False,
                  check_constraints=False, timeout=300.0):
        rows = []
        for batch in batches:
            rows.extend(batch)
        error = self.server.failing_tables.get((namespace, table_name))
        if error is not None:
            raise error
        with self.server._lock:
            self.server.loaded[(namespace, table_name)] = rows
            self.server.load_threads.add(threading.current_thread().name)
        return len(rows)


class FakeProvider:
    """Connection provider handing out MagicMock connections"""

    def __init__(self):
        self.validated = False
        self.opened_source = []
        self.opened_destination = []
        self._lock = threading.Lock()

    def validate(self):
        self.validated = True

    def open_source_connection(self):
        conn = MagicMock(name='source_connection')
        with self._lock:
            self.opened_source.append(conn)
        return conn

    def open_destination_connection(self):
        conn = MagicMock(name='destination_connection')
        with self._lock:
            self.opened_destination.append(conn)
        return conn

    def describe(self):
        return {'source': 'postgresql://localhost:5432/app', 'destination': 'mssql://localhost:1433/app'}


@pytest.fixture
def sample_catalog():
    return build_sample_catalog()


@pytest.fixture
def sample_rows():
    return {
        ('sales', 'customers'): [(1, 'Ada', 'ada@example.com'), (2, 'Grace', None)],
        ('sales', 'orders'): [(10, 1, '19.99', None), (11, 2, '5.00', None), (12, 1, '7.50', None)],
        ('billing', 'invoices'): [(500, 10, {'paid': True})],
    }


@pytest.fixture
def fake_server():
    return FakeServer()


@pytest.fixture
def fake_provider():
    return FakeProvider()


@pytest.fixture
def reader_factory(sample_catalog, sample_rows):
    def factory(connection):
        return FakeCatalogReader(connection, sample_catalog, sample_rows)
    return factory


@pytest.fixture(autouse=True)
def clean_config_env(monkeypatch):
    """Keep PG2MSSQL_* variables from the developer shell out of the tests"""
    for key in list(os.environ):
        if key.startswith('PG2MSSQL_'):
            monkeypatch.delenv(key, raising=False)
    from config.secure_config import ConfigManager
    ConfigManager.reset()
    yield
    ConfigManager.reset()


def pytest_configure(config):
    """Configure custom pytest markers"""
    config.addinivalue_line("markers", "unit: Unit tests that test individual components")
    config.addinivalue_line("markers", "integration: Tests that run several components together")
