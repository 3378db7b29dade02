#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
pg2mssql Core Package Initialization
Exports the main migration components for clean imports
"""

from .errors import (
    ErrorCode, MigrationError, ConnectivityError, CatalogError, PlanningError,
    DdlError, DataMovementError, BulkLoadTimeout, ConfigurationError
)
from .schema_ir import (
    Namespace, ColumnDescriptor, ForeignKeyDescriptor, TableDescriptor,
    DdlPhase, DdlStatement, DdlPlan, TableOutcome
)
from .type_registry import TypeMapper
from .ddl_planner import DdlPlanner, dependency_order
from .schema_applier import SchemaApplier, ApplyResult
from .data_mover import DataMover
from .migration_report import MigrationReport
from .events import EventKind, MigrationEvent, LoggingEventSink, CollectingEventSink

__all__ = [
    # Errors
    'ErrorCode',
    'MigrationError',
    'ConnectivityError',
    'CatalogError',
    'PlanningError',
    'DdlError',
    'DataMovementError',
    'BulkLoadTimeout',
    'ConfigurationError',

    # Schema facts and plan
    'Namespace',
    'ColumnDescriptor',
    'ForeignKeyDescriptor',
    'TableDescriptor',
    'DdlPhase',
    'DdlStatement',
    'DdlPlan',
    'TableOutcome',

    # Components
    'TypeMapper',
    'DdlPlanner',
    'dependency_order',
    'SchemaApplier',
    'ApplyResult',
    'DataMover',
    'MigrationReport',

    # Events
    'EventKind',
    'MigrationEvent',
    'LoggingEventSink',
    'CollectingEventSink',
]

__version__ = '0.1.0'
