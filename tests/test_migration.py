#!/usr/bin/env python3
"""
Orchestrator tests: state order, failure isolation in sequential and parallel
runs, and fatal errors before any DDL.
"""

import json

import pytest

from conftest import FakeCatalogReader
from core.errors import CatalogError, ConfigurationError, ConnectivityError, PlanningError
from core.events import CollectingEventSink, EventKind
from core.migration import InvalidTransition, MigrationOrchestrator, MigrationState, STATE_ORDER


def orchestrator_for(provider, server, reader_factory, **kwargs):
    return MigrationOrchestrator(
        provider,
        reader_factory=reader_factory,
        destination_factory=server.destination,
        **kwargs
    )


@pytest.mark.integration
class TestMigrationRun:

    def test_states_entered_in_order(self, fake_provider, fake_server, reader_factory):
        sink = CollectingEventSink()
        orchestrator = orchestrator_for(fake_provider, fake_server, reader_factory, sink=sink)

        orchestrator.run()

        entered = [e.phase for e in sink.of_kind(EventKind.PHASE_ENTERED)]
        assert entered == [s.value for s in STATE_ORDER[1:]]
        assert orchestrator.state == MigrationState.DONE
        assert fake_provider.validated

    def test_ddl_applied_before_any_data(self, fake_provider, fake_server, reader_factory):
        sink = CollectingEventSink()
        orchestrator_for(fake_provider, fake_server, reader_factory, sink=sink).run()

        kinds = [e.kind for e in sink.events]
        last_ddl = max(i for i, k in enumerate(kinds) if k == EventKind.OBJECT_CREATED)
        first_move = min(i for i, k in enumerate(kinds) if k == EventKind.TABLE_MOVED)
        assert last_ddl < first_move

        assert fake_server.ddl[0] == 'CREATE SCHEMA [sales_new]'
        assert fake_server.ddl[1] == 'CREATE SCHEMA [billing_new]'
        assert all('FOREIGN KEY' in s for s in fake_server.ddl[-2:])

    def test_every_table_copied(self, fake_provider, fake_server, reader_factory):
        report = orchestrator_for(fake_provider, fake_server, reader_factory).run()

        assert not report.has_failures
        assert report.summary()['rows_copied'] == 6
        assert set(fake_server.loaded) == {
            ('sales_new', 'customers'), ('sales_new', 'orders'), ('billing_new', 'invoices')
        }

    def test_one_constraint_violation_fails_only_that_table(self, fake_provider, fake_server, reader_factory):
        fake_server.failing_tables[('sales_new', 'orders')] = RuntimeError(
            "The INSERT statement conflicted with the FOREIGN KEY constraint \"orders_customer_id_fkey\""
        )

        report = orchestrator_for(fake_provider, fake_server, reader_factory).run()

        assert [(o.namespace, o.table) for o in report.failed] == [('sales', 'orders')]
        assert 'FOREIGN KEY constraint' in report.failed[0].error_detail
        assert {(o.namespace, o.table) for o in report.succeeded} == {
            ('sales', 'customers'), ('billing', 'invoices')
        }
        assert len(report.outcomes) == 3

    def test_ddl_failure_recorded_and_run_continues(self, fake_provider, fake_server, reader_factory):
        fake_server.failing_ddl.append('[billing_new].[invoices]')
        sink = CollectingEventSink()

        orchestrator = orchestrator_for(fake_provider, fake_server, reader_factory, sink=sink)
        report = orchestrator.run()

        assert orchestrator.state == MigrationState.DONE
        failures = report.ddl_failures['create_tables']
        assert [f['object'] for f in failures] == ['billing_new.invoices']
        assert report.ddl_failures['add_foreign_keys'][0]['object'].startswith('billing_new.invoices')
        assert len(sink.of_kind(EventKind.OBJECT_FAILED)) == 2
        assert len(report.outcomes) == 3

    def test_parallel_run_isolates_failures(self, fake_provider, fake_server, reader_factory):
        fake_server.failing_tables[('sales_new', 'customers')] = RuntimeError("deadlock victim")

        orchestrator = orchestrator_for(fake_provider, fake_server, reader_factory, workers=3)
        with orchestrator:
            report = orchestrator.run()

        assert [o.table for o in report.failed] == ['customers']
        assert len(report.succeeded) == 2
        # one connection pair for the run plus one pair per worker that picked up a table
        assert len(fake_provider.opened_source) >= 2
        assert len(fake_provider.opened_source) == len(fake_provider.opened_destination)
        for conn in fake_provider.opened_source + fake_provider.opened_destination:
            conn.close.assert_called_once()

    def test_report_written(self, fake_provider, fake_server, reader_factory, tmp_path):
        orchestrator_for(fake_provider, fake_server, reader_factory, report_dir=tmp_path).run()
        data = json.loads((tmp_path / 'migration_report.json').read_text())
        assert data['summary']['tables_attempted'] == 3
        assert data['source'] == 'postgresql://localhost:5432/app'

    def test_namespace_filter(self, fake_provider, fake_server, reader_factory):
        report = orchestrator_for(fake_provider, fake_server, reader_factory, namespaces=['sales']).run()
        assert {o.namespace for o in report.outcomes} == {'sales'}
        assert 'CREATE SCHEMA [billing_new]' not in fake_server.ddl

    def test_system_namespaces_never_planned(self, fake_provider, fake_server, sample_catalog):
        # list_namespaces of the real reader drops system schemas; only user schemas reach the planner
        def factory(conn):
            return FakeCatalogReader(conn, sample_catalog, namespaces=['billing', 'sales'])
        orchestrator = orchestrator_for(fake_provider, fake_server, factory)
        plan = orchestrator.plan()
        assert {ns.source_name for ns in plan.namespaces} == {'billing', 'sales'}


@pytest.mark.unit
class TestFatalErrors:

    def test_connectivity_error_before_any_ddl(self, fake_server, reader_factory, fake_provider):
        def refuse():
            raise ConnectivityError("password authentication failed")
        fake_provider.validate = refuse
        orchestrator = orchestrator_for(fake_provider, fake_server, reader_factory)

        with pytest.raises(ConnectivityError):
            orchestrator.run()

        assert orchestrator.state == MigrationState.FAILED
        assert fake_server.ddl == []

    def test_catalog_error_is_fatal(self, fake_provider, fake_server):
        class BrokenReader(FakeCatalogReader):
            def read_catalog(self, namespaces=None):
                raise CatalogError("permission denied for schema sales")

        orchestrator = orchestrator_for(fake_provider, fake_server, lambda c: BrokenReader(c, []))
        with pytest.raises(CatalogError):
            orchestrator.run()
        assert orchestrator.state == MigrationState.FAILED
        assert fake_server.ddl == []

    def test_planning_error_is_fatal(self, fake_provider, fake_server):
        orchestrator = orchestrator_for(
            fake_provider, fake_server,
            lambda c: FakeCatalogReader(c, [], namespaces=['Sales', 'sales'])
        )
        with pytest.raises(PlanningError):
            orchestrator.run()
        assert fake_server.ddl == []

    def test_system_schema_filter_rejected(self, fake_provider, fake_server, reader_factory):
        orchestrator = orchestrator_for(fake_provider, fake_server, reader_factory,
                                        namespaces=['sales', 'pg_catalog'])
        with pytest.raises(ConfigurationError) as excinfo:
            orchestrator.run()

        assert excinfo.value.details['namespaces'] == ['pg_catalog']
        assert orchestrator.state == MigrationState.FAILED
        assert not fake_provider.validated
        assert fake_provider.opened_source == []
        assert fake_server.ddl == []

    def test_illegal_transition_rejected(self, fake_provider, fake_server, reader_factory):
        orchestrator = orchestrator_for(fake_provider, fake_server, reader_factory)
        with pytest.raises(InvalidTransition):
            orchestrator._transition(MigrationState.MOVING_DATA)

    def test_run_only_once(self, fake_provider, fake_server, reader_factory):
        orchestrator = orchestrator_for(fake_provider, fake_server, reader_factory)
        orchestrator.run()
        with pytest.raises(InvalidTransition):
            orchestrator.run()
