#!/usr/bin/env python3
"""
Data mover tests: value coercion and the per-table failure boundary.
"""

import datetime
import ipaddress
import uuid
from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from conftest import FakeCatalogReader, FakeServer
from core.data_mover import DataMover, coerce_row, coerce_value
from core.errors import BulkLoadTimeout


@pytest.mark.unit
class TestCoercion:

    def test_bindable_values_pass_through(self):
        now = datetime.datetime(2024, 5, 1, 12, 30)
        for value in (None, 'x', 7, 1.5, True, Decimal('9.99'), b'\x00', now, now.date(), now.time()):
            assert coerce_value(value) == value

    def test_json_becomes_text(self):
        assert coerce_value({'paid': True}) == '{"paid": true}'
        assert coerce_value([1, 2]) == '[1, 2]'

    def test_buffers_become_bytes(self):
        assert coerce_value(memoryview(b'abc')) == b'abc'
        assert coerce_value(bytearray(b'abc')) == b'abc'

    def test_uuid_and_network_values_become_text(self):
        key = uuid.UUID('12345678-1234-5678-1234-567812345678')
        assert coerce_value(key) == '12345678-1234-5678-1234-567812345678'
        assert coerce_value(ipaddress.ip_network('10.0.0.0/8')) == '10.0.0.0/8'

    def test_intervals(self):
        assert coerce_value(datetime.timedelta(hours=1, minutes=30)) == datetime.time(1, 30)
        assert coerce_value(datetime.timedelta(days=2)) == '2 days, 0:00:00'

    def test_coerce_row(self):
        assert coerce_row([1, {'a': 1}, None]) == (1, '{"a": 1}', None)


@pytest.fixture
def mover_parts(sample_catalog, sample_rows):
    source = FakeCatalogReader(MagicMock(), sample_catalog, sample_rows)
    server = FakeServer()
    mover = DataMover(source, server.destination(MagicMock()),
                      namespace_map={'sales': 'sales_new', 'billing': 'billing_new'},
                      batch_size=2)
    return mover, server, source


@pytest.mark.unit
class TestMoveTable:

    def test_rows_copied_into_destination_namespace(self, mover_parts, sample_catalog):
        mover, server, _ = mover_parts
        outcome = mover.move_table(sample_catalog[1])

        assert outcome.succeeded
        assert outcome.rows_copied == 3
        assert outcome.error_detail is None
        assert (outcome.namespace, outcome.table) == ('sales', 'orders')
        assert len(server.loaded[('sales_new', 'orders')]) == 3

    def test_values_coerced_before_load(self, mover_parts, sample_catalog):
        mover, server, _ = mover_parts
        mover.move_table(sample_catalog[2])
        assert server.loaded[('billing_new', 'invoices')] == [(500, 10, '{"paid": true}')]

    def test_constraint_violation_becomes_failed_outcome(self, mover_parts, sample_catalog):
        mover, server, source = mover_parts
        server.failing_tables[('sales_new', 'orders')] = RuntimeError(
            "The INSERT statement conflicted with the FOREIGN KEY constraint"
        )

        outcome = mover.move_table(sample_catalog[1])

        assert not outcome.succeeded
        assert outcome.rows_copied == 0
        assert outcome.error_detail.startswith('RuntimeError: The INSERT statement conflicted')
        assert isinstance(outcome.error, RuntimeError)
        source.connection.rollback.assert_called()

    def test_every_table_attempted_after_a_failure(self, mover_parts, sample_catalog):
        mover, server, _ = mover_parts
        server.failing_tables[('sales_new', 'customers')] = BulkLoadTimeout("exceeded 300s")

        outcomes = [mover.move_table(t) for t in sample_catalog]

        assert [o.succeeded for o in outcomes] == [False, True, True]
        assert outcomes[0].error_detail == 'BulkLoadTimeout: exceeded 300s'

    def test_source_read_failure_is_contained(self, sample_catalog):
        source = MagicMock()
        source.stream_rows.side_effect = ConnectionError("server closed the connection unexpectedly")
        destination = MagicMock()
        destination.bulk_load.side_effect = lambda ns, t, cols, batches, **kw: sum(len(b) for b in batches)
        mover = DataMover(source, destination, namespace_map={'sales': 'sales_new'})

        outcome = mover.move_table(sample_catalog[0])

        assert not outcome.succeeded
        assert 'ConnectionError' in outcome.error_detail

    def test_identity_and_constraint_flags_forwarded(self, sample_catalog):
        destination = MagicMock()
        destination.bulk_load.return_value = 0
        mover = DataMover(FakeCatalogReader(MagicMock(), sample_catalog), destination,
                          namespace_map={'billing': 'billing_new'}, timeout=60, check_constraints=True)

        mover.move_table(sample_catalog[2])

        args, kwargs = destination.bulk_load.call_args
        assert args[:3] == ('billing_new', 'invoices', ['invoice_no', 'order_id', 'payload'])
        assert kwargs['identity_insert'] is False
        assert kwargs['check_constraints'] is True
        assert kwargs['timeout'] == 60
