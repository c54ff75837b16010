"""
Document numbering tests.

Verifies:
- Format and per-(type, year) independence
- Year rollover starts a fresh counter
- Invoices bucket by Indian financial year
- A rolled-back allocation consumes no number
- Concurrent allocations are unique and contiguous (real threads, file DB)
"""

import threading
from datetime import datetime

import pytest
from sqlalchemy.exc import OperationalError

from homelia import create_app
from homelia.errors import StorageUnavailable, ValidationError
from homelia.extensions import db
from homelia.models import SequenceCounter
from homelia.services import sequence_service
from homelia.services.concurrency import run_with_retry
from homelia.services.sequence_service import DocumentType


def _allocate(*args, **kwargs):
    number = sequence_service.allocate(*args, **kwargs)
    db.session.commit()
    return number


class TestAllocation:

    def test_first_order_number_of_the_year(self, app):
        assert _allocate(DocumentType.ORDER, "ORD", datetime(2025, 6, 1)) == "ORD-2025-000001"

    def test_numbers_increase_by_one(self, app):
        numbers = [_allocate("ORDER", "ORD", datetime(2025, 6, 1)) for _ in range(3)]
        assert numbers == ["ORD-2025-000001", "ORD-2025-000002", "ORD-2025-000003"]

        counter = db.session.query(SequenceCounter).filter_by(document_type="ORDER", year=2025).one()
        assert counter.last_number == 3

    def test_default_prefixes(self, app):
        at = datetime(2025, 6, 1)
        assert _allocate(DocumentType.QUOTE, at_date=at) == "RFQ-2025-000001"
        assert _allocate(DocumentType.SAMPLE, at_date=at) == "SMP-2025-000001"

    def test_document_types_have_independent_counters(self, app):
        at = datetime(2025, 6, 1)
        _allocate(DocumentType.ORDER, at_date=at)
        _allocate(DocumentType.ORDER, at_date=at)
        assert _allocate(DocumentType.QUOTE, at_date=at) == "RFQ-2025-000001"

    def test_year_rollover_starts_new_counter(self, app):
        assert _allocate(DocumentType.ORDER, "ORD", datetime(2025, 12, 31, 23, 59)) == "ORD-2025-000001"
        assert _allocate(DocumentType.ORDER, "ORD", datetime(2026, 1, 1, 0, 1)) == "ORD-2026-000001"
        assert _allocate(DocumentType.ORDER, "ORD", datetime(2025, 12, 31)) == "ORD-2025-000002"

    def test_invoice_uses_financial_year(self, app):
        assert _allocate(DocumentType.INVOICE, at_date=datetime(2026, 3, 31)) == "INV/2025-26/000001"
        assert _allocate(DocumentType.INVOICE, at_date=datetime(2026, 4, 1)) == "INV/2026-27/000001"
        assert _allocate(DocumentType.INVOICE, at_date=datetime(2025, 4, 1)) == "INV/2025-26/000002"

    def test_proforma_has_its_own_financial_year_counter(self, app):
        _allocate(DocumentType.INVOICE, at_date=datetime(2026, 5, 1))
        assert _allocate(DocumentType.PROFORMA, at_date=datetime(2026, 5, 1)) == "PRO/2026-27/000001"
        assert _allocate(DocumentType.INVOICE, at_date=datetime(2026, 5, 2)) == "INV/2026-27/000002"

    def test_unknown_document_type_rejected(self, app):
        with pytest.raises(ValidationError):
            sequence_service.allocate("PURCHASE_ORDER")

    def test_rolled_back_allocation_consumes_nothing(self, app):
        at = datetime(2025, 6, 1)
        _allocate(DocumentType.ORDER, at_date=at)

        sequence_service.allocate(DocumentType.ORDER, at_date=at)
        db.session.rollback()

        assert _allocate(DocumentType.ORDER, at_date=at) == "ORD-2025-000002"

    def test_allocate_number_commits_on_its_own(self, app):
        assert sequence_service.allocate_number(DocumentType.SAMPLE, at_date=datetime(2025, 2, 2)) == "SMP-2025-000001"
        db.session.rollback()
        counter = db.session.query(SequenceCounter).filter_by(document_type="SAMPLE", year=2025).one()
        assert counter.last_number == 1


class TestCounterSeeding:

    def test_ensure_counter_is_idempotent(self, app):
        sequence_service.ensure_counter(DocumentType.ORDER, 2030)
        sequence_service.ensure_counter(DocumentType.ORDER, 2030)

        rows = db.session.query(SequenceCounter).filter_by(document_type="ORDER", year=2030).all()
        assert len(rows) == 1
        assert rows[0].last_number == 0
        assert _allocate(DocumentType.ORDER, at_date=datetime(2030, 1, 1)) == "ORD-2030-000001"

    def test_list_counters_filters_by_type(self, app):
        sequence_service.ensure_counter(DocumentType.ORDER, 2030)
        sequence_service.ensure_counter(DocumentType.QUOTE, 2030)

        counters = sequence_service.list_counters("QUOTE")
        assert [c.document_type for c in counters] == ["QUOTE"]


class TestRetry:

    def test_exhausted_retries_surface_storage_unavailable(self, app):
        calls = []

        def _op():
            calls.append(1)
            raise OperationalError("UPDATE sequence_counters", {}, Exception("database is locked"))

        with pytest.raises(StorageUnavailable):
            run_with_retry(_op, attempts=3, backoff_base=0)
        assert len(calls) == 3

    def test_non_retryable_errors_propagate_immediately(self, app):
        calls = []

        def _op():
            calls.append(1)
            raise ValidationError("bad input")

        with pytest.raises(ValidationError):
            run_with_retry(_op, attempts=3, backoff_base=0)
        assert len(calls) == 1


class TestConcurrentAllocation:
    """Parallel callers on a file-backed SQLite database."""

    THREADS = 16

    @pytest.fixture
    def file_app(self, tmp_path):
        app = create_app({
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': f"sqlite:///{tmp_path / 'sequences.sqlite3'}",
            'SQLALCHEMY_ENGINE_OPTIONS': {"connect_args": {"timeout": 30}},
        })
        with app.app_context():
            db.create_all()
        yield app
        with app.app_context():
            db.session.remove()
            db.engine.dispose()

    def _run_parallel(self, app, at):
        numbers, errors = [], []
        lock = threading.Lock()
        start = threading.Barrier(self.THREADS)

        def worker():
            with app.app_context():
                def _op():
                    number = sequence_service.allocate(DocumentType.ORDER, "ORD", at)
                    db.session.commit()
                    return number

                start.wait()
                try:
                    number = run_with_retry(_op, attempts=25, backoff_base=0.01)
                except Exception as exc:  # collected and asserted below
                    with lock:
                        errors.append(exc)
                else:
                    with lock:
                        numbers.append(number)
                finally:
                    db.session.remove()

        threads = [threading.Thread(target=worker) for _ in range(self.THREADS)]
        for t in threads:
            t.start()
        for t in threads:
            t.join(timeout=120)
        return numbers, errors

    def test_parallel_allocations_are_unique_and_contiguous(self, file_app):
        with file_app.app_context():
            sequence_service.ensure_counter(DocumentType.ORDER, 2025)

        numbers, errors = self._run_parallel(file_app, datetime(2025, 6, 1))

        assert errors == []
        assert len(numbers) == self.THREADS
        assert sorted(numbers) == [f"ORD-2025-{n:06d}" for n in range(1, self.THREADS + 1)]

    def test_parallel_first_allocations_race_on_counter_creation(self, file_app):
        numbers, errors = self._run_parallel(file_app, datetime(2027, 3, 3))

        assert errors == []
        assert len(set(numbers)) == self.THREADS
        assert sorted(numbers) == [f"ORD-2027-{n:06d}" for n in range(1, self.THREADS + 1)]
        with file_app.app_context():
            counter = db.session.query(SequenceCounter).filter_by(document_type="ORDER", year=2027).one()
            assert counter.last_number == self.THREADS
