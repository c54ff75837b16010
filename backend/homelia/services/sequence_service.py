# Overview: Service-layer operations for document numbering; encapsulates business logic and database work.

"""
Document Sequence Allocator

================================================================================
PURPOSE: Issue human-readable document numbers (ORD-2025-000123) that are
unique and gapless per (document type, year)
================================================================================

RULES (NON-NEGOTIABLE):
1. The increment is a single atomic UPDATE ... SET last_number = last_number + 1
   followed by a read inside the same transaction. The row stays write-locked
   until the caller commits, so concurrent callers serialize on it.
   A read-then-write "+1" in Python would hand two callers the same number.
2. The counter row and the parent document (order/quote/sample/invoice) are
   written in the caller's unit of work. If the parent insert fails, the
   increment rolls back with it: no number is ever consumed without a document.
3. A missing counter row is created lazily with last_number = 1. Two callers
   racing to create it hit the unique constraint; the loser raises
   ConcurrencyConflict and run_with_retry replays its whole unit of work.
4. Year rollover needs no reset: a new (type, year) row simply starts at 0.
   INVOICE and PROFORMA rows are bucketed by Indian financial year (April-March).
"""

from __future__ import annotations

from datetime import date, datetime
from enum import Enum

from flask import current_app
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError

from ..errors import ConcurrencyConflict, ValidationError
from ..extensions import db
from ..models import SequenceCounter
from ..time_utils import financial_year_label, financial_year_start, utcnow
from .concurrency import run_with_retry


class DocumentType(str, Enum):
    ORDER = "ORDER"
    QUOTE = "QUOTE"
    SAMPLE = "SAMPLE"
    INVOICE = "INVOICE"
    PROFORMA = "PROFORMA"


DEFAULT_PREFIXES = {
    DocumentType.ORDER: "ORD",
    DocumentType.QUOTE: "RFQ",
    DocumentType.SAMPLE: "SMP",
    DocumentType.INVOICE: "INV",
    DocumentType.PROFORMA: "PRO",
}

# Numbered per Indian financial year (April-March) as PREFIX/2025-26/NNNNNN
FINANCIAL_YEAR_TYPES = frozenset({DocumentType.INVOICE, DocumentType.PROFORMA})


def _parse_document_type(document_type) -> DocumentType:
    try:
        return DocumentType(document_type)
    except ValueError:
        raise ValidationError(
            f"Unknown document type '{document_type}'",
            errors={"document_type": "must be one of " + ", ".join(t.value for t in DocumentType)},
        ) from None


def bucket_year(document_type: DocumentType, at_date: date | datetime) -> int:
    if document_type in FINANCIAL_YEAR_TYPES:
        return financial_year_start(at_date)
    return at_date.year


def format_document_number(document_type: DocumentType, prefix: str, year: int, number: int) -> str:
    pad = current_app.config.get("DOCUMENT_NUMBER_PAD", 6)
    if document_type in FINANCIAL_YEAR_TYPES:
        return f"{prefix}/{financial_year_label(year)}/{number:0{pad}d}"
    return f"{prefix}-{year}-{number:0{pad}d}"


def allocate(document_type, prefix: str | None = None, at_date: date | datetime | None = None) -> str:
    """
    Allocate the next number for (document_type, year(at_date)).

    Runs inside the caller's unit of work and only flushes; the caller
    commits together with the document that carries the number. Callers
    must run under run_with_retry so lost creation races are replayed.
    """
    doc_type = _parse_document_type(document_type)
    prefix = prefix or DEFAULT_PREFIXES[doc_type]
    if not prefix:
        raise ValidationError("prefix is required", errors={"prefix": "required"})
    year = bucket_year(doc_type, at_date or utcnow())

    stmt = (
        update(SequenceCounter)
        .where(
            SequenceCounter.document_type == doc_type.value,
            SequenceCounter.year == year,
        )
        .values(last_number=SequenceCounter.last_number + 1)
        .execution_options(synchronize_session=False)
    )

    result = db.session.execute(stmt)
    if result.rowcount:
        number = (
            db.session.query(SequenceCounter.last_number)
            .filter_by(document_type=doc_type.value, year=year)
            .scalar()
        )
    else:
        db.session.add(SequenceCounter(
            document_type=doc_type.value,
            year=year,
            prefix=prefix,
            last_number=1,
        ))
        try:
            db.session.flush()
        except IntegrityError as exc:
            current_app.logger.debug(
                "Lost race creating %s counter for %s; replaying", doc_type.value, year
            )
            raise ConcurrencyConflict(f"{doc_type.value} counter for {year} created concurrently") from exc
        number = 1

    return format_document_number(doc_type, prefix, year, number)


def allocate_number(document_type, prefix: str | None = None, at_date: date | datetime | None = None) -> str:
    """Allocate and commit a number in its own unit of work."""
    def _op() -> str:
        number = allocate(document_type, prefix, at_date)
        db.session.commit()
        return number

    return run_with_retry(_op)


def ensure_counter(document_type, year: int, prefix: str | None = None) -> SequenceCounter:
    """
    Pre-seed a counter row at last_number = 0 (idempotent).

    Safe to call repeatedly; an existing row is returned untouched.
    """
    doc_type = _parse_document_type(document_type)

    def _op() -> SequenceCounter:
        counter = (
            db.session.query(SequenceCounter)
            .filter_by(document_type=doc_type.value, year=year)
            .first()
        )
        if counter is None:
            counter = SequenceCounter(
                document_type=doc_type.value,
                year=year,
                prefix=prefix or DEFAULT_PREFIXES[doc_type],
                last_number=0,
            )
            db.session.add(counter)
            try:
                db.session.flush()
            except IntegrityError as exc:
                raise ConcurrencyConflict("counter created concurrently") from exc
        db.session.commit()
        return counter

    return run_with_retry(_op)


def list_counters(document_type=None) -> list[SequenceCounter]:
    q = db.session.query(SequenceCounter)
    if document_type:
        q = q.filter_by(document_type=_parse_document_type(document_type).value)
    return q.order_by(SequenceCounter.document_type, SequenceCounter.year).all()
