"""Tests for document number issuing."""

from datetime import datetime

import pytest

from shopfloor.engines.sequences import next_document_number


class TestDocumentNumbers:
    def test_increments_per_prefix(self, db):
        when = datetime(2026, 3, 1)
        with db.transaction() as conn:
            first = next_document_number(conn, "PO", when)
            second = next_document_number(conn, "PO", when)
            other = next_document_number(conn, "PRO", when)
        assert (first, second, other) == (
            "PO-2026-0001", "PO-2026-0002", "PRO-2026-0001",
        )

    def test_restarts_each_year(self, db):
        with db.transaction() as conn:
            next_document_number(conn, "PO", datetime(2026, 12, 31))
            number = next_document_number(conn, "PO", datetime(2027, 1, 1))
        assert number == "PO-2027-0001"

    def test_rolled_back_number_is_reissued(self, db):
        with pytest.raises(RuntimeError):
            with db.transaction() as conn:
                next_document_number(conn, "PO", datetime(2026, 1, 1))
                raise RuntimeError("abort")
        with db.transaction() as conn:
            number = next_document_number(conn, "PO", datetime(2026, 1, 1))
        assert number == "PO-2026-0001"

    def test_width(self, db):
        with db.transaction() as conn:
            assert next_document_number(conn, "PO", datetime(2026, 1, 1),
                                        width=6) == "PO-2026-000001"
