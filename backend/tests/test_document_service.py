# Overview: Pytest coverage for document numbering.

import pytest

from stockledger.services.document_service import (
    DOC_SALES_ORDER,
    DOC_TRANSACTION,
    DocumentSequenceError,
    allocate,
    next_document_number,
)
from stockledger.time_utils import month_period, year_period


class TestDocumentNumbers:

    def test_numbers_increment_per_type(self, db_session):
        assert allocate(DOC_SALES_ORDER) == f"SO-{year_period()}-000001"
        assert allocate(DOC_SALES_ORDER) == f"SO-{year_period()}-000002"
        assert allocate(DOC_TRANSACTION) == f"TXN-{month_period()}-000001"

    def test_periods_are_independent(self, db_session):
        first = next_document_number(document_type="TEST", prefix="T", period="2025")
        other = next_document_number(document_type="TEST", prefix="T", period="2026")
        again = next_document_number(document_type="TEST", prefix="T", period="2025")

        assert (first, other, again) == ("T-2025-000001", "T-2026-000001", "T-2025-000002")

    def test_rolled_back_number_is_reused(self, db_session):
        number = allocate(DOC_SALES_ORDER)
        db_session.rollback()
        assert allocate(DOC_SALES_ORDER) == number

    def test_unknown_type(self, db_session):
        with pytest.raises(DocumentSequenceError):
            allocate("INVOICE")

    def test_missing_period(self, db_session):
        with pytest.raises(DocumentSequenceError):
            next_document_number(document_type="TEST", prefix="T", period="")
