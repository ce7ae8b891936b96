"""
PowerLink — Referential integrity and balance derivation
Covers powerlink/services/integrity.py and powerlink/services/ledger.py
directly against the database session.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError

from powerlink.core.exceptions import NotFoundError
from powerlink.models.ledger import Installment, Loan, Worker
from powerlink.services import integrity, ledger


def _count(db, model, *where):
    stmt = select(func.count()).select_from(model)
    for clause in where:
        stmt = stmt.where(clause)
    return db.scalar(stmt)


@pytest.fixture
def family(db_session):
    """One worker with two loans, three installments on the first loan."""
    worker = Worker(
        name="Ganesh",
        phone="9800000001",
        address="Ward 9",
        joining_date=date(2023, 6, 1),
    )
    db_session.add(worker)
    db_session.flush()

    first = Loan(worker_id=worker.id, amount=Decimal("1000"), loan_date=date(2024, 1, 1))
    second = Loan(worker_id=worker.id, amount=Decimal("250"), loan_date=date(2024, 2, 1))
    db_session.add_all([first, second])
    db_session.flush()

    for amount in ("100", "200", "50.50"):
        db_session.add(
            Installment(loan_id=first.id, amount=Decimal(amount), date=date(2024, 3, 1))
        )
    db_session.commit()
    return worker, first, second


class TestRemainingBalance:
    def test_clamped_at_zero(self):
        assert ledger.remaining_balance(Decimal("100"), Decimal("150")) == Decimal("0")

    def test_plain_difference(self):
        assert ledger.remaining_balance(Decimal("100"), Decimal("40.25")) == Decimal("59.75")

    def test_none_paid(self):
        assert ledger.remaining_balance(Decimal("100"), None) == Decimal("100")

    def test_paid_by_loan(self, db_session, family):
        _, first, second = family
        paid = ledger.paid_by_loan(db_session, [first.id, second.id])
        assert paid[first.id] == Decimal("350.50")
        assert second.id not in paid
        assert ledger.loan_paid(db_session, second.id) == Decimal("0")

    def test_worker_totals(self, db_session, family):
        worker, _, _ = family
        lent, remaining = ledger.worker_totals(db_session, [worker.id])[worker.id]
        assert lent == Decimal("1250")
        assert remaining == Decimal("899.50")

    def test_worker_totals_without_loans(self, db_session):
        worker = Worker(name="N", phone="1", address="A", joining_date=date(2024, 1, 1))
        db_session.add(worker)
        db_session.commit()
        assert ledger.worker_totals(db_session, [worker.id]) == {
            worker.id: (Decimal("0"), Decimal("0"))
        }


class TestCascadeDelete:
    def test_delete_worker_removes_everything(self, db_session, family):
        worker, first, second = family
        worker_id, loan_ids = worker.id, {first.id, second.id}
        result = integrity.delete_worker(db_session, worker_id)
        assert result.loans_deleted == 2
        assert result.installments_deleted == 3
        assert set(result.loan_ids) == loan_ids
        assert _count(db_session, Worker) == 0
        assert _count(db_session, Loan) == 0
        assert _count(db_session, Installment) == 0

    def test_delete_loan_keeps_worker_and_siblings(self, db_session, family):
        worker, first, second = family
        result = integrity.delete_loan(db_session, first.id)
        assert result.installments_deleted == 3
        assert _count(db_session, Worker) == 1
        assert _count(db_session, Loan, Loan.id == second.id) == 1
        assert _count(db_session, Installment) == 0

    def test_missing_worker_touches_nothing(self, db_session, family):
        with pytest.raises(NotFoundError):
            integrity.delete_worker(db_session, "missing")
        assert _count(db_session, Installment) == 3

    def test_missing_loan(self, db_session):
        with pytest.raises(NotFoundError):
            integrity.delete_loan(db_session, "missing")

    def test_failure_mid_cascade_rolls_back(self, db_session, family, monkeypatch):
        worker, _, _ = family

        def broken(db, loan_ids):
            raise OperationalError("DELETE FROM loans", {}, Exception("disk I/O error"))

        monkeypatch.setattr(integrity, "_purge_loans", broken)
        with pytest.raises(OperationalError):
            integrity.delete_worker(db_session, worker.id)

        # installments were deleted first inside the same transaction; all restored
        assert _count(db_session, Installment) == 3
        assert _count(db_session, Loan) == 2
        assert _count(db_session, Worker) == 1

    def test_failure_on_worker_delete_rolls_back(self, db_session, family, monkeypatch):
        worker, _, _ = family

        def broken(db, worker_id):
            raise OperationalError("DELETE FROM workers", {}, Exception("locked"))

        monkeypatch.setattr(integrity, "_purge_worker", broken)
        with pytest.raises(OperationalError):
            integrity.delete_worker(db_session, worker.id)
        assert _count(db_session, Installment) == 3
        assert _count(db_session, Loan) == 2

    def test_foreign_keys_forbid_orphaning(self, db_session, family):
        _, first, _ = family
        with pytest.raises(IntegrityError):
            db_session.execute(Loan.__table__.delete().where(Loan.id == first.id))
        db_session.rollback()
