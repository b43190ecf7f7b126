"""Shared fixtures: in-memory ledger store and transaction builders."""

from datetime import date
from decimal import Decimal

import pytest

from goal_ledger_recon.config import ReconConfig
from goal_ledger_recon.models.transaction import (
    BankTransaction,
    GoalTransaction,
    ReconciliationStatus,
    TransactionType,
)
from goal_ledger_recon.service import ReconciliationService
from goal_ledger_recon.storage.database import Database
from goal_ledger_recon.storage.repository import LedgerRepository


def bank_txn(
    txn_id,
    amount,
    on=date(2024, 3, 1),
    goal="G1",
    ref=None,
    txn_type=TransactionType.DEPOSIT,
    status=ReconciliationStatus.PENDING,
):
    return BankTransaction(
        id=txn_id,
        goal_number=goal,
        transaction_date=on,
        transaction_type=txn_type,
        total_amount=Decimal(str(amount)),
        account_number=f"ACC-{goal}",
        source_transaction_id=ref,
        reconciliation_status=status,
    )


def goal_txn(
    code,
    amount,
    on=date(2024, 3, 1),
    goal="G1",
    ref=None,
    txn_type=TransactionType.DEPOSIT,
    status=ReconciliationStatus.PENDING,
):
    return GoalTransaction(
        goal_transaction_code=code,
        goal_number=goal,
        transaction_date=on,
        transaction_type=txn_type,
        total_amount=Decimal(str(amount)),
        account_number=f"ACC-{goal}",
        transaction_id=ref,
        fund_transaction_ids=[f"{code}-XUMMF"],
        reconciliation_status=status,
    )


@pytest.fixture
def config():
    return ReconConfig()


@pytest.fixture
def database():
    db = Database("sqlite://")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def seed(database):
    """Insert bank and goal transactions into the ledger store."""

    def _seed(bank=(), goal=()):
        with database.session_scope() as session:
            repo = LedgerRepository(session)
            for txn in bank:
                repo.add_bank_transaction(txn)
            for txn in goal:
                repo.add_goal_transaction(txn)

    return _seed


@pytest.fixture
def service(config, database):
    return ReconciliationService(config, database)


@pytest.fixture
def fetch(database):
    """Read one row back as a domain object."""

    def _fetch(side, transaction_id):
        with database.session_scope() as session:
            repo = LedgerRepository(session)
            if side == "BANK":
                return repo.to_bank(repo.get_bank_row(transaction_id))
            return repo.to_goal(repo.get_goal_row(transaction_id))

    return _fetch
