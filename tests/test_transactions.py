"""
Test suite for transactions module

Tests the append-only transfer log and its per-account history queries.
"""

import pytest
from dataclasses import FrozenInstanceError
from decimal import Decimal
from datetime import datetime, timezone, timedelta

from transfer_ledger.config import LedgerConfig
from transfer_ledger.currency import Money
from transfer_ledger.errors import ConflictError, InvalidInputError
from transfer_ledger.storage import InMemoryStorage, SQLiteStorage
from transfer_ledger.transactions import TransactionLog, TransferRecord


BASE_TIME = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


def make_record(record_id, sender="1111111111", recipient="2222222222",
                amount="10.00", minutes=0):
    return TransferRecord(
        id=record_id,
        from_account_number=sender,
        to_account_number=recipient,
        amount=Money(Decimal(amount)),
        description="Money transfer",
        created_at=BASE_TIME + timedelta(minutes=minutes)
    )


class TestTransferRecord:
    """Test TransferRecord invariants"""

    def test_record_is_immutable(self):
        record = make_record("T1")
        with pytest.raises(FrozenInstanceError):
            record.amount = Money(Decimal('1.00'))

    def test_record_requires_positive_amount(self):
        with pytest.raises(ValueError):
            make_record("T1", amount="0.00")

    def test_record_requires_distinct_accounts(self):
        with pytest.raises(ValueError):
            make_record("T1", sender="1111111111", recipient="1111111111")

    def test_involves(self):
        record = make_record("T1")
        assert record.involves("1111111111")
        assert record.involves("2222222222")
        assert not record.involves("3333333333")

    def test_round_trip(self):
        record = make_record("T1", amount="250.50")
        assert record.to_dict()["amount"] == "250.50"
        assert TransferRecord.from_dict(record.to_dict()) == record


class TestTransactionLog:
    """Test TransactionLog append and queries"""

    def setup_method(self):
        self.storage = InMemoryStorage()
        self.log = TransactionLog(self.storage, LedgerConfig())

    def test_append_and_get(self):
        assert self.log.append(make_record("T1")) == "T1"
        assert self.log.get("T1") == make_record("T1")
        assert self.log.get("missing") is None
        assert self.log.count() == 1

    def test_append_never_overwrites(self):
        self.log.append(make_record("T1", amount="10.00"))
        with pytest.raises(ConflictError):
            self.log.append(make_record("T1", amount="99.00"))
        assert self.log.get("T1").amount == Money(Decimal('10.00'))

    def test_append_inside_transaction(self):
        with pytest.raises(RuntimeError):
            with self.storage.atomic() as txn:
                self.log.append(make_record("T1"), txn)
                raise RuntimeError("abort")
        assert self.log.count() == 0

        with self.storage.atomic() as txn:
            self.log.append(make_record("T2"), txn)
        assert self.log.get("T2") is not None

    def test_query_by_account_sent_and_received(self):
        self.log.append(make_record("T1", "1111111111", "2222222222", minutes=1))
        self.log.append(make_record("T2", "2222222222", "1111111111", minutes=2))
        self.log.append(make_record("T3", "2222222222", "3333333333", minutes=3))

        history = self.log.query_by_account("1111111111")
        assert [r.id for r in history] == ["T2", "T1"]

        oldest_first = self.log.query_by_account("1111111111", newest_first=False)
        assert [r.id for r in oldest_first] == ["T1", "T2"]

        assert self.log.query_by_account("4444444444") == []

    def test_query_limit_defaults_to_config(self):
        log = TransactionLog(self.storage, LedgerConfig(transaction_history_limit=3))
        for i in range(5):
            log.append(make_record(f"T{i}", minutes=i))

        history = log.query_by_account("1111111111")
        assert [r.id for r in history] == ["T4", "T3", "T2"]
        assert len(log.query_by_account("1111111111", limit=10)) == 5

    def test_zero_limit_returns_nothing(self):
        for i in range(3):
            self.log.append(make_record(f"T{i}", minutes=i))
        assert self.log.query_by_account("1111111111", limit=0) == []

    def test_negative_limit_rejected(self):
        for i in range(3):
            self.log.append(make_record(f"T{i}", minutes=i))
        with pytest.raises(InvalidInputError):
            self.log.query_by_account("1111111111", limit=-1)

    def test_query_time_window(self):
        for i in range(5):
            self.log.append(make_record(f"T{i}", minutes=i * 10))

        window = self.log.query_by_account(
            "2222222222",
            since=BASE_TIME + timedelta(minutes=10),
            until=BASE_TIME + timedelta(minutes=30)
        )
        assert [r.id for r in window] == ["T3", "T2", "T1"]

    def test_equal_timestamps_order_by_id(self):
        self.log.append(make_record("B"))
        self.log.append(make_record("A"))
        assert [r.id for r in self.log.query_by_account("1111111111")] == ["B", "A"]


class TestTransactionLogSQLite:

    def test_history_persists(self, tmp_path):
        storage = SQLiteStorage(tmp_path / "log.db")
        log = TransactionLog(storage, LedgerConfig())
        log.append(make_record("T1", minutes=1))
        log.append(make_record("T2", "3333333333", "1111111111", minutes=2))
        storage.close()

        reopened = TransactionLog(SQLiteStorage(tmp_path / "log.db"), LedgerConfig())
        assert [r.id for r in reopened.query_by_account("1111111111")] == ["T2", "T1"]
        reopened.storage.close()
