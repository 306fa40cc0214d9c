"""
Integration tests for the assembled ledger
"""

import pytest
from decimal import Decimal

from transfer_ledger.config import LedgerConfig
from transfer_ledger.currency import Money
from transfer_ledger.storage import InMemoryStorage, SQLiteStorage
from transfer_ledger.system import LedgerSystem


class TestLedgerSystem:

    def test_memory_backend_from_config(self):
        with LedgerSystem(config=LedgerConfig(storage_backend="memory")) as system:
            assert isinstance(system.storage, InMemoryStorage)

    def test_end_to_end_on_sqlite(self, tmp_path):
        db_path = str(tmp_path / "ledger.db")
        settings = LedgerConfig(storage_backend="sqlite", database_path=db_path)

        with LedgerSystem(config=settings) as system:
            assert isinstance(system.storage, SQLiteStorage)
            alice = system.account_store.create_account("Alice", "1111111111")
            bob = system.account_store.create_account("Bob", "2222222222")
            system.beneficiary_registry.add(alice.id, "2222222222", "Bob")
            system.transfer_engine.quick_transfer(alice.id, "2222222222", "100.00")
            system.transfer_engine.transfer(bob.id, "1111111111", "0.01")

        # Everything survives a restart
        with LedgerSystem(config=settings) as system:
            accounts = system.account_store
            assert accounts.get_by_account_number("1111111111").balance == Money(Decimal('99900.01'))
            assert accounts.get_by_account_number("2222222222").balance == Money(Decimal('100099.99'))
            assert [b.name for b in system.beneficiary_registry.list(alice.id)] == ["Bob"]

            history = system.transaction_log.query_by_account("1111111111")
            assert sorted(r.description for r in history) == ["Money transfer", "Transfer to Bob"]

            integrity = system.audit_trail.verify_integrity()
            assert integrity["valid"]
            # Two accounts, one beneficiary, two transfers
            assert integrity["total_events"] == 5

    def test_feature_flags_disable_audit_and_events(self):
        settings = LedgerConfig(enable_audit_logging=False, enable_domain_events=False)
        with LedgerSystem(config=settings, storage=InMemoryStorage()) as system:
            received = []
            system.event_dispatcher.subscribe_all(received.append)
            alice = system.account_store.create_account("Alice", "1111111111")
            system.account_store.create_account("Bob", "2222222222")
            system.transfer_engine.transfer(alice.id, "2222222222", "1.00")

            assert received == []
            assert system.audit_trail.count_events() == 0
