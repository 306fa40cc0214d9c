"""
Ledger System Module

Composition root: builds storage, audit trail, event dispatcher and the
ledger components from a LedgerConfig.
"""

from typing import Optional

from .accounts import AccountStore
from .audit import AuditTrail
from .beneficiaries import BeneficiaryRegistry
from .config import LedgerConfig, get_config
from .events import EventDispatcher
from .logging_config import setup_logging
from .storage import StorageInterface, create_storage
from .transactions import TransactionLog
from .transfers import TransferEngine


class LedgerSystem:
    """Transfer ledger with all components initialized"""

    def __init__(
        self,
        config: Optional[LedgerConfig] = None,
        storage: Optional[StorageInterface] = None,
        configure_logging: bool = False
    ):
        self.config = config or get_config()

        if configure_logging:
            setup_logging(
                level=self.config.log_level,
                log_format=self.config.log_format,
                log_file=self.config.log_file
            )

        self.storage = storage or create_storage(
            self.config.storage_backend,
            self.config.database_path,
            busy_timeout=self.config.sqlite_busy_timeout_seconds
        )
        self.audit_trail = AuditTrail(self.storage)
        self.event_dispatcher = EventDispatcher()

        self.account_store = AccountStore(
            self.storage, self.audit_trail, self.event_dispatcher, self.config
        )
        self.transaction_log = TransactionLog(self.storage, self.config)
        self.beneficiary_registry = BeneficiaryRegistry(
            self.account_store, self.audit_trail, self.event_dispatcher, self.config
        )
        self.transfer_engine = TransferEngine(
            self.account_store,
            self.transaction_log,
            self.beneficiary_registry,
            self.audit_trail,
            self.event_dispatcher,
            self.config
        )

    def close(self) -> None:
        self.storage.close()

    def __enter__(self) -> 'LedgerSystem':
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
