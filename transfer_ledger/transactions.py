"""
Transaction Log Module

Append-only store of completed transfers. Records are immutable once
appended; there is no update or delete path. Transfers are associated with
accounts only through the sender and recipient account numbers they carry.
"""

from datetime import datetime
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from .config import LedgerConfig, get_config
from .currency import Money, money_from_storage
from .errors import InvalidInputError
from .logging_config import get_logger
from .storage import StorageInterface, StorageTransaction


@dataclass(frozen=True)
class TransferRecord:
    """A completed movement of funds between two accounts"""
    id: str
    from_account_number: str
    to_account_number: str
    amount: Money
    description: str
    created_at: datetime

    def __post_init__(self):
        if not self.amount.is_positive():
            raise ValueError("Transfer amount must be positive")
        if self.from_account_number == self.to_account_number:
            raise ValueError("Transfer must be between two different accounts")

    def involves(self, account_number: str) -> bool:
        return account_number in (self.from_account_number, self.to_account_number)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "from_account_number": self.from_account_number,
            "to_account_number": self.to_account_number,
            "amount": str(self.amount.amount),
            "description": self.description,
            "created_at": self.created_at.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'TransferRecord':
        return cls(
            id=data["id"],
            from_account_number=data["from_account_number"],
            to_account_number=data["to_account_number"],
            amount=money_from_storage(data["amount"]),
            description=data["description"],
            created_at=datetime.fromisoformat(data["created_at"])
        )


class TransactionLog:
    """Append-only log of TransferRecords, queryable by account and time"""

    def __init__(self, storage: StorageInterface, config: Optional[LedgerConfig] = None):
        self.storage = storage
        self.config = config or get_config()
        self.table_name = "transfers"
        self.logger = get_logger("transfer_ledger.transactions")

    def append(self, record: TransferRecord, txn: Optional[StorageTransaction] = None) -> str:
        """
        Append a record

        Args:
            record: Record to append
            txn: Storage transaction to stage the insert in; when omitted the
                record is written in a transaction of its own

        Returns:
            The record ID

        Raises:
            ConflictError: If a record with the same ID already exists
        """
        if txn is not None:
            txn.insert(self.table_name, record.id, record.to_dict())
        else:
            with self.storage.atomic() as own_txn:
                own_txn.insert(self.table_name, record.id, record.to_dict())
        return record.id

    def get(self, record_id: str) -> Optional[TransferRecord]:
        """Get a transfer record by ID"""
        data = self.storage.load(self.table_name, record_id)
        if data:
            return TransferRecord.from_dict(data)
        return None

    def query_by_account(
        self,
        account_number: str,
        limit: Optional[int] = None,
        newest_first: bool = True,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None
    ) -> List[TransferRecord]:
        """
        Get transfers an account sent or received

        Args:
            account_number: Account number to match as sender or recipient
            limit: Maximum number of records (configured history limit if not provided)
            newest_first: Sort order by creation time
            since: Optional inclusive lower bound on created_at
            until: Optional inclusive upper bound on created_at

        Returns:
            List of TransferRecord objects
        """
        if limit is None:
            limit = self.config.transaction_history_limit
        if limit < 0:
            raise InvalidInputError("History limit cannot be negative", details={"limit": limit})

        rows = {}
        for data in self.storage.find(self.table_name, {"from_account_number": account_number}):
            rows[data["id"]] = data
        for data in self.storage.find(self.table_name, {"to_account_number": account_number}):
            rows[data["id"]] = data

        records = [TransferRecord.from_dict(data) for data in rows.values()]

        if since:
            records = [r for r in records if r.created_at >= since]
        if until:
            records = [r for r in records if r.created_at <= until]

        records.sort(key=lambda r: (r.created_at, r.id), reverse=newest_first)

        return records[:limit]

    def count(self) -> int:
        """Total number of records in the log"""
        return self.storage.count(self.table_name)
