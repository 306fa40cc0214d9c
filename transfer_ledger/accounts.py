"""
Account Store Module

Account records keyed by internal id, with a unique index on the 10-digit
account number. Exposes plain reads, a version-conditional balance update,
and in-transaction helpers the transfer engine and beneficiary registry use
to mutate accounts as part of a larger atomic unit.
"""

from decimal import Decimal, InvalidOperation
from datetime import datetime, timezone
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Union
import re
import secrets
import uuid

from .audit import AuditTrail, AuditEventType
from .config import LedgerConfig, get_config
from .currency import Money, money_from_storage
from .errors import (
    AccountNotFoundError, ConflictError, DuplicateAccountNumberError,
    InsufficientBalanceError, InvalidInputError, LedgerError, NotAuthenticatedError,
    SelfTransferRejectedError
)
from .events import EventDispatcher, DomainEvent, create_account_event
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord, StorageTransaction


ACCOUNT_NUMBER_LENGTH = 10
_ACCOUNT_NUMBER_RE = re.compile(r"[0-9]{10}")


def validate_account_number(value: Any, label: str = "Account number") -> str:
    """
    Check that value is exactly ten ASCII digits

    Raises:
        InvalidInputError: If the value is missing or malformed
    """
    if value is None or (isinstance(value, str) and not value):
        raise InvalidInputError(f"{label} is required")
    if not isinstance(value, str) or not _ACCOUNT_NUMBER_RE.fullmatch(value):
        raise InvalidInputError(
            f"Invalid {label.lower()} format",
            details={"account_number": str(value)}
        )
    return value


@dataclass(frozen=True)
class Beneficiary:
    """Saved counterpart account of an account owner"""
    account_number: str
    name: str
    nickname: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "account_number": self.account_number,
            "name": self.name,
            "nickname": self.nickname
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Beneficiary':
        return cls(
            account_number=data["account_number"],
            name=data["name"],
            nickname=data.get("nickname")
        )


@dataclass
class Account(StorageRecord):
    """
    Account with a single non-negative balance.
    version is the storage version the record was read at; it is not persisted.
    """
    account_number: str
    holder_name: str
    balance: Money
    beneficiaries: List[Beneficiary] = field(default_factory=list)
    version: int = 0

    def __post_init__(self):
        if self.balance.is_negative():
            raise ValueError("Account balance cannot be negative")

    def get_beneficiary(self, account_number: str) -> Optional[Beneficiary]:
        for beneficiary in self.beneficiaries:
            if beneficiary.account_number == account_number:
                return beneficiary
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
            "account_number": self.account_number,
            "holder_name": self.holder_name,
            "balance": str(self.balance.amount),
            "beneficiaries": [b.to_dict() for b in self.beneficiaries]
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], version: int = 0) -> 'Account':
        return cls(
            id=data["id"],
            created_at=datetime.fromisoformat(data["created_at"]),
            updated_at=datetime.fromisoformat(data["updated_at"]),
            account_number=data["account_number"],
            holder_name=data["holder_name"],
            balance=money_from_storage(data["balance"]),
            beneficiaries=[Beneficiary.from_dict(b) for b in data.get("beneficiaries", [])],
            version=version
        )


@dataclass(frozen=True)
class AccountSummary:
    """Public view of another account returned by account search"""
    holder_name: str
    account_number: str


class AccountStore:
    """
    Durable account records with account-number uniqueness and
    conditional balance writes
    """

    def __init__(
        self,
        storage: StorageInterface,
        audit_trail: Optional[AuditTrail] = None,
        event_dispatcher: Optional[EventDispatcher] = None,
        config: Optional[LedgerConfig] = None
    ):
        self.storage = storage
        self.audit_trail = audit_trail
        self.config = config or get_config()
        self.accounts_table = "accounts"
        self.index_table = "account_numbers"
        self.logger = get_logger("transfer_ledger.accounts")
        self._event_dispatcher = event_dispatcher

    def create_account(
        self,
        holder_name: str,
        account_number: Optional[str] = None,
        opening_balance: Optional[Union[Money, Decimal, str]] = None
    ) -> Account:
        """
        Create a new account

        Args:
            holder_name: Display name of the account holder
            account_number: Specific account number (generated if not provided)
            opening_balance: Initial balance (configured default if not provided)

        Returns:
            Created Account object

        Raises:
            InvalidInputError: Bad name, number format or negative balance
            DuplicateAccountNumberError: Number already taken, or no free
                number found within the configured number of attempts
        """
        if not holder_name or not holder_name.strip():
            raise InvalidInputError("Holder name is required")
        holder_name = holder_name.strip()

        balance = self._parse_opening_balance(opening_balance)

        if account_number is not None:
            validate_account_number(account_number)
            candidates = [account_number]
        else:
            # One draw per attempt
            candidates = (self._generate_account_number()
                          for _ in range(self.config.account_number_attempts))

        for candidate in candidates:
            now = datetime.now(timezone.utc)
            account = Account(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                account_number=candidate,
                holder_name=holder_name,
                balance=balance
            )
            try:
                # The index insert fails with a conflict if the number is taken
                with self.storage.atomic() as txn:
                    txn.insert(self.index_table, candidate, {
                        "account_number": candidate,
                        "account_id": account.id
                    })
                    txn.insert(self.accounts_table, account.id, account.to_dict())
            except ConflictError:
                self.logger.debug(f"Account number {candidate} already in use")
                continue

            account.version = 1
            self._record_creation(account)
            return account

        if account_number is not None:
            raise DuplicateAccountNumberError(details={"account_number": account_number})
        raise DuplicateAccountNumberError(
            "Could not allocate a unique account number",
            details={"attempts": self.config.account_number_attempts}
        )

    def _parse_opening_balance(
        self,
        opening_balance: Optional[Union[Money, Decimal, str]]
    ) -> Money:
        """Opening balance as Money, or InvalidInputError"""
        if isinstance(opening_balance, Money):
            balance = opening_balance
        else:
            raw = self.config.opening_balance if opening_balance is None else opening_balance
            if isinstance(raw, bool):
                raise InvalidInputError("Invalid opening balance")
            try:
                value = Decimal(str(raw).strip())
                if not value.is_finite():
                    raise InvalidInputError("Invalid opening balance", details={"opening_balance": str(raw)})
                balance = Money(value)
            except InvalidOperation:
                raise InvalidInputError(
                    "Invalid opening balance", details={"opening_balance": str(raw)}
                ) from None

        if balance.is_negative():
            raise InvalidInputError("Opening balance cannot be negative")
        return balance

    def _record_creation(self, account: Account) -> None:
        log_action(
            self.logger, "info", "Account created",
            action="create_account", resource=f"account:{account.id}",
            extra={"account_number": account.account_number, "balance": str(account.balance)}
        )

        # The account is committed at this point; follow-up failures are
        # reported but do not turn the creation into an error for the caller
        if self.audit_trail and self.config.enable_audit_logging:
            try:
                self.audit_trail.log_event(
                    event_type=AuditEventType.ACCOUNT_CREATED,
                    entity_type="account",
                    entity_id=account.id,
                    metadata={
                        "account_number": account.account_number,
                        "holder_name": account.holder_name,
                        "opening_balance": account.balance.amount
                    }
                )
            except LedgerError as e:
                self.logger.error(f"Audit write failed for created account {account.id}: {e}",
                                  exc_info=True)

        if self._event_dispatcher and self.config.enable_domain_events:
            self._event_dispatcher.publish(create_account_event(DomainEvent.ACCOUNT_CREATED, account))

    def _generate_account_number(self) -> str:
        """Random 10-digit number without a leading zero"""
        return str(10 ** (ACCOUNT_NUMBER_LENGTH - 1) + secrets.randbelow(9 * 10 ** (ACCOUNT_NUMBER_LENGTH - 1)))

    def find_by_id(self, account_id: str) -> Optional[Account]:
        """Get account by internal ID, or None"""
        if not account_id:
            return None
        record = self.storage.load_versioned(self.accounts_table, account_id)
        if record is None:
            return None
        return Account.from_dict(record.data, record.version)

    def get_by_id(self, account_id: str) -> Account:
        """Get account by internal ID"""
        account = self.find_by_id(account_id)
        if account is None:
            raise AccountNotFoundError(details={"account_id": account_id})
        return account

    def find_by_account_number(self, account_number: str) -> Optional[Account]:
        """Get account by account number, or None"""
        index = self.storage.load(self.index_table, account_number)
        if index is None:
            return None
        return self.find_by_id(index["account_id"])

    def get_by_account_number(self, account_number: str) -> Account:
        """Get account by account number"""
        account = self.find_by_account_number(account_number)
        if account is None:
            raise AccountNotFoundError(details={"account_number": account_number})
        return account

    def conditionally_update_balance(
        self,
        account_id: str,
        expected_version: int,
        new_balance: Money
    ) -> Account:
        """
        Set an account's balance only if the record is still at expected_version

        Returns:
            The updated Account at its new version

        Raises:
            InsufficientBalanceError: If new_balance is negative
            AccountNotFoundError: If the account does not exist
            ConflictError: If the account changed since expected_version
        """
        if new_balance.is_negative():
            raise InsufficientBalanceError(
                "Account balance cannot become negative",
                details={"account_id": account_id}
            )

        with self.storage.atomic() as txn:
            account = self.load_for_update(txn, account_id)
            if account.version != expected_version:
                raise ConflictError(details={
                    "account_id": account_id,
                    "expected_version": expected_version,
                    "actual_version": account.version
                })
            account.balance = new_balance
            account.updated_at = datetime.now(timezone.utc)
            self.stage_update(txn, account)

        account.version += 1
        return account

    def load_for_update(self, txn: StorageTransaction, account_id: str) -> Account:
        """Fresh read of an account inside a storage transaction"""
        data = txn.load(self.accounts_table, account_id)
        if data is None:
            raise AccountNotFoundError(details={"account_id": account_id})
        return Account.from_dict(data, txn.version_of(self.accounts_table, account_id))

    def stage_update(self, txn: StorageTransaction, account: Account) -> None:
        """Stage a write of the account, conditional on the version it was read at"""
        txn.save(self.accounts_table, account.id, account.to_dict(),
                 expected_version=account.version)

    def lookup_account(self, caller_id: str, account_number: str) -> AccountSummary:
        """
        Search another account by number

        Raises:
            NotAuthenticatedError: If no caller identity is given
            InvalidInputError: If the number is malformed
            AccountNotFoundError: If no account has that number
            SelfTransferRejectedError: If the number is the caller's own
        """
        if not caller_id:
            raise NotAuthenticatedError()
        validate_account_number(account_number)
        caller = self.get_by_id(caller_id)

        account = self.get_by_account_number(account_number)
        if account.account_number == caller.account_number:
            raise SelfTransferRejectedError("Cannot search for your own account")

        return AccountSummary(holder_name=account.holder_name, account_number=account.account_number)

    def total_balance(self) -> Money:
        """Sum of all account balances"""
        total = Money.zero()
        for data in self.storage.load_all(self.accounts_table):
            total = total + money_from_storage(data["balance"])
        return total

    def count_accounts(self) -> int:
        return self.storage.count(self.accounts_table)
