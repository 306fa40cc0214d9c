"""
Transfer Engine Module

Moves funds between two accounts as one atomic unit: the sender debit, the
recipient credit and the TransferRecord append are committed together or not
at all. Preconditions are checked in a fixed order before anything is staged,
and the sender balance is checked again against a fresh read inside the
storage transaction. Concurrent transfers touching the same account are
detected by version checks at commit and fail with ConflictError; the engine
never retries on its own.
"""

from datetime import datetime, timezone
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple, Union
import threading
import uuid

from .accounts import Account, AccountStore, validate_account_number
from .audit import AuditTrail, AuditEventType
from .beneficiaries import BeneficiaryRegistry
from .config import LedgerConfig, get_config
from .currency import Money, parse_amount
from .errors import (
    AccountNotFoundError, CancelledError, InsufficientBalanceError,
    InvalidInputError, LedgerError, NotABeneficiaryError,
    NotAuthenticatedError, SelfTransferRejectedError
)
from .events import EventDispatcher, DomainEvent, create_transfer_event
from .logging_config import get_logger, log_action
from .transactions import TransactionLog, TransferRecord


AmountInput = Union[str, int, float, Decimal]


@dataclass(frozen=True)
class TransferResult:
    """Outcome of a committed transfer"""
    record: TransferRecord
    new_sender_balance: Money

    def to_dict(self) -> Dict[str, Any]:
        """Flat result shape for the caller-facing layer"""
        return {
            "transaction_id": self.record.id,
            "from": self.record.from_account_number,
            "to": self.record.to_account_number,
            "amount": str(self.record.amount.amount),
            "description": self.record.description,
            "created_at": self.record.created_at.isoformat(),
            "new_sender_balance": str(self.new_sender_balance.amount)
        }


class TransferEngine:
    """
    Validates and commits peer-to-peer transfers
    """

    def __init__(
        self,
        account_store: AccountStore,
        transaction_log: TransactionLog,
        beneficiary_registry: BeneficiaryRegistry,
        audit_trail: Optional[AuditTrail] = None,
        event_dispatcher: Optional[EventDispatcher] = None,
        config: Optional[LedgerConfig] = None
    ):
        self.account_store = account_store
        self.transaction_log = transaction_log
        self.beneficiary_registry = beneficiary_registry
        self.storage = account_store.storage
        self.audit_trail = audit_trail
        self.config = config or get_config()
        self.logger = get_logger("transfer_ledger.transfers")
        self._event_dispatcher = event_dispatcher
        self._minimum_amount = Decimal(self.config.minimum_transfer_amount)

    def transfer(
        self,
        sender_id: str,
        recipient_account_number: str,
        amount: AmountInput,
        description: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> TransferResult:
        """
        Transfer funds to any existing account

        Args:
            sender_id: Internal ID of the authenticated sender
            recipient_account_number: 10-digit account number of the recipient
            amount: Amount as supplied by the caller
            description: Optional description, defaults to "Money transfer"
            cancel_event: Set by the caller to abandon the transfer before commit

        Returns:
            TransferResult with the appended record and the sender's new balance

        Raises:
            LedgerError: The subclass matching the first failed check, or
                ConflictError / StoreUnavailableError / CancelledError from
                the commit step. Nothing is written in any failure case.
        """
        try:
            return self._execute(sender_id, recipient_account_number, amount,
                                 description, cancel_event, quick=False)
        except LedgerError as e:
            self._log_rejection("transfer", sender_id, recipient_account_number, e)
            raise

    def quick_transfer(
        self,
        sender_id: str,
        beneficiary_account_number: str,
        amount: AmountInput,
        description: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None
    ) -> TransferResult:
        """
        Transfer funds to an account saved in the sender's beneficiary list.
        Defaults the description to "Transfer to {beneficiary name}" and
        raises NotABeneficiaryError when the recipient is not saved.
        """
        try:
            return self._execute(sender_id, beneficiary_account_number, amount,
                                 description, cancel_event, quick=True)
        except LedgerError as e:
            self._log_rejection("quick_transfer", sender_id, beneficiary_account_number, e)
            raise

    def _execute(
        self,
        sender_id: str,
        recipient_account_number: str,
        raw_amount: AmountInput,
        description: Optional[str],
        cancel_event: Optional[threading.Event],
        quick: bool
    ) -> TransferResult:
        label = "Beneficiary account number" if quick else "Recipient account number"

        if not recipient_account_number or raw_amount is None or raw_amount == "":
            raise InvalidInputError(f"{label} and amount are required")

        validate_account_number(recipient_account_number, label)
        amount = parse_amount(raw_amount, self._minimum_amount)
        description = self._normalize_description(description)

        if not sender_id:
            raise NotAuthenticatedError()
        sender = self.account_store.find_by_id(sender_id)
        if sender is None:
            raise AccountNotFoundError("Sender not found", details={"account_id": sender_id})

        if sender.balance < amount:
            raise InsufficientBalanceError(details={
                "balance": str(sender.balance),
                "amount": str(amount)
            })

        recipient = self.account_store.find_by_account_number(recipient_account_number)
        if recipient is None:
            message = "Beneficiary account not found" if quick else "Recipient account not found"
            raise AccountNotFoundError(message, details={"account_number": recipient_account_number})

        if sender.account_number == recipient.account_number:
            raise SelfTransferRejectedError()

        if quick:
            beneficiary = self.beneficiary_registry.find(sender.id, recipient.account_number)
            if beneficiary is None:
                raise NotABeneficiaryError(details={"account_number": recipient.account_number})
            default_description = f"Transfer to {beneficiary.name}"
        else:
            default_description = self.config.default_transfer_description

        if description is None:
            description = default_description[:self.config.max_description_length]

        self._check_cancelled(cancel_event)
        record, new_balance = self._commit(sender.id, recipient.id, amount, description,
                                           cancel_event, quick)
        self._record_transfer(sender_id, record, new_balance)

        return TransferResult(record=record, new_sender_balance=new_balance)

    def _commit(
        self,
        sender_id: str,
        recipient_id: str,
        amount: Money,
        description: str,
        cancel_event: Optional[threading.Event],
        quick: bool = False
    ) -> Tuple[TransferRecord, Money]:
        """Re-read both accounts and commit debit, credit and record together"""
        with self.storage.atomic() as txn:
            # Fixed ascending-id order for reads and writes
            ordered_ids = sorted((sender_id, recipient_id))
            accounts: Dict[str, Account] = {
                account_id: self.account_store.load_for_update(txn, account_id)
                for account_id in ordered_ids
            }
            sender = accounts[sender_id]
            recipient = accounts[recipient_id]

            if sender.balance < amount:
                raise InsufficientBalanceError(details={
                    "balance": str(sender.balance),
                    "amount": str(amount),
                    "stage": "commit"
                })

            # The beneficiary may have been removed since the precondition check
            if quick and sender.get_beneficiary(recipient.account_number) is None:
                raise NotABeneficiaryError(details={
                    "account_number": recipient.account_number,
                    "stage": "commit"
                })

            now = datetime.now(timezone.utc)
            sender.balance = sender.balance - amount
            recipient.balance = recipient.balance + amount
            sender.updated_at = now
            recipient.updated_at = now
            for account_id in ordered_ids:
                self.account_store.stage_update(txn, accounts[account_id])

            record = TransferRecord(
                id=str(uuid.uuid4()),
                from_account_number=sender.account_number,
                to_account_number=recipient.account_number,
                amount=amount,
                description=description,
                created_at=now
            )
            self.transaction_log.append(record, txn)

            self._check_cancelled(cancel_event)

        return record, sender.balance

    def _normalize_description(self, description: Optional[str]) -> Optional[str]:
        """Trimmed description, or None when the caller gave none"""
        if description is None:
            return None
        if not isinstance(description, str):
            raise InvalidInputError("Description must be text")
        description = description.strip()
        if not description:
            return None
        if len(description) > self.config.max_description_length:
            raise InvalidInputError(
                f"Description cannot exceed {self.config.max_description_length} characters"
            )
        return description

    @staticmethod
    def _check_cancelled(cancel_event: Optional[threading.Event]) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise CancelledError()

    def _record_transfer(self, sender_id: str, record: TransferRecord, new_balance: Money) -> None:
        """Log, audit and publish a committed transfer"""
        log_action(
            self.logger, "info", "Transfer completed",
            user_id=sender_id, action="transfer", resource=f"transfer:{record.id}",
            extra={
                "from": record.from_account_number,
                "to": record.to_account_number,
                "amount": str(record.amount),
                "new_sender_balance": str(new_balance)
            }
        )

        # The transfer is committed at this point; follow-up failures are
        # reported but do not turn it into an error for the caller
        if self.audit_trail and self.config.enable_audit_logging:
            try:
                self.audit_trail.log_event(
                    event_type=AuditEventType.TRANSFER_COMPLETED,
                    entity_type="transfer",
                    entity_id=record.id,
                    metadata=record.to_dict(),
                    user_id=sender_id
                )
            except LedgerError as e:
                self.logger.error(f"Audit write failed for committed transfer {record.id}: {e}",
                                  exc_info=True)

        if self._event_dispatcher and self.config.enable_domain_events:
            self._event_dispatcher.publish(create_transfer_event(DomainEvent.TRANSFER_COMPLETED, record))

    def _log_rejection(self, operation: str, sender_id: str,
                       account_number: str, error: LedgerError) -> None:
        log_action(
            self.logger, "warning", f"{operation} rejected: {error.message}",
            user_id=sender_id, action=operation,
            extra={
                "kind": error.kind.value,
                "account_number": account_number,
                "details": error.details
            }
        )
