"""
Beneficiary Registry Module

Per-account list of saved counterpart accounts used by quick transfers.
The list lives on the owner's account record and is changed with a
version-conditional write of that record, so two concurrent adds cannot
push the list past its cap or insert the same account twice.
"""

from datetime import datetime, timezone
from typing import List, Optional

from .accounts import AccountStore, Beneficiary, validate_account_number
from .audit import AuditTrail, AuditEventType
from .config import LedgerConfig, get_config
from .errors import (
    BeneficiaryLimitReachedError, BeneficiaryNotFoundError,
    DuplicateBeneficiaryError, InvalidInputError, LedgerError, NotAuthenticatedError
)
from .events import EventDispatcher, DomainEvent, create_beneficiary_event
from .logging_config import get_logger, log_action


class BeneficiaryRegistry:
    """Bounded, deduplicated beneficiary lists keyed by owner account"""

    def __init__(
        self,
        account_store: AccountStore,
        audit_trail: Optional[AuditTrail] = None,
        event_dispatcher: Optional[EventDispatcher] = None,
        config: Optional[LedgerConfig] = None
    ):
        self.account_store = account_store
        self.storage = account_store.storage
        self.audit_trail = audit_trail
        self.config = config or get_config()
        self.logger = get_logger("transfer_ledger.beneficiaries")
        self._event_dispatcher = event_dispatcher

    @property
    def max_beneficiaries(self) -> int:
        return self.config.max_beneficiaries

    def add(
        self,
        owner_id: str,
        account_number: str,
        name: str,
        nickname: Optional[str] = None
    ) -> List[Beneficiary]:
        """
        Save a beneficiary for an owner

        Returns:
            The owner's updated beneficiary list

        Raises:
            NotAuthenticatedError: No owner identity
            InvalidInputError: Missing name, malformed number, or the owner's
                own account
            AccountNotFoundError: Owner or target account does not exist
            BeneficiaryLimitReachedError: Owner already has the maximum
            DuplicateBeneficiaryError: Target already saved
            ConflictError: Owner account changed concurrently
        """
        if not owner_id:
            raise NotAuthenticatedError()
        if not account_number or not name or not name.strip():
            raise InvalidInputError("Account number and name are required")
        validate_account_number(account_number)

        beneficiary = Beneficiary(
            account_number=account_number,
            name=name.strip(),
            nickname=nickname.strip() if nickname and nickname.strip() else None
        )

        with self.storage.atomic() as txn:
            owner = self.account_store.load_for_update(txn, owner_id)

            if len(owner.beneficiaries) >= self.max_beneficiaries:
                raise BeneficiaryLimitReachedError(
                    f"Maximum {self.max_beneficiaries} beneficiaries allowed",
                    details={"owner_id": owner_id}
                )

            if owner.get_beneficiary(account_number):
                raise DuplicateBeneficiaryError(details={"account_number": account_number})

            # Raises AccountNotFoundError for unknown targets
            self.account_store.get_by_account_number(account_number)

            if account_number == owner.account_number:
                raise InvalidInputError("Cannot add yourself as beneficiary")

            owner.beneficiaries.append(beneficiary)
            owner.updated_at = datetime.now(timezone.utc)
            self.account_store.stage_update(txn, owner)

        self._record_change(AuditEventType.BENEFICIARY_ADDED, DomainEvent.BENEFICIARY_ADDED,
                            owner_id, beneficiary)
        return list(owner.beneficiaries)

    def remove(self, owner_id: str, account_number: str) -> List[Beneficiary]:
        """
        Remove a saved beneficiary

        Returns:
            The owner's updated beneficiary list

        Raises:
            BeneficiaryNotFoundError: If the account is not in the owner's list
        """
        if not owner_id:
            raise NotAuthenticatedError()

        with self.storage.atomic() as txn:
            owner = self.account_store.load_for_update(txn, owner_id)
            removed = owner.get_beneficiary(account_number)
            if removed is None:
                raise BeneficiaryNotFoundError(details={"account_number": account_number})

            owner.beneficiaries = [b for b in owner.beneficiaries
                                   if b.account_number != account_number]
            owner.updated_at = datetime.now(timezone.utc)
            self.account_store.stage_update(txn, owner)

        self._record_change(AuditEventType.BENEFICIARY_REMOVED, DomainEvent.BENEFICIARY_REMOVED,
                            owner_id, removed)
        return list(owner.beneficiaries)

    def list(self, owner_id: str) -> List[Beneficiary]:
        """Get an owner's beneficiaries in the order they were added"""
        if not owner_id:
            raise NotAuthenticatedError()
        return list(self.account_store.get_by_id(owner_id).beneficiaries)

    def find(self, owner_id: str, account_number: str) -> Optional[Beneficiary]:
        """Get one saved beneficiary, or None"""
        return self.account_store.get_by_id(owner_id).get_beneficiary(account_number)

    def _record_change(self, audit_type: AuditEventType, event_type: DomainEvent,
                       owner_id: str, beneficiary: Beneficiary) -> None:
        log_action(
            self.logger, "info", f"Beneficiary {audit_type.value.split('_')[-1]}",
            user_id=owner_id, action=audit_type.value,
            resource=f"account:{owner_id}",
            extra={"beneficiary_account_number": beneficiary.account_number}
        )

        # Already committed; an audit failure is logged, not raised
        if self.audit_trail and self.config.enable_audit_logging:
            try:
                self.audit_trail.log_event(
                    event_type=audit_type,
                    entity_type="account",
                    entity_id=owner_id,
                    metadata=beneficiary.to_dict(),
                    user_id=owner_id
                )
            except LedgerError as e:
                self.logger.error(f"Audit write failed for {audit_type.value} on account {owner_id}: {e}",
                                  exc_info=True)

        if self._event_dispatcher and self.config.enable_domain_events:
            self._event_dispatcher.publish(create_beneficiary_event(event_type, owner_id, beneficiary))
