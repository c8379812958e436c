"""
Transaction Processing Module

Teller credits and debits. Each operation moves an account balance and
appends an immutable transaction record as one atomic unit:

- the balance write is a compare-and-set on the account's version, so two
  racing debits cannot both spend the same funds;
- the balance write and the ledger append share one storage.atomic()
  block, so a failed append leaves no committed balance change behind.

Replaying an account's records in sequence order from its initial deposit
reproduces the current balance.
"""

from decimal import Decimal
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List
from enum import Enum
import uuid

from .accounts import MONEY_CONTEXT, AccountManager, to_amount
from .authorization import require_role
from .errors import (
    ConcurrentUpdateError, Forbidden, InsufficientFunds, InternalError,
    InvalidArgument, NotFound
)
from .identity import Principal, Role
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord


class TransactionType(Enum):
    """Teller operations"""
    CREDIT = "credit"  # Deposit
    DEBIT = "debit"    # Withdrawal


@dataclass
class Transaction(StorageRecord):
    """Immutable ledger entry for one teller operation"""
    account_id: str
    cashier_id: str
    transaction_type: TransactionType
    amount: Decimal
    new_balance: Decimal
    sequence: int

    def __post_init__(self):
        if self.amount <= 0:
            raise ValueError("Transaction amount must be positive")
        if self.new_balance < 0:
            raise ValueError("Transaction cannot leave a negative balance")

    @property
    def signed_amount(self) -> Decimal:
        if self.transaction_type == TransactionType.CREDIT:
            return self.amount
        return self.amount.copy_negate()

    def public_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "account_id": self.account_id,
            "cashier_id": self.cashier_id,
            "type": self.transaction_type.value,
            "amount": str(self.amount),
            "new_balance": str(self.new_balance),
            "sequence": self.sequence,
            "created_at": self.created_at.isoformat(),
        }


class TransactionEngine:
    """
    Executes teller operations against the account ledger store
    """

    def __init__(
        self,
        storage: StorageInterface,
        account_manager: AccountManager,
        max_attempts: int = 5
    ):
        self.storage = storage
        self.account_manager = account_manager
        self.max_attempts = max(1, max_attempts)
        self.table_name = "transactions"
        self.logger = get_logger("teller.transactions")

    def credit(self, principal: Principal, account_id: str, amount: Any) -> Transaction:
        """
        Deposit `amount` into an account.

        Raises:
            Forbidden: caller is not staff
            InvalidArgument: amount not positive and finite
            NotFound: no such account
        """
        return self._execute(principal, account_id, amount, TransactionType.CREDIT)

    def debit(self, principal: Principal, account_id: str, amount: Any) -> Transaction:
        """
        Withdraw `amount` from an account.

        Raises:
            Forbidden: caller is not staff
            InvalidArgument: amount not positive and finite
            NotFound: no such account
            InsufficientFunds: amount exceeds the balance; nothing changes
        """
        return self._execute(principal, account_id, amount, TransactionType.DEBIT)

    def get_history(self, principal: Principal, account_id: str) -> List[Transaction]:
        """
        All transactions of an account owned by the caller, newest first.

        Ownership is required of every role. A missing account and an
        account owned by someone else both raise NotFound, so callers
        cannot learn whether it exists.
        """
        account = self.account_manager.get_account(account_id)
        if not account or account.owner_id != principal.id:
            raise NotFound("Account not found or unauthorized")

        transactions = self._account_transactions(account_id)
        transactions.sort(key=lambda t: (t.created_at, t.sequence), reverse=True)
        return transactions

    def get_transaction(self, principal: Principal, transaction_id: str) -> Transaction:
        """
        One transaction, readable only by the owner of its account.

        Raises:
            NotFound: no such transaction
            Forbidden: caller does not own the parent account
        """
        data = self.storage.load(self.table_name, transaction_id)
        if not data:
            raise NotFound("Transaction not found")
        transaction = self._transaction_from_dict(data)

        account = self.account_manager.get_account(transaction.account_id)
        if not account or account.owner_id != principal.id:
            raise Forbidden("Unauthorized access to transaction")
        return transaction

    def replay_balance(self, account_id: str) -> Decimal:
        """
        Rebuild an account balance from its initial deposit and ledger.

        Raises:
            NotFound: no such account
            InternalError: a record's new_balance disagrees with the replay
        """
        account = self.account_manager.get_account(account_id)
        if not account:
            raise NotFound("Account not found")

        balance = account.initial_deposit
        for transaction in sorted(self._account_transactions(account_id),
                                  key=lambda t: t.sequence):
            balance = MONEY_CONTEXT.add(balance, transaction.signed_amount)
            if balance != transaction.new_balance:
                raise InternalError(
                    f"Ledger mismatch on account {account_id} at sequence "
                    f"{transaction.sequence}: replay {balance}, recorded {transaction.new_balance}"
                )
        return balance

    def _execute(self, principal: Principal, account_id: str, amount: Any,
                 transaction_type: TransactionType) -> Transaction:
        require_role(principal, {Role.STAFF},
                     "Access denied. Only staff can process transactions")

        amount = to_amount(amount)
        if amount <= 0:
            raise InvalidArgument("Invalid amount. Must be greater than zero.")

        for attempt in range(1, self.max_attempts + 1):
            try:
                with self.storage.atomic():
                    transaction = self._apply(principal, account_id, amount, transaction_type)
            except ConcurrentUpdateError:
                self.logger.warning(
                    f"Balance changed underneath {transaction_type.value} on "
                    f"account {account_id}, attempt {attempt}/{self.max_attempts}"
                )
                continue

            log_action(
                self.logger, "info", f"Account {transaction_type.value}ed",
                user_id=principal.id, action=f"account_{transaction_type.value}",
                resource=account_id,
                extra={"transaction_id": transaction.id,
                       "amount": str(amount),
                       "new_balance": str(transaction.new_balance)}
            )
            return transaction

        raise InternalError(
            f"Could not apply {transaction_type.value} to account {account_id} "
            f"after {self.max_attempts} attempts"
        )

    def _apply(self, principal: Principal, account_id: str, amount: Decimal,
               transaction_type: TransactionType) -> Transaction:
        """Balance compare-and-set plus ledger append; runs inside atomic()"""
        account = self.account_manager.get_account(account_id)
        if not account:
            raise NotFound("Account not found")

        if transaction_type == TransactionType.DEBIT:
            if amount > account.balance:
                log_action(
                    self.logger, "info", "Debit rejected: insufficient funds",
                    user_id=principal.id, action="account_debit_rejected",
                    resource=account_id,
                    extra={"amount": str(amount), "balance": str(account.balance)}
                )
                raise InsufficientFunds("Insufficient funds")
            new_balance = MONEY_CONTEXT.subtract(account.balance, amount)
        else:
            new_balance = MONEY_CONTEXT.add(account.balance, amount)

        now = datetime.now(timezone.utc)
        # Never earlier than the account's previous record
        created_at = now
        if account.last_transaction_at is not None and account.last_transaction_at > now:
            created_at = account.last_transaction_at
        sequence = account.transaction_count + 1
        expected_version = account.version

        account.balance = new_balance
        account.version = expected_version + 1
        account.transaction_count = sequence
        account.last_transaction_at = created_at
        account.updated_at = now
        if not self.storage.compare_and_set(
            self.account_manager.accounts_table, account.id,
            "version", expected_version, account.to_dict()
        ):
            raise ConcurrentUpdateError(f"Account {account_id} changed during update")

        transaction = Transaction(
            id=str(uuid.uuid4()),
            created_at=created_at,
            updated_at=now,
            account_id=account_id,
            cashier_id=principal.id,
            transaction_type=transaction_type,
            amount=amount,
            new_balance=new_balance,
            sequence=sequence
        )
        self.storage.insert(self.table_name, transaction.id, transaction.to_dict())
        return transaction

    def _account_transactions(self, account_id: str) -> List[Transaction]:
        return [
            self._transaction_from_dict(data)
            for data in self.storage.find(self.table_name, {"account_id": account_id})
        ]

    def _transaction_from_dict(self, data: Dict[str, Any]) -> Transaction:
        return Transaction(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            account_id=data['account_id'],
            cashier_id=data['cashier_id'],
            transaction_type=TransactionType(data['transaction_type']),
            amount=Decimal(data['amount']),
            new_balance=Decimal(data['new_balance']),
            sequence=int(data['sequence'])
        )
