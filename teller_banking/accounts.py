"""
Account Management Module

Manages bank accounts: creation with a fresh account number, listing,
status changes and hard deletion. Balances are fixed-point Decimals and are
only ever changed by the transaction engine.
"""

from decimal import Context, Decimal, InvalidOperation, ROUND_HALF_UP
from datetime import datetime, timezone
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
from enum import Enum
import re
import secrets
import uuid

from .errors import DuplicateRecordError, InternalError, InvalidArgument, NotFound
from .identity import Principal, Role, PRIVILEGED_ROLES
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord
from .users import UserManager
from .authorization import require_owner, require_role


CENT = Decimal("0.01")
# Single amounts: 28 significant digits including cents
AMOUNT_CONTEXT = Context(prec=28, rounding=ROUND_HALF_UP)
# Balances are sums of amounts; 60 digits keeps them exact far beyond any amount
MONEY_CONTEXT = Context(prec=60, rounding=ROUND_HALF_UP)
ACCOUNT_NUMBER_PREFIX = "BA"
ACCOUNT_NUMBER_DIGITS = 10
ACCOUNT_NUMBER_PATTERN = re.compile(r"^BA\d{10}$")


class AccountType(Enum):
    """Banking product types; fixed at creation"""
    SAVINGS = "savings"
    CURRENT = "current"


class AccountStatus(Enum):
    """Account lifecycle states"""
    ACTIVE = "active"
    DORMANT = "dormant"
    CLOSED = "closed"


def to_amount(value: Any) -> Decimal:
    """
    Convert a number or numeric string to a 2-place Decimal.

    Floats go through str() so binary noise never reaches a balance. An
    amount must fit in 28 significant digits once it carries cents, which
    bounds it below 10**26.

    Raises:
        InvalidArgument: not a finite number, or too large to represent
    """
    if isinstance(value, bool) or value is None:
        raise InvalidArgument("Invalid amount")
    if isinstance(value, float):
        value = str(value)
    try:
        amount = Decimal(value)
    except (InvalidOperation, TypeError, ValueError) as e:
        raise InvalidArgument("Invalid amount") from e
    if not amount.is_finite():
        raise InvalidArgument("Invalid amount")
    try:
        return amount.quantize(CENT, rounding=ROUND_HALF_UP, context=AMOUNT_CONTEXT)
    except InvalidOperation as e:
        raise InvalidArgument("Invalid amount. Too many digits.") from e


def generate_account_number() -> str:
    """BA followed by 10 random digits; never parses as a uuid"""
    digits = "".join(secrets.choice("0123456789") for _ in range(ACCOUNT_NUMBER_DIGITS))
    return f"{ACCOUNT_NUMBER_PREFIX}{digits}"


@dataclass
class Account(StorageRecord):
    """
    Bank account. `balance >= 0` always holds. `version` increases by one
    with every write of the record and guards concurrent updates;
    `transaction_count` and `last_transaction_at` track the ledger tail.
    """
    owner_id: str
    account_number: str
    account_type: AccountType
    balance: Decimal = Decimal("0.00")
    initial_deposit: Decimal = Decimal("0.00")
    status: AccountStatus = AccountStatus.ACTIVE
    version: int = 0
    transaction_count: int = 0
    last_transaction_at: Optional[datetime] = None

    def __post_init__(self):
        if self.balance < 0:
            raise ValueError("Account balance cannot be negative")

    def public_dict(self, owner: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """Account fields returned to callers, optionally with owner identity"""
        return {
            "id": self.id,
            "owner": owner if owner is not None else self.owner_id,
            "account_number": self.account_number,
            "type": self.account_type.value,
            "balance": str(self.balance),
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


class AccountManager:
    """
    Account lifecycle operations, each gated on the calling principal
    """

    def __init__(
        self,
        storage: StorageInterface,
        user_manager: UserManager,
        account_number_attempts: int = 10,
        update_attempts: int = 5
    ):
        self.storage = storage
        self.user_manager = user_manager
        self.account_number_attempts = account_number_attempts
        self.update_attempts = max(1, update_attempts)
        self.accounts_table = "accounts"
        self.logger = get_logger("teller.accounts")

    def create_account(
        self,
        principal: Principal,
        account_type: Any,
        initial_deposit: Any = None
    ) -> Account:
        """
        Open an account for the calling principal.

        Args:
            principal: Authenticated caller; becomes the owner
            account_type: AccountType or its string value
            initial_deposit: Opening balance; missing or negative means 0

        Returns:
            Created Account object

        Raises:
            NotFound: the principal no longer resolves to a user
            InvalidArgument: unknown account type or non-numeric deposit
        """
        if not self.user_manager.get_user(principal.id):
            raise NotFound("User not found")

        account_type = self._parse_type(account_type)

        opening = Decimal("0.00")
        if initial_deposit is not None:
            deposit = to_amount(initial_deposit)
            if deposit >= 0:
                opening = deposit

        now = datetime.now(timezone.utc)
        for attempt in range(1, self.account_number_attempts + 1):
            account = Account(
                id=str(uuid.uuid4()),
                created_at=now,
                updated_at=now,
                owner_id=principal.id,
                account_number=generate_account_number(),
                account_type=account_type,
                balance=opening,
                initial_deposit=opening
            )
            try:
                self.storage.insert(
                    self.accounts_table, account.id, account.to_dict(),
                    unique_fields=("account_number",)
                )
            except DuplicateRecordError:
                self.logger.warning(f"Account number collision, attempt {attempt}")
                continue

            log_action(
                self.logger, "info", "Account created",
                user_id=principal.id, action="account_created", resource=account.id,
                extra={"account_number": account.account_number,
                       "type": account_type.value,
                       "initial_deposit": str(opening)}
            )
            return account

        raise InternalError("Could not allocate a unique account number")

    def get_account(self, account_id: str) -> Optional[Account]:
        """Get account by ID"""
        data = self.storage.load(self.accounts_table, account_id)
        if data:
            return self._account_from_dict(data)
        return None

    def list_all(self, principal: Principal) -> List[Dict[str, Any]]:
        """Every account with its owner's identity joined in; admin/staff only"""
        require_role(principal, PRIVILEGED_ROLES,
                     "Access denied. Admins and staff only.")
        accounts = [self._account_from_dict(d) for d in self.storage.load_all(self.accounts_table)]
        return self._with_owners(accounts)

    def list_for_user(self, principal: Principal, user_id: str) -> List[Dict[str, Any]]:
        """
        Accounts owned by `user_id`.

        Raises:
            Forbidden: caller is neither privileged nor `user_id`
            NotFound: the user owns no accounts
        """
        require_owner(principal, user_id,
                      message="Access denied. You can only view your own accounts.")

        accounts = [
            self._account_from_dict(d)
            for d in self.storage.find(self.accounts_table, {"owner_id": user_id})
        ]
        if not accounts:
            raise NotFound("No accounts found for this user")
        return self._with_owners(accounts)

    def update_status(self, principal: Principal, account_id: str, new_status: Any) -> Account:
        """
        Change an account's status; admin/staff only.

        Raises:
            Forbidden: caller not admin/staff
            InvalidArgument: status not active, dormant or closed
            NotFound: no such account
        """
        require_role(principal, PRIVILEGED_ROLES, "Access denied. Admins & Staff only.")
        status = self._parse_status(new_status)

        for attempt in range(1, self.update_attempts + 1):
            account = self.get_account(account_id)
            if not account:
                raise NotFound("Account not found")
            old_status = account.status
            expected_version = account.version
            account.status = status
            account.version = expected_version + 1
            account.updated_at = datetime.now(timezone.utc)
            if self.storage.compare_and_set(
                self.accounts_table, account.id, "version", expected_version, account.to_dict()
            ):
                break
            self.logger.warning(
                f"Account {account_id} changed during status update, "
                f"attempt {attempt}/{self.update_attempts}"
            )
        else:
            raise InternalError(
                f"Could not update status of account {account_id} "
                f"after {self.update_attempts} attempts"
            )

        log_action(
            self.logger, "info", "Account status updated",
            user_id=principal.id, action="account_status_updated", resource=account.id,
            extra={"old_status": old_status.value, "new_status": status.value}
        )
        return account

    def delete_account(self, principal: Principal, account_id: str) -> None:
        """
        Irreversibly delete an account; admin only.

        Raises:
            Forbidden: caller not admin
            NotFound: no such account
        """
        require_role(principal, {Role.ADMIN}, "Access denied. Admins only.")
        if not self.storage.delete(self.accounts_table, account_id):
            raise NotFound("Account not found")

        log_action(
            self.logger, "info", "Account deleted",
            user_id=principal.id, action="account_deleted", resource=account_id
        )

    def _with_owners(self, accounts: List[Account]) -> List[Dict[str, Any]]:
        owners: Dict[str, Optional[Dict[str, Any]]] = {}
        result = []
        for account in accounts:
            if account.owner_id not in owners:
                user = self.user_manager.get_user(account.owner_id)
                owners[account.owner_id] = user.identity_dict() if user else None
            owner = owners[account.owner_id] or {"id": account.owner_id}
            result.append(account.public_dict(owner=owner))
        return result

    @staticmethod
    def _parse_type(value: Any) -> AccountType:
        if isinstance(value, AccountType):
            return value
        try:
            return AccountType(value)
        except ValueError as e:
            raise InvalidArgument("Invalid account type") from e

    @staticmethod
    def _parse_status(value: Any) -> AccountStatus:
        if isinstance(value, AccountStatus):
            return value
        try:
            return AccountStatus(value)
        except ValueError as e:
            raise InvalidArgument("Invalid account status") from e

    def _account_from_dict(self, data: Dict[str, Any]) -> Account:
        return Account(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            owner_id=data['owner_id'],
            account_number=data['account_number'],
            account_type=AccountType(data['account_type']),
            balance=Decimal(data['balance']),
            initial_deposit=Decimal(data.get('initial_deposit', '0.00')),
            status=AccountStatus(data['status']),
            version=int(data.get('version', 0)),
            transaction_count=int(data.get('transaction_count', 0)),
            last_transaction_at=(
                datetime.fromisoformat(data['last_transaction_at'])
                if data.get('last_transaction_at') else None
            )
        )
