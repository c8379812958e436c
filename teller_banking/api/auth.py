"""
Authentication and authorization dependencies
"""

from datetime import timedelta
from typing import Iterable, Optional

from fastapi import Depends, Header

from ..accounts import AccountManager
from ..authorization import AuthorizationGate, require_role
from ..config import TellerConfig, get_config
from ..identity import Principal, Role
from ..logging_config import get_logger
from ..storage import StorageInterface, create_storage
from ..tokens import Clock, TokenService
from ..transactions import TransactionEngine
from ..users import UserManager


class BankingSystem:
    """Teller banking system with all components initialized"""

    def __init__(
        self,
        config: Optional[TellerConfig] = None,
        storage: Optional[StorageInterface] = None,
        clock: Optional[Clock] = None
    ):
        self.config = config or get_config()
        self.logger = get_logger("teller.system")

        self.storage = storage or create_storage(self.config.database_url)

        self.token_service = TokenService(
            secret=self.config.jwt_secret,
            algorithm=self.config.jwt_algorithm,
            session_ttl=timedelta(minutes=self.config.session_token_ttl_minutes),
            reset_ttl=timedelta(minutes=self.config.reset_token_ttl_minutes),
            clock=clock
        )
        self.gate = AuthorizationGate(self.token_service)
        self.user_manager = UserManager(self.storage, self.token_service)
        self.account_manager = AccountManager(
            self.storage, self.user_manager,
            account_number_attempts=self.config.account_number_attempts,
            update_attempts=self.config.balance_update_attempts
        )
        self.transaction_engine = TransactionEngine(
            self.storage, self.account_manager,
            max_attempts=self.config.balance_update_attempts
        )

        if self.config.bootstrap_admin_email and self.config.bootstrap_admin_password:
            admin = self.user_manager.ensure_bootstrap_admin(
                self.config.bootstrap_admin_email,
                self.config.bootstrap_admin_password
            )
            self.logger.info(f"Bootstrap admin ready: {admin.id}")

    def close(self) -> None:
        self.storage.close()


# Global banking system instance, created on first use
banking_system: Optional[BankingSystem] = None


def get_banking_system() -> BankingSystem:
    global banking_system
    if banking_system is None:
        banking_system = BankingSystem()
    return banking_system


def get_principal(
    authorization: Optional[str] = Header(default=None),
    system: BankingSystem = Depends(get_banking_system)
) -> Principal:
    """Dependency that verifies the bearer token and returns the principal"""
    return system.gate.authenticate(authorization)


def require_roles(roles: Iterable[Role], message: Optional[str] = None):
    """Dependency factory for role checking"""
    allowed = frozenset(roles)

    def check(principal: Principal = Depends(get_principal)) -> Principal:
        return require_role(principal, allowed, message)
    return check
