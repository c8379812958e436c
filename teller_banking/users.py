"""
User Management Module

Signup, signin, admin-only staff creation and token-based password reset.
Passwords are stored as salted scrypt hashes and never leave this module.
"""

import hashlib
import hmac
import secrets
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Tuple

from .errors import (
    DuplicateRecordError, InvalidArgument, NotFound, Unauthenticated
)
from .identity import Principal, Role
from .logging_config import get_logger, log_action
from .storage import StorageInterface, StorageRecord
from .tokens import TokenPurpose, TokenService
from .authorization import require_role


@dataclass
class User(StorageRecord):
    """Bank system user; exactly one role"""
    first_name: str
    last_name: str
    email: str
    role: Role = Role.USER
    password_hash: Optional[str] = None
    password_salt: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def public_dict(self) -> Dict[str, Any]:
        """User fields safe to return to callers"""
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "role": self.role.value,
        }

    def identity_dict(self) -> Dict[str, Any]:
        """Owner identity joined into account listings"""
        return {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
        }


def normalize_email(email: str) -> str:
    return (email or "").strip().lower()


class UserManager:
    """Creates users and authenticates them into session tokens"""

    def __init__(self, storage: StorageInterface, token_service: TokenService):
        self.storage = storage
        self.token_service = token_service
        self.table_name = "users"
        self.logger = get_logger("teller.users")

    def create_user(self, first_name: str, last_name: str, email: str,
                    password: str, role: Role = Role.USER) -> User:
        """
        Create a user with the given role.

        Raises:
            InvalidArgument: a field is missing or the e-mail is taken
        """
        email = normalize_email(email)
        if not first_name or not last_name or not email or not password:
            raise InvalidArgument("All fields are required")

        now = datetime.now(timezone.utc)
        user = User(
            id=str(uuid.uuid4()),
            created_at=now,
            updated_at=now,
            first_name=first_name.strip(),
            last_name=last_name.strip(),
            email=email,
            role=role
        )
        self._set_password(user, password)

        try:
            self.storage.insert(self.table_name, user.id, user.to_dict(),
                                unique_fields=("email",))
        except DuplicateRecordError as e:
            raise InvalidArgument("User already exists") from e

        log_action(
            self.logger, "info", "User created",
            user_id=user.id, action="user_created", resource=user.id,
            extra={"role": role.value}
        )
        return user

    def signup(self, first_name: str, last_name: str, email: str,
               password: str) -> Tuple[User, str]:
        """Self-service registration; always creates a `user`-role account"""
        user = self.create_user(first_name, last_name, email, password, Role.USER)
        return user, self.token_service.issue_token(user.id, user.role)

    def signin(self, email: str, password: str) -> Tuple[User, str]:
        """
        Exchange credentials for a session token.

        Raises:
            InvalidArgument: e-mail or password missing
            Unauthenticated: unknown e-mail or wrong password
        """
        if not email or not password:
            raise InvalidArgument("Email and password are required")

        user = self.get_user_by_email(email)
        if not user or not self._verify_password(user, password):
            log_action(self.logger, "info", "Sign-in failed", action="signin_failed")
            raise Unauthenticated("Invalid email or password")

        log_action(self.logger, "info", "Sign-in succeeded", user_id=user.id, action="signin")
        return user, self.token_service.issue_token(user.id, user.role)

    def create_staff(self, principal: Principal, first_name: str, last_name: str,
                     email: str, password: str) -> Tuple[User, str]:
        """Create a staff (cashier) user; admins only"""
        require_role(principal, {Role.ADMIN})
        user = self.create_user(first_name, last_name, email, password, Role.STAFF)
        return user, self.token_service.issue_token(user.id, user.role)

    def ensure_bootstrap_admin(self, email: str, password: str) -> User:
        """Create the first admin unless a user with that e-mail exists"""
        existing = self.get_user_by_email(email)
        if existing:
            return existing
        return self.create_user("System", "Administrator", email, password, Role.ADMIN)

    def request_password_reset(self, email: str) -> str:
        """
        Issue a password-reset token for the user with this e-mail.

        Raises:
            NotFound: no such user
        """
        user = self.get_user_by_email(email)
        if not user:
            raise NotFound("User not found")

        token = self.token_service.issue_reset_token(user.id)
        log_action(self.logger, "info", "Password reset requested",
                   user_id=user.id, action="password_reset_requested")
        return token

    def reset_password(self, token: str, new_password: str) -> User:
        """
        Set a new password using a password-reset token.

        Raises:
            InvalidArgument: token invalid or expired, or password empty
            NotFound: the token's user no longer exists
        """
        if not new_password:
            raise InvalidArgument("New password is required")
        try:
            claims = self.token_service.verify_token(token, TokenPurpose.PASSWORD_RESET)
        except Unauthenticated as e:
            raise InvalidArgument("Invalid or expired token") from e

        user = self.get_user(claims.subject_id)
        if not user:
            raise NotFound("User not found")

        self._set_password(user, new_password)
        user.updated_at = datetime.now(timezone.utc)
        self.storage.save(self.table_name, user.id, user.to_dict())

        log_action(self.logger, "info", "Password reset",
                   user_id=user.id, action="password_reset")
        return user

    def get_user(self, user_id: str) -> Optional[User]:
        data = self.storage.load(self.table_name, user_id)
        if not data:
            return None
        return self._user_from_dict(data)

    def get_user_by_email(self, email: str) -> Optional[User]:
        users = self.storage.find(self.table_name, {"email": normalize_email(email)})
        if not users:
            return None
        return self._user_from_dict(users[0])

    def _set_password(self, user: User, password: str) -> None:
        user.password_salt = secrets.token_hex(16)
        user.password_hash = self._hash_password(password, user.password_salt)

    def _hash_password(self, password: str, salt: str) -> str:
        """Hash password with salt using scrypt"""
        return hashlib.scrypt(
            password.encode(),
            salt=salt.encode(),
            n=16384, r=8, p=1
        ).hex()

    def _verify_password(self, user: User, password: str) -> bool:
        if not user.password_hash or not user.password_salt:
            return False
        expected = self._hash_password(password, user.password_salt)
        return hmac.compare_digest(expected, user.password_hash)

    def _user_from_dict(self, data: Dict[str, Any]) -> User:
        return User(
            id=data['id'],
            created_at=datetime.fromisoformat(data['created_at']),
            updated_at=datetime.fromisoformat(data['updated_at']),
            first_name=data['first_name'],
            last_name=data['last_name'],
            email=data['email'],
            role=Role(data['role']),
            password_hash=data.get('password_hash'),
            password_salt=data.get('password_salt')
        )
