"""
Test suite for user management

Tests signup, signin, admin-only staff creation, bootstrap admins and the
password-reset flow.
"""

import pytest

from teller_banking.errors import Forbidden, InvalidArgument, NotFound, Unauthenticated
from teller_banking.identity import Role
from teller_banking.tokens import TokenPurpose


class TestSignup:
    """Self-service registration"""

    def test_signup_creates_user_and_token(self, user_manager, token_service):
        user, token = user_manager.signup("Ada", "Lovelace", "Ada@Example.com", "pw-123")

        assert user.role == Role.USER
        assert user.email == "ada@example.com"
        assert user.full_name == "Ada Lovelace"
        claims = token_service.verify_token(token)
        assert claims.subject_id == user.id
        assert claims.role == Role.USER

    def test_password_never_exposed(self, user_manager):
        user, _ = user_manager.signup("Ada", "Lovelace", "ada@example.com", "pw-123")
        public = user.public_dict()
        assert "password_hash" not in public
        assert "password_salt" not in public
        assert user.password_hash != "pw-123"

    def test_duplicate_email_rejected(self, user_manager):
        user_manager.signup("Ada", "Lovelace", "ada@example.com", "pw-123")
        with pytest.raises(InvalidArgument) as exc_info:
            user_manager.signup("Other", "Person", " ADA@example.com ", "pw-456")
        assert exc_info.value.message == "User already exists"

    def test_missing_fields_rejected(self, user_manager):
        with pytest.raises(InvalidArgument) as exc_info:
            user_manager.signup("Ada", "", "ada@example.com", "pw-123")
        assert exc_info.value.message == "All fields are required"


class TestSignin:
    """Credential exchange"""

    def setup_method(self):
        self.email = "grace@example.com"
        self.password = "cobol-4-ever"

    def test_signin_success(self, user_manager):
        created, _ = user_manager.signup("Grace", "Hopper", self.email, self.password)
        user, token = user_manager.signin(self.email.upper(), self.password)
        assert user.id == created.id
        assert token

    def test_wrong_password(self, user_manager):
        user_manager.signup("Grace", "Hopper", self.email, self.password)
        with pytest.raises(Unauthenticated) as exc_info:
            user_manager.signin(self.email, "wrong")
        assert exc_info.value.message == "Invalid email or password"

    def test_unknown_email(self, user_manager):
        with pytest.raises(Unauthenticated):
            user_manager.signin("nobody@example.com", self.password)

    def test_missing_credentials(self, user_manager):
        with pytest.raises(InvalidArgument):
            user_manager.signin(self.email, "")


class TestStaffCreation:
    """Only admins create staff"""

    def test_admin_creates_staff(self, user_manager, admin):
        staff, token = user_manager.create_staff(admin, "Carl", "Cashier", "carl@example.com", "pw")
        assert staff.role == Role.STAFF
        assert user_manager.token_service.verify_token(token).role == Role.STAFF

    def test_non_admin_forbidden(self, user_manager, cashier, alice):
        for principal in (cashier, alice):
            with pytest.raises(Forbidden):
                user_manager.create_staff(principal, "Carl", "Cashier", "carl@example.com", "pw")
        assert user_manager.get_user_by_email("carl@example.com") is None

    def test_bootstrap_admin_is_idempotent(self, user_manager):
        first = user_manager.ensure_bootstrap_admin("root@example.com", "pw")
        second = user_manager.ensure_bootstrap_admin("root@example.com", "other")
        assert first.id == second.id
        assert first.role == Role.ADMIN


class TestPasswordReset:
    """Reset token flow"""

    def test_reset_then_signin_with_new_password(self, user_manager):
        user_manager.signup("Ada", "Lovelace", "ada@example.com", "old-pw")
        token = user_manager.request_password_reset("ada@example.com")

        user_manager.reset_password(token, "new-pw")

        user_manager.signin("ada@example.com", "new-pw")
        with pytest.raises(Unauthenticated):
            user_manager.signin("ada@example.com", "old-pw")

    def test_unknown_email(self, user_manager):
        with pytest.raises(NotFound):
            user_manager.request_password_reset("nobody@example.com")

    def test_expired_reset_token(self, user_manager, clock):
        user_manager.signup("Ada", "Lovelace", "ada@example.com", "old-pw")
        token = user_manager.request_password_reset("ada@example.com")
        clock.advance(minutes=16)
        with pytest.raises(InvalidArgument) as exc_info:
            user_manager.reset_password(token, "new-pw")
        assert exc_info.value.message == "Invalid or expired token"

    def test_session_token_cannot_reset(self, user_manager):
        _, session_token = user_manager.signup("Ada", "Lovelace", "ada@example.com", "old-pw")
        with pytest.raises(InvalidArgument):
            user_manager.reset_password(session_token, "new-pw")

    def test_reset_for_deleted_user(self, user_manager, storage, token_service):
        user, _ = user_manager.signup("Ada", "Lovelace", "ada@example.com", "old-pw")
        token = token_service.issue_reset_token(user.id)
        storage.delete("users", user.id)
        with pytest.raises(NotFound):
            user_manager.reset_password(token, "new-pw")

    def test_reset_token_has_reset_purpose(self, user_manager, token_service):
        user, _ = user_manager.signup("Ada", "Lovelace", "ada@example.com", "old-pw")
        token = user_manager.request_password_reset("ada@example.com")
        claims = token_service.verify_token(token, TokenPurpose.PASSWORD_RESET)
        assert claims.subject_id == user.id
