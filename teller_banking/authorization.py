"""
Authorization Gate Module

A three-stage pipeline applied to every account and transaction request:

1. authentication: bearer credential -> Principal
2. role check: principal role must be in the operation's role set
3. ownership check: principal must own the resource unless privileged

Stages short-circuit in that order, so an authentication failure never
reveals whether the requested resource exists.
"""

from typing import Iterable, Optional

from .errors import Forbidden, Unauthenticated
from .identity import Principal, Role, PRIVILEGED_ROLES
from .logging_config import get_logger, log_action
from .tokens import TokenService


logger = get_logger("teller.authorization")


def require_role(principal: Principal, roles: Iterable[Role],
                 message: Optional[str] = None) -> Principal:
    """
    Stage 2: fail with Forbidden unless the principal holds one of `roles`.
    """
    allowed = frozenset(roles)
    if principal.role not in allowed:
        names = " & ".join(sorted(role.value.capitalize() for role in allowed))
        log_action(
            logger, "info", "Role check failed",
            user_id=principal.id, action="role_check",
            extra={"role": principal.role.value, "required": sorted(r.value for r in allowed)}
        )
        raise Forbidden(message or f"Access denied. {names} only.")
    return principal


def require_owner(principal: Principal, owner_id: str,
                  bypass_roles: Iterable[Role] = PRIVILEGED_ROLES,
                  message: Optional[str] = None) -> Principal:
    """
    Stage 3: fail with Forbidden unless the principal owns the resource or
    holds a bypass role.
    """
    if principal.id == owner_id or principal.role in frozenset(bypass_roles):
        return principal
    log_action(
        logger, "info", "Ownership check failed",
        user_id=principal.id, action="ownership_check", resource=owner_id
    )
    raise Forbidden(message or "Access denied. You can only access your own resources.")


class AuthorizationGate:
    """Turns request credentials into principals and applies the checks"""

    def __init__(self, token_service: TokenService):
        self.token_service = token_service

    @staticmethod
    def extract_bearer(authorization: Optional[str]) -> str:
        """
        Pull the token out of an Authorization header value.

        Raises:
            Unauthenticated: header absent or not of the form "Bearer <token>"
        """
        if not authorization or not authorization.strip():
            raise Unauthenticated("Access denied. No token provided.")

        parts = authorization.strip().split()
        if len(parts) != 2 or parts[0].lower() != "bearer" or not parts[1]:
            raise Unauthenticated("Invalid token format. Use 'Bearer <token>'")
        return parts[1]

    def authenticate(self, authorization: Optional[str]) -> Principal:
        """
        Stage 1: resolve the Authorization header to a principal.

        Raises:
            Unauthenticated: credential absent or malformed
            Forbidden: credential present but invalid or expired
        """
        token = self.extract_bearer(authorization)
        try:
            claims = self.token_service.verify_token(token)
        except Unauthenticated as e:
            raise Forbidden("Invalid or expired token") from e
        return Principal(id=claims.subject_id, role=claims.role)

    def authorize(self, authorization: Optional[str],
                  roles: Optional[Iterable[Role]] = None) -> Principal:
        """Run stages 1 and 2; `roles=None` admits any authenticated role"""
        principal = self.authenticate(authorization)
        if roles is not None:
            require_role(principal, roles)
        return principal
