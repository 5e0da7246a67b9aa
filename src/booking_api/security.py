"""Operator authentication and authorization for admin endpoints.

API Gateway validates the JWT before the request reaches Lambda. The caller
identity arrives in one of two places:
1. HTTP API with JWT authorizer: claims mapped to x-user-sub / x-user-groups headers
2. REST API with Cognito User Pools: claims in event.requestContext.authorizer.claims

Which role an action needs is decided by an AuthorizationPolicy. The shipped
RoleHierarchyPolicy compares role levels against a configurable
action-to-minimum-role map.

Usage:
    @router.post("/admin/reconciliation")
    async def run_reconciliation(
        principal: Principal = Depends(require_permission("reconciliation:run")),
    ):
        ...
"""

import logging
import re
from collections.abc import Callable, Mapping
from typing import Any, Protocol

from fastapi import Depends, Request
from pydantic import BaseModel, Field

from booking_engine.config import EngineSettings, get_settings
from booking_engine.models.enums import Role
from booking_engine.models.errors import BookingError, ErrorCode

logger = logging.getLogger(__name__)

USER_SUB_HEADER = "x-user-sub"
USER_GROUPS_HEADER = "x-user-groups"


class Principal(BaseModel):
    """The authenticated caller."""

    subject: str
    roles: list[Role] = Field(default_factory=list)

    @property
    def level(self) -> int:
        return max((role.level for role in self.roles), default=0)


class AuthorizationPolicy(Protocol):
    """Decides whether a principal may perform an action."""

    def authorize(self, principal: Principal, action: str) -> bool: ...


class RoleHierarchyPolicy:
    """Grants an action to any principal at or above the action's minimum role.

    Actions missing from the map are denied.
    """

    def __init__(self, action_roles: Mapping[str, str]) -> None:
        self.action_roles = {action: Role(role) for action, role in action_roles.items()}

    def authorize(self, principal: Principal, action: str) -> bool:
        required = self.action_roles.get(action)
        if required is None:
            logger.warning("No role configured for action %s; denying", action)
            return False
        return principal.level >= required.level


def get_authorization_policy() -> AuthorizationPolicy:
    """Policy used by require_permission; override in tests or deployments."""
    return RoleHierarchyPolicy(get_settings().auth_action_roles)


def parse_roles(raw: Any) -> list[Role]:
    """Parse a roles claim into known roles.

    Cognito sends groups as a list, a comma-separated string or a
    bracketed string like "[admin viewer]". Unknown names are ignored.
    """
    if raw is None:
        return []
    names = raw if isinstance(raw, list) else re.split(r"[\s,]+", str(raw).strip("[]"))

    roles: list[Role] = []
    for name in names:
        try:
            role = Role(str(name).strip().lower())
        except ValueError:
            continue
        if role not in roles:
            roles.append(role)
    return roles


def _header(request: Request, name: str) -> str | None:
    value = request.headers.get(name)
    return value.strip() if value and value.strip() else None


def _authorizer_claims(request: Request) -> dict[str, Any]:
    # Claims are in event.requestContext.authorizer.claims (via Mangum)
    event = request.scope.get("aws.event") or {}
    return event.get("requestContext", {}).get("authorizer", {}).get("claims", {}) or {}


def get_principal(request: Request, settings: EngineSettings | None = None) -> Principal | None:
    """Extract the caller from gateway headers or Mangum authorizer claims.

    Returns:
        Principal, or None if the request carries no identity.
    """
    settings = settings or get_settings()

    subject = _header(request, USER_SUB_HEADER)
    if subject:
        return Principal(subject=subject, roles=parse_roles(_header(request, USER_GROUPS_HEADER)))

    claims = _authorizer_claims(request)
    subject = claims.get("sub")
    if not subject:
        return None
    return Principal(subject=subject, roles=parse_roles(claims.get(settings.auth_roles_claim)))


def require_permission(action: str) -> Callable[..., Principal]:
    """Build a dependency that admits only principals allowed to perform ``action``.

    Raises (from the dependency):
        BookingError: UNAUTHORIZED without identity, FORBIDDEN without the role
    """

    def dependency(
        request: Request,
        policy: AuthorizationPolicy = Depends(get_authorization_policy),
    ) -> Principal:
        principal = get_principal(request)
        if principal is None:
            logger.warning("auth_identity_missing", extra={"path": request.url.path})
            raise BookingError(ErrorCode.UNAUTHORIZED)
        if not policy.authorize(principal, action):
            logger.warning(
                "Denied %s to %s (roles=%s)",
                action,
                principal.subject,
                [role.value for role in principal.roles],
            )
            raise BookingError(ErrorCode.FORBIDDEN, {"action": action})
        return principal

    return dependency
