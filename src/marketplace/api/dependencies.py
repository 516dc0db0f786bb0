"""Request-scoped dependencies."""

from fastapi import Header

from marketplace.identity.caller import Caller, Role


def current_caller(
    x_identity_id: str | None = Header(default=None),
    x_identity_role: str = Header(default=Role.GUEST.value),
    x_identity_email: str | None = Header(default=None),
) -> Caller:
    """Caller identity as forwarded by the session provider."""
    return Caller(identity_id=x_identity_id, role=x_identity_role.lower(), email=x_identity_email)
