"""Caller identity supplied by the session provider.

The engine does not authenticate anyone; it only needs an identifier, a role
and an email to apply ownership rules and to match customer records.
"""

from dataclasses import dataclass
from enum import Enum


class Role(Enum):
    GUEST = "guest"
    CUSTOMER = "customer"
    SELLER = "seller"
    ADMIN = "admin"


@dataclass(frozen=True)
class Caller:
    identity_id: str | None = None
    role: str = Role.GUEST.value
    email: str | None = None
    name: str | None = None

    @property
    def is_guest(self) -> bool:
        return self.identity_id is None or self.role == Role.GUEST.value

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value

    def is_authenticated_as(self, email: str | None) -> bool:
        """True when the caller is signed in with the given email address."""
        if self.is_guest or not self.email or not email:
            return False
        return self.email.lower() == email.lower()

    def as_dict(self) -> dict:
        return {
            "identity_id": self.identity_id,
            "role": self.role,
            "email": self.email,
            "name": self.name,
        }

    @classmethod
    def from_dict(cls, data: dict | None) -> "Caller":
        if not data:
            return cls()
        return cls(
            identity_id=data.get("identity_id"),
            role=data.get("role") or Role.GUEST.value,
            email=data.get("email"),
            name=data.get("name"),
        )


GUEST = Caller()
