from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional


class Role(str, Enum):
    RESTRICTED = "restricted"
    ELEVATED = "elevated"
    ADMINISTRATIVE = "administrative"


# Token role claim -> platform role
ROLE_CLAIMS = {
    "student": Role.RESTRICTED,
    "instructor": Role.ELEVATED,
    "admin": Role.ADMINISTRATIVE,
}


@dataclass(frozen=True)
class Principal:
    """The authenticated caller as seen by request handlers."""

    id: str
    role: Role
    scope_id: Optional[str] = None
    department: Optional[str] = None

    @property
    def is_restricted(self) -> bool:
        return self.role is Role.RESTRICTED

    @property
    def is_admin(self) -> bool:
        return self.role is Role.ADMINISTRATIVE

    @classmethod
    def from_claims(cls, claims: Dict[str, Any]) -> Optional["Principal"]:
        """
        Build a principal from verified token claims.

        The most privileged recognised role in `roles` (or the single `role`
        claim) wins. Returns None when no user id or no recognised role is
        present.
        """
        user_id = claims.get("user_id") or claims.get("sub")
        raw_roles = claims.get("roles") or [claims.get("role")]
        if isinstance(raw_roles, str):
            raw_roles = [raw_roles]
        roles = [ROLE_CLAIMS[r.lower()] for r in raw_roles if isinstance(r, str) and r.lower() in ROLE_CLAIMS]
        if not user_id or not roles:
            return None
        order = [Role.RESTRICTED, Role.ELEVATED, Role.ADMINISTRATIVE]
        role = max(roles, key=order.index)
        return cls(
            id=str(user_id),
            role=role,
            scope_id=claims.get("scope_id") or claims.get("course_id"),
            department=claims.get("department"),
        )
