"""
auth/roles.py -- Role hierarchy resolution for authorization decisions.

Roles form a forest: each role has at most one parent, and a descendant is at
least as privileged as each of its ancestors. The default hierarchy is

    USER -> MODERATOR -> ADMIN -> SUPER_ADMIN      (parent -> child)

so ancestry_chain("ADMIN") is ["ADMIN", "MODERATOR", "USER"]. A candidate
meets a floor role when the floor appears in the candidate's chain: ADMIN
meets USER, USER does not meet ADMIN, and a role from another tree meets
nothing outside its own lineage.

The data model forbids cycles, but the resolver does not trust stored data:
traversal keeps a visited set and fails fast with RoleCycleDetected on any
revisit instead of looping.

Layer rule: no imports from api/.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from typing import Protocol

from auth.models import Role
from core.errors import RoleCycleDetected, RoleNotFound

# Default hierarchy, root first so parents always exist before children.
DEFAULT_ROLES: tuple[Role, ...] = (
    Role(name="USER"),
    Role(name="MODERATOR", parent="USER"),
    Role(name="ADMIN", parent="MODERATOR"),
    Role(name="SUPER_ADMIN", parent="ADMIN"),
)


class RoleSource(Protocol):
    def get_role(self, name: str) -> Role | None: ...


class StaticRoleSource:
    """In-memory RoleSource, for seeding and tests."""

    def __init__(self, roles: Iterable[Role] = DEFAULT_ROLES) -> None:
        self._roles = {r.name: r for r in roles}

    def get_role(self, name: str) -> Role | None:
        return self._roles.get(name)


class RoleHierarchy:
    """Answers "is role R at least as privileged as floor F".

    Usage:
        hierarchy = RoleHierarchy(RoleStore(engine))
        hierarchy.is_at_least("ADMIN", "USER")      # True
        hierarchy.is_at_least("USER", "ADMIN")      # False
    """

    def __init__(self, source: RoleSource) -> None:
        self._source = source

    def ancestry_chain(self, role_name: str) -> list[str]:
        """Return [role_name, parent, grandparent, ...] up to a root role.

        Raises RoleNotFound if role_name, or any parent it references, does not
        exist. Raises RoleCycleDetected if a role is reached twice.
        """
        chain: list[str] = []
        visited: set[str] = set()
        current: str | None = role_name
        while current is not None:
            if current in visited:
                raise RoleCycleDetected(f"Role {current!r} is its own ancestor.")
            role = self._source.get_role(current)
            if role is None:
                raise RoleNotFound(f"Role {current!r} does not exist.")
            visited.add(current)
            chain.append(role.name)
            current = role.parent
        return chain

    def is_at_least(self, candidate: str, floor: str) -> bool:
        """Return True if floor is candidate itself or one of its ancestors.

        A floor outside candidate's lineage is not an error, just insufficient.
        """
        return floor in self.ancestry_chain(candidate)

    def is_exact_member(self, candidate: str, allowed: Iterable[str]) -> bool:
        """Strict mode: plain set membership, hierarchy ignored."""
        return candidate in set(allowed)

    def has_access(self, candidate: str, roles: Sequence[str], strict: bool = True) -> bool:
        """Role-guard decision.

        strict=True  -- candidate must be one of roles exactly.
        strict=False -- roles[0] is the floor; candidate must be at least it.
        """
        if strict:
            return self.is_exact_member(candidate, roles)
        if not roles:
            return False
        return self.is_at_least(candidate, roles[0])
