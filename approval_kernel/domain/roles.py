"""
Role directory (``approval_kernel.domain.roles``).

Role membership is owned by the surrounding organization system.  The
engine only consults it, at decision time, through the ``RoleDirectory``
protocol: never cached across decisions, so a membership change takes
effect on the next submission.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Protocol


class RoleDirectory(Protocol):
    """Read-only view of organizational role membership."""

    def actors_for_role(self, role: str) -> frozenset[str]:
        """Return the actors currently holding ``role``."""
        ...

    def roles_for_actor(self, actor: str) -> frozenset[str]:
        """Return the roles currently held by ``actor``."""
        ...


class StaticRoleDirectory:
    """In-memory RoleDirectory built from a role -> actors mapping.

    Used by tests, the command line and single-process deployments.
    """

    def __init__(self, members: Mapping[str, Iterable[str]] | None = None):
        self._by_role: dict[str, set[str]] = {}
        for role, actors in (members or {}).items():
            for actor in actors:
                self.grant(actor, role)

    def grant(self, actor: str, role: str) -> None:
        self._by_role.setdefault(role, set()).add(actor)

    def revoke(self, actor: str, role: str) -> None:
        self._by_role.get(role, set()).discard(actor)

    def actors_for_role(self, role: str) -> frozenset[str]:
        return frozenset(self._by_role.get(role, ()))

    def roles_for_actor(self, actor: str) -> frozenset[str]:
        return frozenset(
            role for role, actors in self._by_role.items() if actor in actors
        )


def actor_holds_role(directory: RoleDirectory, actor: str, role: str) -> bool:
    """True if ``actor`` currently holds ``role``."""
    return role in directory.roles_for_actor(actor)
