"""
ActorContext -- the authenticated principal performing an operation.

Authentication and role storage live outside the kernel; callers hand in an
ActorContext with the actor's id, role labels and (for entity-scoped roles
such as ``plan_admin``) the entity the actor administers.
"""

from collections.abc import Iterable
from dataclasses import dataclass, field
from uuid import UUID


@dataclass(frozen=True)
class ActorContext:
    """
    Immutable snapshot of who is acting.

    Contract:
        ``roles`` is a frozenset of lowercase role labels.  Membership checks
        are the only behaviour.
    """

    actor_id: UUID
    roles: frozenset[str] = field(default_factory=frozenset)
    entity_id: UUID | None = None
    name: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.roles, frozenset):
            object.__setattr__(self, "roles", frozenset(self.roles))

    @classmethod
    def of(
        cls,
        actor_id: UUID,
        *roles: str,
        entity_id: UUID | None = None,
        name: str | None = None,
    ) -> "ActorContext":
        return cls(
            actor_id=actor_id,
            roles=frozenset(r.lower() for r in roles),
            entity_id=entity_id,
            name=name,
        )

    def has_role(self, role: str) -> bool:
        return role.lower() in self.roles

    def has_any_role(self, roles: Iterable[str]) -> bool:
        return any(self.has_role(r) for r in roles)

    @property
    def display_name(self) -> str:
        return self.name or str(self.actor_id)
