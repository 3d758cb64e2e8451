"""
Notification intents emitted by the engine.

The engine never delivers notifications.  It returns NotificationEvents to
its caller, which hands them to a ``Notifier`` after the transaction has
committed.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any
from uuid import UUID, uuid4


@dataclass(frozen=True)
class Recipient:
    """Exactly one of ``role`` or ``user_id`` is set.

    ``entity_id`` narrows a role recipient to the admins of one entity.
    """

    role: str | None = None
    user_id: UUID | None = None
    entity_id: UUID | None = None

    def __post_init__(self) -> None:
        if (self.role is None) == (self.user_id is None):
            raise ValueError("Recipient needs exactly one of role or user_id")


@dataclass(frozen=True)
class NotificationEvent:
    event_type: str
    kind: str
    instance_id: UUID
    reference: str
    action: str
    recipient: Recipient
    title: str
    message: str
    occurred_at: datetime
    priority: str = "normal"
    data: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))
    event_id: UUID = field(default_factory=uuid4)
