"""
workflow_services.notifications -- Notification intents and dispatch.

Responsibility:
    Turns a definition's notification template into one NotificationEvent
    per recipient, and hands committed events to a Notifier.

Architecture position:
    Services layer.  ``build_events`` is called by the WorkflowEngine inside
    the unit of work; ``dispatch_events`` is called by WorkflowService only
    after commit.

Invariants enforced:
    - The acting user is never notified as ``creator`` of their own action.
    - Recipients are de-duplicated per event.
    - A dispatch failure is logged and never propagates; the committed
      transition stands.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any, Protocol
from uuid import UUID

from workflow_kernel.domain.actor import ActorContext
from workflow_kernel.domain.events import NotificationEvent, Recipient
from workflow_kernel.domain.workflow import (
    NotificationTemplate,
    NotifyTarget,
    RecipientType,
    WorkflowDefinition,
)
from workflow_kernel.logging_config import get_logger

logger = get_logger("services.notifications")

ENTITY_ADMIN_ROLE = "admin"


class Notifier(Protocol):
    def dispatch(self, event: NotificationEvent) -> None:
        ...


class LoggingNotifier:
    """Notifier that only writes the event to the structured log."""

    def dispatch(self, event: NotificationEvent) -> None:
        logger.info(
            "notification_dispatched",
            extra={
                "event_id": str(event.event_id),
                "event_type": event.event_type,
                "instance_id": str(event.instance_id),
                "recipient_role": event.recipient.role,
                "recipient_user_id": (
                    str(event.recipient.user_id) if event.recipient.user_id else None
                ),
                "title": event.title,
            },
        )


class _TemplateValues(dict):
    """format_map source that renders unknown placeholders as empty text."""

    def __missing__(self, key: str) -> str:
        return ""


def render(text: str, values: Mapping[str, Any]) -> str:
    return text.format_map(_TemplateValues({k: "" if v is None else v for k, v in values.items()}))


def _resolve_target(
    target: NotifyTarget,
    actor: ActorContext,
    created_by: UUID,
    scope_entity_id: UUID | None,
    payload: Mapping[str, Any],
) -> Recipient | None:
    if target.when is not None and not payload.get(target.when):
        return None
    if target.recipient == RecipientType.CREATOR:
        if created_by == actor.actor_id:
            return None
        return Recipient(user_id=created_by)
    if target.recipient == RecipientType.ACTOR:
        return Recipient(user_id=actor.actor_id)
    if target.recipient == RecipientType.ENTITY_ADMINS:
        if scope_entity_id is None:
            return None
        return Recipient(role=ENTITY_ADMIN_ROLE, entity_id=scope_entity_id)
    return Recipient(role=target.role)


def build_events(
    definition: WorkflowDefinition,
    template: NotificationTemplate | None,
    *,
    instance_id: UUID,
    reference: str,
    action: str,
    actor: ActorContext,
    created_by: UUID,
    scope_entity_id: UUID | None,
    payload: Mapping[str, Any],
    occurred_at: datetime,
    from_state: str | None,
    to_state: str,
    reason: str | None = None,
) -> tuple[NotificationEvent, ...]:
    """One event per distinct recipient of ``template``; empty without one."""
    if template is None:
        return ()

    values = {
        **payload,
        "reference": reference,
        "label": definition.label,
        "kind": definition.kind.value,
        "action": action,
        "actor_name": actor.display_name,
        "reason": reason,
        "state": to_state,
    }
    title = render(template.title, values)
    message = render(template.message, values)
    data = {
        "from_state": from_state,
        "to_state": to_state,
        "actor_id": str(actor.actor_id),
    }

    events: list[NotificationEvent] = []
    seen: set[Recipient] = set()
    for target in template.targets:
        recipient = _resolve_target(target, actor, created_by, scope_entity_id, payload)
        if recipient is None or recipient in seen:
            continue
        seen.add(recipient)
        events.append(
            NotificationEvent(
                event_type=f"{definition.kind.value}.{action}",
                kind=definition.kind.value,
                instance_id=instance_id,
                reference=reference,
                action=action,
                recipient=recipient,
                title=title,
                message=message,
                occurred_at=occurred_at,
                priority=template.priority,
                data=data,
            )
        )
    return tuple(events)


def dispatch_events(notifier: Notifier, events: Iterable[NotificationEvent]) -> int:
    """Deliver each event; return how many were accepted by the notifier."""
    delivered = 0
    for event in events:
        try:
            notifier.dispatch(event)
        except Exception:
            logger.error(
                "notification_dispatch_failed",
                extra={
                    "event_id": str(event.event_id),
                    "event_type": event.event_type,
                    "instance_id": str(event.instance_id),
                },
                exc_info=True,
            )
            continue
        delivered += 1
    return delivered
