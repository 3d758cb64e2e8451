"""
Typed exception hierarchy for the workflow kernel.

Callers (the HTTP layer, batch jobs, tests) catch by type and read the
machine-readable ``code`` attribute; they never parse message text.

Every exception:
  1. Is a subclass of WorkflowKernelError.
  2. Declares a ``code`` class attribute that is stable across releases.
  3. Carries the structured data describing the failure as attributes.

Hierarchy:

    WorkflowKernelError (base)
    |
    +-- NotFoundError
    |   +-- InstanceNotFoundError
    |   +-- VerificationNotFoundError
    |   +-- SolicitationNotFoundError
    |   +-- NoProviderAvailableError
    |
    +-- WorkflowError
    |   +-- UnknownKindError
    |   +-- InvalidStateError
    |   +-- ForbiddenError
    |   +-- PreconditionNotMetError
    |   |   +-- RejectionReasonRequiredError
    |   +-- InvalidPayloadError
    |   +-- AwaitingVerificationError
    |   +-- SideEffectFailedError
    |   +-- ConcurrentTransitionError
    |
    +-- VerificationError
    |   +-- SelfVerificationNotAllowedError
    |   +-- AlreadyResolvedError
    |
    +-- SchedulingError
    |   +-- NoSlotAvailableError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |   +-- FrozenFieldViolationError
    |   +-- AuditChainBrokenError
    |
    +-- ConfigurationError
        +-- DefinitionValidationError

Error code reference:

    Code                           | Exception
    -------------------------------|-----------------------------------
    NOT_FOUND                      | NotFoundError and most subclasses
    NO_PROVIDER_AVAILABLE          | NoProviderAvailableError
    UNKNOWN_KIND                   | UnknownKindError
    INVALID_STATE                  | InvalidStateError
    FORBIDDEN                      | ForbiddenError
    PRECONDITION_NOT_MET           | PreconditionNotMetError
    REJECTION_REASON_REQUIRED      | RejectionReasonRequiredError
    INVALID_PAYLOAD                | InvalidPayloadError
    AWAITING_VERIFICATION          | AwaitingVerificationError
    SIDE_EFFECT_FAILED             | SideEffectFailedError
    CONCURRENT_TRANSITION          | ConcurrentTransitionError
    SELF_VERIFICATION_NOT_ALLOWED  | SelfVerificationNotAllowedError
    ALREADY_RESOLVED               | AlreadyResolvedError
    NO_SLOT_AVAILABLE              | NoSlotAvailableError
    IMMUTABILITY_VIOLATION         | ImmutabilityViolationError
    FROZEN_FIELD_VIOLATION         | FrozenFieldViolationError
    AUDIT_CHAIN_BROKEN             | AuditChainBrokenError
    DEFINITION_INVALID             | DefinitionValidationError
"""

from collections.abc import Iterable


class WorkflowKernelError(Exception):
    """Base exception for all workflow kernel errors."""

    code: str = "WORKFLOW_KERNEL_ERROR"


# =============================================================================
# Lookups
# =============================================================================


class NotFoundError(WorkflowKernelError):
    """A referenced record does not exist."""

    code: str = "NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        super().__init__(f"{entity_type} not found: {entity_id}")


class InstanceNotFoundError(NotFoundError):
    def __init__(self, instance_id: str):
        self.instance_id = str(instance_id)
        super().__init__("WorkflowInstance", instance_id)


class VerificationNotFoundError(NotFoundError):
    def __init__(self, record_id: str):
        self.record_id = str(record_id)
        super().__init__("ValueVerificationRecord", record_id)


class SolicitationNotFoundError(NotFoundError):
    def __init__(self, solicitation_id: str):
        self.solicitation_id = str(solicitation_id)
        super().__init__("Solicitation", solicitation_id)


class NoProviderAvailableError(NotFoundError):
    """No provider other than the excluded one can serve the solicitation."""

    code: str = "NO_PROVIDER_AVAILABLE"

    def __init__(self, solicitation_id: str, excluded: str | None = None):
        self.solicitation_id = str(solicitation_id)
        self.excluded = excluded
        super().__init__("ProviderAssignment", solicitation_id)


# =============================================================================
# Workflow execution
# =============================================================================


class WorkflowError(WorkflowKernelError):
    """Base exception for workflow execution errors."""

    code: str = "WORKFLOW_ERROR"


class UnknownKindError(WorkflowError):
    """No WorkflowDefinition is registered for the requested kind."""

    code: str = "UNKNOWN_KIND"

    def __init__(self, kind: str):
        self.kind = str(kind)
        super().__init__(f"Unknown workflow kind: {kind}")


class InvalidStateError(WorkflowError):
    """The requested action is not legal from the instance's current state.

    Covers terminal instances, already-evaluated instances and the loser of
    a concurrent transition race.
    """

    code: str = "INVALID_STATE"

    def __init__(self, kind: str, current_state: str, action: str):
        self.kind = str(kind)
        self.current_state = current_state
        self.action = action
        super().__init__(
            f"Action '{action}' is not legal for {kind} in state '{current_state}'"
        )


class ForbiddenError(WorkflowError):
    """The actor holds none of the roles allowed to perform the action."""

    code: str = "FORBIDDEN"

    def __init__(
        self,
        actor_id: str,
        action: str,
        allowed_roles: Iterable[str],
        actor_roles: Iterable[str] = (),
    ):
        self.actor_id = str(actor_id)
        self.action = action
        self.allowed_roles = sorted(allowed_roles)
        self.actor_roles = sorted(actor_roles)
        super().__init__(
            f"Actor {actor_id} may not perform '{action}' "
            f"(requires one of: {', '.join(self.allowed_roles) or 'creator'})"
        )


class PreconditionNotMetError(WorkflowError):
    """An external fact required by the transition does not hold."""

    code: str = "PRECONDITION_NOT_MET"

    def __init__(self, precondition: str, reason: str):
        self.precondition = precondition
        self.reason = reason
        super().__init__(f"Precondition '{precondition}' not met: {reason}")


class RejectionReasonRequiredError(PreconditionNotMetError):
    code: str = "REJECTION_REASON_REQUIRED"

    def __init__(self, action: str):
        self.action = action
        super().__init__("reason_required", f"'{action}' requires a non-empty reason")


class InvalidPayloadError(WorkflowError):
    """Creation payload is missing required fields or carries invalid values."""

    code: str = "INVALID_PAYLOAD"

    def __init__(self, kind: str, errors: list[str]):
        self.kind = str(kind)
        self.errors = list(errors)
        super().__init__(f"Invalid {kind} payload: {'; '.join(self.errors)}")


class AwaitingVerificationError(WorkflowError):
    """The transition is value-gated and the verification is still pending."""

    code: str = "AWAITING_VERIFICATION"

    def __init__(self, instance_id: str, record_id: str):
        self.instance_id = str(instance_id)
        self.record_id = str(record_id)
        super().__init__(
            f"Instance {instance_id} is awaiting value verification {record_id}"
        )


class SideEffectFailedError(WorkflowError):
    """A side effect raised; the whole transition was rolled back.

    The original exception is available as ``__cause__``.
    """

    code: str = "SIDE_EFFECT_FAILED"

    def __init__(self, effect: str, instance_id: str, reason: str):
        self.effect = effect
        self.instance_id = str(instance_id)
        self.reason = reason
        super().__init__(
            f"Side effect '{effect}' failed for instance {instance_id}: {reason}"
        )


class ConcurrentTransitionError(WorkflowError):
    """Another writer changed the instance between read and write.

    Raised at flush time and consumed by the unit-of-work retry loop; the
    retry re-reads state, so callers normally see InvalidStateError instead.
    """

    code: str = "CONCURRENT_TRANSITION"

    def __init__(self, instance_id: str):
        self.instance_id = str(instance_id)
        super().__init__(f"Concurrent transition detected on instance {instance_id}")


# =============================================================================
# Value verification
# =============================================================================


class VerificationError(WorkflowKernelError):
    """Base exception for double-verification errors."""

    code: str = "VERIFICATION_ERROR"


class SelfVerificationNotAllowedError(VerificationError):
    code: str = "SELF_VERIFICATION_NOT_ALLOWED"

    def __init__(self, record_id: str, actor_id: str):
        self.record_id = str(record_id)
        self.actor_id = str(actor_id)
        super().__init__(
            f"Actor {actor_id} requested verification {record_id} and cannot resolve it"
        )


class AlreadyResolvedError(VerificationError):
    code: str = "ALREADY_RESOLVED"

    def __init__(self, record_id: str, status: str):
        self.record_id = str(record_id)
        self.status = status
        super().__init__(f"Verification {record_id} is already {status}")


# =============================================================================
# Scheduling
# =============================================================================


class SchedulingError(WorkflowKernelError):
    """Base exception for provider selection and slot search."""

    code: str = "SCHEDULING_ERROR"


class NoSlotAvailableError(SchedulingError):
    code: str = "NO_SLOT_AVAILABLE"

    def __init__(self, provider_ref: str, preferred_start: str):
        self.provider_ref = provider_ref
        self.preferred_start = preferred_start
        super().__init__(
            f"No free slot for provider {provider_ref} near {preferred_start}"
        )


# =============================================================================
# Immutability
# =============================================================================


class ImmutabilityError(WorkflowKernelError):
    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an audit entry or a resolved verification."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = str(entity_id)
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


class FrozenFieldViolationError(ImmutabilityError):
    """A transition tried to change a payload field fixed at creation."""

    code: str = "FROZEN_FIELD_VIOLATION"

    def __init__(self, instance_id: str, fields: Iterable[str]):
        self.instance_id = str(instance_id)
        self.fields = sorted(fields)
        super().__init__(
            f"Instance {instance_id}: frozen fields changed: {', '.join(self.fields)}"
        )


# =============================================================================
# Configuration
# =============================================================================


class ConfigurationError(WorkflowKernelError):
    code: str = "CONFIGURATION_ERROR"


class DefinitionValidationError(ConfigurationError):
    code: str = "DEFINITION_INVALID"

    def __init__(self, kind: str, errors: list[str]):
        self.kind = str(kind)
        self.errors = list(errors)
        super().__init__(
            f"Workflow definition '{kind}' is invalid: {'; '.join(self.errors)}"
        )


# =============================================================================
# Audit
# =============================================================================


class AuditChainBrokenError(ImmutabilityError):
    """Stored audit rows no longer match their hash chain or replay."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, instance_id: str, seq: int, reason: str):
        self.instance_id = str(instance_id)
        self.seq = seq
        self.reason = reason
        super().__init__(
            f"Audit trail of instance {instance_id} broken at seq {seq}: {reason}"
        )
