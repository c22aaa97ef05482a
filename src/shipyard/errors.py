"""Domain error taxonomy for Shipyard.

Every failure the lifecycle engine, layout store, or entity store can
surface to a caller is one of the exceptions below. The web layer maps
each class to an HTTP status in ``shipyard.web.errors``; other callers
(CLI, tests) handle them directly.
"""

from __future__ import annotations

from typing import Any


class ShipyardError(Exception):
    """Base class for all Shipyard domain errors.

    Attributes:
        kind: Short machine-readable error identifier.
    """

    kind = "shipyard_error"

    def extra(self) -> dict[str, Any]:
        """Structured details included alongside the message in API responses."""
        return {}


class NotFoundError(ShipyardError):
    """Raised when an operation targets an entity id that does not exist.

    Attributes:
        entity: Entity type name (e.g. "release", "stage").
        entity_id: The id that could not be resolved.
    """

    kind = "not_found"

    def __init__(self, entity: str, entity_id: Any):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity.capitalize()} {entity_id} not found")


class ConflictError(ShipyardError):
    """Raised when a uniqueness constraint would be violated.

    Attributes:
        entity: Entity type name.
        field: Field (or field combination) that must be unique.
        value: The conflicting value.
        existing_id: Id of the entity already holding the value, if known.
    """

    kind = "conflict"

    def __init__(
        self,
        entity: str,
        field: str,
        value: Any,
        existing_id: Any | None = None,
    ):
        self.entity = entity
        self.field = field
        self.value = value
        self.existing_id = existing_id
        super().__init__(f"{entity.capitalize()} with {field}={value!r} already exists")

    def extra(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "field": self.field,
            "existing_id": str(self.existing_id) if self.existing_id else None,
        }


class FieldValidationError(ShipyardError):
    """Raised when a payload fails domain-level field constraints.

    Attributes:
        errors: Mapping of field name to error message.
    """

    kind = "validation_error"

    def __init__(self, errors: dict[str, str]):
        self.errors = errors
        fields = ", ".join(sorted(errors))
        super().__init__(f"Invalid value for: {fields}")

    def extra(self) -> dict[str, Any]:
        return {"errors": self.errors}


class ForbiddenError(ShipyardError):
    """Raised when the actor does not belong to the team owning a resource."""

    kind = "forbidden"

    def __init__(self, actor_id: str, team_id: Any):
        self.actor_id = actor_id
        self.team_id = team_id
        super().__init__(f"Actor {actor_id} has no access to team {team_id}")


class ApprovalRejectedError(ShipyardError):
    """Raised when a stage approval is attempted with required tasks open.

    Attributes:
        stage_id: The stage whose approval was rejected.
        incomplete_tasks: Required tasks that are not done, as dicts
            with id, title, and status.
    """

    kind = "approval_rejected"

    def __init__(self, stage_id: Any, incomplete_tasks: list[dict[str, Any]]):
        self.stage_id = stage_id
        self.incomplete_tasks = incomplete_tasks
        super().__init__(
            f"Cannot approve stage {stage_id}: "
            f"{len(incomplete_tasks)} required task(s) not completed"
        )

    def extra(self) -> dict[str, Any]:
        return {"stage_id": str(self.stage_id), "incomplete_tasks": self.incomplete_tasks}


class ReferentialViolationError(ShipyardError):
    """Raised when a delete is blocked by dependents without a cascade path.

    Attributes:
        entity: Entity type name of the delete target.
        entity_id: Id of the delete target.
        dependents: Descriptions of the blocking dependents.
    """

    kind = "referential_violation"

    def __init__(self, entity: str, entity_id: Any, dependents: list[str]):
        self.entity = entity
        self.entity_id = entity_id
        self.dependents = dependents
        super().__init__(
            f"Cannot delete {entity} {entity_id}: referenced by {', '.join(dependents)}"
        )

    def extra(self) -> dict[str, Any]:
        return {"dependents": self.dependents}


class InvalidTransitionError(ShipyardError):
    """Raised when a direct stage status update is not a legal transition.

    Attributes:
        current: The current stage status value.
        target: The attempted target status value.
        stage_id: The ID of the stage that failed to transition.
    """

    kind = "invalid_transition"

    def __init__(self, current: str, target: str, stage_id: Any | None = None):
        self.current = current
        self.target = target
        self.stage_id = stage_id
        msg = f"Invalid transition from {current} to {target}"
        if stage_id:
            msg += f" for stage {stage_id}"
        super().__init__(msg)

    def extra(self) -> dict[str, Any]:
        return {"current": self.current, "target": self.target}
