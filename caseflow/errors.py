"""Caseflow exception hierarchy."""

from __future__ import annotations

from typing import Iterable, Optional


class CaseflowError(Exception):
    """Base exception for all caseflow errors."""


class ValidationError(CaseflowError):
    """A process definition is malformed and cannot be published."""

    def __init__(self, definition: str, problems: Iterable[str]) -> None:
        self.definition = definition
        self.problems = list(problems)
        super().__init__(
            f"Invalid process definition {definition}: " + "; ".join(self.problems)
        )


class DuplicateDefinition(ValidationError):
    """A definition with the same name and version is already published."""

    def __init__(self, name: str, version: int) -> None:
        self.name = name
        self.version = version
        super().__init__(
            f"{name} v{version}",
            [f"{name} version {version} is already published"],
        )


class NotFoundError(CaseflowError):
    """Requested definition or instance does not exist."""


class DefinitionNotFound(NotFoundError):
    def __init__(self, name: str, version: Optional[int] = None) -> None:
        self.name = name
        self.version = version
        label = name if version is None else f"{name} v{version}"
        super().__init__(f"Process definition {label} not found")


class InstanceNotFound(NotFoundError):
    def __init__(self, instance_id: str) -> None:
        self.instance_id = instance_id
        super().__init__(f"Process instance {instance_id} not found")


class DuplicateIdError(CaseflowError):
    """An instance with the same id already exists."""

    def __init__(self, instance_id: str) -> None:
        self.instance_id = instance_id
        super().__init__(f"Process instance {instance_id} already exists")


class TransitionRejected(CaseflowError):
    """Business-rule rejection of a requested transition."""

    def __init__(
        self,
        message: str,
        instance_id: Optional[str] = None,
        from_step: Optional[str] = None,
        to_step: Optional[str] = None,
    ) -> None:
        self.instance_id = instance_id
        self.from_step = from_step
        self.to_step = to_step
        super().__init__(message)


class InvalidTransition(TransitionRejected):
    """The requested step is not reachable from the current step."""


class Forbidden(TransitionRejected):
    """The actor's role may not take the requested edge."""

    def __init__(
        self,
        message: str,
        instance_id: Optional[str] = None,
        from_step: Optional[str] = None,
        to_step: Optional[str] = None,
        actor_role: Optional[str] = None,
    ) -> None:
        self.actor_role = actor_role
        super().__init__(message, instance_id, from_step, to_step)


class TerminalState(TransitionRejected):
    """The instance is completed or cancelled."""


class NotAutoAdvanceable(TransitionRejected):
    """The current step does not resolve without human input."""


class VersionConflict(CaseflowError):
    """Another writer changed the instance between read and write."""

    def __init__(
        self,
        instance_id: str,
        expected_version: int,
        actual_version: Optional[int] = None,
    ) -> None:
        self.instance_id = instance_id
        self.expected_version = expected_version
        self.actual_version = actual_version
        found = "" if actual_version is None else f", found {actual_version}"
        super().__init__(
            f"Version conflict on instance {instance_id}: "
            f"expected {expected_version}{found}"
        )


__all__ = [
    "CaseflowError",
    "ValidationError",
    "DuplicateDefinition",
    "NotFoundError",
    "DefinitionNotFound",
    "InstanceNotFound",
    "DuplicateIdError",
    "TransitionRejected",
    "InvalidTransition",
    "Forbidden",
    "TerminalState",
    "NotAutoAdvanceable",
    "VersionConflict",
]
