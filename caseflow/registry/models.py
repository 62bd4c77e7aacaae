"""Pydantic models describing process definitions."""

from __future__ import annotations

import hashlib
import json
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, model_validator


class StepKind(str, Enum):
    """Kinds of workflow steps."""

    START = "start"
    USER_DECISION = "user-decision"
    SYSTEM_ACTION = "system-action"
    TERMINAL_SUCCESS = "terminal-success"
    TERMINAL_FAILURE = "terminal-failure"
    WAIT_TIMER = "wait-timer"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_KINDS


TERMINAL_KINDS = frozenset({StepKind.TERMINAL_SUCCESS, StepKind.TERMINAL_FAILURE})
AUTO_ADVANCE_KINDS = frozenset({StepKind.SYSTEM_ACTION, StepKind.WAIT_TIMER})


class StepDefinition(BaseModel):
    """A named position in a workflow and its outgoing edges.

    ``exit_roles`` pairs a target step id with the roles allowed to take that
    edge; a missing or empty entry lets any authenticated actor take it. It
    accepts a mapping, or a plain list of roles that applies to every edge,
    and is stored as nested tuples so a published step cannot change.
    ``entry_role``, when set, is required of whoever moves the instance into
    this step.
    """

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    kind: StepKind
    label: Optional[str] = None
    allowed_next_steps: Tuple[str, ...] = ()
    entry_role: Optional[str] = None
    exit_roles: Tuple[Tuple[str, Tuple[str, ...]], ...] = ()
    auto_advance: bool = False
    timeout_seconds: Optional[float] = Field(default=None, gt=0)

    @model_validator(mode="before")
    @classmethod
    def _normalize(cls, data: Any) -> Any:
        if not isinstance(data, dict):
            return data
        data = dict(data)
        next_steps = data.get("allowed_next_steps")
        if isinstance(next_steps, str):
            data["allowed_next_steps"] = (next_steps,)
        elif next_steps is None:
            data["allowed_next_steps"] = ()
        data["exit_roles"] = _edge_roles(data.get("exit_roles"), data["allowed_next_steps"])
        if data.get("auto_advance") is None:
            try:
                kind = StepKind(data.get("kind"))
            except ValueError:
                return data
            data["auto_advance"] = kind in AUTO_ADVANCE_KINDS
        return data

    @property
    def is_terminal(self) -> bool:
        return self.kind.is_terminal

    @property
    def display_name(self) -> str:
        return self.label or self.id.replace("_", " ").title()

    @property
    def gated_targets(self) -> Tuple[str, ...]:
        return tuple(target for target, _ in self.exit_roles)

    def roles_for(self, target: str) -> Tuple[str, ...]:
        """Roles allowed to take the edge to ``target`` (empty means any)."""
        for gated, roles in self.exit_roles:
            if gated == target:
                return roles
        return ()


def _roles(value: Any) -> Tuple[str, ...]:
    if value is None:
        return ()
    if isinstance(value, str):
        return (value,)
    return tuple(value)


def _edge_roles(value: Any, targets: Any) -> Any:
    if value is None:
        return ()
    if isinstance(value, dict):
        return tuple((target, _roles(roles)) for target, roles in value.items())
    if isinstance(value, (list, tuple)):
        if all(isinstance(role, str) for role in value):
            if not value:
                return ()
            return tuple((target, tuple(value)) for target in targets)
        # already in (target, roles) pair form
        return tuple((pair[0], _roles(pair[1])) for pair in value)
    return value


class ProcessDefinition(BaseModel):
    """Immutable template describing the legal steps of one workflow type."""

    model_config = ConfigDict(frozen=True)

    name: str = Field(..., min_length=1)
    version: int = Field(default=1, ge=1)
    title: Optional[str] = None
    description: Optional[str] = None
    steps: Tuple[StepDefinition, ...]
    cancellable: bool = True
    cancel_roles: Tuple[str, ...] = ()

    _index: Dict[str, StepDefinition] = PrivateAttr(default_factory=dict)

    def model_post_init(self, __context: Any) -> None:
        self._index = {step.id: step for step in self.steps}

    def get_step(self, step_id: str) -> Optional[StepDefinition]:
        return self._index.get(step_id)

    def step(self, step_id: str) -> StepDefinition:
        try:
            return self._index[step_id]
        except KeyError:
            raise KeyError(f"Step {step_id!r} not defined in {self.name} v{self.version}")

    @property
    def start_step(self) -> StepDefinition:
        for step in self.steps:
            if step.kind is StepKind.START:
                return step
        raise LookupError(f"{self.name} v{self.version} has no start step")

    @property
    def terminal_steps(self) -> Tuple[StepDefinition, ...]:
        return tuple(step for step in self.steps if step.is_terminal)

    def label_for(self, step_id: str) -> str:
        """Human readable label for ``step_id``."""
        step = self.get_step(step_id)
        return step.display_name if step else step_id

    def fingerprint(self) -> str:
        """SHA-256 over the canonical JSON form of the definition."""
        canonical = json.dumps(
            self.model_dump(mode="json"), sort_keys=True, separators=(",", ":")
        )
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


class DefinitionRef(BaseModel):
    """Reference to a published definition."""

    model_config = ConfigDict(frozen=True)

    name: str
    version: int
    fingerprint: str
    published_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def __str__(self) -> str:  # pragma: no cover - simple formatting
        return f"{self.name} v{self.version}"
