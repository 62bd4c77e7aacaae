"""Data models for persisted process instances."""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InstanceStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TransitionKind(str, Enum):
    ADVANCE = "advance"
    AUTO_ADVANCE = "auto_advance"
    CANCEL = "cancel"


class TransitionRecord(BaseModel):
    """One entry of an instance's append-only history."""

    sequence: int = Field(..., ge=1)
    from_step_id: str
    to_step_id: str
    actor_id: str
    actor_role: Optional[str] = None
    timestamp: datetime = Field(default_factory=utcnow)
    note: Optional[str] = None
    kind: TransitionKind = TransitionKind.ADVANCE
    events_emitted: list[str] = Field(default_factory=list)


class ProcessInstance(BaseModel):
    """Persisted state of one case moving through a definition.

    ``context_data`` belongs to the calling module and is stored verbatim.
    """

    instance_id: str
    definition_name: str
    definition_version: int
    current_step_id: str
    status: InstanceStatus = InstanceStatus.ACTIVE
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    version: int = 0
    context_data: dict[str, Any] = Field(default_factory=dict)
    started_by: Optional[str] = None
    history: list[TransitionRecord] = Field(default_factory=list)

    @property
    def is_active(self) -> bool:
        return self.status == InstanceStatus.ACTIVE

    def last_transition(self) -> Optional[TransitionRecord]:
        return self.history[-1] if self.history else None


class InstanceFilter(BaseModel):
    """Criteria for :meth:`InstanceStore.query`.

    ``actor_role`` matches instances with at least one transition taken by
    that role.
    """

    definition_name: Optional[str] = None
    status: Optional[InstanceStatus] = None
    actor_role: Optional[str] = None
    current_step_id: Optional[str] = None

    def matches(self, instance: ProcessInstance) -> bool:
        if self.definition_name and instance.definition_name != self.definition_name:
            return False
        if self.status and instance.status != self.status:
            return False
        if self.current_step_id and instance.current_step_id != self.current_step_id:
            return False
        if self.actor_role and not any(
            record.actor_role == self.actor_role for record in instance.history
        ):
            return False
        return True
