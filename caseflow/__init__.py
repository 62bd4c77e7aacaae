"""Caseflow: a process instance engine for case-based workflows."""

from .engine import ProcessEngine
from .errors import (
    CaseflowError,
    DefinitionNotFound,
    DuplicateDefinition,
    DuplicateIdError,
    Forbidden,
    InstanceNotFound,
    InvalidTransition,
    NotAutoAdvanceable,
    NotFoundError,
    TerminalState,
    TransitionRejected,
    ValidationError,
    VersionConflict,
)
from .events import BaseEventSink, EventType, InMemoryEventSink, ProcessEvent, get_event_sink
from .persistence import (
    InstanceStatus,
    InstanceStore,
    ProcessInstance,
    TransitionRecord,
    get_store,
)
from .registry import DefinitionRef, DefinitionRegistry, ProcessDefinition, StepDefinition, StepKind
from .validator import available_transitions, timer_due_at, validate_transition

__version__ = "0.1.0"
__all__ = [
    "ProcessEngine",
    "DefinitionRegistry",
    "DefinitionRef",
    "ProcessDefinition",
    "StepDefinition",
    "StepKind",
    "ProcessInstance",
    "TransitionRecord",
    "InstanceStatus",
    "InstanceStore",
    "get_store",
    "BaseEventSink",
    "InMemoryEventSink",
    "ProcessEvent",
    "EventType",
    "get_event_sink",
    "validate_transition",
    "available_transitions",
    "timer_due_at",
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
