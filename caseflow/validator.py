"""Pure transition checks.

Nothing here performs I/O: the same definition, instance state, target and
role always produce the same answer. The caller always names the target
step; no branch is ever chosen implicitly.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import List, Optional

from .errors import Forbidden, InvalidTransition, TerminalState
from .persistence.models import InstanceStatus, ProcessInstance
from .registry.models import ProcessDefinition, StepDefinition


def role_permits(
    step: StepDefinition,
    target: StepDefinition,
    actor_role: Optional[str],
) -> bool:
    """Return ``True`` when ``actor_role`` may take the ``step -> target`` edge."""
    exit_roles = step.roles_for(target.id)
    if exit_roles and actor_role not in exit_roles:
        return False
    if target.entry_role and actor_role != target.entry_role:
        return False
    return True


def validate_transition(
    definition: ProcessDefinition,
    instance: ProcessInstance,
    requested_to_step: str,
    actor_role: Optional[str],
    *,
    check_roles: bool = True,
) -> None:
    """Decide whether ``instance`` may move to ``requested_to_step``.

    Returns ``None`` when the transition is legal.

    Raises:
        TerminalState: The instance is no longer active.
        InvalidTransition: The target is not an allowed next step.
        Forbidden: ``actor_role`` may not take the edge.
    """

    current_id = instance.current_step_id
    if instance.status != InstanceStatus.ACTIVE:
        raise TerminalState(
            f"Instance {instance.instance_id} is {InstanceStatus(instance.status).value}",
            instance.instance_id,
            current_id,
            requested_to_step,
        )

    current = definition.get_step(current_id)
    if current is None:
        raise InvalidTransition(
            f"Current step {current_id!r} is not defined in "
            f"{definition.name} v{definition.version}",
            instance.instance_id,
            current_id,
            requested_to_step,
        )
    if requested_to_step not in current.allowed_next_steps:
        raise InvalidTransition(
            f"Cannot move from {current_id!r} to {requested_to_step!r}",
            instance.instance_id,
            current_id,
            requested_to_step,
        )

    if check_roles and not role_permits(
        current, definition.step(requested_to_step), actor_role
    ):
        raise Forbidden(
            f"Role {actor_role!r} may not move from {current_id!r} "
            f"to {requested_to_step!r}",
            instance.instance_id,
            current_id,
            requested_to_step,
            actor_role=actor_role,
        )


def available_transitions(
    definition: ProcessDefinition,
    instance: ProcessInstance,
    actor_role: Optional[str] = None,
) -> List[str]:
    """List the targets that could be requested next.

    With ``actor_role`` omitted every allowed next step is listed; otherwise
    only the edges that role may take.
    """

    if instance.status != InstanceStatus.ACTIVE:
        return []
    current = definition.get_step(instance.current_step_id)
    if current is None:
        return []
    if actor_role is None:
        return list(current.allowed_next_steps)
    return [
        target
        for target in current.allowed_next_steps
        if role_permits(current, definition.step(target), actor_role)
    ]


def timer_due_at(
    definition: ProcessDefinition, instance: ProcessInstance
) -> Optional[datetime]:
    """When the timed step ``instance`` currently sits on expires.

    The clock starts when the instance entered the step: its last transition,
    or creation for an instance still at the start step. Returns ``None`` for
    inactive instances and steps without ``timeout_seconds``.
    """

    if instance.status != InstanceStatus.ACTIVE:
        return None
    step = definition.get_step(instance.current_step_id)
    if step is None or step.timeout_seconds is None:
        return None
    last = instance.last_transition()
    entered_at = last.timestamp if last is not None else instance.created_at
    return entered_at + timedelta(seconds=step.timeout_seconds)
