"""Publish-time checks on a definition's step graph."""

from __future__ import annotations

import logging
from collections import Counter, deque
from typing import List

from .models import AUTO_ADVANCE_KINDS, ProcessDefinition, StepKind

logger = logging.getLogger(__name__)


def definition_problems(definition: ProcessDefinition) -> List[str]:
    """Return every structural problem found in ``definition``.

    An empty list means the definition may be published.
    """

    problems: List[str] = []
    if not definition.steps:
        return ["definition has no steps"]

    counts = Counter(step.id for step in definition.steps)
    for step_id, count in sorted(counts.items()):
        if count > 1:
            problems.append(f"step id {step_id!r} is defined {count} times")

    starts = [step.id for step in definition.steps if step.kind is StepKind.START]
    if len(starts) != 1:
        problems.append(f"expected exactly one start step, found {len(starts)}")

    known = set(counts)
    for step in definition.steps:
        if step.is_terminal and step.allowed_next_steps:
            problems.append(f"terminal step {step.id!r} must not have outgoing edges")
        if not step.is_terminal and not step.allowed_next_steps:
            problems.append(f"non-terminal step {step.id!r} has no outgoing edge")
        for target in step.allowed_next_steps:
            if target not in known:
                problems.append(
                    f"step {step.id!r} references undefined step {target!r}"
                )
        if len(set(step.allowed_next_steps)) != len(step.allowed_next_steps):
            problems.append(f"step {step.id!r} lists a next step more than once")
        for target in step.gated_targets:
            if target not in step.allowed_next_steps:
                problems.append(
                    f"step {step.id!r} has exit roles for {target!r} "
                    "which is not an allowed next step"
                )
        if not step.auto_advance:
            # the system actor bypasses roles, so only human edges can dead-end
            for target in step.allowed_next_steps:
                target_step = definition.get_step(target)
                exit_roles = step.roles_for(target)
                if (
                    target_step is not None
                    and target_step.entry_role
                    and exit_roles
                    and target_step.entry_role not in exit_roles
                ):
                    problems.append(
                        f"edge {step.id!r} -> {target!r} can never be taken: entry role "
                        f"{target_step.entry_role!r} is not among its exit roles"
                    )
        if step.auto_advance and step.kind not in AUTO_ADVANCE_KINDS:
            problems.append(
                f"step {step.id!r} of kind {step.kind.value} cannot auto-advance"
            )
        if step.timeout_seconds is not None and step.kind is not StepKind.WAIT_TIMER:
            problems.append(f"only wait-timer steps may set timeout_seconds ({step.id!r})")

    if len(starts) == 1 and not problems:
        reachable = _reachable_from(definition, starts[0])
        if not any(definition.step(s).is_terminal for s in reachable):
            problems.append(f"no terminal step is reachable from start step {starts[0]!r}")
        unreachable = known - reachable
        if unreachable:
            logger.warning(
                f"{definition.name} v{definition.version}: steps unreachable from "
                f"start: {sorted(unreachable)}"
            )
    return problems


def _reachable_from(definition: ProcessDefinition, start: str) -> set[str]:
    seen = {start}
    queue = deque([start])
    while queue:
        step = definition.step(queue.popleft())
        for target in step.allowed_next_steps:
            if target not in seen:
                seen.add(target)
                queue.append(target)
    return seen
