"""Reporting helpers computed from the instance store."""

from __future__ import annotations

from collections import Counter
from typing import Any, Dict, Optional

from .persistence import InstanceStatus, InstanceStore


async def step_statistics(
    store: InstanceStore, definition_name: Optional[str] = None
) -> Dict[str, Dict[str, Any]]:
    """Count instances per definition, by status and by current step.

    Returns a mapping such as::

        {"license_application": {"total": 3,
                                 "by_status": {"active": 2, "completed": 1},
                                 "by_step": {"document_review": 2, "approved": 1}}}
    """

    by_status: Dict[str, Counter] = {}
    by_step: Dict[str, Counter] = {}
    async for instance in store.query(definition_name=definition_name):
        name = instance.definition_name
        by_status.setdefault(name, Counter())[InstanceStatus(instance.status).value] += 1
        by_step.setdefault(name, Counter())[instance.current_step_id] += 1

    return {
        name: {
            "total": sum(by_status[name].values()),
            "by_status": dict(by_status[name]),
            "by_step": dict(by_step[name]),
        }
        for name in sorted(by_status)
    }


async def average_processing_time(
    store: InstanceStore, definition_name: str
) -> Optional[float]:
    """Mean seconds from creation to the final transition of completed instances.

    Returns ``None`` when nothing has completed yet.
    """

    durations: list[float] = []
    async for instance in store.query(
        definition_name=definition_name, status=InstanceStatus.COMPLETED
    ):
        last = instance.last_transition()
        if last is None:
            continue
        durations.append((last.timestamp - instance.created_at).total_seconds())
    if not durations:
        return None
    return sum(durations) / len(durations)
