"""Store abstraction for process instance persistence."""

from __future__ import annotations

from typing import AsyncIterator, Callable, Optional, Protocol

from ..errors import VersionConflict
from .models import InstanceStatus, ProcessInstance

Mutation = Callable[[ProcessInstance], ProcessInstance]


class InstanceStore(Protocol):
    """Protocol for process instance persistence backends.

    Every backend linearizes writes to one instance through
    :meth:`compare_and_swap`; history is only ever written by that call.
    """

    async def create(self, instance: ProcessInstance) -> str:
        """Persist a new instance and return its id."""

    async def get(self, instance_id: str) -> ProcessInstance:
        """Retrieve the instance by id."""

    async def compare_and_swap(
        self, instance_id: str, expected_version: int, mutation: Mutation
    ) -> ProcessInstance:
        """Atomically apply ``mutation`` if the stored version still matches."""

    def query(
        self,
        definition_name: Optional[str] = None,
        status: Optional[InstanceStatus] = None,
        actor_role: Optional[str] = None,
        current_step_id: Optional[str] = None,
    ) -> AsyncIterator[ProcessInstance]:
        """Lazily yield instances matching every given criterion."""


def prepare_swap(
    current: ProcessInstance, expected_version: int, mutation: Mutation
) -> ProcessInstance:
    """Run ``mutation`` against a copy of ``current`` and check the result.

    The mutation may change the position, status, context and append history
    entries. It may not change identity or rewrite existing history. The
    returned instance carries ``version = expected_version + 1``.
    """

    if current.version != expected_version:
        raise VersionConflict(current.instance_id, expected_version, current.version)

    updated = mutation(current.model_copy(deep=True))
    if updated.instance_id != current.instance_id:
        raise ValueError("mutation must not change instance_id")
    if (updated.definition_name, updated.definition_version) != (
        current.definition_name,
        current.definition_version,
    ):
        raise ValueError("mutation must not change the pinned definition")
    old_len = len(current.history)
    if len(updated.history) < old_len or any(
        a != b for a, b in zip(updated.history[:old_len], current.history)
    ):
        raise ValueError("history is append-only")

    return updated.model_copy(
        update={
            "version": expected_version + 1,
            "created_at": current.created_at,
        }
    )
