"""In-memory implementation of the instance store."""

from __future__ import annotations

import asyncio
from typing import AsyncIterator, Dict, Optional

from ..errors import DuplicateIdError, InstanceNotFound, VersionConflict
from .models import InstanceFilter, InstanceStatus, ProcessInstance
from .repository import InstanceStore, Mutation, prepare_swap


class InMemoryInstanceStore(InstanceStore):
    """Store process instances in local memory.

    Useful for tests or when no database is configured. Data is not
    persisted across process restarts and compare-and-swap is only atomic
    within one event loop.
    """

    def __init__(self) -> None:
        self._instances: Dict[str, ProcessInstance] = {}
        self._lock = asyncio.Lock()

    async def create(self, instance: ProcessInstance) -> str:
        async with self._lock:
            if instance.instance_id in self._instances:
                raise DuplicateIdError(instance.instance_id)
            self._instances[instance.instance_id] = instance.model_copy(deep=True)
        return instance.instance_id

    async def get(self, instance_id: str) -> ProcessInstance:
        instance = self._instances.get(instance_id)
        if instance is None:
            raise InstanceNotFound(instance_id)
        return instance.model_copy(deep=True)

    async def compare_and_swap(
        self, instance_id: str, expected_version: int, mutation: Mutation
    ) -> ProcessInstance:
        async with self._lock:
            current = self._instances.get(instance_id)
            if current is None:
                raise InstanceNotFound(instance_id)
            if current.version != expected_version:
                raise VersionConflict(instance_id, expected_version, current.version)
            updated = prepare_swap(current, expected_version, mutation)
            self._instances[instance_id] = updated
        return updated.model_copy(deep=True)

    async def query(
        self,
        definition_name: Optional[str] = None,
        status: Optional[InstanceStatus] = None,
        actor_role: Optional[str] = None,
        current_step_id: Optional[str] = None,
    ) -> AsyncIterator[ProcessInstance]:
        criteria = InstanceFilter(
            definition_name=definition_name,
            status=status,
            actor_role=actor_role,
            current_step_id=current_step_id,
        )
        for instance in list(self._instances.values()):
            if criteria.matches(instance):
                yield instance.model_copy(deep=True)
