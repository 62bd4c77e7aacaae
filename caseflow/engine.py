"""Process engine: start, advance and cancel process instances."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime
from typing import Any, AsyncIterator, Dict, List, Optional, Union

from .audit import AuditLog
from .config import CaseflowConfig, load_config
from .constants import (
    DEFAULT_CONFLICT_BACKOFF,
    DEFAULT_MAX_ADVANCE_ATTEMPTS,
    SYSTEM_ACTOR_ID,
    SYSTEM_ACTOR_ROLE,
)
from .errors import (
    Forbidden,
    NotAutoAdvanceable,
    TerminalState,
    VersionConflict,
)
from .events import BaseEventSink, EventType, InMemoryEventSink, get_event_sink, new_event_id
from .persistence import (
    InstanceStatus,
    InstanceStore,
    ProcessInstance,
    TransitionKind,
    TransitionRecord,
    get_store,
)
from .persistence.models import utcnow
from .registry import DefinitionRegistry, ProcessDefinition, StepKind
from .utils.retry import sleep_before_retry
from .validator import available_transitions, timer_due_at, validate_transition

logger = logging.getLogger(__name__)


class ProcessEngine:
    """Drives process instances through their definitions.

    The engine is the only writer of instance state. Every change goes
    through one compare-and-swap on the store, so the new position and its
    history entry commit together or not at all. Events are emitted after
    the commit and a delivery failure never undoes a transition.
    """

    def __init__(
        self,
        registry: DefinitionRegistry,
        store: InstanceStore,
        sink: Optional[BaseEventSink] = None,
        *,
        max_advance_attempts: int = DEFAULT_MAX_ADVANCE_ATTEMPTS,
        conflict_backoff: float = DEFAULT_CONFLICT_BACKOFF,
    ) -> None:
        if max_advance_attempts < 1:
            raise ValueError("max_advance_attempts must be at least 1")
        self.registry = registry
        self.store = store
        self.sink = sink if sink is not None else InMemoryEventSink()
        self.max_advance_attempts = max_advance_attempts
        self.conflict_backoff = conflict_backoff
        self.audit: Optional[AuditLog] = None

    @classmethod
    async def from_config(cls, config: Optional[CaseflowConfig] = None) -> "ProcessEngine":
        """Build a ready engine from configuration in one pass.

        Loads ``definitions_path`` into a fresh registry, opens the store and
        event sink, applies ``log_level`` to the ``caseflow`` logger and, when
        ``audit.database_url`` is set, creates the audit table and subscribes
        an :class:`~caseflow.audit.AuditLog` to the sink.

        Raises:
            ValueError: An audit log is configured with a sink other than the
                in-memory one.
        """
        config = config or load_config()
        logging.getLogger("caseflow").setLevel(config.log_level.upper())

        registry = DefinitionRegistry()
        if config.definitions_path:
            registry.load_path(config.definitions_path)
        sink = get_event_sink(config=config)

        audit: Optional[AuditLog] = None
        if config.audit.database_url:
            if not isinstance(sink, InMemoryEventSink):
                raise ValueError("The audit log needs the in-memory event sink")
            audit = AuditLog(config.audit.database_url)
            await audit.init_db()
            audit.attach(sink)

        engine = cls(
            registry,
            get_store(config=config),
            sink,
            max_advance_attempts=config.engine.max_advance_attempts,
            conflict_backoff=config.engine.conflict_backoff,
        )
        engine.audit = audit
        return engine

    # ------------------------------------------------------------------
    # Lifecycle operations
    async def start(
        self,
        definition_name: str,
        caller_id: str,
        initial_context: Optional[Dict[str, Any]] = None,
        *,
        version: Optional[int] = None,
        instance_id: Optional[str] = None,
    ) -> ProcessInstance:
        """Create an instance at the definition's start step.

        Raises:
            DefinitionNotFound: No such definition or version.
            DuplicateIdError: ``instance_id`` is already in use.
        """
        definition = self.registry.get(definition_name, version)
        now = utcnow()
        instance = ProcessInstance(
            instance_id=instance_id or str(uuid.uuid4()),
            definition_name=definition.name,
            definition_version=definition.version,
            current_step_id=definition.start_step.id,
            status=InstanceStatus.ACTIVE,
            created_at=now,
            updated_at=now,
            version=0,
            context_data=dict(initial_context or {}),
            started_by=caller_id,
        )
        await self.store.create(instance)
        logger.info(
            f"Started {definition.name} v{definition.version} "
            f"instance {instance.instance_id} for {caller_id}"
        )
        await self._emit(
            EventType.PROCESS_STARTED,
            instance.instance_id,
            {
                "definition_name": definition.name,
                "definition_version": definition.version,
                "step_id": instance.current_step_id,
                "step_label": definition.label_for(instance.current_step_id),
                "actor_id": caller_id,
            },
        )
        return instance

    async def advance(
        self,
        instance_id: str,
        to_step_id: str,
        actor_id: str,
        actor_role: Optional[str],
        note: Optional[str] = None,
    ) -> ProcessInstance:
        """Move an instance along one edge on behalf of an actor.

        Raises:
            InstanceNotFound: Unknown instance.
            TerminalState: The instance is completed or cancelled.
            InvalidTransition: ``to_step_id`` is not an allowed next step.
            Forbidden: The actor's role may not take the edge.
            VersionConflict: Concurrent writers won every attempt.
        """
        if not actor_id:
            raise Forbidden(
                "An authenticated actor is required", instance_id, to_step=to_step_id
            )
        return await self._transition(
            instance_id, to_step_id, actor_id, actor_role, note, TransitionKind.ADVANCE
        )

    async def auto_advance(
        self, instance_id: str, to_step_id: str, note: Optional[str] = None
    ) -> ProcessInstance:
        """Resolve a system-action or wait-timer step as the system actor.

        The collaborator that did the work names the outcome; role checks
        are skipped.

        Raises:
            NotAutoAdvanceable: The current step needs human input.
        """
        return await self._transition(
            instance_id,
            to_step_id,
            SYSTEM_ACTOR_ID,
            SYSTEM_ACTOR_ROLE,
            note,
            TransitionKind.AUTO_ADVANCE,
        )

    async def cancel(
        self,
        instance_id: str,
        actor_id: str,
        reason: Optional[str] = None,
        actor_role: Optional[str] = None,
    ) -> ProcessInstance:
        """Cancel an active instance.

        Cancelling an already cancelled instance returns it unchanged.

        Raises:
            TerminalState: The instance already completed.
            Forbidden: The definition does not permit cancellation by this actor.
        """
        if not actor_id:
            raise Forbidden("An authenticated actor is required", instance_id)

        attempt = 0
        while True:
            attempt += 1
            instance = await self.store.get(instance_id)
            if instance.status == InstanceStatus.CANCELLED:
                return instance
            if instance.status == InstanceStatus.COMPLETED:
                raise TerminalState(
                    f"Instance {instance_id} is completed",
                    instance_id,
                    instance.current_step_id,
                )
            definition = self.definition_of(instance)
            if not definition.cancellable:
                raise Forbidden(
                    f"{definition.name} v{definition.version} does not permit cancellation",
                    instance_id,
                    instance.current_step_id,
                    actor_role=actor_role,
                )
            if definition.cancel_roles and actor_role not in definition.cancel_roles:
                raise Forbidden(
                    f"Role {actor_role!r} may not cancel {definition.name} instances",
                    instance_id,
                    instance.current_step_id,
                    actor_role=actor_role,
                )

            event_id = new_event_id()
            now = utcnow()
            record = TransitionRecord(
                sequence=len(instance.history) + 1,
                from_step_id=instance.current_step_id,
                to_step_id=instance.current_step_id,
                actor_id=actor_id,
                actor_role=actor_role,
                timestamp=now,
                note=reason,
                kind=TransitionKind.CANCEL,
                events_emitted=[event_id],
            )

            def mutation(current: ProcessInstance) -> ProcessInstance:
                current.status = InstanceStatus.CANCELLED
                current.updated_at = now
                current.history.append(record)
                return current

            try:
                updated = await self.store.compare_and_swap(
                    instance_id, instance.version, mutation
                )
            except VersionConflict:
                if attempt >= self.max_advance_attempts:
                    logger.warning(
                        f"Giving up cancelling {instance_id} after "
                        f"{self.max_advance_attempts} conflicts"
                    )
                    raise
                logger.debug(
                    f"Cancel of {instance_id} lost a version race "
                    f"(attempt {attempt}/{self.max_advance_attempts})"
                )
                await sleep_before_retry(attempt - 1, self.conflict_backoff)
                continue

            logger.info(f"Cancelled instance {instance_id} at {record.from_step_id} by {actor_id}")
            await self._emit(
                EventType.PROCESS_CANCELLED,
                instance_id,
                self._payload(definition, updated, record),
                event_id,
            )
            return updated

    # ------------------------------------------------------------------
    # Read operations
    async def get(self, instance_id: str) -> ProcessInstance:
        return await self.store.get(instance_id)

    async def history(self, instance_id: str) -> List[TransitionRecord]:
        instance = await self.store.get(instance_id)
        return instance.history

    async def available_transitions(
        self, instance_id: str, actor_role: Optional[str] = None
    ) -> List[str]:
        """Targets the caller could request next for ``instance_id``."""
        instance = await self.store.get(instance_id)
        return available_transitions(self.definition_of(instance), instance, actor_role)

    async def query(
        self,
        definition_name: Optional[str] = None,
        status: Optional[Union[InstanceStatus, str]] = None,
        actor_role: Optional[str] = None,
        current_step_id: Optional[str] = None,
        actionable_by: Optional[str] = None,
    ) -> AsyncIterator[ProcessInstance]:
        """Lazily yield instances for reports and dashboards.

        ``actionable_by`` keeps only active instances on which that role
        could take at least one edge right now.
        """
        async for instance in self.store.query(
            definition_name=definition_name,
            status=InstanceStatus(status) if status else None,
            actor_role=actor_role,
            current_step_id=current_step_id,
        ):
            if actionable_by is not None and not available_transitions(
                self.definition_of(instance), instance, actionable_by
            ):
                continue
            yield instance

    def timer_due_at(self, instance: ProcessInstance) -> Optional[datetime]:
        return timer_due_at(self.definition_of(instance), instance)

    async def due_timers(
        self,
        now: Optional[datetime] = None,
        definition_name: Optional[str] = None,
    ) -> AsyncIterator[ProcessInstance]:
        """Yield active instances whose timed step has expired by ``now``.

        A scheduler resolves each one with :meth:`auto_advance`, naming the
        timeout branch itself.
        """
        now = now or utcnow()
        async for instance in self.store.query(
            definition_name=definition_name, status=InstanceStatus.ACTIVE
        ):
            due = self.timer_due_at(instance)
            if due is not None and due <= now:
                yield instance

    def definition_of(self, instance: ProcessInstance) -> ProcessDefinition:
        """The exact definition version an instance was started against."""
        return self.registry.get(instance.definition_name, instance.definition_version)

    # ------------------------------------------------------------------
    # Internals
    async def _transition(
        self,
        instance_id: str,
        to_step_id: str,
        actor_id: str,
        actor_role: Optional[str],
        note: Optional[str],
        kind: TransitionKind,
    ) -> ProcessInstance:
        attempt = 0
        while True:
            attempt += 1
            # re-validate against fresh state on every attempt
            instance = await self.store.get(instance_id)
            definition = self.definition_of(instance)
            if kind is TransitionKind.AUTO_ADVANCE:
                self._check_auto_advanceable(definition, instance, to_step_id)
            validate_transition(
                definition,
                instance,
                to_step_id,
                actor_role,
                check_roles=kind is not TransitionKind.AUTO_ADVANCE,
            )

            completes = definition.step(to_step_id).is_terminal
            event_id = new_event_id()
            now = utcnow()
            record = TransitionRecord(
                sequence=len(instance.history) + 1,
                from_step_id=instance.current_step_id,
                to_step_id=to_step_id,
                actor_id=actor_id,
                actor_role=actor_role,
                timestamp=now,
                note=note,
                kind=kind,
                events_emitted=[event_id],
            )

            def mutation(current: ProcessInstance) -> ProcessInstance:
                current.current_step_id = to_step_id
                current.updated_at = now
                current.history.append(record)
                if completes:
                    current.status = InstanceStatus.COMPLETED
                return current

            try:
                updated = await self.store.compare_and_swap(
                    instance_id, instance.version, mutation
                )
            except VersionConflict:
                if attempt >= self.max_advance_attempts:
                    logger.warning(
                        f"Giving up moving {instance_id} to {to_step_id} after "
                        f"{self.max_advance_attempts} version conflicts"
                    )
                    raise
                logger.debug(
                    f"Transition {record.from_step_id} -> {to_step_id} on {instance_id} "
                    f"lost a version race (attempt {attempt}/{self.max_advance_attempts})"
                )
                await sleep_before_retry(attempt - 1, self.conflict_backoff)
                continue

            if completes:
                logger.info(
                    f"Instance {instance_id} completed at {to_step_id} by {actor_id}"
                )
            else:
                logger.info(
                    f"Instance {instance_id} advanced {record.from_step_id} -> "
                    f"{to_step_id} by {actor_id}"
                )
            await self._emit(
                EventType.PROCESS_COMPLETED if completes else EventType.PROCESS_ADVANCED,
                instance_id,
                self._payload(definition, updated, record),
                event_id,
            )
            return updated

    @staticmethod
    def _check_auto_advanceable(
        definition: ProcessDefinition, instance: ProcessInstance, to_step_id: str
    ) -> None:
        if instance.status != InstanceStatus.ACTIVE:
            raise TerminalState(
                f"Instance {instance.instance_id} is "
                f"{InstanceStatus(instance.status).value}",
                instance.instance_id,
                instance.current_step_id,
                to_step_id,
            )
        step = definition.get_step(instance.current_step_id)
        if step is None or not step.auto_advance:
            raise NotAutoAdvanceable(
                f"Step {instance.current_step_id!r} of instance "
                f"{instance.instance_id} requires a human decision",
                instance.instance_id,
                instance.current_step_id,
                to_step_id,
            )

    @staticmethod
    def _payload(
        definition: ProcessDefinition,
        instance: ProcessInstance,
        record: TransitionRecord,
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "definition_name": definition.name,
            "definition_version": definition.version,
            "from_step_id": record.from_step_id,
            "to_step_id": record.to_step_id,
            "to_step_label": definition.label_for(record.to_step_id),
            "actor_id": record.actor_id,
            "actor_role": record.actor_role,
            "note": record.note,
            "sequence": record.sequence,
            "kind": TransitionKind(record.kind).value,
            "status": InstanceStatus(instance.status).value,
        }
        step = definition.get_step(record.to_step_id)
        if step is not None and step.is_terminal and record.kind != TransitionKind.CANCEL:
            payload["outcome"] = (
                "success" if step.kind is StepKind.TERMINAL_SUCCESS else "failure"
            )
        return payload

    async def _emit(
        self,
        event_type: EventType,
        instance_id: str,
        payload: Dict[str, Any],
        event_id: Optional[str] = None,
    ) -> None:
        try:
            await self.sink.emit(event_type, instance_id, payload, event_id=event_id)
        except Exception:
            logger.exception(
                f"Event sink failed for {event_type.value} on instance {instance_id}; "
                "transition stands"
            )
