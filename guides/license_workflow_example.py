"""Walk a business license application through review."""

import asyncio
import logging
from pathlib import Path

from caseflow import DefinitionRegistry, Forbidden, InMemoryEventSink, ProcessEngine
from caseflow.persistence import InMemoryInstanceStore

DEFINITIONS = Path(__file__).parent / "definitions"


async def main():
    logging.basicConfig(level=logging.INFO)

    registry = DefinitionRegistry()
    registry.load_directory(DEFINITIONS)

    sink = InMemoryEventSink()
    sink.subscribe("ProcessCompleted", lambda e: print(f"Notify applicant: {e.payload}"))

    engine = ProcessEngine(registry, InMemoryInstanceStore(), sink)

    instance = await engine.start(
        "license_application", caller_id="applicant-7", initial_context={"business": "Cafe"}
    )
    iid = instance.instance_id
    await engine.advance(iid, "submitted", "applicant-7", "applicant")
    await engine.advance(iid, "document_review", "officer-2", "officer")

    try:
        await engine.advance(iid, "approved", "applicant-7", "applicant")
    except Forbidden as e:
        print(f"Rejected as expected: {e}")

    await engine.advance(iid, "approved", "officer-2", "officer", note="All documents valid")
    # the issuing service resolves the system-action step
    instance = await engine.auto_advance(iid, "issued")

    definition = engine.definition_of(instance)
    print(f"Status: {definition.label_for(instance.current_step_id)} ({instance.status.value})")
    for record in instance.history:
        print(f"  {record.sequence}. {record.from_step_id} -> {record.to_step_id} by {record.actor_id}")


if __name__ == "__main__":
    asyncio.run(main())
