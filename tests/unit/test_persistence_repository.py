import uuid

import pytest

from caseflow import (
    DuplicateIdError,
    InstanceNotFound,
    InstanceStatus,
    ProcessInstance,
    TransitionRecord,
    VersionConflict,
)
from caseflow.persistence import InMemoryInstanceStore, SQLiteInstanceStore, prepare_swap


@pytest.fixture(params=["inmemory", "sqlite"])
def any_store(request, tmp_path):
    if request.param == "inmemory":
        yield InMemoryInstanceStore()
    else:
        store = SQLiteInstanceStore(tmp_path / "instances.db")
        yield store
        store.close()


def _instance(definition_name="license_application", step="draft", **kwargs):
    return ProcessInstance(
        instance_id=kwargs.pop("instance_id", str(uuid.uuid4())),
        definition_name=definition_name,
        definition_version=1,
        current_step_id=step,
        context_data=kwargs.pop("context_data", {"business": "Cafe"}),
        started_by="applicant-1",
        **kwargs,
    )


def _move(to_step, actor_role="applicant", status=None):
    def mutation(instance):
        instance.history.append(
            TransitionRecord(
                sequence=len(instance.history) + 1,
                from_step_id=instance.current_step_id,
                to_step_id=to_step,
                actor_id="user-1",
                actor_role=actor_role,
                events_emitted=["evt-1"],
            )
        )
        instance.current_step_id = to_step
        if status:
            instance.status = status
        return instance

    return mutation


@pytest.mark.asyncio
async def test_create_and_get(any_store):
    instance = _instance()
    assert await any_store.create(instance) == instance.instance_id

    stored = await any_store.get(instance.instance_id)
    assert stored.current_step_id == "draft"
    assert stored.version == 0
    assert stored.context_data == {"business": "Cafe"}
    assert stored.started_by == "applicant-1"
    assert stored.history == []
    assert stored.status == InstanceStatus.ACTIVE


@pytest.mark.asyncio
async def test_create_duplicate_id(any_store):
    instance = _instance()
    await any_store.create(instance)
    with pytest.raises(DuplicateIdError):
        await any_store.create(instance)


@pytest.mark.asyncio
async def test_get_missing(any_store):
    with pytest.raises(InstanceNotFound):
        await any_store.get("missing")
    with pytest.raises(InstanceNotFound):
        await any_store.compare_and_swap("missing", 0, _move("submitted"))


@pytest.mark.asyncio
async def test_compare_and_swap_bumps_version_and_appends_history(any_store):
    instance = _instance()
    await any_store.create(instance)

    updated = await any_store.compare_and_swap(instance.instance_id, 0, _move("submitted"))
    assert updated.version == 1
    assert updated.current_step_id == "submitted"

    stored = await any_store.get(instance.instance_id)
    assert stored.version == 1
    assert [r.to_step_id for r in stored.history] == ["submitted"]
    assert stored.history[0].events_emitted == ["evt-1"]
    assert stored.created_at == instance.created_at


@pytest.mark.asyncio
async def test_stale_version_conflicts(any_store):
    instance = _instance()
    await any_store.create(instance)
    await any_store.compare_and_swap(instance.instance_id, 0, _move("submitted"))

    with pytest.raises(VersionConflict) as exc:
        await any_store.compare_and_swap(instance.instance_id, 0, _move("approved"))
    assert exc.value.expected_version == 0

    stored = await any_store.get(instance.instance_id)
    assert stored.current_step_id == "submitted"
    assert len(stored.history) == 1


@pytest.mark.asyncio
async def test_history_cannot_be_rewritten(any_store):
    instance = _instance()
    await any_store.create(instance)
    await any_store.compare_and_swap(instance.instance_id, 0, _move("submitted"))

    def rewrite(current):
        current.history[0].actor_id = "someone-else"
        return current

    def truncate(current):
        current.history.clear()
        return current

    with pytest.raises(ValueError):
        await any_store.compare_and_swap(instance.instance_id, 1, rewrite)
    with pytest.raises(ValueError):
        await any_store.compare_and_swap(instance.instance_id, 1, truncate)

    stored = await any_store.get(instance.instance_id)
    assert stored.version == 1
    assert stored.history[0].actor_id == "user-1"


@pytest.mark.asyncio
async def test_returned_instances_are_copies(any_store):
    instance = _instance()
    await any_store.create(instance)
    fetched = await any_store.get(instance.instance_id)
    fetched.current_step_id = "tampered"
    fetched.history.append(
        TransitionRecord(sequence=1, from_step_id="a", to_step_id="b", actor_id="x")
    )

    stored = await any_store.get(instance.instance_id)
    assert stored.current_step_id == "draft"
    assert stored.history == []


@pytest.mark.asyncio
async def test_query_filters(any_store):
    a = _instance(instance_id="a")
    b = _instance(instance_id="b")
    c = _instance(definition_name="license_renewal", instance_id="c", step="renewal_due")
    for inst in (a, b, c):
        await any_store.create(inst)
    await any_store.compare_and_swap("a", 0, _move("submitted", actor_role="applicant"))
    await any_store.compare_and_swap("a", 1, _move("document_review", actor_role="officer"))
    await any_store.compare_and_swap(
        "b", 0, _move("rejected", actor_role="officer", status=InstanceStatus.COMPLETED)
    )

    async def ids(**criteria):
        return sorted([i.instance_id async for i in any_store.query(**criteria)])

    assert await ids() == ["a", "b", "c"]
    assert await ids(definition_name="license_application") == ["a", "b"]
    assert await ids(status=InstanceStatus.ACTIVE) == ["a", "c"]
    assert await ids(status=InstanceStatus.COMPLETED) == ["b"]
    assert await ids(current_step_id="document_review") == ["a"]
    assert await ids(actor_role="officer") == ["a", "b"]
    assert await ids(actor_role="applicant", definition_name="license_application") == ["a"]
    assert await ids(actor_role="auditor") == []


def test_prepare_swap_rejects_identity_changes():
    current = _instance(instance_id="fixed")

    def rename(instance):
        instance.instance_id = "other"
        return instance

    def repin(instance):
        instance.definition_version = 2
        return instance

    with pytest.raises(ValueError):
        prepare_swap(current, 0, rename)
    with pytest.raises(ValueError):
        prepare_swap(current, 0, repin)
    with pytest.raises(VersionConflict):
        prepare_swap(current, 3, _move("submitted"))


def test_prepare_swap_leaves_current_untouched():
    current = _instance()
    updated = prepare_swap(current, 0, _move("submitted"))
    assert updated.version == 1
    assert current.version == 0
    assert current.history == []
