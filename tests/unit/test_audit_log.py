import pytest

from caseflow.audit import AuditLog


@pytest.fixture
def audit_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path / 'audit.db'}"


@pytest.mark.asyncio
async def test_audit_log_records_engine_events(engine, sink, audit_url):
    audit = AuditLog(audit_url)
    await audit.init_db()
    audit.attach(sink)

    instance = await engine.start("license_application", "applicant-1")
    iid = instance.instance_id
    await engine.advance(iid, "submitted", "applicant-1", "applicant", note="ready")
    await engine.advance(iid, "document_review", "officer-1", "officer")
    await engine.advance(iid, "rejected", "officer-1", "officer")

    entries = await audit.entries(iid)
    assert [e.event_type for e in entries] == [
        "ProcessStarted",
        "ProcessAdvanced",
        "ProcessAdvanced",
        "ProcessCompleted",
    ]
    assert entries[0].to_step_id == "draft"
    assert entries[1].from_step_id == "draft"
    assert entries[1].payload["note"] == "ready"
    assert entries[3].payload["outcome"] == "failure"

    stored = await engine.get(iid)
    assert entries[3].event_id in stored.history[-1].events_emitted

    await audit.dispose()


@pytest.mark.asyncio
async def test_audit_log_completion_metrics(engine, sink, audit_url):
    audit = AuditLog(audit_url)
    await audit.init_db()
    audit.attach(sink)

    assert await audit.completion_rate("license_application") is None
    assert await audit.average_completion_seconds("license_application") is None

    done = await engine.start("license_application", "applicant-1")
    await engine.start("license_application", "applicant-2")
    await engine.advance(done.instance_id, "submitted", "applicant-1", "applicant")
    await engine.advance(done.instance_id, "document_review", "officer-1", "officer")
    await engine.advance(done.instance_id, "approved", "officer-1", "officer")
    await engine.auto_advance(done.instance_id, "issued")

    assert await audit.completion_rate("license_application") == 0.5
    average = await audit.average_completion_seconds("license_application")
    assert average is not None and average >= 0

    await audit.dispose()
