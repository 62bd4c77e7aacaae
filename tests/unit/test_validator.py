"""Tests for the pure transition validator."""

import pytest

from caseflow import (
    Forbidden,
    InstanceStatus,
    InvalidTransition,
    ProcessDefinition,
    ProcessInstance,
    TerminalState,
    available_transitions,
    validate_transition,
)


@pytest.fixture
def definition(license_definition):
    return ProcessDefinition.model_validate(license_definition)


def _instance(step, status=InstanceStatus.ACTIVE):
    return ProcessInstance(
        instance_id="inst-1",
        definition_name="license_application",
        definition_version=1,
        current_step_id=step,
        status=status,
    )


def test_allowed_edge_with_permitted_role(definition):
    assert validate_transition(definition, _instance("draft"), "submitted", "applicant") is None
    assert (
        validate_transition(definition, _instance("document_review"), "additional_info", "officer")
        is None
    )


def test_wrong_role_is_forbidden(definition):
    with pytest.raises(Forbidden) as exc:
        validate_transition(definition, _instance("document_review"), "approved", "applicant")
    assert exc.value.actor_role == "applicant"
    assert exc.value.from_step == "document_review"
    assert exc.value.to_step == "approved"


def test_missing_role_is_forbidden_on_gated_edge(definition):
    with pytest.raises(Forbidden):
        validate_transition(definition, _instance("draft"), "submitted", None)


def test_skipping_a_step_is_invalid(definition):
    with pytest.raises(InvalidTransition):
        validate_transition(definition, _instance("draft"), "approved", "officer")


def test_unknown_target_is_invalid(definition):
    with pytest.raises(InvalidTransition):
        validate_transition(definition, _instance("draft"), "nowhere", "applicant")


def test_unknown_current_step_is_invalid(definition):
    with pytest.raises(InvalidTransition):
        validate_transition(definition, _instance("ghost"), "submitted", "applicant")


@pytest.mark.parametrize("status", [InstanceStatus.COMPLETED, InstanceStatus.CANCELLED])
@pytest.mark.parametrize("target", ["issued", "submitted", "nowhere"])
def test_inactive_instance_is_terminal_regardless_of_target(definition, status, target):
    with pytest.raises(TerminalState):
        validate_transition(definition, _instance("approved", status), target, "officer")


def test_terminal_checked_before_edge_and_role(definition):
    instance = _instance("draft", InstanceStatus.COMPLETED)
    with pytest.raises(TerminalState):
        validate_transition(definition, instance, "approved", "stranger")


def test_open_edge_allows_any_role(definition):
    # approved -> issued has no exit roles
    assert validate_transition(definition, _instance("approved"), "issued", "anyone") is None


def test_role_checks_can_be_skipped(definition):
    assert (
        validate_transition(
            definition, _instance("document_review"), "approved", "system", check_roles=False
        )
        is None
    )


def test_entry_role_is_enforced():
    definition = ProcessDefinition(
        name="sign_off",
        steps=[
            {"id": "open", "kind": "start", "allowed_next_steps": ["signed"]},
            {"id": "signed", "kind": "terminal-success", "entry_role": "manager"},
        ],
    )
    instance = ProcessInstance(
        instance_id="i", definition_name="sign_off", definition_version=1, current_step_id="open"
    )
    with pytest.raises(Forbidden):
        validate_transition(definition, instance, "signed", "clerk")
    assert validate_transition(definition, instance, "signed", "manager") is None


def test_validation_is_deterministic(definition):
    instance = _instance("document_review")
    outcomes = set()
    for _ in range(5):
        try:
            validate_transition(definition, instance, "approved", "applicant")
        except Forbidden as e:
            outcomes.add(type(e))
    assert outcomes == {Forbidden}


def test_available_transitions(definition):
    review = _instance("document_review")
    assert available_transitions(definition, review) == ["approved", "rejected", "additional_info"]
    assert available_transitions(definition, review, "officer") == [
        "approved",
        "rejected",
        "additional_info",
    ]
    assert available_transitions(definition, review, "applicant") == []
    assert available_transitions(definition, _instance("approved"), "applicant") == ["issued"]
    assert available_transitions(definition, _instance("issued", InstanceStatus.COMPLETED)) == []
    assert available_transitions(definition, _instance("ghost")) == []
