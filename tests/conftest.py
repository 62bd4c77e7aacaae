"""Shared fixtures for caseflow tests."""

from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict

import pytest

from caseflow import DefinitionRegistry, InMemoryEventSink, ProcessEngine
from caseflow.persistence import InMemoryInstanceStore

FIXTURES_DIR = Path(__file__).parent / "fixtures"

LICENSE_APPLICATION: Dict[str, Any] = {
    "name": "license_application",
    "version": 1,
    "title": "Business License Application",
    "cancel_roles": ["applicant", "officer"],
    "steps": [
        {
            "id": "draft",
            "kind": "start",
            "label": "Draft Application",
            "allowed_next_steps": ["submitted"],
            "exit_roles": ["applicant"],
        },
        {
            "id": "submitted",
            "kind": "user-decision",
            "allowed_next_steps": ["document_review"],
            "exit_roles": ["officer"],
        },
        {
            "id": "document_review",
            "kind": "user-decision",
            "label": "Document Review",
            "allowed_next_steps": ["approved", "rejected", "additional_info"],
            "exit_roles": ["officer"],
        },
        {
            "id": "additional_info",
            "kind": "user-decision",
            "allowed_next_steps": ["document_review"],
            "exit_roles": ["applicant"],
        },
        {
            "id": "approved",
            "kind": "system-action",
            "label": "License Approved",
            "allowed_next_steps": ["issued"],
        },
        {"id": "rejected", "kind": "terminal-failure", "label": "License Rejected"},
        {"id": "issued", "kind": "terminal-success", "label": "License Issued"},
    ],
}


@pytest.fixture
def license_definition() -> Dict[str, Any]:
    return copy.deepcopy(LICENSE_APPLICATION)


@pytest.fixture
def registry(license_definition) -> DefinitionRegistry:
    registry = DefinitionRegistry()
    registry.publish(license_definition)
    return registry


@pytest.fixture
def store() -> InMemoryInstanceStore:
    return InMemoryInstanceStore()


@pytest.fixture
def sink() -> InMemoryEventSink:
    return InMemoryEventSink()


@pytest.fixture
def engine(registry, store, sink) -> ProcessEngine:
    return ProcessEngine(registry, store, sink, conflict_backoff=0)


@pytest.fixture
def fixtures_dir() -> Path:
    return FIXTURES_DIR
