"""Process definition models and the definition registry."""

from __future__ import annotations

from .loader import load_definitions_file, parse_definition
from .models import (
    AUTO_ADVANCE_KINDS,
    TERMINAL_KINDS,
    DefinitionRef,
    ProcessDefinition,
    StepDefinition,
    StepKind,
)
from .registry import DefinitionRegistry
from .validation import definition_problems

__all__ = [
    "StepKind",
    "StepDefinition",
    "ProcessDefinition",
    "DefinitionRef",
    "DefinitionRegistry",
    "TERMINAL_KINDS",
    "AUTO_ADVANCE_KINDS",
    "definition_problems",
    "load_definitions_file",
    "parse_definition",
]
