"""Load process definitions from YAML documents."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, List

import yaml
from pydantic import ValidationError as PydanticValidationError

from ..errors import ValidationError
from .models import ProcessDefinition

YAML_SUFFIXES = (".yaml", ".yml")


def parse_definition(data: Any, source: str = "<definition>") -> ProcessDefinition:
    """Build a :class:`ProcessDefinition` from plain data.

    Schema errors are reported as :class:`~caseflow.errors.ValidationError`
    so callers see one error type for every malformed definition.
    """

    if isinstance(data, ProcessDefinition):
        return data
    if not isinstance(data, dict):
        raise ValidationError(source, [f"expected a mapping, got {type(data).__name__}"])
    try:
        return ProcessDefinition.model_validate(data)
    except PydanticValidationError as e:
        name = data.get("name") or source
        raise ValidationError(
            str(name),
            [
                f"{'.'.join(str(p) for p in err['loc']) or 'definition'}: {err['msg']}"
                for err in e.errors()
            ],
        ) from e


def _documents(raw: Iterable[Any]) -> Iterable[Any]:
    for doc in raw:
        if doc is None:
            continue
        if isinstance(doc, list):
            yield from doc
        elif isinstance(doc, dict) and "definitions" in doc and "steps" not in doc:
            yield from doc["definitions"] or []
        else:
            yield doc


def load_definitions_file(path: str | Path) -> List[ProcessDefinition]:
    """Parse every definition found in a YAML file.

    A file may hold one definition, a list of definitions, a mapping with a
    ``definitions`` key, or several YAML documents.
    """

    path = Path(path)
    with open(path) as f:
        raw = list(yaml.safe_load_all(f))
    return [parse_definition(doc, source=str(path)) for doc in _documents(raw)]


def iter_definition_files(directory: str | Path) -> List[Path]:
    directory = Path(directory)
    if not directory.is_dir():
        raise FileNotFoundError(f"Definitions directory not found: {directory}")
    return sorted(
        p for p in directory.rglob("*") if p.is_file() and p.suffix in YAML_SUFFIXES
    )
