"""In-memory registry of published process definitions."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Union

from ..errors import DefinitionNotFound, DuplicateDefinition, ValidationError
from .loader import iter_definition_files, load_definitions_file, parse_definition
from .models import DefinitionRef, ProcessDefinition
from .validation import definition_problems

logger = logging.getLogger(__name__)


class DefinitionRegistry:
    """Holds immutable workflow templates keyed by name and version.

    Definitions are validated once when published and never change
    afterwards; publishing the same name and version twice is rejected.
    """

    def __init__(self, definitions: Iterable[ProcessDefinition] = ()) -> None:
        self._definitions: Dict[str, Dict[int, ProcessDefinition]] = {}
        self._refs: Dict[tuple[str, int], DefinitionRef] = {}
        self._lock = threading.Lock()
        for definition in definitions:
            self.publish(definition)

    def publish(
        self, definition: Union[ProcessDefinition, Dict[str, Any]]
    ) -> DefinitionRef:
        """Validate and store ``definition``.

        Raises:
            ValidationError: The step graph is malformed.
            DuplicateDefinition: The name and version are already published.
        """
        # the stored copy never aliases the caller's object
        definition = parse_definition(definition).model_copy(deep=True)
        problems = definition_problems(definition)
        if problems:
            raise ValidationError(f"{definition.name} v{definition.version}", problems)

        with self._lock:
            versions = self._definitions.setdefault(definition.name, {})
            if definition.version in versions:
                raise DuplicateDefinition(definition.name, definition.version)
            versions[definition.version] = definition
            ref = DefinitionRef(
                name=definition.name,
                version=definition.version,
                fingerprint=definition.fingerprint(),
            )
            self._refs[(definition.name, definition.version)] = ref

        logger.info(f"Published process definition {definition.name} v{definition.version}")
        return ref

    def get(self, name: str, version: Optional[int] = None) -> ProcessDefinition:
        """Return ``name`` at ``version``, or its highest version if omitted."""
        versions = self._definitions.get(name)
        if not versions:
            raise DefinitionNotFound(name, version)
        if version is None:
            return versions[max(versions)]
        try:
            return versions[version]
        except KeyError:
            raise DefinitionNotFound(name, version) from None

    def ref(self, name: str, version: Optional[int] = None) -> DefinitionRef:
        definition = self.get(name, version)
        return self._refs[(definition.name, definition.version)]

    def list_versions(self, name: str) -> List[int]:
        return sorted(self._definitions.get(name, {}))

    def names(self) -> List[str]:
        return sorted(self._definitions)

    def __contains__(self, name: object) -> bool:
        return name in self._definitions

    def __len__(self) -> int:
        return sum(len(v) for v in self._definitions.values())

    def load_definitions_file(self, path: str | Path) -> List[DefinitionRef]:
        """Publish every definition in a YAML file."""
        return [self.publish(d) for d in load_definitions_file(path)]

    def load_directory(self, path: str | Path) -> List[DefinitionRef]:
        """Publish every definition found under a directory of YAML files."""
        refs: List[DefinitionRef] = []
        for file_path in iter_definition_files(path):
            refs.extend(self.load_definitions_file(file_path))
        return refs

    def load_path(self, path: str | Path) -> List[DefinitionRef]:
        if Path(path).is_dir():
            return self.load_directory(path)
        return self.load_definitions_file(path)
