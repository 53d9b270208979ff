"""Registry of municipalities and their permit type definitions.

Definitions are loaded from YAML files, one per municipality::

    municipality:
      id: hanover
      name: Hanover Township
    permit_types:
      - id: hanover-building
        name: Building Permit
        code: BLD
        ...

Staff edits replace a definition wholesale. Permits already on file keep
the snapshot they were created with.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from permitflow.core.errors import (
    MunicipalityNotFoundError,
    PermitTypeNotFoundError,
    SchemaConfigurationError,
)
from permitflow.permit_types.models import Municipality, PermitTypeDefinition

logger = logging.getLogger(__name__)

_DEFAULT_DEFINITIONS_DIR = Path(__file__).resolve().parents[3] / "config" / "permit_types"


def _format_errors(exc: ValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err["loc"]) or "<root>"
        parts.append(f"{loc}: {err['msg']}")
    return "; ".join(parts)


def parse_permit_type(data: dict[str, Any]) -> PermitTypeDefinition:
    """Build a PermitTypeDefinition, reporting schema problems as configuration errors."""
    try:
        return PermitTypeDefinition.model_validate(data)
    except ValidationError as exc:
        ident = data.get("id") or data.get("code") or "<unnamed>"
        raise SchemaConfigurationError(
            f"Invalid permit type {ident!r}: {_format_errors(exc)}"
        ) from exc


def parse_municipality(data: dict[str, Any]) -> Municipality:
    try:
        return Municipality.model_validate(data)
    except ValidationError as exc:
        raise SchemaConfigurationError(
            f"Invalid municipality {data.get('id', '<unnamed>')!r}: {_format_errors(exc)}"
        ) from exc


class PermitTypeRegistry:
    """In-memory registry of municipalities and permit type definitions."""

    def __init__(self, definitions_dir: str | Path | None = None, autoload: bool = True) -> None:
        self._municipalities: dict[str, Municipality] = {}
        self._permit_types: dict[str, PermitTypeDefinition] = {}
        if autoload:
            self.load_dir(Path(definitions_dir) if definitions_dir else _DEFAULT_DEFINITIONS_DIR)

    def load_dir(self, definitions_dir: Path) -> None:
        if not definitions_dir.exists():
            logger.warning("Permit type directory %s does not exist", definitions_dir)
            return
        for path in sorted(definitions_dir.glob("*.yml")):
            self.load_file(path)

    def load_file(self, path: str | Path) -> None:
        with open(path) as fh:
            data = yaml.safe_load(fh) or {}

        municipality_data = data.get("municipality")
        if municipality_data:
            self.register_municipality(parse_municipality(municipality_data))

        for entry in data.get("permit_types", []):
            if municipality_data and "municipality_id" not in entry:
                entry = {**entry, "municipality_id": municipality_data["id"]}
            self.register(parse_permit_type(entry))

        logger.info("Loaded permit types from %s", path)

    # -- Municipalities --

    def register_municipality(self, municipality: Municipality) -> None:
        self._municipalities[municipality.id] = municipality

    def get_municipality(self, municipality_id: str) -> Municipality:
        municipality = self._municipalities.get(municipality_id)
        if municipality is None:
            raise MunicipalityNotFoundError(f"Municipality {municipality_id!r} not found")
        return municipality

    @property
    def municipalities(self) -> dict[str, Municipality]:
        return dict(self._municipalities)

    # -- Permit types --

    def register(self, definition: PermitTypeDefinition) -> None:
        if definition.municipality_id not in self._municipalities:
            raise SchemaConfigurationError(
                f"Permit type {definition.id!r} references unknown municipality "
                f"{definition.municipality_id!r}"
            )
        for other in self._permit_types.values():
            if (
                other.id != definition.id
                and other.municipality_id == definition.municipality_id
                and other.code == definition.code
            ):
                raise SchemaConfigurationError(
                    f"Permit type code {definition.code!r} is already used by {other.id!r}"
                )
        self._permit_types[definition.id] = definition

    def get(self, permit_type_id: str) -> PermitTypeDefinition:
        definition = self._permit_types.get(permit_type_id)
        if definition is None:
            raise PermitTypeNotFoundError(f"Permit type {permit_type_id!r} not found")
        return definition

    def update(self, permit_type_id: str, changes: dict[str, Any]) -> PermitTypeDefinition:
        """Apply a staff edit. The merged definition is re-validated as a whole."""
        current = self.get(permit_type_id)
        merged = {**current.model_dump(), **changes, "id": current.id}
        updated = parse_permit_type(merged)
        self.register(updated)
        logger.info("Permit type %s updated (%s)", permit_type_id, ", ".join(sorted(changes)))
        return updated

    def list_for_municipality(
        self, municipality_id: str, include_inactive: bool = False
    ) -> list[PermitTypeDefinition]:
        return sorted(
            (
                d for d in self._permit_types.values()
                if d.municipality_id == municipality_id and (include_inactive or d.is_active)
            ),
            key=lambda d: d.name,
        )
