"""Assembly catalog loader.

Reads a YAML or JSON catalog of assemblies with fail-closed behavior.
A catalog is either a list of assembly mappings or a mapping with an
``assemblies`` list:

    assemblies:
      - assembly_id: wall-plaster
        name: Wall plaster
        formula: width * height
        unit: m2
        parameter_schema:
          properties:
            width: {type: number, rule: positive_number}
            height: {type: number, rule: positive_number}
          required: [width, height]
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from boqcalc.models.assembly import Assembly

logger = logging.getLogger(__name__)


class CatalogError(Exception):
    """Raised when an assembly catalog cannot be loaded or is invalid."""

    def __init__(self, message: str, path: str | None = None) -> None:
        self.message = message
        self.path = path
        super().__init__(message)


def parse_catalog(data: Any, path: str | None = None) -> dict[str, Assembly]:
    """Build assemblies from already-parsed catalog data.

    Args:
        data: Parsed YAML/JSON document.
        path: Source path, for error messages.

    Returns:
        Assemblies keyed by assembly_id, in catalog order.

    Raises:
        CatalogError: If the document shape is wrong, an entry is invalid or
            an assembly_id is repeated.
    """
    if isinstance(data, dict):
        entries = data.get("assemblies")
    else:
        entries = data

    if not isinstance(entries, list):
        raise CatalogError(
            "Catalog must be a list of assemblies or a mapping with an 'assemblies' list",
            path=path,
        )

    assemblies: dict[str, Assembly] = {}
    for position, entry in enumerate(entries):
        if not isinstance(entry, dict):
            raise CatalogError(
                f"Catalog entry {position} must be a mapping, got {type(entry).__name__}",
                path=path,
            )
        try:
            assembly = Assembly.model_validate(entry)
        except ValidationError as e:
            raise CatalogError(f"Invalid catalog entry {position}: {e}", path=path) from e
        if assembly.assembly_id in assemblies:
            raise CatalogError(f"Duplicate assembly_id '{assembly.assembly_id}'", path=path)
        assemblies[assembly.assembly_id] = assembly

    return assemblies


def load_catalog(path: str | Path) -> dict[str, Assembly]:
    """Load an assembly catalog file.

    JSON is a subset of YAML, so both formats go through yaml.safe_load.

    Raises:
        CatalogError: If the file is missing, unreadable, not valid YAML/JSON
            or describes invalid assemblies.
    """
    catalog_path = Path(path)
    path_str = str(catalog_path)

    if not catalog_path.is_file():
        raise CatalogError(f"Catalog file not found: {path_str}", path=path_str)

    try:
        with catalog_path.open("r", encoding="utf-8") as f:
            content = f.read()
    except OSError as e:
        raise CatalogError(f"Failed to read catalog: {e}", path=path_str) from e

    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise CatalogError(f"Invalid YAML in catalog: {e}", path=path_str) from e

    if data is None:
        raise CatalogError("Catalog file is empty", path=path_str)

    assemblies = parse_catalog(data, path=path_str)
    logger.info("Loaded %d assembly(ies) from %s", len(assemblies), path_str)
    return assemblies
