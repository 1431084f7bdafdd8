"""Building element and classification models supplied by upstream workflows."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from boqcalc.models.assembly import Assembly


class Classification(BaseModel):
    """Classification code (e.g. an NRM code) and its applicable assemblies."""

    code: str
    name: str = ""
    assemblies: list[Assembly] = Field(default_factory=list)


class Element(BaseModel):
    """A building element awaiting quantity calculation.

    ``parameters`` holds the raw values collected upstream, untyped until the
    engine validates them against an assembly schema.
    """

    element_id: str
    name: str = ""
    element_type: str | None = None
    material: str | None = None
    parameters: dict[Any, Any] = Field(default_factory=dict)
    classification: Classification | None = None

    @property
    def assemblies(self) -> list[Assembly]:
        return list(self.classification.assemblies) if self.classification else []
