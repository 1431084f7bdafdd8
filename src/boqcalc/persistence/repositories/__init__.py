"""Persistence repositories with SQL storage and in-memory fallback."""

from boqcalc.persistence.repositories.quantities import (
    InMemoryQuantitiesRepository,
    QuantitiesRepo,
    SqlQuantitiesRepository,
)

__all__ = [
    "InMemoryQuantitiesRepository",
    "QuantitiesRepo",
    "SqlQuantitiesRepository",
]
