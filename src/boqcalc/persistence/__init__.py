"""Persistence layer for quantities and audit records."""
