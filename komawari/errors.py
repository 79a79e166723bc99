"""Error types raised by the engine."""

from __future__ import annotations


class InvalidInputError(ValueError):
    """Malformed snapshot or configuration. Raised before any search work."""


class InfeasibleError(RuntimeError):
    """No assignment satisfies every hard constraint within the search budget."""
