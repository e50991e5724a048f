"""
Exception types shared across AetherCycle components.

Every rejection is a ``ValueError`` subclass so callers that only care
about "the operation was refused" can catch one type, while the engine's
re-entrancy and accounting failures stay distinguishable.
"""

from __future__ import annotations


class AetherCycleError(ValueError):
    """Base class for all protocol rejections."""


class ConfigurationError(AetherCycleError):
    """Invalid construction parameters.  Never recoverable."""


class Unauthorized(AetherCycleError):
    """The caller is not allowed to invoke this entry point."""


class ReentrancyError(AetherCycleError):
    """A guarded section was entered while already active."""


class InvariantViolation(AetherCycleError):
    """An accounting invariant would be broken; the operation is aborted."""


def require_address(value: str | None, message: str) -> str:
    if not value:
        raise ConfigurationError(message)
    return value
