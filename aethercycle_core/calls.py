"""
Fallible calls across a trust boundary.

Components that talk to collaborators they do not control (the market
router, staking pools, the endowment) never let a collaborator's failure
unwind their own work.  :func:`guarded` runs the call and folds the
outcome into a :class:`CallResult` so the caller is forced to pick an
explicit continuation for the failure branch.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Generic, TypeVar

T = TypeVar("T")

log = logging.getLogger("aethercycle.calls")


@dataclass(frozen=True)
class CallResult(Generic[T]):
    """Outcome of one guarded call."""
    ok: bool
    value: T | None = None
    error: str = ""

    def unwrap_or(self, default: T) -> T:
        if self.ok and self.value is not None:
            return self.value
        return default


def guarded(fn: Callable[..., T], *args: Any, **kwargs: Any) -> CallResult[T]:
    """
    Invoke ``fn`` and capture any exception as a failed :class:`CallResult`.

    Collaborators are written so that a raising call leaves no partial
    state behind, which is what makes continuing after a failure safe.
    """
    name = getattr(fn, "__qualname__", repr(fn))
    try:
        value = fn(*args, **kwargs)
    except Exception as exc:
        error = f"{type(exc).__name__}: {exc}"
        log.warning(f"call {name} failed: {error}")
        return CallResult(ok=False, error=error)
    return CallResult(ok=True, value=value)
