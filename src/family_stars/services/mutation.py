"""
Optimistic-update-then-reconcile primitive.

Every client-side mutation follows the same four steps: apply an optimistic
local change, persist, adopt whatever the persistence layer reports as
authoritative, and on failure roll the local change back. Star, goal and
badge mutations all go through ``mutate`` so they share one discipline.
"""

import inspect
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, TypeVar, Union

from ..utils.logging_config import log_exception

T = TypeVar("T")
S = TypeVar("S")


@dataclass(frozen=True)
class MutationResult(Generic[T]):
    """Outcome of a mutation."""

    ok: bool
    value: Optional[T] = None
    error: Optional[BaseException] = None

    def __bool__(self) -> bool:
        return self.ok


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


async def mutate(
    apply_optimistic: Callable[[], S],
    persist: Callable[[], Awaitable[T]],
    adopt: Callable[[T], Union[None, Awaitable[None]]],
    rollback: Callable[[S], Union[None, Awaitable[None]]],
    *,
    component: str,
    context: Optional[Dict[str, Any]] = None,
) -> MutationResult[T]:
    """
    Run one optimistic mutation.

    Args:
        apply_optimistic: Applies the local guess; returns a snapshot used for rollback
        persist: Performs the persistence call and returns the server's answer
        adopt: Overwrites local state with the server's answer
        rollback: Restores local state from the snapshot
        component: Logging component for failures
        context: Extra logging context

    Returns:
        MutationResult with ``ok`` False when persistence (or adoption) failed.
        Callers must not run dependent side effects on failure.
    """
    snapshot = apply_optimistic()
    try:
        value = await persist()
        await _maybe_await(adopt(value))
    except Exception as e:
        log_exception(component, e, context)
        await _maybe_await(rollback(snapshot))
        return MutationResult(ok=False, error=e)

    return MutationResult(ok=True, value=value)
