"""Lifecycle hook lists.

A ``HookSet`` holds one ordered list of callbacks per lifecycle event. The
lifecycle awaits the callbacks of an event one after another, in the order
they were registered.
"""

import inspect
from typing import Any, Callable

from pydantic import BaseModel, ConfigDict, Field

# Every event a HookSet knows about, in the order they fire.
KNOWN_HOOK_EVENTS = (
    "init",
    "before_request",
    "before_redirect",
    "before_retry",
    "before_error",
)

Hook = Callable[..., Any]


class HookSet(BaseModel):
    """Ordered hook lists keyed by lifecycle event.

    Attributes:
        init: Called synchronously with the descriptor during normalization.
        before_request: Called with the descriptor before the first attempt.
        before_redirect: Called with the descriptor for the next hop.
        before_retry: Called with the descriptor, the error and the
            1-based retry count before a retry is issued.
        before_error: Called with the error; each returns the error to pass
            along.
    """

    model_config = ConfigDict(extra="forbid", arbitrary_types_allowed=True)

    init: list[Hook] = Field(default_factory=list)
    before_request: list[Hook] = Field(default_factory=list)
    before_redirect: list[Hook] = Field(default_factory=list)
    before_retry: list[Hook] = Field(default_factory=list)
    before_error: list[Hook] = Field(default_factory=list)


async def run_hooks(hooks: list[Hook], *args: Any) -> None:
    """Call each hook in order, awaiting any that return an awaitable.

    Args:
        hooks: The hooks to run.
        *args: Positional arguments passed to every hook.
    """
    for hook in hooks:
        result = hook(*args)
        if inspect.isawaitable(result):
            await result
