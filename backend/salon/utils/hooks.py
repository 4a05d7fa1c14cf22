from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable

logger = logging.getLogger(__name__)

HookFunc = Callable[..., Awaitable[Any]]


class PostCommitHooks:
    """
    Side effects queued while a transaction is open and run only after it commits.
    A failing hook is logged and skipped; it never affects the committed data
    or the hooks queued after it.
    """

    def __init__(self) -> None:
        self._hooks: list[tuple[str, HookFunc, tuple[Any, ...], dict[str, Any]]] = []

    def add(self, name: str, func: HookFunc, *args: Any, **kwargs: Any) -> None:
        self._hooks.append((name, func, args, kwargs))

    def __len__(self) -> int:
        return len(self._hooks)

    @property
    def names(self) -> list[str]:
        return [name for name, *_ in self._hooks]

    async def run(self) -> int:
        """Run queued hooks in order and return how many failed."""
        hooks, self._hooks = self._hooks, []
        failures = 0
        for name, func, args, kwargs in hooks:
            try:
                await func(*args, **kwargs)
            except Exception:
                failures += 1
                logger.exception("post-commit hook %s failed", name)
        return failures
