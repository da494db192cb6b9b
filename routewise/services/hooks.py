"""
Post-commit hooks

Side effects queued while a primary write is prepared and run only after it
has committed. Each hook is isolated: a failing hook is logged and the rest
still run.
"""
import logging
from typing import Awaitable, Callable, List, Tuple

logger = logging.getLogger(__name__)

Hook = Callable[[], Awaitable[object]]


class PostCommitHooks:

    def __init__(self):
        self._hooks: List[Tuple[str, Hook]] = []

    def add(self, name: str, hook: Hook):
        self._hooks.append((name, hook))

    def __len__(self):
        return len(self._hooks)

    async def run(self) -> int:
        """Run queued hooks in order; returns how many failed."""
        failures = 0
        hooks, self._hooks = self._hooks, []
        for name, hook in hooks:
            try:
                await hook()
            except Exception as exc:
                failures += 1
                logger.error("❌ Post-commit hook '%s' failed: %s", name, exc)
        return failures
