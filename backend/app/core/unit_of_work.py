"""Explicit unit of work over a SQLAlchemy session.

Every settlement operation opens one scope. The scope commits on a clean
exit and rolls back on any exception. Side effects that must not take part
in the database transaction (emails) are registered as post-commit hooks.
"""

import logging
from collections.abc import Awaitable, Callable
from types import TracebackType

from sqlalchemy.orm import Session

logger = logging.getLogger(__name__)

PostCommitHook = Callable[[], Awaitable[object]]


class UnitOfWork:
    """Async context manager that owns commit and rollback for one operation."""

    def __init__(self, db: Session):
        self.db = db
        self._hooks: list[PostCommitHook] = []
        self._rolled_back = False
        self.committed = False

    async def __aenter__(self) -> "UnitOfWork":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        if exc is not None:
            logger.error("Unit of work rolled back: %s", exc)
            self.db.rollback()
            self._hooks.clear()
            return

        if self._rolled_back:
            return

        self.db.commit()
        self.committed = True
        await self._run_hooks()

    def after_commit(self, hook: PostCommitHook) -> None:
        """Register a coroutine factory to run once the scope has committed."""
        self._hooks.append(hook)

    def rollback(self) -> None:
        """End the scope early without committing and drop pending hooks."""
        self.db.rollback()
        self._rolled_back = True
        self._hooks.clear()

    async def _run_hooks(self) -> None:
        hooks, self._hooks = self._hooks, []
        for hook in hooks:
            try:
                await hook()
            except Exception:
                logger.exception("Post-commit hook failed")
