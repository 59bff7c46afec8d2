"""
Pool ownership for library callers.

ConnectionManager opens the shared budget_service pool when nobody else has,
and only closes it if it was the one that opened it. This lets a CLI run,
a test and an embedding application share one process-wide pool.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from budget_tracker.exceptions import ConnectionError

if TYPE_CHECKING:
    from psycopg2.extensions import connection

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Scoped access to the PostgreSQL pool behind PostgresBudgetStore.

    Example:
        with ConnectionManager(dsn) as manager:
            coordinator = BudgetCoordinator.from_config()
            await coordinator.increment(budget_id, Decimal("12.50"))

    Attributes:
        dsn: Connection string, $DATABASE_URL when not given
        owns_pool: True if close() will shut the pool down
    """

    def __init__(self, connection_string: str | None = None) -> None:
        self.dsn = connection_string or os.getenv("DATABASE_URL")
        self.owns_pool = False
        self._attached = False

    @property
    def is_initialized(self) -> bool:
        return self._attached

    def initialize(
        self,
        min_connections: int = 1,
        max_connections: int = 10,
        connection_timeout: int = 5,
    ) -> None:
        """
        Attach to the shared pool, opening it first if needed.

        Raises:
            ConnectionError: If the pool cannot be opened
        """
        if self._attached:
            return

        # Import here to avoid import cycle
        from budget_service.db import connection as budget_pool

        if budget_pool.get_pool_status().get("initialized", False):
            logger.debug("Attaching to already open budget pool")
            self._attached = True
            return

        try:
            budget_pool.initialize_pool(
                min_connections=min_connections,
                max_connections=max_connections,
                connection_timeout=connection_timeout,
                database_url=self.dsn,
            )
        except ConnectionError:
            raise
        except Exception as e:
            raise ConnectionError(f"Could not open budget database pool: {e}") from e

        self._attached = True
        self.owns_pool = True

    @contextmanager
    def get_connection(self) -> Iterator[connection]:
        """Borrow a pooled connection (ConnectionError before initialize())."""
        if not self._attached:
            raise ConnectionError("ConnectionManager not initialized. Call initialize() first.")

        from budget_service.db.connection import get_connection

        with get_connection() as conn:
            yield conn

    def close(self, timeout: int = 10) -> None:
        """Detach; shut the pool down only if this manager opened it."""
        if not self._attached:
            return
        self._attached = False

        if not self.owns_pool:
            logger.debug("Detached from budget pool owned elsewhere")
            return

        from budget_service.db.connection import close_all_connections

        close_all_connections(timeout=timeout)
        self.owns_pool = False

    def get_pool_status(self) -> dict[str, Any]:
        if not self._attached:
            return {"initialized": False}

        from budget_service.db.connection import get_pool_status

        return get_pool_status()

    def __enter__(self) -> ConnectionManager:
        self.initialize()
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()
