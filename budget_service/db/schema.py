"""
Budgets table schema.

The partial unique index enforces one active budget per
(user_id, category, period); deactivated rows keep their history without
blocking a new budget for the same category.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from contextlib import AbstractContextManager

from psycopg2.extensions import connection

from budget_service.db.connection import get_connection

logger = logging.getLogger(__name__)

BUDGETS_DDL = """
CREATE TABLE IF NOT EXISTS budgets (
    id UUID PRIMARY KEY,
    user_id VARCHAR(255) NOT NULL,
    category VARCHAR(100) NOT NULL,
    amount NUMERIC(12, 2) NOT NULL CHECK (amount >= 0),
    spent NUMERIC(12, 2) NOT NULL DEFAULT 0 CHECK (spent >= 0 AND spent <= amount),
    period VARCHAR(10) NOT NULL CHECK (period IN ('MONTHLY', 'QUARTERLY', 'YEARLY')),
    alert_threshold NUMERIC(5, 2) NOT NULL DEFAULT 80
        CHECK (alert_threshold BETWEEN 0 AND 100),
    is_active BOOLEAN NOT NULL DEFAULT TRUE,
    last_alert_sent_at TIMESTAMPTZ,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW()
);
"""

BUDGETS_INDEXES = [
    """
    CREATE UNIQUE INDEX IF NOT EXISTS budgets_user_category_period_active
    ON budgets (user_id, category, period)
    WHERE is_active;
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_budgets_user_created
    ON budgets (user_id, created_at DESC)
    WHERE is_active;
    """,
]


def ensure_schema(
    connection_factory: Callable[[], AbstractContextManager[connection]] = get_connection,
) -> None:
    """
    Create the budgets table and its indexes if they don't exist.

    Args:
        connection_factory: Context manager factory yielding a connection
    """
    with connection_factory() as conn:
        cursor = conn.cursor()
        cursor.execute(BUDGETS_DDL)
        for statement in BUDGETS_INDEXES:
            cursor.execute(statement)
        conn.commit()

    logger.info("Budgets schema ensured")
