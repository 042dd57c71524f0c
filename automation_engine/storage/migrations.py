"""Database migrations for execution history queries."""

from sqlalchemy import text
from .database import get_database_engine
from ..core.logging import get_logger

logger = get_logger(__name__)

EXECUTION_INDEXES = [
    # Listing is newest first, optionally per workflow
    """
    CREATE INDEX IF NOT EXISTS idx_workflow_executions_started_at
    ON workflow_executions(started_at DESC)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_workflow_executions_workflow_started
    ON workflow_executions(workflow_id, started_at)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_workflow_executions_status
    ON workflow_executions(status, started_at)
    """,
    """
    CREATE INDEX IF NOT EXISTS idx_workflows_tenant_created
    ON workflows(tenant_id, created_at)
    """,
]


def create_indexes_for_execution_queries():
    """Create database indexes used by execution listing."""
    engine = get_database_engine()
    try:
        with engine.connect() as connection:
            for statement in EXECUTION_INDEXES:
                connection.execute(text(statement))
            connection.commit()
            logger.info("Created database indexes for execution queries")

    except Exception as e:
        logger.error(f"Failed to create database indexes: {str(e)}")
        raise


def optimize_sqlite():
    """Apply SQLite pragmas; a no-op for other backends."""
    engine = get_database_engine()
    if "sqlite" not in str(engine.url) or ":memory:" in str(engine.url):
        return

    with engine.connect() as connection:
        # WAL lets listing read while a run is being finalized
        connection.execute(text("PRAGMA journal_mode=WAL"))
        connection.execute(text("PRAGMA optimize"))
        connection.commit()
        logger.info("Applied SQLite optimizations")


def run_migrations():
    """Run all migrations."""
    logger.info("Starting database migrations")
    create_indexes_for_execution_queries()
    optimize_sqlite()
    logger.info("Database migrations completed successfully")
