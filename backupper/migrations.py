"""
Database schema management for backupper.

Simple schema initialization without requiring Alembic.
"""

import logging
from sqlalchemy import inspect
from sqlalchemy.exc import SQLAlchemyError
from backupper import db

logger = logging.getLogger(__name__)


def init_database_schema(app):
    """
    Initialize the run history schema.

    Creates the tables that do not exist yet. Safe to call on every start.
    """
    with app.app_context():
        inspector = inspect(db.engine)
        existing_tables = set(inspector.get_table_names())
        missing = [table for table in db.metadata.sorted_tables if table.name not in existing_tables]

        if not missing:
            logger.debug("Database schema is up to date")
            return

        logger.info(f"Creating table(s): {', '.join(table.name for table in missing)}")
        try:
            db.create_all()
            logger.info("Database schema created successfully")
        except SQLAlchemyError as e:
            # Another process may have created the tables concurrently
            logger.error(f"Failed to create database schema: {e}")
