"""
# Database Package

The `blog_store.database` package provides the MongoDB persistence layer, built on
**Motor**. The `db_manager` instance is a module-level singleton whose connection
is established by the host application via `await db_manager.connect()`.

Attributes:
    db_manager (DatabaseManager): The global singleton instance for database access.
    DatabaseManager (class): The manager class (exported for type hinting).
"""

from blog_store.database.manager import DatabaseManager, db_manager

__all__ = ["DatabaseManager", "db_manager"]
