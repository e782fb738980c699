"""
Persistence layer for tests and their counters.
"""

from .connection import DatabaseManager, get_db_manager, reset_managers
from .repository import (
    CounterDelta,
    InMemoryTestRepository,
    SqlAlchemyTestRepository,
    TestRepository,
    build_repository,
)

__all__ = [
    "DatabaseManager",
    "get_db_manager",
    "reset_managers",
    "CounterDelta",
    "InMemoryTestRepository",
    "SqlAlchemyTestRepository",
    "TestRepository",
    "build_repository",
]
