"""iterforge database layer."""

from iterforge.db.connection import Database
from iterforge.db.migrations import MIGRATIONS, run_migrations
from iterforge.db.repository import Repository
from iterforge.db.schema import initialize

__all__ = [
    "Database",
    "Repository",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
]
