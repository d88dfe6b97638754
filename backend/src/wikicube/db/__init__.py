"""Database layer for wikicube."""

from wikicube.db.connection import Database
from wikicube.db.migrations import run_migrations
from wikicube.db.wiki_store import TopicRecord, UnitRecord, WikiStore

__all__ = ["Database", "run_migrations", "TopicRecord", "UnitRecord", "WikiStore"]
