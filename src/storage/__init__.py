"""Storage layer for discovered phrases, trend scores and credentials."""

from src.storage.base import CredentialRepository, TrendRepository
from src.storage.database import Database
from src.storage.memory import InMemoryCredentialRepository, InMemoryTrendRepository
from src.storage.repository import PostgresCredentialRepository, PostgresTrendRepository

__all__ = [
    "CredentialRepository",
    "Database",
    "InMemoryCredentialRepository",
    "InMemoryTrendRepository",
    "PostgresCredentialRepository",
    "PostgresTrendRepository",
    "TrendRepository",
]
