"""Hookwatch storage collaborators"""
from .change_feed import (
    ChangeTopic, ChangeOperation, ChangeEvent, ChangeHandler,
    ChangeSubscription, ChangeFeed, InMemoryChangeFeed,
)
from .repository import Repository, InMemoryRepository

__all__ = [
    "ChangeTopic", "ChangeOperation", "ChangeEvent", "ChangeHandler",
    "ChangeSubscription", "ChangeFeed", "InMemoryChangeFeed",
    "Repository", "InMemoryRepository",
]
