"""Collaborator clients: entity store and notification delivery."""

from .notifier import InMemoryNotificationClient, NotificationClient, NotificationDispatcher
from .store import EntityStore, InMemoryEntityStore, JsonFileEntityStore, create_store

__all__ = [
    'EntityStore',
    'InMemoryEntityStore',
    'JsonFileEntityStore',
    'create_store',
    'InMemoryNotificationClient',
    'NotificationClient',
    'NotificationDispatcher',
]
