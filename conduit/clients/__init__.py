"""
Queue and object-store collaborators.
"""

from .interfaces import ObjectStore, QueueClient, ReceivedMessage

__all__ = ["QueueClient", "ObjectStore", "ReceivedMessage"]
