"""
Storage module - Durable collections and execution-graph checkpoints
"""

from .collection_store import CollectionStore, KNOWN_COLLECTIONS
from .checkpoint_store import SqliteCheckpointSaver

__all__ = ['CollectionStore', 'KNOWN_COLLECTIONS', 'SqliteCheckpointSaver']
