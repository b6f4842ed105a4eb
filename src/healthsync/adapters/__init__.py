"""
Source and destination adapters.
"""

from healthsync.adapters.base import DestinationWriter, SourceReader
from healthsync.adapters.memory import InMemoryDestination, InMemorySource
from healthsync.adapters.registry import AdapterRegistry
from healthsync.adapters.sql import SqlDestination, SqlSource

__all__ = [
    "AdapterRegistry",
    "DestinationWriter",
    "InMemoryDestination",
    "InMemorySource",
    "SourceReader",
    "SqlDestination",
    "SqlSource",
]
