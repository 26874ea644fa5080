"""Adapters layer - Infrastructure implementations for sync operations.

This layer contains concrete implementations of the ports defined in the domain layer:
- PostgresGroupRepository: PostgreSQL implementation of IGroupRepository
- PostgresUserRepository: PostgreSQL implementation of IUserRepository
- StremioCollectionAdapter: Stremio API implementation of IAddonCollectionAPI
- CollectionEntryMapper / AddonRecordMapper: Format mapping to AddonDescriptor
"""

from .collection_mapper import AddonRecordMapper, CollectionEntryMapper
from .postgres_repository import PostgresGroupRepository, PostgresUserRepository
from .stremio_api_adapter import StremioCollectionAdapter

__all__ = [
    # Mappers
    "AddonRecordMapper",
    "CollectionEntryMapper",
    # Repositories
    "PostgresGroupRepository",
    "PostgresUserRepository",
    # Remote API
    "StremioCollectionAdapter",
]
