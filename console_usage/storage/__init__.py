# Storage module
from .versioned import (
    StorageHealth,
    StorageMetadata,
    VersionedStorage,
    generate_version_filename,
    parse_timestamp_from_filename,
)

__all__ = [
    "StorageHealth",
    "StorageMetadata",
    "VersionedStorage",
    "generate_version_filename",
    "parse_timestamp_from_filename",
]
