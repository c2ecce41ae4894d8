# Sync module
from .client import SyncClient, SyncResponse

__all__ = ["SyncClient", "SyncResponse"]
