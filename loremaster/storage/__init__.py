"""Key-path blob storage used for chunked manuals, indexes and vectors."""

from loremaster.storage.base import BlobStore
from loremaster.storage.local import LocalBlobStore

__all__ = ["BlobStore", "LocalBlobStore"]
