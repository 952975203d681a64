"""
Base interface for blob storage.

Paths are virtual, slash-delimited keys such as
``settings/eberron/sharn_nights/player-manual-chunks.json``. Implementations
may map them onto a real filesystem, an object store, or a host
application's virtual file tree.
"""

from abc import ABC, abstractmethod


class BlobStore(ABC):
    """
    Abstract key-path blob store.

    ``load`` returns ``None`` for a missing key. Absence is a normal outcome
    for callers (e.g. a manual that has not been chunked yet), not an error.
    """

    @abstractmethod
    async def save(self, path: str, data: str | bytes) -> None:
        """
        Write ``data`` under ``path``, replacing any existing value.

        Parent "directories" are created as needed.
        """
        pass

    @abstractmethod
    async def load(self, path: str) -> str | None:
        """
        Read the text stored under ``path``.

        Returns:
            The stored text, or None if nothing is stored there
        """
        pass

    @abstractmethod
    async def exists(self, path: str) -> bool:
        """Check whether anything is stored under ``path``."""
        pass

    @abstractmethod
    async def list_directories(self, path: str) -> list[str]:
        """
        List the immediate child directory names under ``path``.

        Returns an empty list when ``path`` does not exist.
        """
        pass
