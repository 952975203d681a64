"""
Local filesystem blob store.

Keys are resolved relative to a root directory:

    >>> store = LocalBlobStore(Path("./data"))
    >>> await store.save("settings/eberron/sharn/gm-manual-chunks.json", payload)
    >>> text = await store.load("settings/eberron/sharn/gm-manual-chunks.json")
"""

from pathlib import Path, PurePosixPath

import aiofiles
import aiofiles.os

from loremaster.config.logging import get_logger
from loremaster.storage.base import BlobStore

logger = get_logger(__name__)


class LocalBlobStore(BlobStore):
    """BlobStore backed by UTF-8 files under ``root``."""

    def __init__(self, root: Path | str):
        self.root = Path(root)

    def resolve(self, path: str) -> Path:
        """
        Map a slash-delimited key onto a filesystem path under root.

        Raises:
            ValueError: If the key is absolute or climbs out of root
        """
        key = PurePosixPath(path.removeprefix("./"))
        if key.is_absolute() or ".." in key.parts:
            raise ValueError(f"Blob key must stay inside the store root: {path!r}")
        return self.root.joinpath(*key.parts)

    async def save(self, path: str, data: str | bytes) -> None:
        target = self.resolve(path)
        await aiofiles.os.makedirs(target.parent, exist_ok=True)

        if isinstance(data, bytes):
            async with aiofiles.open(target, "wb") as f:
                await f.write(data)
        else:
            async with aiofiles.open(target, "w", encoding="utf-8") as f:
                await f.write(data)

        logger.debug(f"Saved {path}")

    async def load(self, path: str) -> str | None:
        target = self.resolve(path)
        if not await aiofiles.os.path.isfile(target):
            return None

        async with aiofiles.open(target, "r", encoding="utf-8") as f:
            return await f.read()

    async def exists(self, path: str) -> bool:
        return await aiofiles.os.path.exists(self.resolve(path))

    async def list_directories(self, path: str) -> list[str]:
        target = self.resolve(path)
        if not await aiofiles.os.path.isdir(target):
            return []

        names = await aiofiles.os.listdir(target)
        return sorted(name for name in names if (target / name).is_dir())
