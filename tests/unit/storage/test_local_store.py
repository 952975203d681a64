"""
Unit tests for LocalBlobStore.

Uses a real temporary directory; keys are slash-delimited and resolved
under the store root.
"""

import pytest

from loremaster.storage.local import LocalBlobStore


@pytest.fixture
def store(tmp_path):
    return LocalBlobStore(tmp_path / "blobs")


class TestSaveAndLoad:
    """Round-tripping values."""

    @pytest.mark.asyncio
    async def test_save_creates_parent_directories(self, store, tmp_path):
        await store.save("settings/eberron/sharn/player-manual-chunks.json", '{"a": 1}')

        written = tmp_path / "blobs" / "settings" / "eberron" / "sharn" / "player-manual-chunks.json"
        assert written.read_text(encoding="utf-8") == '{"a": 1}'

    @pytest.mark.asyncio
    async def test_load_returns_saved_text(self, store):
        await store.save("a/b.json", "Élan ünïcode")

        assert await store.load("a/b.json") == "Élan ünïcode"

    @pytest.mark.asyncio
    async def test_load_missing_returns_none(self, store):
        assert await store.load("nothing/here.json") is None

    @pytest.mark.asyncio
    async def test_save_overwrites(self, store):
        await store.save("x.json", "first")
        await store.save("x.json", "second")

        assert await store.load("x.json") == "second"

    @pytest.mark.asyncio
    async def test_save_bytes(self, store):
        await store.save("raw.bin", b"hello")

        assert await store.load("raw.bin") == "hello"

    @pytest.mark.asyncio
    async def test_leading_dot_slash_is_ignored(self, store):
        await store.save("./settings/x.json", "ok")

        assert await store.load("settings/x.json") == "ok"


class TestExistsAndListing:
    """exists / list_directories."""

    @pytest.mark.asyncio
    async def test_exists(self, store):
        assert await store.exists("k.json") is False
        await store.save("k.json", "v")
        assert await store.exists("k.json") is True

    @pytest.mark.asyncio
    async def test_list_directories_only_returns_directories(self, store):
        await store.save("settings/eberron/sharn/a.json", "1")
        await store.save("settings/eberron/droaam/b.json", "2")
        await store.save("settings/eberron/notes.json", "3")

        assert await store.list_directories("settings/eberron") == ["droaam", "sharn"]

    @pytest.mark.asyncio
    async def test_list_missing_directory_is_empty(self, store):
        assert await store.list_directories("settings/unknown") == []


class TestKeyValidation:
    """Keys must stay inside the root."""

    @pytest.mark.parametrize("key", ["../escape.json", "a/../../b.json", "/etc/passwd"])
    def test_rejects_escaping_keys(self, store, key):
        with pytest.raises(ValueError, match="inside the store root"):
            store.resolve(key)
