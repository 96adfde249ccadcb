"""
Tests for the ObjectStore validation and CRUD layer.
"""

import asyncio

import pytest

from objectstore.codec import ObjectRecord
from objectstore.exceptions import (
    BackendError,
    BodyReadError,
    CodecError,
    IdentifierTooLong,
    MissingContentType,
    ObjectNotFound,
    PayloadTooLarge,
)
from objectstore.store import ObjectStore


class TestPut:
    """Tests for ObjectStore.put."""

    async def test_put_then_get(self, store, make_reader):
        body = b"Dane testowe"
        await store.put("abc", "application/json", len(body), make_reader(body))

        record = await store.get("abc")
        assert record == ObjectRecord(content_type="application/json", data="Dane testowe")

    async def test_put_reports_created_and_replaced(self, store, make_reader):
        assert await store.put("abc", "text/plain", 3, make_reader(b"one")) is True
        assert await store.put("abc", "text/plain", 3, make_reader(b"two")) is False

        record = await store.get("abc")
        assert record.data == "two"

    async def test_put_replaces_content_type(self, store, make_reader):
        await store.put("abc", "text/plain", 1, make_reader(b"a"))
        await store.put("abc", "text/csv", 1, make_reader(b"b"))

        assert await store.get("abc") == ObjectRecord(content_type="text/csv", data="b")

    async def test_identical_put_is_idempotent(self, store, make_reader):
        for _ in range(2):
            await store.put("abc", "text/plain", 5, make_reader(b"hello"))

        assert await store.list_ids() == ["abc"]
        assert await store.get("abc") == ObjectRecord(content_type="text/plain", data="hello")

    async def test_boundary_sizes_accepted(self, store, make_reader):
        object_id = "a" * 100
        body = b"x" * 1024
        await store.put(object_id, "application/octet-stream", len(body), make_reader(body))

        record = await store.get(object_id)
        assert len(record.data) == 1024

    async def test_empty_body_accepted(self, store, make_reader):
        await store.put("empty", "text/plain", 0, make_reader(b""))

        assert await store.get("empty") == ObjectRecord(content_type="text/plain", data="")

    async def test_id_too_long(self, store, make_reader):
        with pytest.raises(IdentifierTooLong) as exc_info:
            await store.put("a" * 101, "text/plain", 1, make_reader(b"x"))

        assert "100" in str(exc_info.value)

    async def test_declared_length_too_large(self, store):
        """The body is never read when the declared length is over the limit."""
        calls = []

        async def read_body() -> bytes:
            calls.append(True)
            return b""

        with pytest.raises(PayloadTooLarge):
            await store.put("abc", "text/plain", 1025, read_body)

        assert calls == []
        assert await store.list_ids() == []

    async def test_actual_body_too_large(self, store, make_reader):
        with pytest.raises(PayloadTooLarge):
            await store.put("abc", "text/plain", 10, make_reader(b"x" * 2048))

        with pytest.raises(ObjectNotFound):
            await store.get("abc")

    async def test_oversized_put_leaves_existing_record(self, store, make_reader):
        await store.put("abc", "text/plain", 3, make_reader(b"old"))

        with pytest.raises(PayloadTooLarge):
            await store.put("abc", "text/plain", 2048, make_reader(b"x" * 2048))

        assert (await store.get("abc")).data == "old"

    async def test_missing_content_type(self, store, make_reader):
        with pytest.raises(MissingContentType):
            await store.put("abc", "", 1, make_reader(b"x"))

    async def test_checks_run_in_order(self, store, make_reader):
        """Id length is checked before size, size before content type."""
        with pytest.raises(IdentifierTooLong):
            await store.put("a" * 101, "", 4096, make_reader(b""))

        with pytest.raises(PayloadTooLarge):
            await store.put("abc", "", 4096, make_reader(b""))

    async def test_body_read_failure(self, store):
        async def read_body() -> bytes:
            raise asyncio.IncompleteReadError(b"par", 10)

        with pytest.raises(BodyReadError):
            await store.put("abc", "text/plain", 10, read_body)

        assert await store.list_ids() == []

    async def test_malformed_body_framing(self, store):
        async def read_body() -> bytes:
            raise ValueError("invalid literal for int() with base 16: b'zz'")

        with pytest.raises(BodyReadError):
            await store.put("abc", "text/plain", 0, read_body)

        assert await store.list_ids() == []


class TestGet:
    """Tests for ObjectStore.get."""

    async def test_get_missing(self, store):
        with pytest.raises(ObjectNotFound) as exc_info:
            await store.get("nothere")

        assert str(exc_info.value) == "nothere does not exist"

    async def test_get_id_too_long(self, store):
        with pytest.raises(IdentifierTooLong):
            await store.get("a" * 101)

    async def test_get_corrupt_record(self, store):
        with store.backend.update() as tx:
            tx.bucket(ObjectStore.BUCKET).put("broken", b"{not json")

        with pytest.raises(CodecError):
            await store.get("broken")


class TestDelete:
    """Tests for ObjectStore.delete."""

    async def test_delete_then_delete_again(self, store, make_reader):
        await store.put("abc", "text/plain", 1, make_reader(b"x"))

        await store.delete("abc")
        with pytest.raises(ObjectNotFound) as exc_info:
            await store.delete("abc")

        assert str(exc_info.value) == "Record does not exist"

    async def test_delete_missing(self, store):
        with pytest.raises(ObjectNotFound):
            await store.delete("nothere")

    async def test_delete_removes_from_list(self, store, make_reader):
        await store.put("a", "text/plain", 1, make_reader(b"x"))
        await store.put("b", "text/plain", 1, make_reader(b"x"))

        await store.delete("a")

        assert await store.list_ids() == ["b"]


class TestList:
    """Tests for ObjectStore.list_ids."""

    async def test_empty_store(self, store):
        assert await store.list_ids() == []

    async def test_lists_exact_set(self, store, make_reader):
        for object_id in ["key1", "Key2", "KEY3"]:
            await store.put(object_id, "application/json", 10, make_reader(b"Dummy data"))

        ids = await store.list_ids()
        assert sorted(ids) == sorted(["key1", "Key2", "KEY3"])
        assert ids == ["KEY3", "Key2", "key1"]


class TestLifecycle:
    """Tests for opening and closing the store."""

    async def test_persistence(self, db_path, make_reader):
        async with await ObjectStore.open(db_path) as store:
            await store.put("abc", "text/plain", 5, make_reader(b"hello"))

        async with await ObjectStore.open(db_path) as store:
            assert await store.get("abc") == ObjectRecord(content_type="text/plain", data="hello")

    async def test_operations_after_close(self, db_path):
        store = await ObjectStore.open(db_path)
        await store.close()

        with pytest.raises(BackendError):
            await store.list_ids()

    async def test_open_unreadable_file(self, temp_dir):
        path = f"{temp_dir}/garbage.db"
        with open(path, "wb") as f:
            f.write(b"this is not a database file" * 200)

        with pytest.raises(BackendError):
            await ObjectStore.open(path)


class TestConcurrency:
    """Concurrent use of one store."""

    async def test_concurrent_writers(self, store, make_reader):
        async def writer(writer_id: int) -> None:
            for i in range(20):
                body = f"value{i}".encode()
                await store.put(f"w{writer_id}k{i}", "text/plain", len(body), make_reader(body))

        await asyncio.gather(*(writer(i) for i in range(5)))

        assert len(await store.list_ids()) == 100
        assert (await store.get("w3k7")).data == "value7"

    async def test_readers_see_whole_records(self, store, make_reader):
        """Readers racing a writer only ever see complete records."""
        versions = {
            ObjectRecord(content_type=f"type/{i}", data=f"data{i}") for i in range(20)
        }

        async def writer() -> None:
            for i in range(20):
                body = f"data{i}".encode()
                await store.put("shared", f"type/{i}", len(body), make_reader(body))

        async def reader() -> list[ObjectRecord]:
            seen = []
            for _ in range(20):
                try:
                    seen.append(await store.get("shared"))
                except ObjectNotFound:
                    pass
            return seen

        await store.put("shared", "type/0", 5, make_reader(b"data0"))
        results = await asyncio.gather(writer(), *(reader() for _ in range(4)))

        for seen in results[1:]:
            assert all(record in versions for record in seen)
