"""
ObjectStore - validation and CRUD over the key-value backend.
"""

import asyncio
from collections.abc import Awaitable, Callable

from objectstore.backend import KVBackend
from objectstore.codec import ObjectRecord
from objectstore.exceptions import (
    BodyReadError,
    IdentifierTooLong,
    MissingContentType,
    ObjectNotFound,
    PayloadTooLarge,
)
from objectstore.validation import MAX_ID_LENGTH, MAX_PAYLOAD_SIZE


class ObjectStore:
    """
    Object store over a transactional key-value backend.

    Provides:
    - list_ids(): All stored ids
    - get(id): Retrieve a record
    - put(id, content_type, declared_length, read_body): Create or replace a record
    - delete(id): Remove a record

    Every operation runs in its own backend transaction on the default
    executor, so the event loop never blocks on disk I/O.
    """

    BUCKET = "objects"

    def __init__(self, backend: KVBackend) -> None:
        self._backend = backend

    @classmethod
    async def open(cls, path: str, timeout: float = KVBackend.DEFAULT_TIMEOUT) -> "ObjectStore":
        """
        Open the backing file and make sure the objects bucket exists.

        Raises:
            BackendError: If the file is locked or unreadable.
        """
        loop = asyncio.get_running_loop()
        backend = await loop.run_in_executor(None, KVBackend.open, path, timeout)
        store = cls(backend)
        try:
            await loop.run_in_executor(None, store._ensure_bucket_sync)
        except BaseException:
            backend.close()
            raise
        return store

    @property
    def backend(self) -> KVBackend:
        return self._backend

    def _ensure_bucket_sync(self) -> None:
        with self._backend.update() as tx:
            tx.create_bucket_if_not_exists(self.BUCKET)

    async def _run(self, func, *args):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, func, *args)

    async def list_ids(self) -> list[str]:
        """Return every stored id in backend order. Empty store gives []."""
        return await self._run(self._list_ids_sync)

    def _list_ids_sync(self) -> list[str]:
        with self._backend.view() as tx:
            return tx.bucket(self.BUCKET).keys()

    async def get(self, object_id: str) -> ObjectRecord:
        """
        Retrieve the record stored under `object_id`.

        Raises:
            IdentifierTooLong: If the id can never have been stored.
            ObjectNotFound: If no record exists.
            CodecError: If the stored record is corrupt.
        """
        self._check_length(object_id)
        raw = await self._run(self._get_sync, object_id)
        if raw is None:
            raise ObjectNotFound(object_id)
        return ObjectRecord.from_json(raw)

    def _get_sync(self, object_id: str) -> bytes | None:
        with self._backend.view() as tx:
            return tx.bucket(self.BUCKET).get(object_id)

    async def put(
        self,
        object_id: str,
        content_type: str,
        declared_length: int,
        read_body: Callable[[], Awaitable[bytes]],
    ) -> bool:
        """
        Create or fully replace the record stored under `object_id`.

        Limits are checked before the body is read, in this order:
        id length, declared payload size, content type.

        Args:
            object_id: Target id.
            content_type: Content type of the payload.
            declared_length: Payload size announced by the client.
            read_body: Coroutine function returning the payload.

        Returns:
            True if the record is new, False if it replaced an existing one.
        """
        self._check_length(object_id)
        if declared_length > MAX_PAYLOAD_SIZE:
            raise PayloadTooLarge(declared_length, MAX_PAYLOAD_SIZE)
        if not content_type:
            raise MissingContentType()

        try:
            body = await read_body()
        except (OSError, EOFError, ValueError, asyncio.TimeoutError) as e:
            raise BodyReadError(f"request body read failed: {e}") from e

        if len(body) > MAX_PAYLOAD_SIZE:
            raise PayloadTooLarge(len(body), MAX_PAYLOAD_SIZE)

        raw = ObjectRecord.from_payload(content_type, body).to_json()
        return await self._run(self._put_sync, object_id, raw)

    def _put_sync(self, object_id: str, raw: bytes) -> bool:
        with self._backend.update() as tx:
            bucket = tx.bucket(self.BUCKET)
            created = bucket.get(object_id) is None
            bucket.put(object_id, raw)
        return created

    async def delete(self, object_id: str) -> None:
        """
        Remove the record stored under `object_id`.

        Raises:
            ObjectNotFound: If no record exists.
        """
        self._check_length(object_id)
        await self._run(self._delete_sync, object_id)

    def _delete_sync(self, object_id: str) -> None:
        with self._backend.update() as tx:
            bucket = tx.bucket(self.BUCKET)
            if not bucket.get(object_id):
                raise ObjectNotFound(object_id, "Record does not exist")
            bucket.delete(object_id)

    @staticmethod
    def _check_length(object_id: str) -> None:
        if len(object_id) > MAX_ID_LENGTH:
            raise IdentifierTooLong(object_id, MAX_ID_LENGTH)

    async def close(self) -> None:
        self._backend.close()

    async def __aenter__(self) -> "ObjectStore":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
