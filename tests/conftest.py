"""
Shared pytest fixtures for object store tests.
"""

import os
import tempfile

import pytest
import pytest_asyncio

from objectstore.backend import KVBackend
from objectstore.store import ObjectStore


@pytest.fixture
def temp_dir():
    """Provide a temporary directory that is cleaned up after test."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield tmpdir


@pytest.fixture
def db_path(temp_dir):
    """Provide a path for the database file."""
    return os.path.join(temp_dir, "objects.db")


@pytest.fixture
def backend(db_path):
    """Provide an open KVBackend with an 'objects' bucket."""
    with KVBackend.open(db_path) as kv:
        with kv.update() as tx:
            tx.create_bucket_if_not_exists("objects")
        yield kv


@pytest_asyncio.fixture
async def store(db_path):
    """Provide an open ObjectStore."""
    async with await ObjectStore.open(db_path) as s:
        yield s


def body_reader(body: bytes):
    """Return a coroutine function that yields `body`, like Request.read_body."""
    async def read_body() -> bytes:
        return body
    return read_body


@pytest.fixture
def make_reader():
    return body_reader
