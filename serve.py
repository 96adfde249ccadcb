import asyncio
import logging
import os
import sys

from http_server.request import BodyTooLarge, Request
from http_server.response import Response, response
from http_server.server import HTTPServer
from objectstore import ObjectStore
from objectstore.exceptions import (
    BackendError,
    BodyReadError,
    CodecError,
    IdentifierTooLong,
    InvalidIdentifier,
    MissingContentType,
    ObjectNotFound,
    ObjectStoreError,
    PayloadTooLarge,
)
from objectstore.validation import IDENTIFIER_REGEX, MAX_PAYLOAD_SIZE

logger = logging.getLogger()

OBJECTS_PREFIX = "/api/objects"

# Error kind -> HTTP status
STATUS_BY_ERROR: dict[type[ObjectStoreError], int] = {
    InvalidIdentifier: 400,
    IdentifierTooLong: 400,
    MissingContentType: 400,
    PayloadTooLarge: 413,
    ObjectNotFound: 404,
    BodyReadError: 500,
    CodecError: 500,
    BackendError: 500,
}

# Client-facing text for internal errors; the details only go to the log
INTERNAL_ERROR_MESSAGES: dict[type[ObjectStoreError], str] = {
    BodyReadError: "Request processing error",
    CodecError: "Data cannot be processed",
    BackendError: "Database temporary error",
}


def error_response(request: Request, exc: ObjectStoreError) -> Response:
    """Map an object store error to its HTTP response."""
    for exc_type in type(exc).__mro__:
        if exc_type in STATUS_BY_ERROR:
            status = STATUS_BY_ERROR[exc_type]
            break
    else:
        status = 500

    if status >= 500:
        logger.error(f"[{request.request_id}] {request.method} {request.path} failed: {exc!r}")
        message = next(
            (msg for exc_type, msg in INTERNAL_ERROR_MESSAGES.items() if isinstance(exc, exc_type)),
            "Internal Server Error",
        )
        return response(status_code=status).text(message)

    return response(status_code=status).text(str(exc))


async def main():
    log_level = os.environ.get("LOG_LEVEL", "INFO").upper()
    logging.basicConfig(
        level=getattr(logging, log_level, logging.INFO),
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    host = os.environ.get("OBJECTS_HOST", "0.0.0.0")
    port = int(os.environ.get("OBJECTS_PORT", "8080"))
    db_path = os.environ.get("OBJECTS_DB_PATH", "objects.db")
    open_timeout = float(os.environ.get("OBJECTS_OPEN_TIMEOUT", "1.0"))

    try:
        store = await ObjectStore.open(db_path, timeout=open_timeout)
    except BackendError as e:
        logger.critical(f"Cannot open object store: {e}")
        sys.exit(1)

    async with store:
        server = HTTPServer(host=host, port=port)
        await register_routes(server, store)
        logger.debug(f"Registered routes: {[route.pattern.pattern for route in server.routes]}")
        await server.start()

async def register_routes(server: HTTPServer, store: ObjectStore):

    server.errorhandler(ObjectStoreError)(error_response)

    @server.route(f'{OBJECTS_PREFIX}/', ['GET'])
    async def list_objects(request: Request) -> Response:
        ids = await store.list_ids()
        return response(status_code=200).json(ids)

    @server.route(f'{OBJECTS_PREFIX}/{{objectID:{IDENTIFIER_REGEX}}}', ['PUT'])
    async def put_object(request: Request) -> Response:
        async def read_payload() -> bytes:
            try:
                return await request.read_body(limit=MAX_PAYLOAD_SIZE)
            except BodyTooLarge as e:
                raise PayloadTooLarge(e.size, MAX_PAYLOAD_SIZE) from e

        await store.put(
            request.param("objectID"),
            request.content_type,
            request.content_length,
            read_payload,
        )
        return response(status_code=201)

    @server.route(f'{OBJECTS_PREFIX}/{{objectID:{IDENTIFIER_REGEX}}}', ['GET'])
    async def get_object(request: Request) -> Response:
        record = await store.get(request.param("objectID"))
        return response(status_code=200).raw_json(record.to_json())

    @server.route(f'{OBJECTS_PREFIX}/{{objectID:{IDENTIFIER_REGEX}}}', ['DELETE'])
    async def delete_object(request: Request) -> Response:
        await store.delete(request.param("objectID"))
        return response(status_code=200)

    @server.fallback(OBJECTS_PREFIX)
    async def wrong_id(request: Request) -> Response:
        raise InvalidIdentifier(request.path[len(OBJECTS_PREFIX):].strip('/'))


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass
