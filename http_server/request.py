import asyncio
from dataclasses import dataclass, field


class BodyTooLarge(Exception):
    """Raised when a request body grows past the allowed size while being read."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Request body exceeds {limit} bytes")


@dataclass
class Request:
    method: str
    path: str
    headers: dict[str, str]
    version: str
    request_id: str = ""
    content_length: int = 0
    chunked: bool = False
    # Set when the head is unusable; the server answers 400 without routing
    error: str = ""
    path_params: dict[str, str] = field(default_factory=dict)
    reader: asyncio.StreamReader | None = field(default=None, repr=False)
    body_timeout: float = 30.0
    max_body_size: int = 10 * 1024 * 1024
    _body: bytes | None = field(default=None, init=False, repr=False)
    _drained: bool = field(default=False, init=False, repr=False)
    _framing_lost: bool = field(default=False, init=False, repr=False)

    @property
    def content_type(self) -> str:
        return self.headers.get("content-type", "")

    @property
    def has_body(self) -> bool:
        return self.chunked or self.content_length > 0

    @property
    def body_consumed(self) -> bool:
        """True once the connection is positioned at the next request."""
        if self._framing_lost:
            return False
        return self._body is not None or self._drained or not self.has_body

    def header(self, name: str, default: str = "") -> str:
        if not name:
            raise ValueError("Header name cannot be empty")

        return self.headers.get(name.lower(), default)

    def param(self, name: str) -> str:
        """Return a path parameter captured by the route pattern."""
        return self.path_params[name]

    async def read_body(self, limit: int | None = None) -> bytes:
        """
        Read the full request body, Content-Length or chunked framed.

        The body is read from the connection at most once; later calls
        return the cached bytes.

        Args:
            limit: Maximum body size; defaults to max_body_size.

        Raises:
            BodyTooLarge: If the body exceeds `limit`.
            asyncio.IncompleteReadError: If the client sent fewer bytes than announced.
            asyncio.TimeoutError: If the body does not arrive in time.
            ValueError: If the chunked framing is malformed.
        """
        if self._body is not None:
            return self._body

        if limit is None:
            limit = self.max_body_size

        if not self.has_body or self.reader is None:
            self._body = b""
            return self._body

        if not self.chunked and self.content_length > limit:
            raise BodyTooLarge(self.content_length, limit)

        try:
            if self.chunked:
                body = await asyncio.wait_for(self._read_chunked(limit), timeout=self.body_timeout)
            else:
                body = await asyncio.wait_for(
                    self.reader.readexactly(self.content_length),
                    timeout=self.body_timeout
                )
        except BaseException:
            self._framing_lost = True
            raise

        self._body = body
        return self._body

    async def _read_chunked(self, limit: int) -> bytes:
        chunks = []
        size = 0
        while True:
            size_line = await self.reader.readline()
            if not size_line.endswith(b'\n'):
                raise asyncio.IncompleteReadError(size_line, None)

            # Chunk extensions after ';' are ignored
            chunk_size = int(size_line.split(b';', 1)[0].strip(), 16)
            if chunk_size < 0:
                raise ValueError(f"Negative chunk size: {chunk_size}")
            if chunk_size == 0:
                break

            size += chunk_size
            if size > limit:
                raise BodyTooLarge(size, limit)

            chunks.append(await self.reader.readexactly(chunk_size))
            if await self.reader.readline() not in (b'\r\n', b'\n'):
                raise ValueError("Missing CRLF after chunk data")

        # Trailer section ends with an empty line
        while True:
            line = await self.reader.readline()
            if not line:
                raise asyncio.IncompleteReadError(b'', None)
            if line in (b'\r\n', b'\n'):
                break

        return b''.join(chunks)

    async def discard_body(self, chunk_size: int = 64 * 1024) -> None:
        """Read and drop a body the handler did not consume."""
        if self.body_consumed or self._framing_lost or self.reader is None:
            return

        if self.chunked:
            await self.read_body()
            return

        remaining = self.content_length
        try:
            while remaining > 0:
                chunk = await asyncio.wait_for(
                    self.reader.read(min(remaining, chunk_size)),
                    timeout=self.body_timeout
                )
                if not chunk:
                    raise asyncio.IncompleteReadError(b'', remaining)
                remaining -= len(chunk)
        except BaseException:
            self._framing_lost = True
            raise
        self._drained = True
