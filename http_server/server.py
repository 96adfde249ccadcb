import asyncio
import re
import time
import uuid
from dataclasses import dataclass
from typing import Dict, Callable, Optional, List, Type
from urllib.parse import urlparse
from .request import BodyTooLarge, Request
from .response import Response
import logging

logger = logging.getLogger()

# {name} or {name:regex} placeholders in route paths
PARAM_PATTERN = re.compile(r"\{(\w+)(?::([^{}]+))?\}")


@dataclass
class Route:
    pattern: re.Pattern[str]
    methods: Dict[str, Callable]


def compile_path(path: str) -> re.Pattern[str]:
    """
    Compile a route path into a regex.

    '/api/objects/{objectID:[a-zA-Z0-9]+}' matches '/api/objects/abc' and
    '/api/objects/abc/', capturing objectID='abc'. A placeholder without a
    regex matches one path segment.
    """
    parts = []
    pos = 0
    for match in PARAM_PATTERN.finditer(path):
        parts.append(re.escape(path[pos:match.start()]))
        name, regex = match.group(1), match.group(2) or "[^/]+"
        parts.append(f"(?P<{name}>{regex})")
        pos = match.end()
    parts.append(re.escape(path[pos:].rstrip('/')))
    return re.compile('^' + ''.join(parts) + '/?$')


class HTTPServer:
    def __init__(self, host: str = '0.0.0.0', port: int = 8080, max_body_size: int = 10 * 1024 * 1024):
        self.host = host
        self.port = port
        self.max_body_size = max_body_size
        self.routes: List[Route] = []
        self.fallbacks: List[tuple[str, Callable]] = []
        self.error_handlers: Dict[Type[BaseException], Callable] = {}

    def route(self, path: str, methods: Optional[List] = None):
        """Decorator for registering route handlers"""
        if methods is None:
            methods = ['GET']

        def decorator(handler):
            pattern = compile_path(path)
            route = next((r for r in self.routes if r.pattern.pattern == pattern.pattern), None)
            if route is None:
                route = Route(pattern=pattern, methods={})
                self.routes.append(route)
            for method in methods:
                route.methods[method.upper()] = handler
            return handler
        return decorator

    def fallback(self, prefix: str):
        """Decorator for the handler of unmatched paths under a prefix"""
        def decorator(handler):
            self.fallbacks.append((prefix, handler))
            return handler
        return decorator

    def errorhandler(self, exc_type: Type[BaseException]):
        """Decorator for converting an exception type into a response"""
        def decorator(handler):
            self.error_handlers[exc_type] = handler
            return handler
        return decorator

    async def parse_request(self, reader: asyncio.StreamReader) -> Optional[Request]:
        """Parse HTTP request line and headers; the body is read on demand"""
        try:
            # Read request line with timeout
            request_line = await asyncio.wait_for(
                reader.readline(),
                timeout=5.0
            )

            if not request_line:
                return None

            request_line = request_line.decode('utf-8').strip()
            method, full_path, version = request_line.split(' ', 2)

            path = urlparse(full_path).path

            # Parse headers
            headers = {}
            while True:
                line = await asyncio.wait_for(reader.readline(), timeout=5.0)
                if line == b'\r\n' or line == b'\n' or not line:
                    break

                header_line = line.decode('utf-8').strip()
                if ':' in header_line:
                    key, value = header_line.split(':', 1)
                    headers[key.strip().lower()] = value.strip()

            request_id = headers.get('x-request-id') or uuid.uuid4().hex[:16]
            content_length, chunked, error = self._body_framing(headers)

            return Request(
                method=method.upper(),
                path=path,
                headers=headers,
                version=version,
                request_id=request_id,
                content_length=content_length,
                chunked=chunked,
                error=error,
                reader=reader,
                max_body_size=self.max_body_size
            )

        except asyncio.TimeoutError:
            return None
        except Exception as e:
            logger.error(f"Error parsing request: {e}")
            return None

    @staticmethod
    def _body_framing(headers: Dict[str, str]) -> tuple[int, bool, str]:
        """Return (content_length, chunked, error) for the request headers"""
        transfer_encoding = headers.get('transfer-encoding', '').strip().lower()
        if transfer_encoding:
            # Transfer-Encoding takes precedence over Content-Length
            if transfer_encoding != 'chunked':
                return 0, False, f"Unsupported Transfer-Encoding: {transfer_encoding}"
            return 0, True, ""

        raw = headers.get('content-length', '').strip()
        if not raw:
            return 0, False, ""
        if not (raw.isascii() and raw.isdigit()):
            return 0, False, f"Invalid Content-Length: {raw}"
        return int(raw), False, ""

    def build_response(self, response: Response, keep_alive: bool = True) -> bytes:
        """Build HTTP response bytes"""
        status_messages = {
            200: 'OK',
            201: 'Created',
            204: 'No Content',
            400: 'Bad Request',
            404: 'Not Found',
            405: 'Method Not Allowed',
            413: 'Request Entity Too Large',
            500: 'Internal Server Error',
        }

        status_text = status_messages.get(response.status, 'Unknown')

        # Set default headers
        if 'content-type' not in response.headers:
            response.headers['content-type'] = 'text/plain'

        response.headers['content-length'] = str(len(response.body))
        response.headers['connection'] = 'keep-alive' if keep_alive else 'close'
        response.headers['server'] = 'ObjectStoreHttp/1.0'

        # Build response
        response_line = f"HTTP/1.1 {response.status} {status_text}\r\n"
        header_lines = ''.join(
            f"{key}: {value}\r\n"
            for key, value in response.headers.items()
        )

        response_bytes = (
            response_line.encode() +
            header_lines.encode() +
            b'\r\n' +
            response.body
        )

        return response_bytes

    def resolve(self, request: Request) -> Optional[Callable]:
        """Find the handler for a request, filling in its path parameters"""
        path_matched = False
        for route in self.routes:
            match = route.pattern.fullmatch(request.path)
            if match is None:
                continue
            path_matched = True
            handler = route.methods.get(request.method)
            if handler is not None:
                request.path_params = match.groupdict()
                return handler

        if path_matched:
            return _method_not_allowed

        for prefix, handler in self.fallbacks:
            if request.path == prefix or request.path.startswith(prefix.rstrip('/') + '/'):
                return handler

        return None

    def _find_error_handler(self, exc: BaseException) -> Optional[Callable]:
        for exc_type in type(exc).__mro__:
            handler = self.error_handlers.get(exc_type)
            if handler is not None:
                return handler
        return None

    async def handle_request(self, request: Request) -> Response:
        """Route request to appropriate handler"""
        handler = self.resolve(request)

        if handler is None:
            return Response(
                status=404,
                body=b'Route Not Found'
            )

        try:
            # Call handler
            result = await handler(request)

            if not isinstance(result, Response):
                raise TypeError(f"Handler returned {type(result).__name__}, expected Response")
            return result
        except Exception as e:
            error_handler = self._find_error_handler(e)
            if error_handler is not None:
                return error_handler(request, e)

            logger.error(f"[{request.request_id}] Handler error: {e}")
            return Response(
                status=500,
                body=b'Internal Server Error'
            )

    async def handle_client(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        """Handle a single client connection with keep-alive"""
        peer = writer.get_extra_info('peername')

        try:
            # Keep-alive loop
            while True:
                request = await self.parse_request(reader)
                if request is None:
                    break

                start_time = time.perf_counter()
                logger.debug(f"[{request.request_id}] --> {request.method} {request.path}")

                # Handle request
                drainable = False
                if request.error:
                    response = Response(status=400, body=request.error.encode())
                elif request.content_length > self.max_body_size:
                    response = Response(status=413, body=b'Request body too large')
                else:
                    response = await self.handle_request(request)
                    drainable = True
                response.headers['x-request-id'] = request.request_id

                # Unread body bytes would be parsed as the next request
                if drainable:
                    try:
                        await request.discard_body()
                    except (asyncio.IncompleteReadError, asyncio.TimeoutError, ConnectionError,
                            ValueError, BodyTooLarge) as e:
                        logger.debug(f"[{request.request_id}] Could not drain request body: {e}")

                connection_header = request.headers.get('connection', '').lower()
                keep_alive = (
                    connection_header != 'close'
                    and drainable
                    and request.body_consumed
                )

                # Send response
                response_bytes = self.build_response(response, keep_alive)
                writer.write(response_bytes)
                await writer.drain()

                elapsed_ms = (time.perf_counter() - start_time) * 1000
                logger.debug(
                    f"[{request.request_id}] <-- {response.status} - {len(response.body)} bytes - {elapsed_ms:.2f}ms"
                )

                if not keep_alive:
                    break

        except ConnectionResetError:
            pass
        except Exception as e:
            logger.error(f"Connection error from {peer}: {e}")
        finally:
            try:
                writer.close()
                await writer.wait_closed()
            except (ConnectionError, OSError):
                pass

    async def start(self):
        """Start the HTTP server"""
        server = await asyncio.start_server(
            self.handle_client,
            self.host,
            self.port
        )

        addr = server.sockets[0].getsockname()
        logger.info(f'Object Store HTTP Server running on http://{addr[0]}:{addr[1]}')

        try:
            async with server:
                await server.serve_forever()
        except asyncio.CancelledError:
            logger.info("Server shutdown requested")
        finally:
            await self.shutdown(server)

    async def shutdown(self, server):
        """Gracefully shutdown the server"""
        logger.info("Shutting down server...")
        server.close()
        await server.wait_closed()
        logger.info("Server shutdown complete")


async def _method_not_allowed(request: Request) -> Response:
    return Response(status=405, body=b'Method Not Allowed')
