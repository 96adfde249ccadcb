"""
Minimal asyncio HTTP/1.1 server with pattern routes.
"""
