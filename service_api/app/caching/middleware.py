"""
HTTP middleware serving GET responses from the response cache.
"""

from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint

from shared.logging import get_logger

from .response_cache import CACHE_HEADER, MUTATING_METHODS, READ_METHOD, ResponseCache


class ResponseCacheMiddleware(BaseHTTPMiddleware):
    """
    Global response cache.

    - GET: served from cache when present (``X-Cache: HIT``), otherwise the
      final downstream response is captured and 2xx responses are stored
      (``X-Cache: MISS``).
    - POST, PUT, PATCH, DELETE: the whole cache is flushed before the handler
      runs.
    - Bypassed prefixes and any other method pass through untouched.
    """

    def __init__(self, app, cache: ResponseCache):
        super().__init__(app)
        self.cache = cache
        self.logger = get_logger("api.cache_middleware")

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        method = request.method.upper()
        path = request.url.path

        if self.cache.is_bypassed(path):
            self.cache.note_bypass(method, path)
            return await call_next(request)

        if method == READ_METHOD:
            return await self._serve_read(request, call_next)

        if method in MUTATING_METHODS:
            # Flush before the handler runs; the request proceeds even if it fails
            await self.cache.invalidate(method, path)

        return await call_next(request)

    async def _serve_read(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        key = self.cache.request_key(request.scope)

        cached = await self.cache.lookup(key)
        if cached is not None:
            return JSONResponse(
                status_code=cached.status,
                content=cached.body,
                headers={CACHE_HEADER: "HIT"},
            )

        response = await call_next(request)

        # The streamed body is complete only once the handler has finished,
        # so status and body here are the final pair.
        body = b"".join([chunk async for chunk in response.body_iterator])
        captured = Response(content=body, status_code=response.status_code)
        captured.raw_headers = list(response.raw_headers)
        captured.headers[CACHE_HEADER] = "MISS"

        self.cache.schedule_write(key, captured.status_code, body)
        return captured
