"""Request ID middleware."""

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from backoffice_api.utils.request_id import resolve_request_id

REQUEST_ID_HEADER = "X-Request-ID"


class RequestIDMiddleware(BaseHTTPMiddleware):
    """Attach a request ID to ``request.state`` and echo it in the response."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = resolve_request_id(request.headers.get(REQUEST_ID_HEADER))
        request.state.request_id = request_id
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response
