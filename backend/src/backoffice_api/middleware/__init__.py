"""Middleware package."""

from backoffice_api.middleware.request_id import RequestIDMiddleware

__all__ = [
    "RequestIDMiddleware",
]
