"""Application middleware: request body size limit, security and cache headers."""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

# Responses on these paths can carry account secrets or session tokens
NO_STORE_PREFIXES = ("/signup",)


class BodySizeLimitMiddleware(BaseHTTPMiddleware):
    """Reject write requests whose declared Content-Length exceeds max_bytes."""

    def __init__(self, app, max_bytes: int = 1_048_576) -> None:  # type: ignore[no-untyped-def]
        super().__init__(app)
        self.max_bytes = max_bytes

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[no-untyped-def]
        if request.method in ("POST", "PATCH", "PUT"):
            content_length = request.headers.get("content-length")
            if content_length:
                try:
                    declared = int(content_length)
                except ValueError:
                    return JSONResponse(status_code=400, content={"detail": "Invalid Content-Length"})
                if declared > self.max_bytes:
                    return JSONResponse(
                        status_code=413,
                        content={"detail": f"Request body too large (max {self.max_bytes} bytes)"},
                    )
        return await call_next(request)


class SecurityHeadersMiddleware(BaseHTTPMiddleware):
    """Security headers on every response; no-store on signup responses."""

    async def dispatch(self, request: Request, call_next) -> Response:  # type: ignore[no-untyped-def]
        response = await call_next(request)
        response.headers["Strict-Transport-Security"] = "max-age=63072000; includeSubDomains"
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        if request.url.path.startswith(NO_STORE_PREFIXES):
            response.headers["Cache-Control"] = "no-store"
        return response
