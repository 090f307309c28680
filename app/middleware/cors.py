"""
CORS Middleware - Cross-Origin Resource Sharing configuration.

The credit-operations endpoint is called straight from the mobile/web client,
so browsers send a preflight OPTIONS before every POST.

Configuration:
- CORS_ALLOW_ORIGINS=["*"] (default): any origin, answered with "*"
- A list of origins: only those origins are echoed back

Usage:
    from app.middleware.cors import CORSMiddleware

    app.add_middleware(CORSMiddleware, allowed_origins=settings.CORS_ALLOW_ORIGINS)

Headers added:
- Access-Control-Allow-Origin: Which origin is allowed
- Access-Control-Allow-Methods: POST, OPTIONS
- Access-Control-Allow-Headers: authorization, x-client-info, apikey, content-type
"""

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import Response

from app.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)

DEFAULT_ALLOW_METHODS = ["POST", "OPTIONS"]
DEFAULT_ALLOW_HEADERS = ["authorization", "x-client-info", "apikey", "content-type"]


class CORSMiddleware(BaseHTTPMiddleware):
    """
    Handles preflight OPTIONS requests and adds CORS headers to responses.

    Preflight is answered with 200 and body "ok", which is what the client
    SDK expects from the hosted function runtime.
    """

    def __init__(
        self,
        app,
        allowed_origins: list[str] | None = None,
        allow_methods: list[str] | None = None,
        allow_headers: list[str] | None = None,
        max_age: int | None = None,
    ):
        super().__init__(app)
        self.allowed_origins = allowed_origins if allowed_origins is not None else ["*"]
        self.allow_any_origin = "*" in self.allowed_origins
        self.allow_methods = allow_methods or DEFAULT_ALLOW_METHODS
        self.allow_headers = allow_headers or DEFAULT_ALLOW_HEADERS
        self.max_age = max_age

        logger.info(
            "CORS middleware initialized",
            allowed_origins=self.allowed_origins,
            allow_methods=self.allow_methods,
        )

    def _allowed_origin(self, origin: str | None) -> str | None:
        """Value for Access-Control-Allow-Origin, or None if the origin is refused."""
        if self.allow_any_origin:
            return "*"
        if origin and origin in self.allowed_origins:
            return origin
        return None

    async def dispatch(self, request, call_next):
        origin = request.headers.get("origin")
        allow_origin = self._allowed_origin(origin)

        if request.method == "OPTIONS":
            if allow_origin:
                return self._preflight_response(allow_origin)

            logger.warning(
                "CORS preflight rejected - origin not allowed",
                origin=origin,
                allowed_origins=self.allowed_origins,
            )
            return Response(status_code=403, content="Origin not allowed")

        response = await call_next(request)

        if allow_origin:
            response.headers["Access-Control-Allow-Origin"] = allow_origin
            response.headers["Access-Control-Allow-Headers"] = ", ".join(self.allow_headers)
            if allow_origin != "*":
                response.headers["Vary"] = "Origin"
        elif origin:
            logger.warning(
                "CORS request from disallowed origin",
                origin=origin,
                path=request.url.path,
            )

        return response

    def _preflight_response(self, allow_origin: str) -> Response:
        headers = {
            "Access-Control-Allow-Origin": allow_origin,
            "Access-Control-Allow-Methods": ", ".join(self.allow_methods),
            "Access-Control-Allow-Headers": ", ".join(self.allow_headers),
        }
        if self.max_age is not None:
            headers["Access-Control-Max-Age"] = str(self.max_age)

        logger.debug("CORS preflight request handled", allow_origin=allow_origin)

        return Response(status_code=200, content="ok", headers=headers)
