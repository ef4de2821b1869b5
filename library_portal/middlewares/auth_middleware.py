from typing import Callable, Optional

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from library_portal.config.settings import settings
from library_portal.services.auth_service import AuthService
from library_portal.utils.errors import AuthenticationError
from library_portal.utils.logging import get_logger
from library_portal.utils.responses import ResponseBuilder

logger = get_logger()


def extract_bearer_token(authorization: Optional[str]) -> Optional[str]:
    """Return the token of an ``Authorization: Bearer <token>`` header."""
    if not authorization:
        return None
    scheme, _, token = authorization.strip().partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()


class ServiceKeyMiddleware(BaseHTTPMiddleware):
    """Requires the portal's shared service key on every API call.

    The student profile route is excluded; it is authorised by the
    student's own access token instead.
    """

    def __init__(self, app, excluded_paths: Optional[set] = None):
        super().__init__(app)
        self.excluded_paths = {
            "/docs",
            "/redoc",
            "/openapi.json",
            f"{settings.API_PREFIX}/health",
            f"{settings.API_PREFIX}/student-profile",
        }
        if excluded_paths:
            self.excluded_paths.update(excluded_paths)

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if self._should_skip_auth(request):
            return await call_next(request)

        token = extract_bearer_token(request.headers.get("authorization"))
        if not AuthService().verify_service_key(token):
            logger.warning(f"Rejected call without a valid service key: {request.url.path}")
            return ResponseBuilder.error(
                request=request,
                message="Unauthorized",
                error_code="UNAUTHORIZED",
                status_code=401,
            )

        return await call_next(request)

    def _should_skip_auth(self, request: Request) -> bool:
        """Check if the request should skip authentication."""
        return request.method == "OPTIONS" or self._is_excluded_path(request.url.path)

    def _is_excluded_path(self, path: str) -> bool:
        return any(path.startswith(excluded) for excluded in self.excluded_paths)


# Dependency for routes authorised by the caller's own access token
def get_bearer_token(request: Request) -> str:
    token = extract_bearer_token(request.headers.get("authorization"))
    if not token:
        raise AuthenticationError("Unauthorized")
    return token
