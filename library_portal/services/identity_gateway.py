from typing import Any, Dict, Optional

from httpx import AsyncBaseTransport, AsyncClient, HTTPError, Response

from library_portal.config.settings import settings
from library_portal.utils.errors import (
    AuthenticationError,
    IdentityConflictError,
    UpstreamError,
    ValidationError,
)
from library_portal.utils.logging import get_logger

logger = get_logger()

CONFLICT_CODES = {"email_exists", "user_already_exists", "phone_exists"}


def _error_message(response: Response) -> str:
    """Pull the human-readable reason out of an auth provider error body."""
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if not isinstance(body, dict):
        return str(body)
    return str(
        body.get("msg")
        or body.get("message")
        or body.get("error_description")
        or body.get("error")
        or f"HTTP {response.status_code}"
    )


def _error_code(response: Response) -> Optional[str]:
    try:
        body = response.json()
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    return body.get("error_code") or body.get("code")


class IdentityGateway:
    """Client for the hosted identity provider (GoTrue-compatible REST API).

    Account creation uses the admin endpoint with the service key; password
    sign-in and token lookup use the public (anon) key, the same split the
    browser client and the server functions use.
    """

    def __init__(
        self,
        base_url: str = None,
        service_key: str = None,
        anon_key: str = None,
        timeout: float = None,
        transport: Optional[AsyncBaseTransport] = None,
    ):
        self.base_url = (base_url or settings.IDENTITY_BASE_URL).rstrip("/")
        self.service_key = service_key or settings.IDENTITY_SERVICE_KEY
        self.anon_key = anon_key or settings.IDENTITY_ANON_KEY
        self.timeout = timeout or settings.IDENTITY_TIMEOUT_SECONDS
        self.transport = transport

    def _client(self) -> AsyncClient:
        return AsyncClient(
            base_url=self.base_url, timeout=self.timeout, transport=self.transport
        )

    def _headers(self, key: str, bearer: Optional[str] = None) -> Dict[str, str]:
        return {
            "apikey": key,
            "Authorization": f"Bearer {bearer or key}",
            "Content-Type": "application/json",
        }

    async def create_user(
        self, email: str, password: str, metadata: Dict[str, Any]
    ) -> str:
        """Create a confirmed account and return its user id.

        Raises:
            IdentityConflictError: the email is already registered
            ValidationError: the provider rejected the email or password
            UpstreamError: the provider could not be reached or failed
        """
        try:
            async with self._client() as client:
                response = await client.post(
                    "/auth/v1/admin/users",
                    headers=self._headers(self.service_key),
                    json={
                        "email": email,
                        "password": password,
                        "email_confirm": True,
                        "user_metadata": metadata,
                    },
                )
        except HTTPError as e:
            raise UpstreamError(
                f"Identity provider unreachable: {e}", "IDENTITY_PROVIDER_ERROR"
            )

        if response.status_code >= 500:
            raise UpstreamError(
                f"Identity provider error {response.status_code}: {_error_message(response)}",
                "IDENTITY_PROVIDER_ERROR",
            )
        if response.status_code >= 400:
            message = _error_message(response)
            if (
                response.status_code == 409
                or _error_code(response) in CONFLICT_CODES
                or "already" in message.lower()
            ):
                raise IdentityConflictError(f"Registration failed: {message}")
            raise ValidationError(
                f"Registration failed: {message}", error_code="REGISTRATION_REJECTED"
            )

        user = response.json()
        # Admin API returns the user object, older versions wrap it
        user_id = user.get("id") or (user.get("user") or {}).get("id")
        if not user_id:
            raise UpstreamError(
                "Identity provider returned no user id", "IDENTITY_PROVIDER_ERROR"
            )
        return user_id

    async def sign_in_with_password(self, email: str, password: str) -> Dict[str, Any]:
        """Exchange email and password for a session.

        Returns:
            Dict with ``access_token`` and ``user``

        Raises:
            AuthenticationError: wrong email/password pair
        """
        try:
            async with self._client() as client:
                response = await client.post(
                    "/auth/v1/token",
                    params={"grant_type": "password"},
                    headers=self._headers(self.anon_key),
                    json={"email": email, "password": password},
                )
        except HTTPError as e:
            raise UpstreamError(
                f"Identity provider unreachable: {e}", "IDENTITY_PROVIDER_ERROR"
            )

        if response.status_code in (400, 401, 403, 422):
            raise AuthenticationError("Invalid credentials", "INVALID_CREDENTIALS")
        if response.status_code >= 400:
            raise UpstreamError(
                f"Identity provider error {response.status_code}: {_error_message(response)}",
                "IDENTITY_PROVIDER_ERROR",
            )

        session = response.json()
        return {"access_token": session["access_token"], "user": session.get("user")}

    async def get_user(self, access_token: str) -> Optional[Dict[str, Any]]:
        """Resolve a bearer token to its user, or None if the provider rejects it."""
        try:
            async with self._client() as client:
                response = await client.get(
                    "/auth/v1/user",
                    headers=self._headers(self.anon_key, bearer=access_token),
                )
        except HTTPError as e:
            raise UpstreamError(
                f"Identity provider unreachable: {e}", "IDENTITY_PROVIDER_ERROR"
            )

        if response.status_code in (401, 403, 404):
            return None
        if response.status_code >= 400:
            raise UpstreamError(
                f"Identity provider error {response.status_code}: {_error_message(response)}",
                "IDENTITY_PROVIDER_ERROR",
            )

        user = response.json()
        return user if user and user.get("id") else None


def get_identity_gateway() -> IdentityGateway:
    """Dependency to get the identity gateway"""
    return IdentityGateway()
