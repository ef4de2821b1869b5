import hmac
from typing import Dict, Optional

from library_portal.config.settings import settings
from library_portal.utils.errors import AuthenticationError
from library_portal.utils.logging import get_logger

logger = get_logger()

UNSET_PREFIX = "<your-"


def _is_configured(value: Optional[str]) -> bool:
    return bool(value) and not value.startswith(UNSET_PREFIX)


def _matches(given: Optional[str], expected: str) -> bool:
    return hmac.compare_digest((given or "").encode("utf-8"), expected.encode("utf-8"))


class AuthService:
    """Checks the shared librarian credential pair and the service API key"""

    def __init__(
        self,
        librarian_email: Optional[str] = None,
        librarian_password: Optional[str] = None,
        service_api_key: Optional[str] = None,
    ):
        self.librarian_email = librarian_email or settings.LIBRARIAN_EMAIL
        self.librarian_password = librarian_password or settings.LIBRARIAN_PASSWORD
        self.service_api_key = service_api_key or settings.SERVICE_API_KEY

    def authenticate_librarian(self, email: str, password: str) -> Dict[str, str]:
        """Verify the librarian login against the configured pair.

        Both values are always compared so the response time does not reveal
        which one was wrong. An unconfigured pair rejects every attempt.
        """
        if not (
            _is_configured(self.librarian_email) and _is_configured(self.librarian_password)
        ):
            logger.error("Librarian credentials are not configured")
            raise AuthenticationError(
                "Invalid librarian credentials", "INVALID_CREDENTIALS"
            )

        email_ok = _matches(email, self.librarian_email)
        password_ok = _matches(password, self.librarian_password)
        if not (email_ok and password_ok):
            logger.warning("Rejected librarian login attempt")
            raise AuthenticationError(
                "Invalid librarian credentials", "INVALID_CREDENTIALS"
            )

        logger.info("Librarian logged in")
        return {"role": "librarian", "email": email}

    def verify_service_key(self, key: Optional[str]) -> bool:
        if not key or not _is_configured(self.service_api_key):
            return False
        return _matches(key, self.service_api_key)


def get_auth_service() -> AuthService:
    return AuthService()
