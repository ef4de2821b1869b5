from typing import List, Union
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Application
    ENVIRONMENT: str = "development"
    NAME: str = "Library Member Portal"
    VERSION: str = "1.0.0"
    API_PREFIX: str = "/api/v1"
    """Pydantic v2 doesn't support parsing List[str] from a plain comma-separated string by default anymore."""
    ALLOWED_HOSTS: Union[str, List[str]] = "<your-allowed-host-1,<your-allowed-host-2>>"
    LOG_LEVEL: str = "INFO"

    # Service access
    SERVICE_API_KEY: str = "<your-service-api-key>"
    LIBRARIAN_EMAIL: str = "<your-librarian-email>"
    LIBRARIAN_PASSWORD: str = "<your-librarian-password>"

    # Identity provider (GoTrue-compatible REST API)
    IDENTITY_BASE_URL: str = "<your-identity-base-url>"
    IDENTITY_SERVICE_KEY: str = "<your-identity-service-key>"
    IDENTITY_ANON_KEY: str = "<your-identity-anon-key>"
    IDENTITY_TIMEOUT_SECONDS: float = 30.0

    # Redis record store
    REDIS_PASSWORD: str = ""
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379
    REDIS_DB: int = 0
    STUDENT_RECORD_PREFIX: str = "student:record:"
    STUDENT_PRN_INDEX_PREFIX: str = "student:prn:"
    STUDENT_PHONE_INDEX_PREFIX: str = "student:phone:"

    # MinIO Object Storage
    MINIO_ENDPOINT: str = "<your-minio-endpoint>"
    MINIO_ACCESS_KEY: str = "<your-minio-access-key>"
    MINIO_SECRET_KEY: str = "<your-minio-secret-key>"
    MINIO_BUCKET_NAME: str = "student-photos"
    MINIO_SECURE: bool = False
    PHOTO_URL_EXPIRE_HOURS: int = 168

    # Library records
    LIBRARY_NUMBER_PREFIX: str = "LIB"
    NEW_REGISTRATION_WINDOW_DAYS: int = 30

    # ID cards
    PORTAL_URL: str = "<your-portal-url>"
    CARD_INSTITUTION_NAME: str = "<your-institution-name>"
    CARD_INSTITUTION_SUBTITLE: str = "<your-institution-campus>"

    @field_validator("ALLOWED_HOSTS", mode="before")
    def assemble_cors_origins(cls, v: Union[str, List[str]]) -> Union[List[str], str]:
        if not v:
            return []
        if isinstance(v, str) and not v.startswith("["):
            return [i.strip() for i in v.split(",")]
        return v

    @field_validator("PHOTO_URL_EXPIRE_HOURS")
    def cap_photo_url_expiry(cls, v: int) -> int:
        # MinIO refuses presigned URLs valid for more than 7 days
        return max(1, min(v, 168))

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


settings = Settings()
